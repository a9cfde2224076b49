"""
Client session used for every connection to an MCP server.

Extends the SDK session with request logging and remembers the last
transport-level exception pushed onto the read stream, so a failed handshake
can be reported with its real cause instead of a bare timeout.
"""

from datetime import timedelta
from typing import Optional

from mcp import ClientSession
from mcp.types import Implementation

from noc_mcp.utils.logging import get_logger

logger = get_logger(__name__)


class NocClientSession(ClientSession):
    """
    Client session for connections to MCP tool servers.
    """

    def __init__(
        self,
        read_stream,
        write_stream,
        read_timeout: Optional[timedelta] = None,
        *,
        server_name: str = "",
        client_info: Optional[Implementation] = None,
    ):
        super().__init__(
            read_stream,
            write_stream,
            read_timeout_seconds=read_timeout,
            client_info=client_info,
            message_handler=self._handle_message,
        )
        self.server_name = server_name
        self.transport_error: Optional[Exception] = None

    async def _handle_message(self, message) -> None:
        if isinstance(message, Exception):
            logger.debug(f"{self.server_name}: transport reported {message!r}")
            self.transport_error = message

    async def send_request(self, request, result_type, *args, **kwargs):
        logger.debug(f"{self.server_name}: send_request: request=", data=request.model_dump())
        try:
            result = await super().send_request(request, result_type, *args, **kwargs)
        except Exception as e:
            logger.debug(f"{self.server_name}: send_request failed: {e}")
            raise
        logger.debug(f"{self.server_name}: send_request: response=", data=result.model_dump())
        return result

    async def send_notification(self, notification, *args, **kwargs) -> None:
        logger.debug(f"{self.server_name}: send_notification:", data=notification.model_dump())
        return await super().send_notification(notification, *args, **kwargs)

    async def _received_notification(self, notification) -> None:
        logger.debug(
            f"{self.server_name}: received notification:", data=notification.model_dump()
        )
        return await super()._received_notification(notification)
