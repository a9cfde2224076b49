"""
Transport construction for MCP servers.

A transport only knows how to open a pair of message streams; the handshake
happens in the connection manager.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional, Tuple

import httpx
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from mcp.client.stdio import StdioServerParameters, get_default_environment
from mcp.client.streamable_http import streamable_http_client

from noc_mcp.config import HttpTransportConfig, ServerConfig, StdioTransportConfig
from noc_mcp.errors import ConfigError
from noc_mcp.utils.logging import get_logger
from noc_mcp.utils.stdio import stdio_client_with_logged_stderr

logger = get_logger(__name__)

MessageStreams = Tuple[MemoryObjectReceiveStream, MemoryObjectSendStream]

# Long read timeout for idle SSE streams
HTTP_TIMEOUT_SECONDS = 30.0
HTTP_SSE_READ_TIMEOUT_SECONDS = 300.0


class ServerTransport:
    """
    A not-yet-opened transport to one MCP server.

    ``open()`` is an async context manager yielding ``(read_stream,
    write_stream)``; leaving it tears the transport down.
    """

    kind: str = ""

    def __init__(self, server_name: str):
        self.server_name = server_name

    def open(self) -> "AsyncIterator[MessageStreams]":
        raise NotImplementedError

    def describe(self) -> str:
        return self.kind


class HttpServerTransport(ServerTransport):
    """Streamable HTTP session against a remote endpoint."""

    kind = "http"

    def __init__(self, server_name: str, url: str, headers: Optional[Dict[str, str]] = None):
        super().__init__(server_name)
        self.url = url
        self.headers = headers or {}

    @asynccontextmanager
    async def open(self) -> AsyncIterator[MessageStreams]:
        logger.debug(f"{self.server_name}: Opening streamable HTTP session to {self.url}")
        async with httpx.AsyncClient(
            headers=self.headers,
            timeout=httpx.Timeout(HTTP_TIMEOUT_SECONDS, read=HTTP_SSE_READ_TIMEOUT_SECONDS),
            follow_redirects=True,
        ) as http_client:
            async with streamable_http_client(self.url, http_client=http_client) as (
                read_stream,
                write_stream,
                _get_session_id,
            ):
                yield read_stream, write_stream

    def describe(self) -> str:
        return f"http {self.url}"


class StdioServerTransport(ServerTransport):
    """Child process speaking JSON-RPC over stdin/stdout."""

    kind = "stdio"

    def __init__(
        self,
        server_name: str,
        command: str,
        args: Optional[List[str]] = None,
        env: Optional[Dict[str, str]] = None,
    ):
        super().__init__(server_name)
        self.params = StdioServerParameters(
            command=command,
            args=list(args or []),
            env={**get_default_environment(), **(env or {})},
        )

    @asynccontextmanager
    async def open(self) -> AsyncIterator[MessageStreams]:
        async with stdio_client_with_logged_stderr(self.params, self.server_name) as streams:
            yield streams

    def describe(self) -> str:
        return " ".join(["stdio", self.params.command, *self.params.args])


def create_transport(config: ServerConfig) -> ServerTransport:
    """
    Build the transport for a server configuration.

    Args:
        config: A validated server configuration.

    Returns:
        An unopened ServerTransport.

    Raises:
        ConfigError: If the configuration does not describe a known transport.
    """
    transport = getattr(config, "transport", None)
    if isinstance(transport, HttpTransportConfig):
        return HttpServerTransport(config.name, transport.url, transport.headers)
    if isinstance(transport, StdioTransportConfig):
        return StdioServerTransport(
            config.name, transport.command, transport.args, transport.env
        )
    raise ConfigError(
        f"Unsupported transport: {type(transport).__name__}",
        getattr(config, "name", None),
    )
