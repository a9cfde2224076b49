"""
Establishes and owns MCP server connections.

Each connection runs inside its own lifecycle task so that the transport and
session contexts are entered and exited by the same task. The caller gets a
``Connection`` once the handshake and tool discovery finished; leaving the
``ConnectionManager`` context closes every connection it created.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Iterator, List, Optional, Protocol, Union

import anyio
import httpx
from anyio.abc import TaskGroup
from mcp.shared.exceptions import McpError
from mcp.types import CONNECTION_CLOSED, CallToolResult, Implementation, InitializeResult, Tool
from pydantic import ValidationError

from noc_mcp import __version__
from noc_mcp.config import ServerConfig
from noc_mcp.errors import (
    ConnectError,
    ConnectionClosedError,
    NocMcpError,
    ProtocolError,
    RegistryError,
)
from noc_mcp.mcp.client_session import NocClientSession
from noc_mcp.mcp.server_registry import ServerRegistry
from noc_mcp.mcp.transport import ServerTransport, create_transport
from noc_mcp.utils.logging import get_logger

logger = get_logger(__name__)

TransportFactory = Callable[[ServerConfig], ServerTransport]

_TRANSPORT_EXCEPTIONS = (
    OSError,
    httpx.HTTPError,
    anyio.BrokenResourceError,
    anyio.ClosedResourceError,
    anyio.EndOfStream,
)


class Closeable(Protocol):
    async def close(self) -> None: ...


def _flatten(exc: BaseException) -> Iterator[BaseException]:
    if isinstance(exc, BaseExceptionGroup):
        for inner in exc.exceptions:
            yield from _flatten(inner)
    else:
        yield exc


def classify_error(
    server_name: str, exc: BaseException, transport_error: Optional[BaseException] = None
) -> NocMcpError:
    """
    Map an exception raised while connecting into ConnectError or ProtocolError.

    Args:
        server_name: Server being connected to.
        exc: The raised exception, possibly an exception group.
        transport_error: Exception the transport pushed onto the session's
            read stream, if any. It names the real cause when the session
            itself only saw a timeout or a closed connection.

    Returns:
        The classified error, chained to the original exception.
    """
    leaves = list(_flatten(exc))
    for leaf in leaves:
        if isinstance(leaf, NocMcpError):
            return leaf

    for leaf in leaves:
        if isinstance(leaf, _TRANSPORT_EXCEPTIONS):
            error = ConnectError(f"{type(leaf).__name__}: {leaf}", server_name)
            break
        if isinstance(leaf, McpError) and leaf.error.code in (
            CONNECTION_CLOSED,
            httpx.codes.REQUEST_TIMEOUT,
        ):
            if transport_error is not None:
                detail = f"{type(transport_error).__name__}: {transport_error}"
            else:
                detail = leaf.error.message
            error = ConnectError(detail, server_name)
            break
    else:
        leaf = leaves[0]
        if isinstance(leaf, McpError):
            detail = f"server returned error {leaf.error.code}: {leaf.error.message}"
        elif isinstance(leaf, ValidationError):
            detail = f"malformed response: {leaf}"
        else:
            detail = f"{type(leaf).__name__}: {leaf}"
        error = ProtocolError(detail, server_name)

    error.__cause__ = leaf
    return error


class Connection:
    """
    A live, initialized connection to one MCP server.

    Holds the call-handle (``session``), the tools the server advertised and
    its initialize result. The connection is only usable while its owner is
    open; ``close()`` tears down the transport.
    """

    def __init__(
        self,
        server_name: str,
        session: NocClientSession,
        server_info: InitializeResult,
        tools: List[Tool],
        owner: Closeable,
    ):
        self.server_name = server_name
        self.server_info = server_info
        self.tools = tools
        self.owner = owner
        self._session = session
        self._closed = False

    @property
    def session(self) -> NocClientSession:
        if self._closed:
            raise ConnectionClosedError("connection is closed", self.server_name)
        return self._session

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def tool_count(self) -> int:
        return len(self.tools)

    async def call_tool(self, name: str, arguments: Optional[dict] = None) -> CallToolResult:
        """
        Call a tool on this server.

        Raises:
            ConnectionClosedError: If the connection was already closed.
        """
        return await self.session.call_tool(name, arguments or {})

    async def close(self) -> None:
        await self.owner.close()

    def _mark_closed(self) -> None:
        self._closed = True

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<Connection {self.server_name} tools={self.tool_count} {state}>"


class ServerLifecycle:
    """
    Owns the transport and session of one server connection.

    ``run()`` is started in the manager's task group. It signals ``ready``
    once the connection is established (or failed) and then waits until
    ``close()`` is requested.
    """

    def __init__(
        self,
        config: ServerConfig,
        transport: ServerTransport,
        client_info: Implementation,
        read_timeout: Optional[timedelta] = None,
        close_timeout_seconds: float = 5,
        client_session_factory: Callable[..., NocClientSession] = NocClientSession,
    ):
        self.server_name = config.name
        self.config = config
        self.transport = transport
        self.connection: Optional[Connection] = None
        self.error: Optional[NocMcpError] = None
        self._client_info = client_info
        self._read_timeout = read_timeout
        self._close_timeout_seconds = close_timeout_seconds
        self._client_session_factory = client_session_factory
        self._cancel_scope: Optional[anyio.CancelScope] = None

        # Signal that the connection is up, or that establishing it failed
        self._ready_event = anyio.Event()
        # Signal we want to shut down
        self._shutdown_event = anyio.Event()
        # Signal the transport has been torn down
        self._closed_event = anyio.Event()

    async def run(self) -> None:
        session: Optional[NocClientSession] = None
        with anyio.CancelScope() as scope:
            self._cancel_scope = scope
            try:
                if self._shutdown_event.is_set():
                    return
                async with self.transport.open() as (read_stream, write_stream):
                    session = self._client_session_factory(
                        read_stream,
                        write_stream,
                        self._read_timeout,
                        server_name=self.server_name,
                        client_info=self._client_info,
                    )
                    async with session:
                        server_info = await session.initialize()
                        tools = (await session.list_tools()).tools

                        self.connection = Connection(
                            self.server_name, session, server_info, list(tools), self
                        )
                        logger.info(
                            f"{self.server_name}: Connected",
                            data={
                                "server": server_info.serverInfo.name,
                                "protocol": server_info.protocolVersion,
                                "tools_count": len(tools),
                            },
                        )
                        self._ready_event.set()

                        await self._shutdown_event.wait()
            except Exception as exc:
                transport_error = session.transport_error if session is not None else None
                error = classify_error(self.server_name, exc, transport_error)
                logger.debug(f"{self.server_name}: Lifecycle ended with {error!r}", exc_info=exc)
                if self.connection is None:
                    self.error = error
            finally:
                if self.connection is not None:
                    self.connection._mark_closed()
                self._ready_event.set()
                self._closed_event.set()

    async def wait_ready(self) -> Connection:
        """
        Wait for the handshake to finish.

        Returns:
            The established connection.

        Raises:
            ConnectError: On transport failures, or if closed before ready.
            ProtocolError: On handshake or discovery failures.
        """
        await self._ready_event.wait()
        if self.connection is None:
            raise self.error or ConnectError(
                "connection closed before it was established", self.server_name
            )
        return self.connection

    async def close(self) -> None:
        """
        Shut the connection down and wait for the transport to be released.

        A connection still handshaking is cancelled right away; an established
        one is asked to exit and cancelled if that takes longer than the close
        timeout.
        """
        self._shutdown_event.set()
        if self._cancel_scope is None:
            return
        if not self._ready_event.is_set():
            self._cancel_scope.cancel()
        else:
            with anyio.move_on_after(self._close_timeout_seconds):
                await self._closed_event.wait()
            if not self._closed_event.is_set():
                logger.warning(f"{self.server_name}: Graceful shutdown timed out, cancelling")
                self._cancel_scope.cancel()
        await self._closed_event.wait()


@dataclass
class ConnectionOutcome:
    """Result of one connection attempt."""

    server_name: str
    connection: Optional[Connection] = None
    error: Optional[NocMcpError] = None

    @property
    def ok(self) -> bool:
        return self.connection is not None


@dataclass
class ConnectionBatch:
    """Outcomes of ``connect_all`` in registry order."""

    outcomes: List[ConnectionOutcome] = field(default_factory=list)

    @property
    def connections(self) -> List[Connection]:
        return [outcome.connection for outcome in self.outcomes if outcome.connection]

    @property
    def failures(self) -> List[ConnectionOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    @property
    def partial_failure(self) -> bool:
        return bool(self.failures) and bool(self.connections)

    @property
    def tool_count(self) -> int:
        return sum(connection.tool_count for connection in self.connections)


class ConnectionManager:
    """
    Creates connections to MCP servers and owns their lifetime.

    Must be used as an async context manager; every connection it created is
    closed when the context exits.

    Example:
        async with ConnectionManager(registry) as manager:
            batch = await manager.connect_all()
            for connection in batch.connections:
                ...
    """

    def __init__(
        self,
        registry: Optional[ServerRegistry] = None,
        transport_factory: TransportFactory = create_transport,
        client_name: str = "noc_mcp",
        read_timeout_seconds: Optional[float] = 30,
        concurrent: bool = True,
        close_timeout_seconds: float = 5,
    ):
        self.registry = registry
        self.transport_factory = transport_factory
        self.client_info = Implementation(name=client_name, version=__version__)
        self.read_timeout = (
            timedelta(seconds=read_timeout_seconds) if read_timeout_seconds else None
        )
        self.concurrent = concurrent
        self.close_timeout_seconds = close_timeout_seconds
        self.lifecycles: List[ServerLifecycle] = []
        self._tg: Optional[TaskGroup] = None

    async def __aenter__(self) -> "ConnectionManager":
        # One task group holds every server lifecycle task
        self._tg = anyio.create_task_group()
        await self._tg.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        logger.debug("ConnectionManager: shutting down all server tasks...")
        try:
            with anyio.CancelScope(shield=True):
                await self.close_all()
        finally:
            tg, self._tg = self._tg, None
            if tg is not None:
                # Only cancellation is handed to the task group; other errors
                # propagate unwrapped from the caller's block
                if isinstance(exc_val, anyio.get_cancelled_exc_class()):
                    await tg.__aexit__(exc_type, exc_val, exc_tb)
                else:
                    await tg.__aexit__(None, None, None)

    def launch(self, config: ServerConfig) -> ServerLifecycle:
        """
        Start connecting to a server in the background.

        Raises:
            ConfigError: If no transport can be built for the configuration.
        """
        if self._tg is None:
            raise RuntimeError(
                "ConnectionManager must be used inside an async context (i.e. 'async with')."
            )

        transport = self.transport_factory(config)
        logger.debug(f"{config.name}: Connecting via {transport.describe()}")
        lifecycle = ServerLifecycle(
            config,
            transport,
            client_info=self.client_info,
            read_timeout=self.read_timeout,
            close_timeout_seconds=self.close_timeout_seconds,
        )
        self.lifecycles.append(lifecycle)
        self._tg.start_soon(lifecycle.run, name=f"mcp-lifecycle-{config.name}")
        return lifecycle

    async def connect(self, config: ServerConfig) -> Connection:
        """
        Open one server connection: transport, initialize and tool discovery.

        Args:
            config: The server to connect to.

        Returns:
            The live connection, owned by this manager.

        Raises:
            ConfigError: If no transport can be built for the configuration.
            ConnectError: If the transport could not be opened.
            ProtocolError: If the handshake or tool discovery failed.
        """
        return await self.launch(config).wait_ready()

    async def connect_all(self) -> ConnectionBatch:
        """
        Connect to every enabled server in the registry.

        A failing server never aborts the others; each failure is logged and
        recorded in the batch.

        Returns:
            The outcomes in registry order.

        Raises:
            RegistryError: If the registry could not be read.
        """
        if self.registry is None:
            raise RegistryError("ConnectionManager has no registry to read servers from")

        configs = self.registry.get_enabled()
        if not configs:
            logger.info("No enabled MCP servers configured")
            return ConnectionBatch()

        if self.concurrent:
            pending: List[Union[ServerLifecycle, NocMcpError]] = []
            for config in configs:
                try:
                    pending.append(self.launch(config))
                except NocMcpError as e:
                    pending.append(e)
            outcomes = [
                await self._settle(config, item) for config, item in zip(configs, pending)
            ]
        else:
            outcomes = []
            for config in configs:
                try:
                    item = self.launch(config)
                except NocMcpError as e:
                    item = e
                outcomes.append(await self._settle(config, item))

        batch = ConnectionBatch(outcomes)
        logger.info(
            f"Connected to {len(batch.connections)} of {len(configs)} MCP server(s) "
            f"with {batch.tool_count} total tool(s)"
        )
        return batch

    async def _settle(
        self, config: ServerConfig, item: Union[ServerLifecycle, NocMcpError]
    ) -> ConnectionOutcome:
        if isinstance(item, ServerLifecycle):
            try:
                connection = await item.wait_ready()
                return ConnectionOutcome(config.name, connection=connection)
            except NocMcpError as e:
                error = e
        else:
            error = item

        logger.error(
            f"{config.name}: Failed to connect to MCP server - {error.message}",
            data={"error_type": type(error).__name__},
        )
        return ConnectionOutcome(config.name, error=error)

    async def close_all(self) -> None:
        """
        Close every connection created by this manager.
        """
        lifecycles, self.lifecycles = self.lifecycles, []
        if not lifecycles:
            return
        async with anyio.create_task_group() as tg:
            for lifecycle in lifecycles:
                tg.start_soon(lifecycle.close)
        logger.debug(f"Closed {len(lifecycles)} MCP server connection(s)")
