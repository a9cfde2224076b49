"""
Shared fixtures and fake transports for the NOC MCP tests.

No test reaches the network: in-process MCP servers run over memory streams,
and the stdio tests spawn a small FastMCP server from ``tests/fixtures``.
"""

import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable, Dict, List, Optional

import anyio
import mcp.types as types
import pytest
from mcp.server.lowlevel import Server
from mcp.shared.memory import create_client_server_memory_streams
from mcp.shared.message import SessionMessage

from noc_mcp.config import HttpTransportConfig, ServerConfig, StdioTransportConfig
from noc_mcp.mcp.server_registry import InMemoryServerRegistry
from noc_mcp.mcp.transport import ServerTransport

TESTS_DIR = Path(__file__).resolve().parent
LOOKUP_SERVER = TESTS_DIR / "fixtures" / "lookup_server.py"


# ---------------------------------------------------------------------------
# In-process MCP servers
# ---------------------------------------------------------------------------


def make_tool_server(name: str, tool_names: List[str]) -> Server:
    """Build a low-level MCP server whose tools echo ``<server>:<tool>:<query>``."""
    server = Server(name)

    @server.list_tools()
    async def list_tools() -> List[types.Tool]:
        return [
            types.Tool(
                name=tool_name,
                description=f"{tool_name} served by {name}",
                inputSchema={
                    "type": "object",
                    "properties": {"query": {"type": "string", "description": "Prefix or ASN"}},
                    "required": ["query"],
                },
            )
            for tool_name in tool_names
        ]

    @server.call_tool()
    async def call_tool(tool_name: str, arguments: dict) -> List[types.TextContent]:
        return [
            types.TextContent(type="text", text=f"{name}:{tool_name}:{arguments['query']}")
        ]

    return server


class InProcessTransport(ServerTransport):
    """Runs a low-level MCP server in the same event loop."""

    kind = "memory"

    def __init__(self, server_name: str, server: Server, delay: float = 0):
        super().__init__(server_name)
        self.server = server
        self.delay = delay
        self.opened = 0
        self.closed = 0

    @asynccontextmanager
    async def open(self):
        if self.delay:
            await anyio.sleep(self.delay)
        self.opened += 1
        async with create_client_server_memory_streams() as (client_streams, server_streams):
            server_read, server_write = server_streams
            async with anyio.create_task_group() as tg:

                async def run_server():
                    await self.server.run(
                        server_read,
                        server_write,
                        self.server.create_initialization_options(),
                        raise_exceptions=False,
                    )

                tg.start_soon(run_server)
                try:
                    yield client_streams
                finally:
                    self.closed += 1
                    tg.cancel_scope.cancel()


class RefusingTransport(ServerTransport):
    """Fails to open like an unreachable endpoint."""

    kind = "refused"

    @asynccontextmanager
    async def open(self):
        raise ConnectionRefusedError(111, "Connection refused")
        yield


class RejectingTransport(ServerTransport):
    """Answers every request with a JSON-RPC error."""

    kind = "rejecting"

    @asynccontextmanager
    async def open(self):
        client_send, server_receive = anyio.create_memory_object_stream(10)
        server_send, client_receive = anyio.create_memory_object_stream(10)

        async def respond():
            async for session_message in server_receive:
                request = session_message.message.root
                if isinstance(request, types.JSONRPCRequest):
                    error = types.JSONRPCError(
                        jsonrpc="2.0",
                        id=request.id,
                        error=types.ErrorData(
                            code=types.INVALID_REQUEST, message="client not allowed"
                        ),
                    )
                    await server_send.send(SessionMessage(types.JSONRPCMessage(error)))

        async with anyio.create_task_group() as tg:
            tg.start_soon(respond)
            try:
                yield client_receive, client_send
            finally:
                tg.cancel_scope.cancel()


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def http_config(name: str, **kwargs) -> ServerConfig:
    return ServerConfig(
        name=name,
        description=f"{name} test server",
        transport=HttpTransportConfig(url=f"http://{name}.invalid/mcp"),
        **kwargs,
    )


def stdio_config(name: str, command: str, args: Optional[List[str]] = None, **kwargs) -> ServerConfig:
    return ServerConfig(
        name=name,
        transport=StdioTransportConfig(command=command, args=args or []),
        **kwargs,
    )


def transport_factory_for(transports: Dict[str, ServerTransport]) -> Callable:
    """Return a transport factory that looks transports up by server name."""

    def factory(config: ServerConfig) -> ServerTransport:
        return transports[config.name]

    return factory


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def registry():
    return InMemoryServerRegistry()


@pytest.fixture
def lookup_server_config():
    """Stdio configuration for the FastMCP fixture server."""
    return stdio_config("whois-local", sys.executable, [str(LOOKUP_SERVER)])


@pytest.fixture
def ripestat_transport():
    return InProcessTransport("ripestat", make_tool_server("ripestat", ["lookup", "routing_status"]))


@pytest.fixture
def whois_transport():
    return InProcessTransport("whois", make_tool_server("whois", ["lookup"]))
