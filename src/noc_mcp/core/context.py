"""
Per-invocation context for agents consuming MCP tools.
"""

import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from noc_mcp.config import Settings
from noc_mcp.mcp.aggregator import ToolCatalog
from noc_mcp.mcp.connection_manager import ConnectionManager, TransportFactory
from noc_mcp.mcp.server_registry import InMemoryServerRegistry, ServerRegistry, YamlServerRegistry
from noc_mcp.mcp.transport import create_transport
from noc_mcp.utils.logging import get_logger

logger = get_logger(__name__)


def build_registry(config: Settings) -> ServerRegistry:
    """
    Create the registry described by the settings.

    A configured ``registry.path`` selects the YAML store; otherwise the
    servers listed under ``mcp.servers`` seed an in-memory registry.
    """
    servers = list(config.mcp.servers.values())
    if config.registry.path:
        registry = YamlServerRegistry(config.registry.path)
        for server in servers:
            if registry.get_by_name(server.name) is None:
                registry.create(server)
        return registry
    return InMemoryServerRegistry(servers)


class AgentContext:
    """
    Context object for agent execution.

    Provides access to configuration, the server registry and the MCP tools
    of one agent invocation.
    """

    def __init__(
        self,
        config: Settings,
        registry: Optional[ServerRegistry] = None,
        agent_name: Optional[str] = None,
        session_id: Optional[str] = None,
        transport_factory: TransportFactory = create_transport,
    ):
        """
        Initialize an agent context.

        Args:
            config: Configuration settings.
            registry: Server registry; built from the settings if omitted.
            agent_name: Name of the agent using this context.
            session_id: Unique identifier for this session.
            transport_factory: Builds the transport for each server.
        """
        self.config = config
        self.registry = registry if registry is not None else build_registry(config)
        self.agent_name = agent_name
        self.session_id = session_id or str(uuid.uuid4())
        self.transport_factory = transport_factory

    def connection_manager(self) -> ConnectionManager:
        """
        Create a connection manager configured from the settings.
        """
        mcp = self.config.mcp
        return ConnectionManager(
            self.registry,
            transport_factory=self.transport_factory,
            client_name=mcp.client_name,
            read_timeout_seconds=mcp.read_timeout_seconds,
            concurrent=mcp.concurrent_connect,
            close_timeout_seconds=mcp.close_timeout_seconds,
        )

    @asynccontextmanager
    async def tool_session(self) -> AsyncIterator[ToolCatalog]:
        """
        Connect to every enabled server for the duration of one invocation.

        Yields:
            The catalog of tools from every server that connected. All
            connections are closed when the block exits, however it exits.

        Raises:
            RegistryError: If the registry could not be read.
        """
        async with self.connection_manager() as manager:
            batch = await manager.connect_all()
            catalog = ToolCatalog(batch.connections)
            if not batch.connections:
                logger.warning("No MCP servers available - agent will run without tools")
            else:
                logger.info(
                    f"Connected to {len(batch.connections)} MCP server(s) "
                    f"with {len(catalog)} total tool(s)",
                    data={"session_id": self.session_id, "agent_name": self.agent_name},
                )
            yield catalog

