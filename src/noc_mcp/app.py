"""
Main application class for the NOC MCP connection manager.
"""

import uuid
from contextlib import asynccontextmanager
from typing import Optional

from noc_mcp.config.settings import Settings, load_config
from noc_mcp.core.context import AgentContext
from noc_mcp.mcp.native import enable_native_servers
from noc_mcp.mcp.server_registry import ServerRegistry
from noc_mcp.mcp.transport import create_transport
from noc_mcp.utils.logging import configure_logging, get_logger


class NocMcpApp:
    """
    Loads configuration, sets up logging and the server registry, and exposes
    the context agents use to reach MCP tools.

    Example usage:
        app = NocMcpApp()

        async with app.run() as running_app:
            async with running_app.context.tool_session() as tools:
                result = await tools.call_tool("ripestat-get_network_info", {...})
    """

    def __init__(
        self,
        name: str = "noc_mcp",
        config_path: Optional[str] = None,
        settings: Optional[Settings] = None,
        registry: Optional[ServerRegistry] = None,
        transport_factory=create_transport,
    ):
        """
        Initialize the application with a name and optional settings.

        Args:
            name: Name of the application.
            config_path: Path to configuration file (if not provided, looks for noc_mcp.config.yaml).
            settings: Application configuration object (if provided, takes precedence over config_path).
            registry: Server registry (if not provided, built from the settings).
            transport_factory: Builds the transport for each server.
        """
        self.name = name
        self._config_path = config_path
        self._settings = settings
        self._registry = registry
        self._transport_factory = transport_factory

        self._logger = None
        self._context: Optional[AgentContext] = None
        self._initialized = False
        self._session_id: Optional[str] = None

    @property
    def context(self) -> AgentContext:
        """Get the current application context."""
        if self._context is None:
            raise RuntimeError(
                "NocMcpApp not initialized. Please call initialize() first, or use async with app.run()."
            )
        return self._context

    @property
    def config(self) -> Settings:
        """Get the current application configuration."""
        return self.context.config

    @property
    def registry(self) -> ServerRegistry:
        """Get the server registry from the context."""
        return self.context.registry

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def logger(self):
        if self._logger is None:
            self._logger = get_logger(f"noc_mcp.{self.name}")
        return self._logger

    async def initialize(self) -> None:
        """Initialize the application and context."""
        if self._initialized:
            return

        if not self._session_id:
            self._session_id = str(uuid.uuid4())

        config = self._settings if self._settings is not None else load_config(self._config_path)
        configure_logging(config.logging.level, config.logging.file_path)

        self._context = AgentContext(
            config=config,
            registry=self._registry,
            agent_name=self.name,
            session_id=self._session_id,
            transport_factory=self._transport_factory,
        )

        if config.registry.seed_native:
            enable_native_servers(self._context.registry, True)

        self._initialized = True
        self.logger.info(f"NocMcpApp initialized - app_name: {self.name}, session_id: {self._session_id}")

    async def cleanup(self) -> None:
        """Clean up application resources."""
        if not self._initialized:
            return

        self.logger.info(f"NocMcpApp cleaning up - app_name: {self.name}, session_id: {self._session_id}")
        self._context = None
        self._initialized = False

    @asynccontextmanager
    async def run(self):
        """
        Run the application as an async context manager.

        Yields:
            The initialized application instance.
        """
        await self.initialize()
        try:
            yield self
        finally:
            await self.cleanup()
