"""
NOC MCP - connection management for the MCP tool servers used by the BGP alert analyzer.
"""

__version__ = "0.1.0"

# Errors
from noc_mcp.errors import (
    ConfigError,
    ConnectError,
    ConnectionClosedError,
    NocMcpError,
    ProtocolError,
    RegistryError,
)

# Configuration
from noc_mcp.config import ServerConfig, Settings, load_config

# MCP connectivity
from noc_mcp.mcp.server_registry import InMemoryServerRegistry, ServerRegistry, YamlServerRegistry
from noc_mcp.mcp.connection_manager import Connection, ConnectionBatch, ConnectionManager
from noc_mcp.mcp.aggregator import ToolCatalog
from noc_mcp.mcp.health import check_health, probe_server

# Core components
from noc_mcp.core.context import AgentContext
from noc_mcp.app import NocMcpApp

__all__ = [
    "ConfigError",
    "ConnectError",
    "ConnectionClosedError",
    "NocMcpError",
    "ProtocolError",
    "RegistryError",
    "ServerConfig",
    "Settings",
    "load_config",
    "InMemoryServerRegistry",
    "ServerRegistry",
    "YamlServerRegistry",
    "Connection",
    "ConnectionBatch",
    "ConnectionManager",
    "ToolCatalog",
    "check_health",
    "probe_server",
    "AgentContext",
    "NocMcpApp",
]
