"""
Configuration management for the NOC MCP connection manager.
"""

from .settings import (
    HealthSettings,
    HttpTransportConfig,
    LoggingSettings,
    MCPSettings,
    RegistrySettings,
    ServerConfig,
    ServerUpdate,
    Settings,
    StdioTransportConfig,
    TransportKind,
    load_config,
    parse_server_config,
)

__all__ = [
    "HealthSettings",
    "HttpTransportConfig",
    "LoggingSettings",
    "MCPSettings",
    "RegistrySettings",
    "ServerConfig",
    "ServerUpdate",
    "Settings",
    "StdioTransportConfig",
    "TransportKind",
    "load_config",
    "parse_server_config",
]
