"""
MCP connectivity for the NOC MCP connection manager.

This module provides the components for building transports, establishing
server connections, aggregating their tools and probing server health.
"""

from .server_registry import InMemoryServerRegistry, ServerRegistry, YamlServerRegistry
from .transport import HttpServerTransport, ServerTransport, StdioServerTransport, create_transport
from .client_session import NocClientSession
from .connection_manager import (
    Connection,
    ConnectionBatch,
    ConnectionManager,
    ConnectionOutcome,
    ServerLifecycle,
)
from .aggregator import CatalogTool, ToolCatalog
from .health import HealthStatus, ProbeResult, ProbeStatus, check_health, check_server, probe_server
from .native import enable_native_servers, get_native_servers

__all__ = [
    "InMemoryServerRegistry",
    "ServerRegistry",
    "YamlServerRegistry",
    "HttpServerTransport",
    "ServerTransport",
    "StdioServerTransport",
    "create_transport",
    "NocClientSession",
    "Connection",
    "ConnectionBatch",
    "ConnectionManager",
    "ConnectionOutcome",
    "ServerLifecycle",
    "CatalogTool",
    "ToolCatalog",
    "HealthStatus",
    "ProbeResult",
    "ProbeStatus",
    "check_health",
    "check_server",
    "probe_server",
    "enable_native_servers",
    "get_native_servers",
]
