"""
Built-in ("native") MCP servers shipped with the analyzer.

Enabling seeds them into the registry once; disabling removes them again
without touching servers the user created.
"""

from typing import List

from noc_mcp.config import HttpTransportConfig, ServerConfig, StdioTransportConfig
from noc_mcp.mcp.server_registry import ServerRegistry
from noc_mcp.utils.logging import get_logger

logger = get_logger(__name__)


def get_native_servers() -> List[ServerConfig]:
    """
    Return the descriptors of the native servers.
    """
    return [
        ServerConfig(
            name="ripestat",
            description="RIPEstat MCP Server for BGP and routing information",
            transport=HttpTransportConfig(url="https://mcp-ripestat.taihen.org/mcp"),
            enabled=True,
            native=True,
        ),
        ServerConfig(
            name="whois",
            description="WHOIS MCP Server for domain and IP lookups",
            transport=StdioTransportConfig(
                command="uvx",
                args=[
                    "--from",
                    "git+https://github.com/dadepo/whois-mcp.git",
                    "whois-mcp",
                ],
            ),
            enabled=True,
            native=True,
        ),
    ]


def enable_native_servers(registry: ServerRegistry, enabled: bool = True) -> List[ServerConfig]:
    """
    Reconcile the native servers into the registry.

    Args:
        registry: Registry to update.
        enabled: Seed the native servers when True, delete them when False.

    Returns:
        The rows inserted by this call (empty when disabling or when every
        native server was already present).
    """
    if not enabled:
        removed = registry.delete_native()
        logger.info(f"Removed {removed} native MCP server(s)")
        return []

    inserted = []
    for server in get_native_servers():
        if registry.find_native(server.name) is not None:
            logger.debug(f"Native MCP server '{server.name}' already present")
            continue
        if registry.get_by_name(server.name) is not None:
            logger.warning(
                f"Skipping native MCP server '{server.name}': a user-defined server "
                "already uses this name"
            )
            continue
        inserted.append(registry.create(server))

    logger.info(f"Seeded {len(inserted)} native MCP server(s)")
    return inserted
