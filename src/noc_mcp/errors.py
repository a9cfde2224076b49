"""
Exception types raised by the NOC MCP connection manager.

Per-server failures (``ConnectError``, ``ProtocolError``) are recovered
locally by the connection pool and the health probe; ``RegistryError`` and
``ConfigError`` propagate to the caller.
"""

from typing import Optional


class NocMcpError(Exception):
    """Base class for all errors raised by this package."""

    def __init__(self, message: str, server_name: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.server_name = server_name

    def __str__(self) -> str:
        if self.server_name:
            return f"{self.server_name}: {self.message}"
        return self.message


class ConfigError(NocMcpError):
    """A server configuration is invalid or cannot be turned into a transport."""


class DuplicateServerError(ConfigError):
    """A server with the same name already exists in the registry."""


class ConnectError(NocMcpError):
    """The transport could not be opened or the peer went away."""


class ConnectionClosedError(ConnectError):
    """A call-handle was used after its connection was closed."""


class ProtocolError(NocMcpError):
    """The MCP handshake or tool discovery produced an error or a malformed reply."""


class RegistryError(NocMcpError):
    """The server registry could not be read or written."""


class ServerNotFoundError(RegistryError):
    """No server with the requested id or name exists in the registry."""
