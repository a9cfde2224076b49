"""
Server registry holding the persisted MCP server configurations.

The connection manager only reads the registry (``get_enabled``,
``get_by_id``); the native seeder, the CLI and tests also mutate it. Every
read returns deep copies, so callers work on a point-in-time snapshot.
"""

import os
import tempfile
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import yaml

from noc_mcp.config import ServerConfig, ServerUpdate, TransportKind, parse_server_config
from noc_mcp.errors import ConfigError, DuplicateServerError, RegistryError
from noc_mcp.utils.logging import get_logger

logger = get_logger(__name__)


class ServerRegistry(ABC):
    """Catalog of MCP server configurations."""

    @abstractmethod
    def get_all(self, kind: Optional[TransportKind] = None) -> List[ServerConfig]:
        """Retrieves all servers in registry order.

        Args:
            kind: Only return servers using this transport.

        Returns:
            A list of ServerConfig snapshots.
        """

    @abstractmethod
    def get_by_id(self, server_id: int) -> Optional[ServerConfig]:
        """Retrieves one server, or None if the id is unknown."""

    @abstractmethod
    def create(self, config: ServerConfig) -> ServerConfig:
        """Stores a new server and returns it with id and timestamps assigned.

        Raises:
            DuplicateServerError: If a server with the same name exists.
        """

    @abstractmethod
    def update(self, server_id: int, changes: ServerUpdate) -> Optional[ServerConfig]:
        """Applies a partial update, returning None if the id is unknown.

        Raises:
            ConfigError: If the update is rejected. The stored row is unchanged.
        """

    @abstractmethod
    def delete(self, server_id: int) -> bool:
        """Deletes one server. Returns False if the id is unknown."""

    @abstractmethod
    def delete_native(self) -> int:
        """Deletes every native server and returns how many were removed."""

    def get_enabled(self) -> List[ServerConfig]:
        """Retrieves the enabled servers in registry order."""
        return [server for server in self.get_all() if server.enabled]

    def get_by_name(self, name: str) -> Optional[ServerConfig]:
        for server in self.get_all():
            if server.name == name:
                return server
        return None

    def find_native(self, name: str) -> Optional[ServerConfig]:
        """Retrieves the native server with this name, if seeded."""
        for server in self.get_all():
            if server.native and server.name == name:
                return server
        return None


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryServerRegistry(ServerRegistry):
    """
    Registry kept in process memory.

    Subclasses persist the rows by overriding ``_load`` and ``_store``.
    """

    def __init__(self, servers: Iterable[ServerConfig] = ()):
        self._lock = threading.RLock()
        self._rows: Dict[int, ServerConfig] = {}
        for server in servers:
            self.create(server)

    def _load(self) -> Dict[int, ServerConfig]:
        return dict(self._rows)

    def _store(self, rows: Dict[int, ServerConfig]) -> None:
        self._rows = rows

    def get_all(self, kind: Optional[TransportKind] = None) -> List[ServerConfig]:
        with self._lock:
            rows = self._load()
        servers = [rows[server_id] for server_id in sorted(rows)]
        if kind is not None:
            servers = [server for server in servers if server.kind == TransportKind(kind)]
        return [server.model_copy(deep=True) for server in servers]

    def get_by_id(self, server_id: int) -> Optional[ServerConfig]:
        with self._lock:
            server = self._load().get(server_id)
        return server.model_copy(deep=True) if server else None

    def create(self, config: ServerConfig) -> ServerConfig:
        with self._lock:
            rows = self._load()
            self._check_unique_name(rows, config.name)

            now = _now()
            server_id = max(rows, default=0) + 1
            server = config.model_copy(
                update={"id": server_id, "created_at": now, "updated_at": now},
                deep=True,
            )
            rows[server_id] = server
            self._store(rows)

        logger.info(
            f"Registered MCP server '{server.name}'",
            data={"id": server_id, "transport": server.kind.value, "native": server.native},
        )
        return server.model_copy(deep=True)

    def update(self, server_id: int, changes: ServerUpdate) -> Optional[ServerConfig]:
        with self._lock:
            rows = self._load()
            current = rows.get(server_id)
            if current is None:
                return None

            updated = changes.apply(current)
            if updated.name != current.name:
                self._check_unique_name(rows, updated.name)

            updated = updated.model_copy(update={"updated_at": _now()})
            rows[server_id] = updated
            self._store(rows)

        return updated.model_copy(deep=True)

    def delete(self, server_id: int) -> bool:
        with self._lock:
            rows = self._load()
            if rows.pop(server_id, None) is None:
                return False
            self._store(rows)
        return True

    def delete_native(self) -> int:
        with self._lock:
            rows = self._load()
            kept = {server_id: row for server_id, row in rows.items() if not row.native}
            removed = len(rows) - len(kept)
            if removed:
                self._store(kept)
        return removed

    @staticmethod
    def _check_unique_name(rows: Dict[int, ServerConfig], name: str) -> None:
        if any(row.name == name for row in rows.values()):
            raise DuplicateServerError(f"A server named '{name}' already exists", name)


class YamlServerRegistry(InMemoryServerRegistry):
    """
    Registry persisted to a YAML file.

    The file is re-read on every access so edits made by other processes are
    picked up; writes replace the file atomically.
    """

    def __init__(self, path: Union[str, Path], servers: Iterable[ServerConfig] = ()):
        self.path = Path(path)
        super().__init__(servers)

    def _load(self) -> Dict[int, ServerConfig]:
        if not self.path.exists():
            return {}

        try:
            with open(self.path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise RegistryError(f"Cannot read server registry {self.path}: {e}") from e

        entries = data.get("servers") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise RegistryError(f"Server registry {self.path} has no 'servers' list")

        rows: Dict[int, ServerConfig] = {}
        for entry in entries:
            try:
                server = parse_server_config(entry)
            except ConfigError as e:
                raise RegistryError(f"Corrupt entry in server registry {self.path}: {e}") from e
            if server.id is None:
                raise RegistryError(f"Server '{server.name}' in {self.path} has no id")
            rows[server.id] = server
        return rows

    def _store(self, rows: Dict[int, ServerConfig]) -> None:
        data = {
            "servers": [
                rows[server_id].model_dump(mode="json") for server_id in sorted(rows)
            ]
        }

        tmp_path = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
            with os.fdopen(fd, "w") as f:
                yaml.safe_dump(data, f, sort_keys=False)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise RegistryError(f"Cannot write server registry {self.path}: {e}") from e
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)
