"""
Tests for noc_mcp.mcp.native: seeding and removing the built-in servers.
"""

import logging

from conftest import http_config
from noc_mcp.config import TransportKind
from noc_mcp.mcp.native import enable_native_servers, get_native_servers


class TestNativeServers:
    def test_descriptors(self):
        servers = {server.name: server for server in get_native_servers()}

        assert servers["ripestat"].kind == TransportKind.HTTP
        assert servers["ripestat"].transport.url == "https://mcp-ripestat.taihen.org/mcp"
        assert servers["whois"].kind == TransportKind.STDIO
        assert servers["whois"].transport.command == "uvx"
        assert servers["whois"].transport.args[-1] == "whois-mcp"
        assert all(server.native and server.enabled for server in servers.values())

    def test_enable_seeds_registry(self, registry):
        inserted = enable_native_servers(registry, True)

        assert [server.name for server in inserted] == ["ripestat", "whois"]
        assert all(server.id is not None for server in inserted)
        assert [server.name for server in registry.get_enabled()] == ["ripestat", "whois"]

    def test_enable_is_idempotent(self, registry):
        enable_native_servers(registry, True)
        before = registry.get_all()

        inserted = enable_native_servers(registry, True)

        assert inserted == []
        assert registry.get_all() == before

    def test_enable_keeps_existing_native_row(self, registry):
        enable_native_servers(registry, True)
        ripestat = registry.find_native("ripestat")
        registry.delete(registry.find_native("whois").id)

        inserted = enable_native_servers(registry, True)

        assert [server.name for server in inserted] == ["whois"]
        assert registry.find_native("ripestat") == ripestat

    def test_disable_removes_only_native(self, registry):
        registry.create(http_config("mine"))
        enable_native_servers(registry, True)

        assert enable_native_servers(registry, False) == []

        assert [server.name for server in registry.get_all()] == ["mine"]

    def test_user_row_with_native_name_is_kept(self, registry, caplog):
        registry.create(http_config("ripestat"))

        with caplog.at_level(logging.WARNING):
            inserted = enable_native_servers(registry, True)

        assert [server.name for server in inserted] == ["whois"]
        user_row = registry.get_by_name("ripestat")
        assert user_row.native is False
        assert user_row.transport.url == "http://ripestat.invalid/mcp"
        assert any("ripestat" in record.getMessage() for record in caplog.records
                   if record.levelno == logging.WARNING)

        enable_native_servers(registry, False)
        assert [server.name for server in registry.get_all()] == ["ripestat"]
