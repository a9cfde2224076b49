"""
Tests for noc_mcp.mcp.transport and the stdio client in noc_mcp.utils.stdio.
"""

import os
import sys

import pytest
from mcp.client.stdio import get_default_environment

from conftest import http_config, stdio_config
from noc_mcp.config import HttpTransportConfig, ServerConfig, StdioTransportConfig
from noc_mcp.errors import ConfigError, ConnectError, ConnectionClosedError
from noc_mcp.mcp.connection_manager import ConnectionManager
from noc_mcp.mcp.health import ProbeStatus, probe_server
from noc_mcp.mcp.transport import HttpServerTransport, StdioServerTransport, create_transport


class TestCreateTransport:
    def test_http(self):
        config = ServerConfig(
            name="ripestat",
            transport=HttpTransportConfig(
                url="https://mcp-ripestat.taihen.org/mcp", headers={"X-Token": "t"}
            ),
        )
        transport = create_transport(config)
        assert isinstance(transport, HttpServerTransport)
        assert transport.url == "https://mcp-ripestat.taihen.org/mcp"
        assert transport.headers == {"X-Token": "t"}
        assert transport.server_name == "ripestat"

    def test_stdio_merges_environment(self):
        config = ServerConfig(
            name="whois",
            transport=StdioTransportConfig(
                command="uvx", args=["whois-mcp"], env={"WHOIS_SERVER": "whois.ripe.net"}
            ),
        )
        transport = create_transport(config)
        assert isinstance(transport, StdioServerTransport)
        assert transport.params.command == "uvx"
        assert transport.params.args == ["whois-mcp"]
        assert transport.params.env["WHOIS_SERVER"] == "whois.ripe.net"
        for key, value in get_default_environment().items():
            assert transport.params.env[key] == value
        assert transport.describe() == "stdio uvx whois-mcp"

    def test_configured_env_wins(self):
        config = stdio_config("whois", "uvx")
        config.transport.env = {"PATH": "/opt/whois/bin"}
        assert create_transport(config).params.env["PATH"] == "/opt/whois/bin"

    def test_impossible_input(self):
        config = http_config("ripestat").model_copy(update={"transport": object()})
        with pytest.raises(ConfigError):
            create_transport(config)


class TestStdioTransport:
    @pytest.mark.asyncio
    async def test_spawned_server_handshake(self, lookup_server_config):
        async with ConnectionManager(transport_factory=create_transport) as manager:
            connection = await manager.connect(lookup_server_config)

            assert sorted(tool.name for tool in connection.tools) == ["asn_holder", "lookup"]
            result = await connection.call_tool("lookup", {"query": "ripe.net"})
            assert result.isError is False
            assert result.content[0].text == "whois:ripe.net"

            await connection.close()
            with pytest.raises(ConnectionClosedError):
                await connection.call_tool("lookup", {"query": "ripe.net"})

    @pytest.mark.asyncio
    async def test_probe_spawned_server(self, lookup_server_config):
        result = await probe_server(lookup_server_config, 30)
        assert result.status == ProbeStatus.SUCCESS
        assert result.tool_count == 2

    @pytest.mark.asyncio
    async def test_missing_command(self):
        config = stdio_config("ghost", "/nonexistent/noc-mcp-server")
        async with ConnectionManager() as manager:
            with pytest.raises(ConnectError, match="Failed to start"):
                await manager.connect(config)

    @pytest.mark.asyncio
    async def test_process_exits_immediately(self):
        config = stdio_config("crash", sys.executable, ["-c", "import sys; sys.exit(3)"])
        async with ConnectionManager(read_timeout_seconds=5) as manager:
            with pytest.raises(ConnectError):
                await manager.connect(config)

    @pytest.mark.asyncio
    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
    async def test_timeout_terminates_process(self, tmp_path):
        pid_file = tmp_path / "server.pid"
        script = (
            "import os, signal, sys, time\n"
            "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
            "with open(sys.argv[1], 'w') as f: f.write(str(os.getpid()))\n"
            "time.sleep(60)\n"
        )
        config = stdio_config("mute", sys.executable, ["-c", script, str(pid_file)])

        result = await probe_server(config, 1.0)

        assert result.status == ProbeStatus.TIMEOUT
        assert result.elapsed_ms < 10000
        pid = int(pid_file.read_text())
        with pytest.raises(ProcessLookupError):
            os.kill(pid, 0)


class TestHttpTransport:
    @pytest.mark.asyncio
    async def test_unreachable_endpoint(self):
        config = ServerConfig(
            name="down", transport=HttpTransportConfig(url="http://127.0.0.1:9/mcp")
        )
        async with ConnectionManager(read_timeout_seconds=5) as manager:
            with pytest.raises(ConnectError):
                await manager.connect(config)

    @pytest.mark.asyncio
    @pytest.mark.filterwarnings("error:Use streamable_http_client:DeprecationWarning")
    async def test_headers_sent_through_http_client(self):
        config = ServerConfig(
            name="down",
            transport=HttpTransportConfig(
                url="http://127.0.0.1:9/mcp", headers={"Authorization": "Bearer t"}
            ),
        )
        transport = create_transport(config)
        assert transport.headers == {"Authorization": "Bearer t"}
        async with ConnectionManager(read_timeout_seconds=5) as manager:
            with pytest.raises(ConnectError):
                await manager.connect(config)
