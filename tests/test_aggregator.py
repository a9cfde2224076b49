"""
Tests for noc_mcp.mcp.aggregator: tool catalog and call routing.
"""

import pytest

from conftest import InProcessTransport, http_config, make_tool_server, transport_factory_for
from noc_mcp.mcp.aggregator import ToolCatalog
from noc_mcp.mcp.connection_manager import ConnectionManager


@pytest.fixture
def transports():
    return {
        "ripestat": InProcessTransport("ripestat", make_tool_server("ripestat", ["lookup", "routing_status"])),
        "whois": InProcessTransport("whois", make_tool_server("whois", ["lookup"])),
    }


async def _connect(manager, names):
    return [await manager.connect(http_config(name)) for name in names]


class TestToolCatalog:
    @pytest.mark.asyncio
    async def test_same_tool_name_stays_separate(self, transports):
        async with ConnectionManager(transport_factory=transport_factory_for(transports)) as manager:
            catalog = ToolCatalog(await _connect(manager, ["ripestat", "whois"]))

            lookups = catalog.find("lookup")
            assert [entry.qualified_name for entry in lookups] == ["ripestat-lookup", "whois-lookup"]
            assert lookups[0].connection is not lookups[1].connection

            ripestat = await lookups[0].call({"query": "AS3333"})
            whois = await lookups[1].call({"query": "AS3333"})
            assert ripestat.content[0].text == "ripestat:lookup:AS3333"
            assert whois.content[0].text == "whois:lookup:AS3333"

    @pytest.mark.asyncio
    async def test_order_follows_connections(self, transports):
        async with ConnectionManager(transport_factory=transport_factory_for(transports)) as manager:
            catalog = ToolCatalog(await _connect(manager, ["whois", "ripestat"]))

            assert [entry.qualified_name for entry in catalog] == [
                "whois-lookup",
                "ripestat-lookup",
                "ripestat-routing_status",
            ]
            assert len(catalog) == 3
            assert catalog.server_names == ["whois", "ripestat"]

    @pytest.mark.asyncio
    async def test_call_by_qualified_name(self, transports):
        async with ConnectionManager(transport_factory=transport_factory_for(transports)) as manager:
            catalog = ToolCatalog(await _connect(manager, ["ripestat", "whois"]))

            result = await catalog.call_tool("whois-lookup", {"query": "ripe.net"})
            assert result.content[0].text == "whois:lookup:ripe.net"

    @pytest.mark.asyncio
    async def test_unique_bare_name_resolves(self, transports):
        async with ConnectionManager(transport_factory=transport_factory_for(transports)) as manager:
            catalog = ToolCatalog(await _connect(manager, ["ripestat", "whois"]))

            result = await catalog.call_tool("routing_status", {"query": "193.0.0.0/21"})
            assert result.isError is False
            assert result.content[0].text == "ripestat:routing_status:193.0.0.0/21"

    @pytest.mark.asyncio
    async def test_ambiguous_bare_name_is_error_result(self, transports):
        async with ConnectionManager(transport_factory=transport_factory_for(transports)) as manager:
            catalog = ToolCatalog(await _connect(manager, ["ripestat", "whois"]))

            result = await catalog.call_tool("lookup", {"query": "AS3333"})
            assert result.isError is True
            assert "ripestat-lookup" in result.content[0].text

    @pytest.mark.asyncio
    async def test_unknown_tool_is_error_result(self, transports):
        async with ConnectionManager(transport_factory=transport_factory_for(transports)) as manager:
            catalog = ToolCatalog(await _connect(manager, ["ripestat"]))

            result = await catalog.call_tool("traceroute", {})
            assert result.isError is True
            assert "not found" in result.content[0].text

    @pytest.mark.asyncio
    async def test_call_after_close_is_error_result(self, transports):
        async with ConnectionManager(transport_factory=transport_factory_for(transports)) as manager:
            catalog = ToolCatalog(await _connect(manager, ["ripestat"]))
            await catalog.connections[0].close()

            result = await catalog.call_tool("ripestat-lookup", {"query": "AS3333"})
            assert result.isError is True
            assert "closed" in result.content[0].text

    @pytest.mark.asyncio
    async def test_list_tools_uses_qualified_names(self, transports):
        async with ConnectionManager(transport_factory=transport_factory_for(transports)) as manager:
            catalog = ToolCatalog(await _connect(manager, ["ripestat", "whois"]))

            names = [tool.name for tool in catalog.list_tools().tools]
            assert names == ["ripestat-lookup", "ripestat-routing_status", "whois-lookup"]

    @pytest.mark.asyncio
    async def test_prompt_text(self, transports):
        async with ConnectionManager(transport_factory=transport_factory_for(transports)) as manager:
            catalog = ToolCatalog(await _connect(manager, ["whois"]))

            text = catalog.to_prompt_text()
            assert text.startswith("- whois-lookup: lookup served by whois")
            assert "query [string] (required) Prefix or ASN" in text

    @pytest.mark.asyncio
    async def test_colliding_qualified_names_keep_both_tools(self):
        transports = {
            "bgp-looking": InProcessTransport("bgp-looking", make_tool_server("bgp-looking", ["glass"])),
            "bgp": InProcessTransport("bgp", make_tool_server("bgp", ["looking-glass"])),
        }
        async with ConnectionManager(transport_factory=transport_factory_for(transports)) as manager:
            catalog = ToolCatalog(await _connect(manager, ["bgp-looking", "bgp"]))

            assert len(catalog) == 2
            assert [(entry.server_name, entry.name) for entry in catalog] == [
                ("bgp-looking", "glass"),
                ("bgp", "looking-glass"),
            ]
            assert catalog.get("bgp-looking-glass") is None

            result = await catalog.call_tool("bgp-looking-glass", {"query": "AS3333"})
            assert result.isError is True
            assert "'bgp-looking'" in result.content[0].text
            assert "'bgp'" in result.content[0].text

            glass = await catalog.call_tool("glass", {"query": "AS3333"})
            assert glass.content[0].text == "bgp-looking:glass:AS3333"
            looking_glass = await catalog.call_tool("looking-glass", {"query": "AS3333"})
            assert looking_glass.content[0].text == "bgp:looking-glass:AS3333"

    def test_empty_catalog(self):
        catalog = ToolCatalog([])
        assert len(catalog) == 0
        assert catalog.to_prompt_text() == "No tools are available."
