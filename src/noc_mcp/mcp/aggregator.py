"""
Tool aggregation across the live connections of one agent invocation.
"""

from typing import Iterable, Iterator, List, Optional, Set, Tuple

from pydantic import BaseModel
from mcp.types import CallToolResult, ListToolsResult, TextContent, Tool

from noc_mcp.mcp.connection_manager import Connection
from noc_mcp.utils.logging import get_logger

logger = get_logger(__name__)

SEP = "-"


def _error_result(text: str) -> CallToolResult:
    return CallToolResult(isError=True, content=[TextContent(type="text", text=text)])


class CatalogTool(BaseModel):
    """
    A tool paired with the connection that advertised it.
    """

    tool: Tool
    connection: Connection
    qualified_name: str
    model_config = {"arbitrary_types_allowed": True}

    @property
    def name(self) -> str:
        return self.tool.name

    @property
    def server_name(self) -> str:
        return self.connection.server_name

    async def call(self, arguments: Optional[dict] = None) -> CallToolResult:
        """
        Call the tool on its owning server.

        Failures are returned as an error result instead of being raised.
        """
        logger.info(
            "Requesting tool call",
            data={"tool_name": self.tool.name, "server_name": self.server_name},
        )
        try:
            return await self.connection.call_tool(self.tool.name, arguments)
        except Exception as e:
            logger.warning(f"{self.server_name}: Tool '{self.tool.name}' failed: {e}")
            return _error_result(
                f"Failed to call tool '{self.tool.name}' on server '{self.server_name}': {e}"
            )

    def to_prompt_text(self) -> str:
        lines = [f"- {self.qualified_name}: {self.tool.description or 'No description'}"]
        properties = (self.tool.inputSchema or {}).get("properties", {})
        required = set((self.tool.inputSchema or {}).get("required", []))
        for param, schema in properties.items():
            marker = " (required)" if param in required else ""
            description = schema.get("description", "")
            lines.append(f"    {param} [{schema.get('type', 'any')}]{marker} {description}".rstrip())
        return "\n".join(lines)


class ToolCatalog:
    """
    Flat catalog of the tools offered by a set of connections.

    Entries keep the order of the connections, then the order in which each
    server listed its tools. Every entry is bound to its own connection, so
    two servers exposing a tool with the same name stay separate, even when
    their qualified names happen to collide.
    """

    def __init__(self, connections: Iterable[Connection] = ()):
        self.connections: List[Connection] = list(connections)
        self._entries: List[CatalogTool] = []

        seen: Set[Tuple[int, str]] = set()
        for connection in self.connections:
            for tool in connection.tools:
                key = (id(connection), tool.name)
                if key in seen:
                    logger.warning(
                        f"Duplicate tool '{tool.name}' ignored",
                        data={"server_name": connection.server_name},
                    )
                    continue
                seen.add(key)
                self._entries.append(
                    CatalogTool(
                        tool=tool,
                        connection=connection,
                        qualified_name=f"{connection.server_name}{SEP}{tool.name}",
                    )
                )

        logger.debug(
            "Tool catalog built",
            data={"servers": len(self.connections), "tools_count": len(self._entries)},
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[CatalogTool]:
        return iter(self._entries)

    @property
    def entries(self) -> List[CatalogTool]:
        return list(self._entries)

    @property
    def server_names(self) -> List[str]:
        return [connection.server_name for connection in self.connections]

    def _qualified_matches(self, qualified_name: str) -> List[CatalogTool]:
        return [entry for entry in self._entries if entry.qualified_name == qualified_name]

    def get(self, qualified_name: str) -> Optional[CatalogTool]:
        """
        Return the entry with this qualified name, or None if there is no
        such entry or several servers produce the same qualified name.
        """
        matches = self._qualified_matches(qualified_name)
        return matches[0] if len(matches) == 1 else None

    def find(self, tool_name: str) -> List[CatalogTool]:
        """
        Return every entry whose unqualified tool name matches.
        """
        return [entry for entry in self._entries if entry.tool.name == tool_name]

    def resolve(self, name: str) -> Optional[CatalogTool]:
        """
        Resolve a qualified name, or an unqualified name offered by exactly one server.
        """
        if self._qualified_matches(name):
            return self.get(name)
        matches = self.find(name)
        if len(matches) == 1:
            return matches[0]
        return None

    def list_tools(self) -> ListToolsResult:
        """
        Return all tools with their qualified names.
        """
        return ListToolsResult(
            tools=[
                entry.tool.model_copy(update={"name": entry.qualified_name})
                for entry in self._entries
            ]
        )

    async def call_tool(self, name: str, arguments: Optional[dict] = None) -> CallToolResult:
        """
        Call a tool by its qualified name.

        Args:
            name: ``"<server>-<tool>"``, or a bare tool name when only one
                server offers it.
            arguments: Arguments to pass to the tool.

        Returns:
            The tool result, or an error result if the name is unknown or
            ambiguous or the call failed.
        """
        entry = self.resolve(name)
        if entry is None:
            qualified = self._qualified_matches(name)
            matches = self.find(name)
            if qualified:
                candidates = ", ".join(
                    f"'{match.name}' on '{match.server_name}'" for match in qualified
                )
                message = f"Tool '{name}' is offered by several servers: {candidates}"
            elif matches:
                candidates = ", ".join(match.qualified_name for match in matches)
                message = f"Tool '{name}' is offered by several servers: {candidates}"
            else:
                message = f"Tool '{name}' not found"
            logger.error(message)
            return _error_result(message)

        return await entry.call(arguments)

    def to_prompt_text(self) -> str:
        """
        Describe the available tools for inclusion in an LLM prompt.
        """
        if not self._entries:
            return "No tools are available."
        return "\n".join(entry.to_prompt_text() for entry in self._entries)
