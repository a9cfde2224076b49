"""
Command line interface for inspecting and testing MCP servers.
"""

import argparse
import sys
from typing import List, Optional

import anyio
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from noc_mcp.app import NocMcpApp
from noc_mcp.config import TransportKind
from noc_mcp.errors import NocMcpError
from noc_mcp.mcp.health import HealthStatus, ProbeResult, check_health, check_server
from noc_mcp.mcp.native import enable_native_servers

console = Console()

EPILOG = """
Examples:
  noc-mcp servers
  noc-mcp servers --kind stdio
  noc-mcp test 2 --timeout 5
  noc-mcp health
  noc-mcp native enable
  noc-mcp tools
"""


def create_argument_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all CLI commands.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="noc-mcp",
        description="Manage the MCP tool servers used by the BGP alert analyzer.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=EPILOG,
    )
    parser.add_argument(
        "-c", "--config",
        type=str,
        help="Path to the YAML configuration file (default: ./noc_mcp.config.yaml)",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    servers = commands.add_parser("servers", help="List registered servers")
    servers.add_argument(
        "--kind",
        choices=[kind.value for kind in TransportKind],
        help="Only list servers using this transport",
    )

    test = commands.add_parser("test", help="Test the connection to one server")
    test.add_argument("server_id", type=int, help="Registry id of the server")
    test.add_argument("--timeout", type=float, help="Probe deadline in seconds")

    health = commands.add_parser("health", help="Probe every enabled server")
    health.add_argument("--timeout", type=float, help="Per-server probe deadline in seconds")

    native = commands.add_parser("native", help="Enable or disable the built-in servers")
    native.add_argument("action", choices=["enable", "disable"])

    commands.add_parser("tools", help="Connect to every enabled server and list its tools")

    return parser


def _print_probe(result: ProbeResult) -> None:
    if result.success:
        console.print(
            f"[green]✓[/green] {result.server_name}: {result.tool_count} tool(s) "
            f"in {result.elapsed_ms:.0f} ms"
        )
    else:
        console.print(
            f"[red]✗[/red] {result.server_name}: {result.status.value} - {escape(result.error or '')}"
        )


def _print_health(health: HealthStatus) -> None:
    table = Table(title=f"MCP health: {health.status.value}")
    table.add_column("Server")
    table.add_column("Status")
    table.add_column("Tools", justify="right")
    table.add_column("Elapsed (ms)", justify="right")
    table.add_column("Error")
    for result in health.servers:
        table.add_row(
            result.server_name,
            result.status.value,
            str(result.tool_count),
            f"{result.elapsed_ms:.0f}",
            escape(result.error or ""),
        )
    console.print(table)


async def _run(args: argparse.Namespace) -> int:
    app = NocMcpApp(config_path=args.config)
    async with app.run():
        registry = app.registry
        timeout = getattr(args, "timeout", None) or app.config.health.probe_timeout_seconds

        if args.command == "servers":
            table = Table(title="MCP servers")
            for column in ("Id", "Name", "Transport", "Target", "Enabled", "Native"):
                table.add_column(column)
            for server in registry.get_all(TransportKind(args.kind) if args.kind else None):
                transport = server.transport
                target = (
                    transport.url
                    if server.kind == TransportKind.HTTP
                    else " ".join([transport.command, *transport.args])
                )
                table.add_row(
                    str(server.id),
                    server.name,
                    server.kind.value,
                    target,
                    "yes" if server.enabled else "no",
                    "yes" if server.native else "no",
                )
            console.print(table)
            return 0

        if args.command == "test":
            result = await check_server(registry, args.server_id, timeout)
            _print_probe(result)
            return 0 if result.success else 1

        if args.command == "health":
            health = await check_health(registry, timeout)
            _print_health(health)
            return 0 if health.healthy_count == len(health.servers) else 1

        if args.command == "native":
            inserted = enable_native_servers(registry, args.action == "enable")
            if args.action == "enable":
                console.print(f"Seeded {len(inserted)} native server(s)")
            else:
                console.print("Native servers removed")
            return 0

        if args.command == "tools":
            async with app.context.tool_session() as catalog:
                console.print(catalog.to_prompt_text(), markup=False)
            return 0

    return 2


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the ``noc-mcp`` command."""
    args = create_argument_parser().parse_args(argv)
    try:
        return anyio.run(_run, args)
    except NocMcpError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
