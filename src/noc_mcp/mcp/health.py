"""
Bounded-time health probing of MCP servers.

A probe is one full connection attempt (transport, initialize, tool
discovery) under a deadline. The probe's connection is always torn down
before the result is returned.
"""

import time
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, List, Optional

import anyio
from pydantic import BaseModel, Field

from noc_mcp.config import ServerConfig
from noc_mcp.errors import NocMcpError, RegistryError, ServerNotFoundError
from noc_mcp.mcp.connection_manager import ConnectionManager, TransportFactory
from noc_mcp.mcp.server_registry import ServerRegistry
from noc_mcp.mcp.transport import create_transport
from noc_mcp.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_PROBE_TIMEOUT_SECONDS = 10.0


class ProbeStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"


class ProbeResult(BaseModel):
    """Outcome of probing one server."""

    server_name: str
    server_id: Optional[int] = None
    status: ProbeStatus
    tool_count: int = 0
    error: Optional[str] = None
    elapsed_ms: float = 0

    @property
    def success(self) -> bool:
        return self.status == ProbeStatus.SUCCESS


class OverallStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class HealthStatus(BaseModel):
    """Result of a health sweep over all enabled servers."""

    status: OverallStatus
    servers: List[ProbeResult] = Field(default_factory=list)
    checked_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def healthy_count(self) -> int:
        return sum(1 for result in self.servers if result.success)

    @classmethod
    def from_results(cls, results: List[ProbeResult]) -> "HealthStatus":
        healthy = sum(1 for result in results if result.success)
        if healthy == len(results):
            status = OverallStatus.HEALTHY
        elif healthy == 0:
            status = OverallStatus.UNHEALTHY
        else:
            status = OverallStatus.DEGRADED
        return cls(status=status, servers=results)


async def probe_server(
    config: ServerConfig,
    timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS,
    transport_factory: TransportFactory = create_transport,
    client_name: str = "noc_mcp",
) -> ProbeResult:
    """
    Attempt one connection to a server within a deadline.

    Args:
        config: The server to probe.
        timeout_seconds: Deadline for transport, handshake and tool discovery.
        transport_factory: Builds the transport for the server.
        client_name: Client identity sent in the handshake.

    Returns:
        A success result with the tool count, a failure result with the
        error, or a timeout result. Never raises for per-server problems.
    """
    start = time.monotonic()

    def elapsed_ms() -> float:
        return round((time.monotonic() - start) * 1000, 1)

    try:
        # No read timeout: the probe deadline bounds every request
        async with ConnectionManager(
            transport_factory=transport_factory,
            client_name=client_name,
            read_timeout_seconds=None,
            close_timeout_seconds=min(timeout_seconds, 5),
        ) as manager:
            with anyio.fail_after(timeout_seconds):
                connection = await manager.connect(config)
            tool_count = connection.tool_count
    except TimeoutError:
        logger.warning(f"{config.name}: Probe timed out after {timeout_seconds}s")
        return ProbeResult(
            server_name=config.name,
            server_id=config.id,
            status=ProbeStatus.TIMEOUT,
            error=f"timed out after {timeout_seconds}s",
            elapsed_ms=elapsed_ms(),
        )
    except NocMcpError as e:
        logger.warning(f"{config.name}: Probe failed - {e.message}")
        return ProbeResult(
            server_name=config.name,
            server_id=config.id,
            status=ProbeStatus.FAILURE,
            error=e.message,
            elapsed_ms=elapsed_ms(),
        )

    logger.info(f"{config.name}: Probe succeeded with {tool_count} tool(s)")
    return ProbeResult(
        server_name=config.name,
        server_id=config.id,
        status=ProbeStatus.SUCCESS,
        tool_count=tool_count,
        elapsed_ms=elapsed_ms(),
    )


async def check_server(
    registry: ServerRegistry,
    server_id: int,
    timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS,
    transport_factory: TransportFactory = create_transport,
) -> ProbeResult:
    """
    Probe one registered server on demand, whether or not it is enabled.

    Raises:
        ServerNotFoundError: If no server has this id.
    """
    config = registry.get_by_id(server_id)
    if config is None:
        raise ServerNotFoundError(f"MCP server with id {server_id} not found")
    return await probe_server(config, timeout_seconds, transport_factory)


async def check_health(
    registry: ServerRegistry,
    timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS,
    transport_factory: TransportFactory = create_transport,
) -> HealthStatus:
    """
    Probe every enabled server concurrently, each with its own deadline.

    Returns:
        The per-server results in registry order and the overall status.

    Raises:
        RegistryError: If the registry could not be read.
    """
    configs = registry.get_enabled()
    results: List[Optional[ProbeResult]] = [None] * len(configs)

    async def probe_into(index: int, config: ServerConfig) -> None:
        results[index] = await probe_server(config, timeout_seconds, transport_factory)

    async with anyio.create_task_group() as tg:
        for index, config in enumerate(configs):
            tg.start_soon(probe_into, index, config)

    health = HealthStatus.from_results(results)
    logger.info(
        f"Health check: {health.status.value}",
        data={"healthy": health.healthy_count, "total": len(results)},
    )
    return health


async def monitor_health(
    registry: ServerRegistry,
    on_report: Callable[[HealthStatus], Awaitable[None]],
    interval_seconds: float = 60,
    timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS,
    transport_factory: TransportFactory = create_transport,
    iterations: Optional[int] = None,
) -> None:
    """
    Run health sweeps on an interval until cancelled.

    Args:
        registry: Registry to read enabled servers from on every sweep.
        on_report: Awaited with each sweep's result.
        interval_seconds: Pause between the end of one sweep and the next.
        timeout_seconds: Per-server probe deadline.
        transport_factory: Builds the transport for each server.
        iterations: Stop after this many sweeps; None runs forever.
    """
    completed = 0
    while iterations is None or completed < iterations:
        try:
            health = await check_health(registry, timeout_seconds, transport_factory)
        except RegistryError as e:
            logger.error(f"Health check skipped: {e}")
        else:
            await on_report(health)
        completed += 1
        if iterations is None or completed < iterations:
            await anyio.sleep(interval_seconds)
