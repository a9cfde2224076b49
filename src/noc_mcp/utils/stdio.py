"""
Stdio client that forwards the server's stderr to the logger and guarantees
the child process is terminated when the client exits.
"""

import subprocess
from contextlib import asynccontextmanager

import anyio
import mcp.types as types
from anyio.streams.text import TextReceiveStream
from mcp.client.stdio import StdioServerParameters, get_default_environment
from mcp.shared.message import SessionMessage

from noc_mcp.errors import ConnectError
from noc_mcp.utils.logging import get_logger

logger = get_logger(__name__)

TERMINATE_GRACE_SECONDS = 2.0


@asynccontextmanager
async def stdio_client_with_logged_stderr(
    server: StdioServerParameters,
    server_name: str,
    terminate_grace_seconds: float = TERMINATE_GRACE_SECONDS,
):
    """
    Spawn an MCP server process and speak newline-delimited JSON-RPC with it.

    Args:
        server: The server parameters for the stdio connection.
        server_name: Name used to tag the server's stderr output.
        terminate_grace_seconds: How long to wait after SIGTERM before killing.

    Yields:
        A tuple of (read_stream, write_stream) for communication with the server.

    Raises:
        ConnectError: If the process cannot be spawned or exits immediately.
    """
    read_stream_writer, read_stream = anyio.create_memory_object_stream(0)
    write_stream, write_stream_reader = anyio.create_memory_object_stream(0)

    try:
        process = await anyio.open_process(
            [server.command, *server.args],
            env=server.env if server.env is not None else get_default_environment(),
            stderr=subprocess.PIPE,
            cwd=server.cwd,
        )
    except OSError as e:
        for stream in (read_stream_writer, read_stream, write_stream, write_stream_reader):
            await stream.aclose()
        raise ConnectError(f"Failed to start '{server.command}': {e}", server_name) from e

    logger.debug(f"{server_name}: Started process '{server.command}' with PID: {process.pid}")

    async def stdout_reader():
        assert process.stdout, "Opened process is missing stdout"
        async with read_stream_writer:
            buffer = ""
            try:
                async for chunk in TextReceiveStream(
                    process.stdout,
                    encoding=server.encoding,
                    errors=server.encoding_error_handler,
                ):
                    lines = (buffer + chunk).split("\n")
                    buffer = lines.pop()

                    for line in lines:
                        if not line.strip():
                            continue
                        try:
                            message = types.JSONRPCMessage.model_validate_json(line)
                        except ValueError as exc:
                            await read_stream_writer.send(exc)
                            continue

                        await read_stream_writer.send(SessionMessage(message))
            except (anyio.ClosedResourceError, anyio.BrokenResourceError):
                logger.debug(f"{server_name}: stdout stream closed")

    async def stderr_reader():
        assert process.stderr, "Opened process is missing stderr"
        try:
            async for chunk in TextReceiveStream(
                process.stderr,
                encoding=server.encoding,
                errors=server.encoding_error_handler,
            ):
                for stderr_line in chunk.splitlines():
                    if not stderr_line.strip():
                        continue
                    if "[ERROR]" in stderr_line or "Error" in stderr_line:
                        logger.error(f"{server_name} stderr: {stderr_line}")
                    else:
                        logger.debug(f"{server_name} stderr: {stderr_line}")
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            logger.debug(f"{server_name}: stderr stream closed")

    async def stdin_writer():
        assert process.stdin, "Opened process is missing stdin"
        async with write_stream_reader:
            try:
                async for session_message in write_stream_reader:
                    json = session_message.message.model_dump_json(
                        by_alias=True, exclude_none=True
                    )
                    await process.stdin.send(
                        (json + "\n").encode(
                            encoding=server.encoding,
                            errors=server.encoding_error_handler,
                        )
                    )
            except (anyio.ClosedResourceError, anyio.BrokenResourceError):
                logger.debug(f"{server_name}: stdin stream closed")

    async with anyio.create_task_group() as tg:
        tg.start_soon(stdout_reader)
        tg.start_soon(stdin_writer)
        tg.start_soon(stderr_reader)
        try:
            yield read_stream, write_stream
        finally:
            with anyio.CancelScope(shield=True):
                await _terminate(process, server_name, terminate_grace_seconds)
                await read_stream.aclose()
                await write_stream.aclose()
            tg.cancel_scope.cancel()


async def _terminate(process, server_name: str, grace_seconds: float) -> None:
    """Stop the child: close stdin, then SIGTERM, then SIGKILL after the grace period."""
    if process.stdin is not None:
        await process.stdin.aclose()

    if process.returncode is None:
        with anyio.move_on_after(grace_seconds / 2):
            await process.wait()

    if process.returncode is None:
        try:
            process.terminate()
        except ProcessLookupError:
            pass
        with anyio.move_on_after(grace_seconds):
            await process.wait()

    if process.returncode is None:
        logger.warning(f"{server_name}: process {process.pid} ignored SIGTERM, killing it")
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await process.wait()

    await process.aclose()
    logger.debug(f"{server_name}: process {process.pid} exited with code {process.returncode}")
