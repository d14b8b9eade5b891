# src/opsbox/sandbox/execution.py
"""
Command primitive: run one shell command inside a task container.

The command runs as ``[shell, "-c", command]`` through a Docker exec with
stdin, stdout and stderr attached and no TTY. The exec is started as a
hijacked socket, so the engine multiplexes both output streams into
8-byte-header frames; the payloads are concatenated in arrival order into
a single output string.

Cancellation is cooperative. When the supplied token fires (or the
optional timeout elapses) the command is killed inside the container with
``pkill -9 -f <command>``, the local socket is torn down, and the
collected output gets an ``Aborted command execution`` marker. No
exception is raised for an aborted command; the caller sees an ordinary
result.

Usage:
    >>> token = CancellationToken()
    >>> result = await execute_command(container, "ls -la", "/workspace",
    ...                                cancel_token=token, timeout=60)
    >>> result.exit_code, result.output
"""

import asyncio
import logging
import socket as pysocket
from dataclasses import dataclass
from typing import Any, List, Optional

from docker.utils.socket import frames_iter

from .cancellation import CancellationToken
from .exceptions import SandboxExecutionError

logger = logging.getLogger(__name__)

ABORT_MARKER = "Aborted command execution"

# How long to wait for the reader thread to drain after the socket is torn down
ABORT_DRAIN_SECONDS = 1.0
KILL_TIMEOUT_SECONDS = 5.0


@dataclass
class CommandResult:
    """Outcome of one command. ``output`` holds stdout and stderr interleaved."""

    output: str
    exit_code: int
    aborted: bool = False


def _raw_socket(sock: Any) -> Any:
    # exec_start(socket=True) returns a SocketIO wrapper around the real socket
    return getattr(sock, "_sock", sock)


def _write_stdin(sock: Any, stdin: Optional[str]) -> None:
    raw = _raw_socket(sock)
    if stdin:
        raw.sendall(stdin.encode("utf-8"))
    try:
        raw.shutdown(pysocket.SHUT_WR)
    except OSError as e:
        logger.debug(f"Half-close of exec socket failed: {e}")


def _read_frames(sock: Any, chunks: List[bytes]) -> None:
    for _stream, payload in frames_iter(sock, tty=False):
        if payload:
            chunks.append(payload)


def _close_socket(sock: Any) -> None:
    raw = _raw_socket(sock)
    try:
        raw.shutdown(pysocket.SHUT_RDWR)
    except OSError:
        pass
    try:
        sock.close()
    except OSError as e:
        logger.debug(f"Closing exec socket failed: {e}")


async def _kill_command(container: Any, command: str) -> None:
    """Best-effort kill of the command's processes inside the container."""
    loop = asyncio.get_event_loop()
    try:
        await asyncio.wait_for(
            loop.run_in_executor(None, lambda: container.exec_run(["pkill", "-9", "-f", command])),
            timeout=KILL_TIMEOUT_SECONDS,
        )
    except Exception as e:
        logger.warning(f"Failed to kill aborted command in container: {e}")


async def execute_command(
    container: Any,
    command: str,
    working_dir: str = "/",
    stdin: Optional[str] = None,
    shell: str = "/bin/sh",
    cancel_token: Optional[CancellationToken] = None,
    timeout: Optional[float] = None,
) -> CommandResult:
    """
    Execute a shell command in a running container.

    Args:
        container: docker.models.containers.Container
        command: Command string passed to ``shell -c``
        working_dir: Absolute working directory inside the container
        stdin: Optional text written to the command's stdin before EOF
        shell: ``/bin/sh`` or ``bash``
        cancel_token: Aborts the command when triggered
        timeout: Seconds after which the command is aborted

    Returns:
        CommandResult with stripped output and the engine-reported exit code
        (0 if the engine reports none)

    Raises:
        SandboxExecutionError: If the exec cannot be created, started or inspected
    """
    api = container.client.api
    loop = asyncio.get_event_loop()

    try:
        exec_info = await loop.run_in_executor(
            None,
            lambda: api.exec_create(
                container.id,
                [shell, "-c", command],
                stdin=True,
                stdout=True,
                stderr=True,
                tty=False,
                workdir=working_dir,
            ),
        )
        exec_id = exec_info["Id"]
        sock = await loop.run_in_executor(None, lambda: api.exec_start(exec_id, tty=False, socket=True))
    except Exception as e:
        raise SandboxExecutionError(
            f"Failed to start command: {e}", command=command, sandbox_id=container.id
        ) from e

    chunks: List[bytes] = []

    async def _pump() -> None:
        await loop.run_in_executor(None, _write_stdin, sock, stdin)
        await loop.run_in_executor(None, _read_frames, sock, chunks)

    reader = asyncio.ensure_future(_pump())
    waiters = {reader}
    cancel_waiter = None
    if cancel_token is not None:
        cancel_waiter = asyncio.ensure_future(cancel_token.wait())
        waiters.add(cancel_waiter)

    try:
        done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    finally:
        if cancel_waiter is not None:
            cancel_waiter.cancel()

    aborted = reader not in done
    if aborted:
        if cancel_token is not None and cancel_token.is_cancelled:
            logger.warning(f"Command cancelled: {command[:80]}")
        else:
            logger.warning(f"Command timed out after {timeout}s: {command[:80]}")
        await _kill_command(container, command)
        _close_socket(sock)
        await asyncio.wait({reader}, timeout=ABORT_DRAIN_SECONDS)
        if reader.done():
            if not reader.cancelled() and reader.exception() is not None:
                logger.debug(f"Exec stream closed with error after abort: {reader.exception()}")
        else:
            reader.cancel()
    else:
        _close_socket(sock)
        try:
            reader.result()
        except Exception as e:
            raise SandboxExecutionError(
                f"Failed reading command output: {e}", command=command, sandbox_id=container.id
            ) from e

    output = b"".join(chunks).decode("utf-8", errors="replace")
    if aborted:
        output += f"\n\n{ABORT_MARKER}"

    try:
        inspection = await loop.run_in_executor(None, lambda: api.exec_inspect(exec_id))
    except Exception as e:
        raise SandboxExecutionError(
            f"Failed to inspect command: {e}", command=command, sandbox_id=container.id
        ) from e

    exit_code = inspection.get("ExitCode")
    if exit_code is None:
        exit_code = 0

    logger.debug(f"Command finished with exit code {exit_code} ({len(output)} chars of output)")
    return CommandResult(output=output.strip(), exit_code=exit_code, aborted=aborted)
