# tests/sandbox/test_execution.py
"""
Unit tests for the command primitive.

The exec socket is a MagicMock and ``frames_iter`` is patched, so the
demultiplexing, stdin handling and abort paths run without Docker.
"""

import asyncio
import threading
from unittest.mock import MagicMock, patch

import pytest

from opsbox.sandbox.cancellation import CancellationToken
from opsbox.sandbox.exceptions import SandboxExecutionError
from opsbox.sandbox.execution import ABORT_MARKER, execute_command


@pytest.fixture
def exec_socket() -> MagicMock:
    """Create a mock hijacked exec socket."""
    return MagicMock()


@pytest.fixture
def exec_container(mock_container, exec_socket) -> MagicMock:
    """Create a mock container whose low-level API starts ``exec_socket``."""
    api = mock_container.client.api
    api.exec_create.return_value = {"Id": "exec-1"}
    api.exec_start.return_value = exec_socket
    api.exec_inspect.return_value = {"ExitCode": 0}
    return mock_container


def _frames(*frames):
    def _iter(sock, tty=False):
        yield from frames
    return _iter


def _blocking_frames(sock, first: bytes, released: threading.Event):
    """frames_iter stand-in that emits one frame then blocks until the socket closes."""
    sock.close.side_effect = released.set

    def _iter(_sock, tty=False):
        yield 1, first
        released.wait(timeout=5)
    return _iter


class TestExecuteCommand:
    """Tests for execute_command."""

    @pytest.mark.asyncio
    async def test_streams_concatenated(self, exec_container):
        """Test stdout and stderr frames are joined in arrival order and stripped."""
        exec_container.client.api.exec_inspect.return_value = {"ExitCode": 3}
        with patch(
            "opsbox.sandbox.execution.frames_iter",
            _frames((1, b"hello "), (2, b"oops\n"), (1, b"")),
        ):
            result = await execute_command(exec_container, "make", "/src")

        assert result.output == "hello oops"
        assert result.exit_code == 3
        assert result.aborted is False

    @pytest.mark.asyncio
    async def test_exec_created_with_shell_and_workdir(self, exec_container):
        """Test the command runs as shell -c with the requested working directory."""
        with patch("opsbox.sandbox.execution.frames_iter", _frames()):
            await execute_command(exec_container, "ls -la", "/work", shell="bash")

        args, kwargs = exec_container.client.api.exec_create.call_args
        assert args == (exec_container.id, ["bash", "-c", "ls -la"])
        assert kwargs["workdir"] == "/work"
        assert kwargs["stdin"] is True
        assert kwargs["tty"] is False
        exec_container.client.api.exec_start.assert_called_once_with("exec-1", tty=False, socket=True)

    @pytest.mark.asyncio
    async def test_stdin_written_then_half_closed(self, exec_container, exec_socket):
        """Test stdin is sent before the write side is shut down."""
        with patch("opsbox.sandbox.execution.frames_iter", _frames((1, b"ok"))):
            await execute_command(exec_container, "cat", "/", stdin="print(1)\n")

        exec_socket._sock.sendall.assert_called_once_with(b"print(1)\n")
        assert exec_socket._sock.shutdown.called

    @pytest.mark.asyncio
    async def test_missing_exit_code_is_zero(self, exec_container):
        """Test an exit code the engine does not report is treated as 0."""
        exec_container.client.api.exec_inspect.return_value = {"ExitCode": None}
        with patch("opsbox.sandbox.execution.frames_iter", _frames((1, b"done"))):
            result = await execute_command(exec_container, "true", "/")
        assert result.exit_code == 0

    @pytest.mark.asyncio
    async def test_create_failure_raises(self, exec_container):
        """Test failing to create the exec raises SandboxExecutionError."""
        exec_container.client.api.exec_create.side_effect = RuntimeError("container not running")
        with pytest.raises(SandboxExecutionError) as exc_info:
            await execute_command(exec_container, "ls", "/")
        assert exc_info.value.command == "ls"

    @pytest.mark.asyncio
    async def test_cancellation_appends_marker(self, exec_container, exec_socket):
        """Test a cancelled command is killed and its output ends with the abort marker."""
        released = threading.Event()
        token = CancellationToken()

        with patch(
            "opsbox.sandbox.execution.frames_iter",
            _blocking_frames(exec_socket, b"partial output", released),
        ):
            task = asyncio.create_task(
                execute_command(exec_container, "sleep 100", "/", cancel_token=token)
            )
            await asyncio.sleep(0.05)
            token.cancel("user")
            result = await asyncio.wait_for(task, timeout=5)

        assert result.aborted is True
        assert result.output.startswith("partial output")
        assert result.output.endswith(ABORT_MARKER)
        exec_container.exec_run.assert_called_once_with(["pkill", "-9", "-f", "sleep 100"])

    @pytest.mark.asyncio
    async def test_timeout_aborts(self, exec_container, exec_socket):
        """Test a command exceeding its timeout is aborted like a cancellation."""
        released = threading.Event()
        with patch(
            "opsbox.sandbox.execution.frames_iter",
            _blocking_frames(exec_socket, b"tick", released),
        ):
            result = await execute_command(exec_container, "tail -f /dev/null", "/", timeout=0.1)

        assert result.aborted is True
        assert result.output == f"tick\n\n{ABORT_MARKER}"


@pytest.mark.docker
class TestIntegration:
    """Command execution against a real container."""

    @pytest.mark.asyncio
    async def test_round_trip(self, docker_client, tmp_path):
        """Test stdout, stderr, stdin and exit codes with a real exec."""
        from opsbox.sandbox.container_registry import ContainerRegistry
        from opsbox.sandbox.lifecycle import create_and_start_container, pull_image, stop_container

        registry = ContainerRegistry(tmp_path / "containers.json")
        await pull_image(docker_client, "alpine:3.20")
        container = await create_and_start_container(docker_client, "alpine:3.20", registry)
        try:
            result = await execute_command(container, "echo out; echo err >&2; exit 4", "/")
            assert "out" in result.output and "err" in result.output
            assert result.exit_code == 4

            piped = await execute_command(container, "cat", "/tmp", stdin="from stdin")
            assert piped.output == "from stdin"
        finally:
            await stop_container(container, registry, timeout=1)
