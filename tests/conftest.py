# tests/conftest.py
"""
Shared pytest fixtures for opsbox tests.

This module provides fixtures for:
    - Docker availability detection
    - Mock containers and clients
    - Project roots in temporary directories
    - Scripted model gateways
"""

import io
import tarfile
from pathlib import Path, PurePosixPath
from typing import List
from unittest.mock import MagicMock

import docker.errors
import pytest

from opsbox.config import LoopConfig
from opsbox.interaction.callbacks import AutoConfirmCallback
from opsbox.models import Part, TaskOptions, TextPart, ToolCall, ToolCallPart

# ==============================================================================
# Docker Availability
# ==============================================================================


def is_docker_available() -> bool:
    """Check if Docker is available for testing."""
    try:
        import docker
        client = docker.from_env()
        client.ping()
        return True
    except Exception:
        return False


@pytest.fixture(scope="session")
def docker_client():
    """Real Docker client; skips the test when no daemon is reachable."""
    if not is_docker_available():
        pytest.skip("Docker not available")
    import docker
    return docker.from_env()


# ==============================================================================
# Helpers
# ==============================================================================


def _tool_call(name: str, call_id: str | None = None, **args) -> ToolCallPart:
    return ToolCallPart(tool_call=ToolCall(id=call_id, name=name, args=args))


class ScriptedGateway:
    """
    Model gateway returning pre-scripted responses in order.

    Once the script is exhausted it keeps returning the last response.
    Every request is recorded for assertions.
    """

    def __init__(self, responses: List[List[Part]]):
        self.responses = list(responses)
        self.requests = []

    async def __call__(self, transcript, request, options):
        self.requests.append((list(transcript), request, options))
        index = min(len(self.requests) - 1, len(self.responses) - 1)
        return self.responses[index]


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """Create a project root directory inside a temporary directory."""
    root = tmp_path / "project"
    root.mkdir()
    return root.resolve()


@pytest.fixture
def task_options(project_root: Path) -> TaskOptions:
    """Create non-interactive task options bound to the temporary project root."""
    return TaskOptions(project_root=project_root, interactive=False)


@pytest.fixture
def loop_config() -> LoopConfig:
    """Create a small loop configuration for fast tests."""
    return LoopConfig(max_commands=20, finish_warning_remaining=3)


@pytest.fixture
def auto_confirm() -> AutoConfirmCallback:
    """Create a confirmation callback that approves everything."""
    return AutoConfirmCallback(confirm_all=True)


@pytest.fixture
def mock_container() -> MagicMock:
    """Create a mock docker-py container."""
    container = MagicMock()
    container.id = "abc123def456789"
    container.status = "running"
    return container


@pytest.fixture
def mock_client(mock_container) -> MagicMock:
    """Create a mock docker-py client whose containers API returns ``mock_container``."""
    client = MagicMock()
    client.containers.create.return_value = mock_container
    client.containers.get.return_value = mock_container
    client.api.pull.return_value = iter([{"status": "Pulling"}, {"status": "Done"}])
    return client


@pytest.fixture
def text_only_response() -> List[Part]:
    """A model response with no tool calls."""
    return [TextPart(text="Thinking about it.")]


@pytest.fixture
def make_tool_call():
    """Factory building a gateway part that carries one tool call."""
    return _tool_call


@pytest.fixture
def scripted_gateway():
    """Factory building a :class:`ScriptedGateway` from a list of responses."""
    return ScriptedGateway


# ==============================================================================
# In-memory archive container
# ==============================================================================


def _make_tar(entries: dict) -> bytes:
    """Build a tar archive; ``None`` values are directories, ``(target,)`` tuples symlinks."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        for name, content in entries.items():
            info = tarfile.TarInfo(name)
            if content is None:
                info.type = tarfile.DIRTYPE
                info.mode = 0o755
                tar.addfile(info)
            elif isinstance(content, tuple):
                info.type = tarfile.SYMTYPE
                info.linkname = content[0]
                tar.addfile(info)
            else:
                info.size = len(content)
                info.mode = 0o644
                tar.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


class FakeArchiveContainer:
    """
    Container stand-in for the Docker archive API.

    ``put_archive`` records what it receives; ``get_archive`` serves
    archives registered with :meth:`serve`, in small chunks like the engine.
    """

    def __init__(self):
        self.id = "fake" + "0" * 60
        self.short_id = self.id[:12]
        self.received = []
        self.archives = {}
        self.accept = True

    def serve(self, path: str, entries: dict, name: str | None = None) -> None:
        stat = {"name": name if name is not None else PurePosixPath(path).name}
        self.archives[path] = (_make_tar(entries), stat)

    def put_archive(self, path, data):
        self.received.append((path, data))
        return self.accept

    def get_archive(self, path, chunk_size=None):
        if path not in self.archives:
            raise docker.errors.NotFound(f"Could not find the file {path} in container")
        data, stat = self.archives[path]
        size = 512
        return iter([data[i:i + size] for i in range(0, len(data), size)]), stat

    def exec_run(self, cmd):
        exists = cmd[:2] == ["test", "-e"] and cmd[2] in self.archives
        return MagicMock(exit_code=0 if exists else 1, output=b"")


@pytest.fixture
def make_tar():
    """Factory building in-memory tar archives from a name-to-content mapping."""
    return _make_tar


@pytest.fixture
def archive_container() -> FakeArchiveContainer:
    """Create an in-memory container for transfer tests."""
    return FakeArchiveContainer()
