# tests/task/test_runner.py
"""
Tests for run_container_task.

Lifecycle calls are patched on the runner module so the ordering of
sweep, pull, create and stop can be asserted without Docker.
"""

from unittest.mock import AsyncMock, MagicMock, call, patch

import pytest

from opsbox.config import LoopConfig, OpsboxConfig
from opsbox.sandbox.cancellation import CancellationToken
from opsbox.sandbox.container_registry import ContainerRegistry
from opsbox.sandbox.exceptions import SandboxImageNotFoundError
from opsbox.task.runner import run_container_task


@pytest.fixture
def lifecycle(mock_container):
    """Patch every lifecycle call used by the runner, sharing one parent mock for ordering."""
    parent = MagicMock()
    parent.sweep = AsyncMock(return_value=0)
    parent.pull = AsyncMock()
    parent.create = AsyncMock(return_value=mock_container)
    parent.stop = AsyncMock()
    with patch("opsbox.task.runner.cleanup_orphaned_containers", parent.sweep), \
         patch("opsbox.task.runner.pull_image", parent.pull), \
         patch("opsbox.task.runner.create_and_start_container", parent.create), \
         patch("opsbox.task.runner.stop_container", parent.stop):
        yield parent


@pytest.fixture
def registry(tmp_path):
    """Registry persisted in a temporary directory."""
    return ContainerRegistry(tmp_path / "containers.json")


@pytest.fixture
def config():
    """Configuration with a small loop ceiling."""
    cfg = OpsboxConfig()
    cfg.loop = LoopConfig(max_commands=5, finish_warning_remaining=1)
    return cfg


class TestRunContainerTask:
    """Tests for the end-to-end task runner."""

    @pytest.mark.asyncio
    async def test_successful_task(
        self, lifecycle, registry, config, mock_client, mock_container,
        task_options, auto_confirm, scripted_gateway, make_tool_call,
    ):
        """Test the lifecycle runs in order around the loop."""
        gateway = scripted_gateway([[make_tool_call("completeTask", summary="all built")]])

        result = await run_container_task(
            mock_client, "Build it", gateway, config=config, image="alpine:3.19",
            options=task_options, confirmation=auto_confirm, registry=registry,
        )

        assert result.success is True
        assert result.summary == "all built"
        names = [c[0] for c in lifecycle.mock_calls]
        assert names == ["sweep", "pull", "create", "stop"]
        lifecycle.pull.assert_awaited_once_with(mock_client, "alpine:3.19")
        lifecycle.stop.assert_awaited_once_with(mock_container, registry, timeout=config.container.stop_timeout)

    @pytest.mark.asyncio
    async def test_default_image_from_config(
        self, lifecycle, registry, config, mock_client, task_options, auto_confirm,
        scripted_gateway, make_tool_call,
    ):
        """Test the configured image is used when none is given."""
        gateway = scripted_gateway([[make_tool_call("completeTask", summary="done")]])
        await run_container_task(
            mock_client, "x", gateway, config=config,
            options=task_options, confirmation=auto_confirm, registry=registry,
        )
        assert lifecycle.pull.call_args == call(mock_client, config.container.image)

    @pytest.mark.asyncio
    async def test_container_stopped_when_loop_raises(
        self, lifecycle, registry, config, mock_client, mock_container, task_options, auto_confirm,
    ):
        """Test the container is stopped even when the loop itself raises."""
        with patch("opsbox.task.runner.CommandExecutionLoop") as loop_cls:
            loop_cls.return_value.run = AsyncMock(side_effect=RuntimeError("loop crashed"))
            with pytest.raises(RuntimeError, match="loop crashed"):
                await run_container_task(
                    mock_client, "x", AsyncMock(), config=config,
                    options=task_options, confirmation=auto_confirm, registry=registry,
                )
        lifecycle.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_container_stopped_after_loop_failure(
        self, lifecycle, registry, config, mock_client, task_options, auto_confirm,
    ):
        """Test a failing gateway still ends with the container stopped."""
        gateway = AsyncMock(side_effect=RuntimeError("no providers"))
        result = await run_container_task(
            mock_client, "x", gateway, config=config,
            options=task_options, confirmation=auto_confirm, registry=registry,
        )
        assert result.success is False
        assert "no providers" in result.summary
        lifecycle.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_pull_failure_creates_nothing(
        self, lifecycle, registry, config, mock_client, task_options,
    ):
        """Test a failed pull is fatal and no container is created."""
        lifecycle.pull.side_effect = SandboxImageNotFoundError("Image not found", image="nope:latest")
        with pytest.raises(SandboxImageNotFoundError):
            await run_container_task(
                mock_client, "x", AsyncMock(), config=config, image="nope:latest",
                options=task_options, registry=registry,
            )
        lifecycle.create.assert_not_called()
        lifecycle.stop.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancelled_before_start(
        self, lifecycle, registry, config, mock_client, task_options,
    ):
        """Test a token cancelled up front returns without pulling or creating."""
        token = CancellationToken()
        token.cancel()
        gateway = AsyncMock()

        result = await run_container_task(
            mock_client, "x", gateway, config=config,
            options=task_options, cancel_token=token, registry=registry,
        )

        assert result.success is False
        assert result.summary == "Task cancelled by user"
        lifecycle.sweep.assert_awaited_once()
        lifecycle.pull.assert_not_called()
        lifecycle.create.assert_not_called()
        gateway.assert_not_called()

    @pytest.mark.asyncio
    async def test_working_dir_passed_to_loop(
        self, lifecycle, registry, config, mock_client, task_options, auto_confirm,
    ):
        """Test an explicit working directory reaches the loop."""
        with patch("opsbox.task.runner.CommandExecutionLoop") as loop_cls:
            loop_cls.return_value.run = AsyncMock(return_value=MagicMock(success=True, summary="ok"))
            await run_container_task(
                mock_client, "x", AsyncMock(), config=config, working_dir="/src",
                options=task_options, confirmation=auto_confirm, registry=registry,
            )
        assert loop_cls.call_args.kwargs["working_dir"] == "/src"
        assert loop_cls.call_args.kwargs["loop_config"] is config.loop
