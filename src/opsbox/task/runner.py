# src/opsbox/task/runner.py
"""
Runs one container task end to end.

    sweep orphans -> pull image -> create container -> command loop -> stop

The container is stopped in ``finally``, so no exit path from the loop
leaves it running. A failed image pull is fatal and no container is
created.

Usage:
    >>> config = load_config()
    >>> client = connect_docker()
    >>> coordinator = FallbackCoordinator(providers, config.task_options(), confirmation)
    >>> result = await run_container_task(
    ...     client,
    ...     "Compile the project and report warnings",
    ...     coordinator.generate_content,
    ...     config=config,
    ...     confirmation=confirmation,
    ... )
"""

import logging
from typing import Any, Awaitable, Callable, Optional

from ..config import OpsboxConfig
from ..gateway.base import GenerateContent
from ..interaction.callbacks import ConfirmationCallback
from ..logging_config import log_display
from ..models import TaskOptions
from ..sandbox.cancellation import CancellationToken
from ..sandbox.container_registry import ContainerRegistry
from ..sandbox.lifecycle import (
    cleanup_orphaned_containers,
    create_and_start_container,
    pull_image,
    stop_container,
)
from .loop import CANCELLED_SUMMARY, CommandExecutionLoop
from .session import TaskResult

logger = logging.getLogger(__name__)


async def run_container_task(
    client: Any,
    task_description: str,
    generate_content: GenerateContent,
    config: Optional[OpsboxConfig] = None,
    image: Optional[str] = None,
    working_dir: Optional[str] = None,
    options: Optional[TaskOptions] = None,
    confirmation: Optional[ConfirmationCallback] = None,
    cancel_token: Optional[CancellationToken] = None,
    wait_if_paused: Optional[Callable[[], Awaitable[None]]] = None,
    registry: Optional[ContainerRegistry] = None,
) -> TaskResult:
    """
    Run a task in a fresh container.

    Args:
        client: docker.DockerClient
        task_description: Task handed to the model
        generate_content: Model gateway used by the loop
        config: Loaded configuration; defaults are used when omitted
        image: Image to run, overriding ``config.container.image``
        working_dir: Initial working directory, overriding ``config.container.working_dir``
        options: Session options, overriding ``config.task_options()``
        confirmation: Gate for transfers and task-end confirmation
        cancel_token: Cancels the task
        wait_if_paused: Pause checkpoint awaited every iteration
        registry: Container-id registry, overriding ``config.registry.path``

    Returns:
        TaskResult of the loop, or a cancelled result if cancelled before start

    Raises:
        SandboxImageNotFoundError: If the image cannot be pulled
        SandboxInitializationError: If the container cannot be created or started
    """
    config = config or OpsboxConfig()
    image = image or config.container.image
    options = options or config.task_options()
    cancel_token = cancel_token or CancellationToken()
    registry = registry or ContainerRegistry(config.registry.resolved_path())

    swept = await cleanup_orphaned_containers(client, registry)
    if swept:
        log_display(logger, logging.INFO, f"Stopped {swept} orphaned container(s) from a previous run")

    if cancel_token.is_cancelled:
        log_display(logger, logging.WARNING, "Task cancelled before the container was started")
        return TaskResult(success=False, summary=CANCELLED_SUMMARY)

    log_display(logger, logging.INFO, f"Starting container task with image {image}")
    await pull_image(client, image)
    container = await create_and_start_container(client, image, registry)

    try:
        loop = CommandExecutionLoop(
            container,
            task_description,
            generate_content,
            working_dir=working_dir or config.container.working_dir,
            options=options,
            loop_config=config.loop,
            confirmation=confirmation,
            cancel_token=cancel_token,
            wait_if_paused=wait_if_paused,
        )
        result = await loop.run()
    finally:
        await stop_container(container, registry, timeout=config.container.stop_timeout)

    status = "succeeded" if result.success else "failed"
    log_display(logger, logging.INFO, f"Container task {status}: {result.summary}")
    return result
