# src/opsbox/sandbox/__init__.py
"""
Container sandbox layer for opsbox.

This package wraps the Docker engine for task sessions:

    - lifecycle: pull images, create/start/stop containers, sweep orphans
    - container_registry: persisted ids of containers this process created
    - execution: run one shell command over a hijacked exec stream
    - transfer: tar-based host/container copies with path validation
    - cancellation: cancellation token and pause gate

Usage:
    >>> from opsbox.sandbox import (
    ...     ContainerRegistry, connect_docker, create_and_start_container,
    ...     execute_command, stop_container,
    ... )
    >>> client = connect_docker()
    >>> registry = ContainerRegistry("~/.cache/opsbox/containers.json")
    >>> container = await create_and_start_container(client, "ubuntu:24.04", registry)
    >>> result = await execute_command(container, "uname -a", "/")
    >>> await stop_container(container, registry)
"""

from .cancellation import CancellationToken, PauseGate
from .container_registry import ContainerRegistry
from .exceptions import (
    PathValidationError,
    SandboxError,
    SandboxExecutionError,
    SandboxImageNotFoundError,
    SandboxInitializationError,
    SandboxTransferError,
)
from .execution import ABORT_MARKER, CommandResult, execute_command
from .lifecycle import (
    cleanup_orphaned_containers,
    connect_docker,
    create_and_start_container,
    pull_image,
    stop_container,
)
from .transfer import (
    build_archive,
    container_path_exists,
    copy_from_container,
    copy_to_container,
    extract_archive_stream,
    list_files_in_container_archive,
    validate_host_path,
)

__all__ = [
    # Cancellation
    "CancellationToken",
    "PauseGate",
    # Registry
    "ContainerRegistry",
    # Exceptions
    "SandboxError",
    "SandboxInitializationError",
    "SandboxImageNotFoundError",
    "SandboxExecutionError",
    "SandboxTransferError",
    "PathValidationError",
    # Execution
    "ABORT_MARKER",
    "CommandResult",
    "execute_command",
    # Lifecycle
    "connect_docker",
    "pull_image",
    "create_and_start_container",
    "stop_container",
    "cleanup_orphaned_containers",
    # Transfer
    "validate_host_path",
    "build_archive",
    "extract_archive_stream",
    "container_path_exists",
    "copy_to_container",
    "copy_from_container",
    "list_files_in_container_archive",
]
