# src/opsbox/sandbox/exceptions.py
"""
Sandbox-specific exceptions for opsbox.

This module defines a hierarchy of exceptions that can occur during
container operations, enabling precise error handling and informative
error messages for debugging and for tool results shown to the model.

Exception Hierarchy:
    SandboxError (base)
    ├── SandboxInitializationError - Failed to create/start the container
    │   └── SandboxImageNotFoundError - Image could not be pulled
    ├── SandboxExecutionError - Exec could not be run or inspected
    ├── PathValidationError - Path escapes the permitted root
    └── SandboxTransferError - Archive could not be pushed or pulled
"""

from typing import Any


class SandboxError(Exception):
    """
    Base exception for all sandbox-related errors.

    Attributes:
        message: Human-readable error description
        details: Optional dictionary with additional context
        sandbox_id: ID of the affected container (if known)
    """

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        sandbox_id: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.sandbox_id = sandbox_id

    def __str__(self) -> str:
        """Return formatted error message."""
        base_msg = self.message
        if self.sandbox_id:
            base_msg = f"[Container {self.sandbox_id[:12]}] {base_msg}"
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            base_msg = f"{base_msg} ({detail_str})"
        return base_msg

    def to_dict(self) -> dict[str, Any]:
        """Serialize exception to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "sandbox_id": self.sandbox_id,
        }


class SandboxInitializationError(SandboxError):
    """
    Raised when container creation or start fails.

    Example:
        >>> raise SandboxInitializationError(
        ...     "Failed to start container",
        ...     details={"image": "ubuntu:24.04"}
        ... )
    """

    pass


class SandboxImageNotFoundError(SandboxInitializationError):
    """
    Raised when a Docker image cannot be pulled.

    Image pull failure is fatal to a task session: no container is created.

    Attributes:
        image: The image that wasn't found
    """

    def __init__(self, message: str, image: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.image = image

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result.update({"image": self.image})
        return result


class SandboxExecutionError(SandboxError):
    """
    Raised when a command cannot be executed in the container.

    This is for exec-level failures (exec creation, socket errors), not
    for commands that return non-zero exit codes; those are ordinary
    results handed back to the model.

    Attributes:
        command: The command that failed to execute
        exit_code: Exit code if available
    """

    def __init__(
        self,
        message: str,
        command: str | None = None,
        exit_code: int | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.command = command
        self.exit_code = exit_code

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result.update(
            {
                "command": self.command[:200] if self.command else None,
                "exit_code": self.exit_code,
            }
        )
        return result


class PathValidationError(SandboxError):
    """
    Raised when a path resolves outside the permitted root.

    Used both for host paths outside the project root and for archive
    entries that would be written outside the extraction destination.
    Always raised before any write for the offending path.

    Attributes:
        path: The offending path or archive entry name
        root: The root the path had to stay within
    """

    def __init__(
        self,
        message: str,
        path: str | None = None,
        root: str | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.path = path
        self.root = root

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result.update({"path": self.path, "root": self.root})
        return result


class SandboxTransferError(SandboxError):
    """
    Raised when an archive cannot be pushed into or pulled out of a container.

    Attributes:
        container_path: Path inside the container
    """

    def __init__(self, message: str, container_path: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.container_path = container_path

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result.update({"container_path": self.container_path})
        return result

