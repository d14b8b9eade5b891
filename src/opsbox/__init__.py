# src/opsbox/__init__.py
"""
opsbox - Model-directed task execution inside disposable Docker containers.

A task session runs a fresh container, lets a language model drive it one
shell command at a time through a closed tool set, moves files between the
host project and the container with path validation, and always stops the
container when the session ends.
"""

from importlib.metadata import PackageNotFoundError, version

from .config import OpsboxConfig, load_config
from .exceptions import (
    ConfigError,
    FunctionCallValidationError,
    OperationCancelledError,
    OpsboxError,
    ProviderError,
)
from .gateway import FallbackCoordinator, call_with_fallback
from .interaction import AutoConfirmCallback, ConfirmationCallback, ConsoleConfirmationCallback
from .logging_config import configure_logging, log_display
from .models import (
    ExecutionPlan,
    ExecutionPlanStep,
    GenerateContentRequest,
    ModelType,
    Part,
    PromptItem,
    TaskOptions,
    TextPart,
    ToolCall,
    ToolCallPart,
    ToolResponse,
)
from .sandbox import (
    CancellationToken,
    ContainerRegistry,
    PauseGate,
    SandboxError,
    connect_docker,
)
from .task import CommandExecutionLoop, TaskResult, run_container_task

try:
    __version__ = version("opsbox")
except PackageNotFoundError:
    __version__ = "0.0.0"


__all__ = [
    # ==========================================================================
    # Task execution
    # ==========================================================================
    "run_container_task",
    "CommandExecutionLoop",
    "TaskResult",
    # ==========================================================================
    # Model gateway
    # ==========================================================================
    "FallbackCoordinator",
    "call_with_fallback",
    # ==========================================================================
    # Sandbox
    # ==========================================================================
    "connect_docker",
    "ContainerRegistry",
    "CancellationToken",
    "PauseGate",
    # ==========================================================================
    # Interaction
    # ==========================================================================
    "ConfirmationCallback",
    "ConsoleConfirmationCallback",
    "AutoConfirmCallback",
    # ==========================================================================
    # Models
    # ==========================================================================
    "PromptItem",
    "ToolCall",
    "ToolResponse",
    "Part",
    "TextPart",
    "ToolCallPart",
    "GenerateContentRequest",
    "ModelType",
    "ExecutionPlan",
    "ExecutionPlanStep",
    "TaskOptions",
    # ==========================================================================
    # Configuration and logging
    # ==========================================================================
    "OpsboxConfig",
    "load_config",
    "configure_logging",
    "log_display",
    # ==========================================================================
    # Exceptions
    # ==========================================================================
    "OpsboxError",
    "ConfigError",
    "ProviderError",
    "OperationCancelledError",
    "FunctionCallValidationError",
    "SandboxError",
    "__version__",
]
