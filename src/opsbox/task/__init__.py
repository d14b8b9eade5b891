# src/opsbox/task/__init__.py
"""
Container task layer: the command execution loop, the tool handler
registry, context accounting and the session runner.
"""

from .context import compute_context_metrics, context_budget_notice, estimate_tokens
from .handlers import (
    COMMAND_HANDLERS,
    CommandResultState,
    HandlerContext,
    ToolName,
    dispatch_tool_call,
    truncate_output,
)
from .loop import CommandExecutionLoop, select_model_type
from .runner import run_container_task
from .session import TaskResult, TaskSession, TaskStatus
from .tool_schemas import CONTAINER_COMMAND_DEFS, get_container_command_defs

__all__ = [
    # Loop
    "CommandExecutionLoop",
    "select_model_type",
    "run_container_task",
    # Session
    "TaskSession",
    "TaskStatus",
    "TaskResult",
    # Handlers
    "ToolName",
    "HandlerContext",
    "CommandResultState",
    "COMMAND_HANDLERS",
    "dispatch_tool_call",
    "truncate_output",
    # Context
    "estimate_tokens",
    "compute_context_metrics",
    "context_budget_notice",
    # Schemas
    "CONTAINER_COMMAND_DEFS",
    "get_container_command_defs",
]
