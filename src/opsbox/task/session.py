# src/opsbox/task/session.py
"""
State of one task session and the result it produces.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

from ..models import ExecutionPlan, PromptItem


class TaskStatus(str, Enum):
    """Lifecycle status of a task session."""
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class TaskSession:
    """
    One container's worth of agent-directed work.

    ``transcript`` holds only the task-specific turns; the fixed system and
    task prompts are kept by the loop and prepended to every model request.
    """

    container: Any
    task_description: str
    working_dir: str = "/"
    status: TaskStatus = TaskStatus.RUNNING
    commands_executed: int = 0
    execution_plan: Optional[ExecutionPlan] = None
    transcript: List[PromptItem] = field(default_factory=list)


@dataclass
class TaskResult:
    """Outcome of a container task."""

    success: bool
    summary: str
    commands_executed: int = 0
    execution_plan: Optional[ExecutionPlan] = None
