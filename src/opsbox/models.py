# src/opsbox/models.py
"""
Core data models for opsbox.

This module defines the Pydantic models used to represent the conversation
between the task loop and the model gateway (prompt items, tool calls,
tool responses, response parts), the request shape sent to the gateway,
the observability-only execution plan, and the runtime options shared by
the loop, the command handlers and the fallback coordinator.
"""

import uuid
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PromptItemType(str, Enum):
    """
    Enumeration of the kinds of transcript entries.
    """
    SYSTEM_PROMPT = "system_prompt"
    USER = "user"
    ASSISTANT = "assistant"

    @classmethod
    def _missing_(cls, value: object): # type: ignore[misc]
        """Accept case-insensitive values and the camelCase ``systemPrompt`` alias."""
        if isinstance(value, str):
            lower_value = value.lower()
            if lower_value == "systemprompt":
                return cls.SYSTEM_PROMPT
            for member in cls:
                if member.value == lower_value:
                    return member
        return None


class ModelType(str, Enum):
    """Model tier requested from the gateway."""
    DEFAULT = "default"
    CHEAP = "cheap"
    LITE = "lite"


class ToolCall(BaseModel):
    """
    A structured, named request emitted by the model.

    Attributes:
        id: Provider-assigned call id used to pair the call with its response.
        name: Tool name; may fall outside the closed tool set.
        args: Tool arguments as decoded JSON.
    """
    id: Optional[str] = Field(default=None, description="Call id pairing this call with its tool response.")
    name: str = Field(description="Name of the requested tool.")
    args: Dict[str, Any] = Field(default_factory=dict, description="Arguments of the call.")

    @field_validator("args", mode="before")
    @classmethod
    def ensure_args_dict(cls, v: Any) -> Dict[str, Any]:
        """Providers may send ``null`` for argument-less calls."""
        return {} if v is None else v

    def ensure_id(self) -> "ToolCall":
        """Assign a call id if the provider did not send one."""
        if not self.id:
            self.id = f"call_{uuid.uuid4().hex[:12]}"
        return self


class ToolResponse(BaseModel):
    """The result of one tool call, keyed by the call's id."""
    name: str
    call_id: Optional[str] = None
    content: Optional[str] = None
    is_error: bool = False


class PromptItem(BaseModel):
    """
    One turn of the conversation transcript.

    A turn is a system instruction, a user turn (task statement, tool
    results, loop notices) or an assistant turn optionally carrying tool
    calls.
    """
    type: PromptItemType
    text: Optional[str] = None
    system_prompt: Optional[str] = None
    tool_calls: List[ToolCall] = Field(default_factory=list)
    tool_responses: List[ToolResponse] = Field(default_factory=list)

    model_config = ConfigDict(use_enum_values=False)

    @classmethod
    def system(cls, text: str) -> "PromptItem":
        return cls(type=PromptItemType.SYSTEM_PROMPT, system_prompt=text)

    @classmethod
    def user(cls, text: Optional[str] = None, tool_responses: Optional[List[ToolResponse]] = None) -> "PromptItem":
        return cls(type=PromptItemType.USER, text=text, tool_responses=tool_responses or [])

    @classmethod
    def assistant(cls, text: Optional[str] = None, tool_calls: Optional[List[ToolCall]] = None) -> "PromptItem":
        return cls(type=PromptItemType.ASSISTANT, text=text, tool_calls=tool_calls or [])

    def content_length(self) -> int:
        """Approximate serialized size in characters, used for token estimates."""
        return len(self.model_dump_json(exclude_none=True, exclude_defaults=True))


class TextPart(BaseModel):
    """A text fragment returned by the model gateway."""
    type: Literal["text"] = "text"
    text: str


class ToolCallPart(BaseModel):
    """A typed tool call returned by the model gateway."""
    type: Literal["tool_call"] = "tool_call"
    tool_call: ToolCall


Part = Union[TextPart, ToolCallPart]


def tool_calls_from_parts(parts: List[Part]) -> List[ToolCall]:
    """Extract the tool calls from a gateway result, preserving order."""
    return [part.tool_call for part in parts if isinstance(part, ToolCallPart)]


class ExpectedResponseType(BaseModel):
    """Which kinds of parts the caller expects back."""
    text: bool = True
    tool_call: bool = True
    media: bool = False


class GenerateContentRequest(BaseModel):
    """
    Request parameters passed alongside the transcript to the model gateway.

    ``function_defs`` are OpenAI-style function schemas (``name``,
    ``description``, ``parameters``).
    """
    function_defs: List[Dict[str, Any]] = Field(default_factory=list)
    model_type: ModelType = ModelType.DEFAULT
    required_function_name: Optional[str] = None
    expected_response_type: ExpectedResponseType = Field(default_factory=ExpectedResponseType)
    temperature: Optional[float] = None


class PlanStepState(str, Enum):
    """State of one execution plan step."""
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ExecutionPlanStep(BaseModel):
    """A single step of the execution plan maintained by the model."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    description: str
    depends_on: List[str] = Field(default_factory=list, alias="dependsOn")
    state: PlanStepState = PlanStepState.PENDING
    status_update: Optional[str] = Field(default=None, alias="statusUpdate")


class ExecutionPlan(BaseModel):
    """
    Ordered checklist recorded through ``setExecutionPlan`` and
    ``updateExecutionPlan``. Surfaced to observers; never consulted by
    the loop's control flow.
    """
    steps: List[ExecutionPlanStep] = Field(default_factory=list)
    progress: Optional[str] = None

    def get_step(self, step_id: str) -> Optional[ExecutionPlanStep]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def update_step(self, step_id: str, state: PlanStepState, status_update: Optional[str] = None) -> bool:
        """Update a step in place. Returns False if the step id is unknown."""
        step = self.get_step(step_id)
        if step is None:
            return False
        step.state = state
        if status_update is not None:
            step.status_update = status_update
        return True


class ContextMetrics(BaseModel):
    """Size of the task-specific transcript, recomputed every loop iteration."""
    message_count: int = 0
    estimated_tokens: int = 0


class ConfirmationResult(BaseModel):
    """Outcome of a user confirmation prompt."""
    confirmed: bool
    answer: Optional[str] = None


class TaskOptions(BaseModel):
    """
    Runtime options shared by the loop, the handlers and the fallback coordinator.

    Attributes:
        project_root: Every host path touched by transfers must resolve under it.
        ai_service: Name of the provider in the fallback coordinator's registry.
        interactive: Whether a user is available to answer confirmations.
        disable_ai_service_fallback: Never offer to retry failed model calls.
        confirm_task_end: Ask the user before accepting completeTask/failTask.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    project_root: Path = Field(default_factory=lambda: Path.cwd())
    ai_service: Optional[str] = None
    interactive: bool = True
    disable_ai_service_fallback: bool = False
    confirm_task_end: bool = False

    @field_validator("project_root", mode="after")
    @classmethod
    def resolve_project_root(cls, v: Path) -> Path:
        return Path(v).expanduser().resolve()
