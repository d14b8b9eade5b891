# src/opsbox/task/handlers.py
"""
Command handler registry for the container task loop.

Every tool the model may call is a member of :class:`ToolName`, and every
member maps to exactly one entry of :data:`COMMAND_HANDLERS`. The mapping
is checked against the enum when this module is imported, so adding a tool
without a handler fails fast. Names outside the closed set are answered by
:func:`handle_unknown_call`.

Each handler appends the assistant turn carrying its call and the user turn
carrying the matching tool response, keeping the transcript paired, and
returns a :class:`CommandResultState` telling the loop what changed.

Usage:
    >>> ctx = HandlerContext(session=session, options=options,
    ...                      confirmation=AutoConfirmCallback(),
    ...                      cancel_token=CancellationToken(),
    ...                      loop_config=LoopConfig())
    >>> state = await dispatch_tool_call(call, ctx)
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Literal, NamedTuple, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from ..config import LoopConfig
from ..exceptions import OperationCancelledError
from ..interaction.callbacks import ConfirmationCallback
from ..logging_config import log_display
from ..models import (
    ExecutionPlan,
    ExecutionPlanStep,
    PlanStepState,
    PromptItem,
    TaskOptions,
    ToolCall,
    ToolResponse,
)
from ..sandbox.cancellation import CancellationToken
from ..sandbox.exceptions import PathValidationError
from ..sandbox.execution import execute_command
from ..sandbox.transfer import (
    container_path_exists,
    copy_from_container,
    copy_to_container,
    list_files_in_container_archive,
    validate_host_path,
)
from .session import TaskSession

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "[... output truncated for context management ...]"

TIMEOUT_SECONDS: Dict[str, int] = {
    "10sec": 10,
    "30sec": 30,
    "1min": 60,
    "2min": 120,
    "5min": 300,
    "10min": 600,
    "15min": 900,
}

# Files listed in the copyFromContainer confirmation before eliding the rest
MAX_LISTED_FILES = 50


# =============================================================================
# TOOL NAMES AND ARGUMENTS
# =============================================================================


class ToolName(str, Enum):
    """Closed set of tools the model may call."""
    RUN_COMMAND = "runCommand"
    COMPLETE_TASK = "completeTask"
    FAIL_TASK = "failTask"
    WRAP_CONTEXT = "wrapContext"
    SET_EXECUTION_PLAN = "setExecutionPlan"
    UPDATE_EXECUTION_PLAN = "updateExecutionPlan"
    COPY_TO_CONTAINER = "copyToContainer"
    COPY_FROM_CONTAINER = "copyFromContainer"

    @classmethod
    def parse(cls, name: str) -> Optional["ToolName"]:
        """Return the member for ``name``, or None if it is not a known tool."""
        try:
            return cls(name)
        except ValueError:
            return None


class _ToolArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RunCommandArgs(_ToolArgs):
    command: str = Field(min_length=1)
    working_dir: Optional[str] = Field(default=None, alias="workingDir")
    reasoning: str = ""
    shell: Literal["bash", "/bin/sh"] = "/bin/sh"
    stdin: Optional[str] = None
    trunc_mode: Literal["start", "end", "none"] = Field(default="start", alias="truncMode")
    timeout: Literal["10sec", "30sec", "1min", "2min", "5min", "10min", "15min"] = "5min"


class CompleteTaskArgs(_ToolArgs):
    summary: str


class FailTaskArgs(_ToolArgs):
    reason: str


class WrapContextArgs(_ToolArgs):
    summary: str


class SetExecutionPlanArgs(_ToolArgs):
    plan: List[ExecutionPlanStep]


class UpdateExecutionPlanArgs(_ToolArgs):
    id: Optional[str] = None
    state: Optional[PlanStepState] = None
    status_update: Optional[str] = Field(default=None, alias="statusUpdate")
    progress: Optional[str] = None

    @model_validator(mode="after")
    def _step_or_progress(self) -> "UpdateExecutionPlanArgs":
        if (self.id is None) != (self.state is None):
            raise ValueError("id and state must be given together")
        if self.id is None and self.progress is None:
            raise ValueError("give progress, or id with state")
        return self


class CopyToContainerArgs(_ToolArgs):
    host_path: str = Field(alias="hostPath")
    container_path: str = Field(alias="containerPath")


class CopyFromContainerArgs(_ToolArgs):
    container_path: str = Field(alias="containerPath")
    host_path: str = Field(alias="hostPath")


# =============================================================================
# HANDLER CONTEXT AND RESULT
# =============================================================================


@dataclass
class CommandResultState:
    """
    What a handler changed for the loop.

    ``success``/``summary`` are None when the handler leaves them untouched.
    """

    success: Optional[bool] = None
    summary: Optional[str] = None
    commands_executed_increment: int = 0
    should_break_outer: bool = False


@dataclass
class HandlerContext:
    """Everything a handler may touch while handling one call."""

    session: TaskSession
    options: TaskOptions
    confirmation: ConfirmationCallback
    cancel_token: CancellationToken = field(default_factory=CancellationToken)
    loop_config: LoopConfig = field(default_factory=LoopConfig)

    @property
    def transcript(self) -> List[PromptItem]:
        return self.session.transcript

    @property
    def container(self):
        return self.session.container


def _record(ctx: HandlerContext, call: ToolCall, assistant_text: Optional[str], content: str,
            is_error: bool = False) -> None:
    """Append the assistant turn carrying ``call`` and its paired tool response."""
    ctx.transcript.append(PromptItem.assistant(text=assistant_text, tool_calls=[call]))
    ctx.transcript.append(
        PromptItem.user(
            tool_responses=[
                ToolResponse(name=call.name, call_id=call.id, content=content, is_error=is_error)
            ]
        )
    )


def truncate_output(output: str, max_length: int, mode: str = "start") -> str:
    """Shorten command output for the transcript."""
    if mode == "none" or len(output) <= max_length:
        return output
    if mode == "end":
        return f"{TRUNCATION_MARKER}\n\n{output[-max_length:]}"
    return f"{output[:max_length]}\n\n{TRUNCATION_MARKER}"


# =============================================================================
# HANDLERS
# =============================================================================


async def handle_run_command(call: ToolCall, args: RunCommandArgs, ctx: HandlerContext) -> CommandResultState:
    working_dir = args.working_dir or ctx.session.working_dir
    logger.info(f"Running command in {working_dir}: {args.command}")
    logger.debug(f"Command reasoning: {args.reasoning}")

    try:
        result = await execute_command(
            ctx.container,
            args.command,
            working_dir,
            stdin=args.stdin,
            shell=args.shell,
            cancel_token=ctx.cancel_token,
            timeout=TIMEOUT_SECONDS[args.timeout],
        )
    except Exception as e:
        logger.error(f"Command execution failed: {e}")
        content = f"Command execution failed: {e}"
        is_error = True
    else:
        output = truncate_output(result.output, ctx.loop_config.max_output_length, args.trunc_mode)
        content = f"Command executed successfully.\n\nOutput:\n{output}\n\nExit Code: {result.exit_code}"
        is_error = False
        log_display(logger, logging.INFO, f"Command finished with exit code {result.exit_code}")

    _record(ctx, call, f"Executing command with reasoning: {args.reasoning}", content, is_error)
    return CommandResultState(commands_executed_increment=1)


async def _confirm_task_end(ctx: HandlerContext, prompt: str) -> tuple[bool, Optional[str]]:
    if not ctx.options.confirm_task_end:
        return True, None
    decision = await ctx.confirmation.confirm(prompt, include_answer=True, default_value=True)
    return decision.confirmed, decision.answer


def _with_answer(text: str, answer: Optional[str]) -> str:
    return f"{text} {answer}" if answer else text


async def handle_complete_task(call: ToolCall, args: CompleteTaskArgs, ctx: HandlerContext) -> CommandResultState:
    confirmed, answer = await _confirm_task_end(
        ctx, f"The task is reported as complete:\n{args.summary}\n\nDo you accept the result?"
    )
    if not confirmed:
        _record(ctx, call, None, _with_answer("Task is incomplete. Please continue.", answer))
        return CommandResultState()

    log_display(logger, logging.INFO, f"Task completed: {args.summary}")
    _record(ctx, call, None, "Task completed.")
    return CommandResultState(success=True, summary=args.summary, should_break_outer=True)


async def handle_fail_task(call: ToolCall, args: FailTaskArgs, ctx: HandlerContext) -> CommandResultState:
    confirmed, answer = await _confirm_task_end(
        ctx, f"The task is reported as failed:\n{args.reason}\n\nDo you accept the failure?"
    )
    if not confirmed:
        _record(ctx, call, None, _with_answer("Lets not fail the task, and continue working on it.", answer))
        return CommandResultState()

    log_display(logger, logging.WARNING, f"Task failed: {args.reason}")
    _record(ctx, call, None, "Task failed.")
    return CommandResultState(success=False, summary=args.reason, should_break_outer=True)


async def handle_wrap_context(call: ToolCall, args: WrapContextArgs, ctx: HandlerContext) -> CommandResultState:
    dropped = len(ctx.transcript)
    ctx.transcript[:] = [
        PromptItem.user(
            text=f"[context] Summary of the work so far:\n{args.summary}\n\nContinue with the task."
        )
    ]
    logger.info(f"Context wrapped, {dropped} transcript entries replaced by a summary")
    return CommandResultState()


async def handle_set_execution_plan(
    call: ToolCall, args: SetExecutionPlanArgs, ctx: HandlerContext
) -> CommandResultState:
    ctx.session.execution_plan = ExecutionPlan(steps=args.plan)
    plan_lines = "\n".join(f"  [{step.state.value}] {step.id}: {step.description}" for step in args.plan)
    log_display(logger, logging.INFO, f"Execution plan:\n{plan_lines}")
    _record(ctx, call, "Setting execution plan.", "Please follow the execution plan carefully.")
    return CommandResultState()


async def handle_update_execution_plan(
    call: ToolCall, args: UpdateExecutionPlanArgs, ctx: HandlerContext
) -> CommandResultState:
    plan = ctx.session.execution_plan

    if args.id is None:
        if plan is None:
            plan = ctx.session.execution_plan = ExecutionPlan()
        plan.progress = args.progress
        log_display(logger, logging.INFO, f"Plan progress: {args.progress}")
        _record(ctx, call, "Updating execution plan progress.", "Execution plan updated.")
        return CommandResultState()

    assistant_text = f"Updating execution plan for step {args.id}."
    if plan is None or not plan.update_step(args.id, args.state, args.status_update):
        _record(ctx, call, assistant_text, f"Unknown execution plan step: {args.id}", is_error=True)
        return CommandResultState()

    if args.progress is not None:
        plan.progress = args.progress
    note = f" ({args.status_update})" if args.status_update else ""
    log_display(logger, logging.INFO, f"Plan step {args.id} is {args.state.value}{note}")
    _record(ctx, call, assistant_text, "Execution plan updated.")
    return CommandResultState()


def _invalid_host_path(ctx: HandlerContext) -> str:
    return (
        "Error: Invalid host path. It must be within the project root directory: "
        f"{ctx.options.project_root}."
    )


async def _copy_to(args: CopyToContainerArgs, ctx: HandlerContext) -> str:
    if ctx.cancel_token.is_cancelled:
        return "Operation cancelled by user."
    try:
        source = validate_host_path(args.host_path, ctx.options.project_root)
    except PathValidationError:
        return _invalid_host_path(ctx)

    decision = await ctx.confirmation.confirm(
        f"Copy {source} to container path {args.container_path}.\n"
        "Do you want to proceed with the copy operation?",
        include_answer=True,
        default_value=True,
    )
    if not decision.confirmed:
        return _with_answer("I reject the copy operation.", decision.answer)

    try:
        await copy_to_container(
            ctx.container, source, args.container_path, ctx.options.project_root, ctx.cancel_token
        )
    except OperationCancelledError:
        return "Operation cancelled by user."
    except PathValidationError:
        return _invalid_host_path(ctx)
    except Exception as e:
        logger.error(f"Copy to container failed: {e}")
        return f"Error: {e}"

    return f"Successfully copied {source} to container path {args.container_path}."


async def _copy_from(args: CopyFromContainerArgs, ctx: HandlerContext) -> str:
    if ctx.cancel_token.is_cancelled:
        return "Operation cancelled by user."
    try:
        destination = validate_host_path(args.host_path, ctx.options.project_root)
    except PathValidationError:
        return _invalid_host_path(ctx)

    try:
        if not await container_path_exists(ctx.container, args.container_path):
            return f'Error: Container path "{args.container_path}" does not exist.'
        files = await list_files_in_container_archive(ctx.container, args.container_path)
    except Exception as e:
        logger.error(f"Listing container path {args.container_path} failed: {e}")
        return f"Error: {e}"

    if not files:
        return f'No files or directories found at container path "{args.container_path}" to copy.'

    listing = "\n".join(f"  {name}" for name in files[:MAX_LISTED_FILES])
    if len(files) > MAX_LISTED_FILES:
        listing += f"\n  ... and {len(files) - MAX_LISTED_FILES} more"

    decision = await ctx.confirmation.confirm(
        f"The following files will be copied from container path {args.container_path} "
        f"to {destination}:\n{listing}\nDo you want to proceed with the copy operation?",
        include_answer=True,
        default_value=True,
    )
    if not decision.confirmed:
        return _with_answer("I reject the copy operation.", decision.answer)

    try:
        written = await copy_from_container(
            ctx.container, args.container_path, destination, ctx.options.project_root, ctx.cancel_token
        )
    except OperationCancelledError:
        return "Operation cancelled by user."
    except PathValidationError as e:
        logger.error(f"Rejected archive from {args.container_path}: {e}")
        return f"Error: {e.message}"
    except Exception as e:
        logger.error(f"Copy from container failed: {e}")
        return f"Error: {e}"

    logger.info(f"Copied {len(written)} entries from {args.container_path} to {destination}")
    return f"Successfully copied from container path {args.container_path} to {destination}."


async def handle_copy_to_container(
    call: ToolCall, args: CopyToContainerArgs, ctx: HandlerContext
) -> CommandResultState:
    content = await _copy_to(args, ctx)
    _record(ctx, call, f"Copying {args.host_path} to container path {args.container_path}.", content)
    return CommandResultState()


async def handle_copy_from_container(
    call: ToolCall, args: CopyFromContainerArgs, ctx: HandlerContext
) -> CommandResultState:
    content = await _copy_from(args, ctx)
    _record(ctx, call, f"Copying container path {args.container_path} to {args.host_path}.", content)
    return CommandResultState()


async def handle_unknown_call(call: ToolCall, ctx: HandlerContext) -> CommandResultState:
    logger.warning(f"Model requested unknown tool: {call.name}")
    _record(ctx, call, None, f"Unknown function call: {call.name}", is_error=True)
    return CommandResultState()


# =============================================================================
# DISPATCH
# =============================================================================


Handler = Callable[[ToolCall, BaseModel, HandlerContext], Awaitable[CommandResultState]]


class CommandSpec(NamedTuple):
    args_model: Type[BaseModel]
    handler: Handler


COMMAND_HANDLERS: Dict[ToolName, CommandSpec] = {
    ToolName.RUN_COMMAND: CommandSpec(RunCommandArgs, handle_run_command),
    ToolName.COMPLETE_TASK: CommandSpec(CompleteTaskArgs, handle_complete_task),
    ToolName.FAIL_TASK: CommandSpec(FailTaskArgs, handle_fail_task),
    ToolName.WRAP_CONTEXT: CommandSpec(WrapContextArgs, handle_wrap_context),
    ToolName.SET_EXECUTION_PLAN: CommandSpec(SetExecutionPlanArgs, handle_set_execution_plan),
    ToolName.UPDATE_EXECUTION_PLAN: CommandSpec(UpdateExecutionPlanArgs, handle_update_execution_plan),
    ToolName.COPY_TO_CONTAINER: CommandSpec(CopyToContainerArgs, handle_copy_to_container),
    ToolName.COPY_FROM_CONTAINER: CommandSpec(CopyFromContainerArgs, handle_copy_from_container),
}

_unhandled = set(ToolName) - set(COMMAND_HANDLERS)
if _unhandled:
    raise RuntimeError(f"Tools without a handler: {sorted(t.value for t in _unhandled)}")


def _format_validation_error(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}" for err in error.errors()
    )


async def dispatch_tool_call(call: ToolCall, ctx: HandlerContext) -> CommandResultState:
    """
    Validate the call's arguments and route it to its handler.

    Unknown tool names and invalid arguments are answered with an error
    tool response; the loop continues either way.
    """
    call.ensure_id()
    name = ToolName.parse(call.name)
    if name is None:
        return await handle_unknown_call(call, ctx)

    entry = COMMAND_HANDLERS[name]
    try:
        args = entry.args_model.model_validate(call.args)
    except ValidationError as e:
        details = _format_validation_error(e)
        logger.warning(f"Invalid arguments for {call.name}: {details}")
        _record(ctx, call, None, f"Invalid arguments for {call.name}: {details}", is_error=True)
        return CommandResultState()

    return await entry.handler(call, args, ctx)
