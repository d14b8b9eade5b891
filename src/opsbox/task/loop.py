# src/opsbox/task/loop.py
"""
Command execution loop driving one container task.

Each iteration asks the model gateway for the next action, constrained to
the container tool set, and routes every returned tool call through the
handler registry. The loop ends when a handler completes or fails the
task, the command ceiling is reached, the user cancels, or an iteration
raises.

Usage:
    >>> loop = CommandExecutionLoop(
    ...     container,
    ...     "Build the project and run its tests",
    ...     coordinator.generate_content,
    ...     options=config.task_options(),
    ...     loop_config=config.loop,
    ... )
    >>> result = await loop.run()
    >>> result.success, result.summary
"""

import logging
from typing import Awaitable, Callable, List, Optional

from ..config import LoopConfig
from ..exceptions import OperationCancelledError
from ..gateway.base import GenerateContent
from ..interaction.callbacks import (
    AutoConfirmCallback,
    ConfirmationCallback,
    ConsoleConfirmationCallback,
)
from ..logging_config import log_display
from ..models import (
    ExpectedResponseType,
    GenerateContentRequest,
    ModelType,
    PromptItem,
    TaskOptions,
    tool_calls_from_parts,
)
from ..sandbox.cancellation import CancellationToken
from .context import compute_context_metrics, context_budget_notice
from .handlers import HandlerContext, ToolName, dispatch_tool_call
from .session import TaskResult, TaskSession, TaskStatus
from .tool_schemas import get_container_command_defs

logger = logging.getLogger(__name__)

CANCELLED_SUMMARY = "Task cancelled by user"
COMMAND_LIMIT_SUMMARY = "Task incomplete: Reached maximum command limit"


def build_system_prompt(project_root: str) -> str:
    return f"""You are an operator working inside a fresh Docker container. Complete the task by running shell commands one at a time and checking each result before the next step.

Guidelines:
- Plan first. Record the plan with setExecutionPlan and keep it current with updateExecutionPlan.
- Run only non-interactive commands. Interactive programs will block until the command times out.
- Keep output short. Filter, page or tail large outputs instead of printing them whole.
- When a command fails, read its output and adapt instead of repeating it.
- Never print secrets or credentials.

Available functions:
- runCommand: run a shell command in the container and wait for the result.
- completeTask: finish the task successfully with a summary.
- failTask: give up on the task with a reason.
- wrapContext: replace the conversation so far with a summary when context grows large.
- setExecutionPlan: record the plan to follow.
- updateExecutionPlan: update the state of one plan step.
- copyToContainer: copy a host file or directory into the container.
- copyFromContainer: copy a container file or directory back to the host.

The container starts empty. Host files live under the project root {project_root}; host paths for copies must be absolute and inside it.
Return results either in the completeTask summary or by copying files back with copyFromContainer."""


def build_task_prompt(task_description: str) -> str:
    return (
        f"Overall Task:\n{task_description}\n\n"
        "Begin by analyzing the task and formulating your approach. "
        "Then start executing commands to complete it."
    )


def select_model_type(transcript_length: int) -> ModelType:
    """Stronger models for the opening turns, cheaper ones once the task is under way."""
    if transcript_length <= 2:
        return ModelType.DEFAULT
    if transcript_length <= 5:
        return ModelType.CHEAP
    return ModelType.LITE


class CommandExecutionLoop:
    """
    Runs the model-directed command loop for one task session.

    Args:
        container: Started container the commands run in
        task_description: Natural-language task given to the model
        generate_content: Model gateway, normally ``FallbackCoordinator.generate_content``
        working_dir: Default working directory for commands
        options: Session options; project root bounds all host paths
        loop_config: Iteration ceiling, context thresholds and output limits
        confirmation: Gate for transfers and task-end confirmation. Defaults
            to the console when interactive, otherwise to declining
        cancel_token: Aborts the running command and ends the loop
        wait_if_paused: Awaited at the top of every iteration
    """

    def __init__(
        self,
        container,
        task_description: str,
        generate_content: GenerateContent,
        working_dir: str = "/",
        options: Optional[TaskOptions] = None,
        loop_config: Optional[LoopConfig] = None,
        confirmation: Optional[ConfirmationCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
        wait_if_paused: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.options = options or TaskOptions()
        self.loop_config = loop_config or LoopConfig()
        self.generate_content = generate_content
        self.cancel_token = cancel_token or CancellationToken()
        self.wait_if_paused = wait_if_paused

        if confirmation is None:
            confirmation = (
                ConsoleConfirmationCallback()
                if self.options.interactive
                else AutoConfirmCallback(confirm_all=False)
            )
        self.confirmation = confirmation

        self.session = TaskSession(
            container=container,
            task_description=task_description,
            working_dir=working_dir,
        )
        self.system_prompt = PromptItem.system(build_system_prompt(str(self.options.project_root)))
        self.task_prompt = PromptItem.user(text=build_task_prompt(task_description))
        self.handler_context = HandlerContext(
            session=self.session,
            options=self.options,
            confirmation=self.confirmation,
            cancel_token=self.cancel_token,
            loop_config=self.loop_config,
        )

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _full_transcript(self) -> List[PromptItem]:
        return [self.system_prompt, self.task_prompt, *self.session.transcript]

    def _append_context_notice(self) -> None:
        metrics = compute_context_metrics(self.session.transcript)
        notice = context_budget_notice(
            metrics,
            self.loop_config.max_context_messages,
            self.loop_config.max_context_tokens,
        )
        logger.debug(notice)
        self.session.transcript.append(PromptItem.user(text=notice))

    def _build_request(self) -> GenerateContentRequest:
        return GenerateContentRequest(
            function_defs=get_container_command_defs(),
            model_type=select_model_type(len(self.session.transcript)),
            expected_response_type=ExpectedResponseType(text=False, tool_call=True, media=False),
            temperature=self.loop_config.temperature,
        )

    # =========================================================================
    # MAIN LOOP
    # =========================================================================

    async def run(self) -> TaskResult:
        session = self.session
        max_commands = self.loop_config.max_commands
        warning_at = max_commands - self.loop_config.finish_warning_remaining
        success = False
        summary = ""

        log_display(logger, logging.INFO, f"Starting command loop (max {max_commands} iterations)")

        for iteration in range(max_commands):
            if self.cancel_token.is_cancelled:
                log_display(logger, logging.WARNING, "Task cancelled by user, exiting command loop")
                summary = CANCELLED_SUMMARY
                break

            try:
                if self.wait_if_paused is not None:
                    await self.wait_if_paused()

                self._append_context_notice()
                if iteration == warning_at:
                    remaining = self.loop_config.finish_warning_remaining
                    session.transcript.append(
                        PromptItem.user(
                            text=f"[context] nearing command limit of {max_commands}! "
                            f"{remaining} commands remaining! Start finishing up."
                        )
                    )

                parts = await self.generate_content(
                    self._full_transcript(), self._build_request(), self.options
                )
                calls = tool_calls_from_parts(parts)

                if not calls:
                    logger.warning("Model returned no tool calls")
                    session.transcript.append(
                        PromptItem.assistant(text="I could not determine a valid action to take.")
                    )
                    session.transcript.append(PromptItem.user(text="Please try again."))
                    continue

                should_break = False
                for call in calls:
                    if call.name == ToolName.RUN_COMMAND.value and session.commands_executed >= max_commands:
                        log_display(logger, logging.WARNING, f"Reached maximum command limit of {max_commands}")
                        summary = COMMAND_LIMIT_SUMMARY
                        should_break = True
                        break

                    state = await dispatch_tool_call(call, self.handler_context)
                    session.commands_executed += state.commands_executed_increment
                    if state.success is not None:
                        success = state.success
                    if state.summary is not None:
                        summary = state.summary
                    if state.should_break_outer:
                        should_break = True
                        break

                if should_break:
                    break

            except OperationCancelledError:
                log_display(logger, logging.WARNING, "Task cancelled by user, exiting command loop")
                success = False
                summary = CANCELLED_SUMMARY
                break
            except Exception as e:
                logger.error(f"Error in command execution loop: {e}", exc_info=True)
                success = False
                summary = f"Task failed: Error during execution - {e}"
                break

        if not summary:
            summary = "Task completed" if success else "Task failed or incomplete"

        session.status = TaskStatus.SUCCEEDED if success else TaskStatus.FAILED
        log_display(
            logger,
            logging.INFO,
            f"Command loop finished: success={success}, commands={session.commands_executed}",
        )
        return TaskResult(
            success=success,
            summary=summary,
            commands_executed=session.commands_executed,
            execution_plan=session.execution_plan,
        )
