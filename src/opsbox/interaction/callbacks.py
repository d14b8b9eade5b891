# src/opsbox/interaction/callbacks.py
"""
User confirmation gate.

Every host/container transfer and every model-call retry goes through a
:class:`ConfirmationCallback`:

    confirm(prompt, include_answer, default_value) -> ConfirmationResult

``include_answer`` asks the user for an optional free-text note along with
the yes/no decision; the note is forwarded to the model in the tool result.

Implementations:
    - ConsoleConfirmationCallback: terminal prompt (CLI/REPL)
    - AutoConfirmCallback: fixed answer, records prompts (tests, automation)
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from ..models import ConfirmationResult

logger = logging.getLogger(__name__)


# =============================================================================
# ABSTRACT CALLBACK
# =============================================================================


class ConfirmationCallback(ABC):
    """Abstract confirmation interface implemented by frontends."""

    @abstractmethod
    async def confirm(
        self,
        prompt: str,
        include_answer: bool = False,
        default_value: bool = True,
    ) -> ConfirmationResult:
        """
        Ask the user to confirm an action.

        Args:
            prompt: Question shown to the user
            include_answer: Also collect an optional free-text answer
            default_value: Decision used when the user just presses enter

        Returns:
            ConfirmationResult with the decision and optional answer
        """
        ...


# =============================================================================
# CONSOLE CALLBACK (CLI/REPL)
# =============================================================================


class ConsoleConfirmationCallback(ConfirmationCallback):
    """
    Console-based confirmation for CLI/REPL interfaces.
    """

    def __init__(
        self,
        input_fn: Optional[Callable[[str], str]] = None,
        output_fn: Optional[Callable[[str], None]] = None,
    ):
        """
        Initialize console callback.

        Args:
            input_fn: Custom input function (default: executor-wrapped input)
            output_fn: Custom output function (default: print)
        """
        self._input_fn = input_fn
        self._output_fn = output_fn or print

    async def _async_input(self, prompt: str) -> str:
        if self._input_fn:
            return self._input_fn(prompt)

        # Run input() in thread pool
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, lambda: input(prompt))

    async def confirm(
        self,
        prompt: str,
        include_answer: bool = False,
        default_value: bool = True,
    ) -> ConfirmationResult:
        """Display the prompt and read a yes/no decision."""
        choices = "[Y/n]" if default_value else "[y/N]"

        while True:
            try:
                response = (await self._async_input(f"{prompt} {choices}: ")).strip().lower()
            except (EOFError, KeyboardInterrupt):
                self._output_fn("\nCancelled.")
                return ConfirmationResult(confirmed=False)

            if not response:
                confirmed = default_value
            elif response in ("y", "yes"):
                confirmed = True
            elif response in ("n", "no"):
                confirmed = False
            else:
                self._output_fn("Invalid option. Please enter y or n.")
                continue
            break

        answer = None
        if include_answer:
            try:
                answer = (await self._async_input("Additional comment (optional): ")).strip() or None
            except (EOFError, KeyboardInterrupt):
                answer = None

        return ConfirmationResult(confirmed=confirmed, answer=answer)


# =============================================================================
# AUTO CALLBACK (Testing/Automation)
# =============================================================================


class AutoConfirmCallback(ConfirmationCallback):
    """
    Callback that answers every prompt with a fixed decision.

    For testing and automated scenarios. Prompts are recorded in
    ``prompts`` in the order they were asked.
    """

    def __init__(
        self,
        confirm_all: bool = True,
        answer: Optional[str] = None,
        log_requests: bool = True,
    ):
        """
        Initialize auto callback.

        Args:
            confirm_all: If True, confirm all. If False, decline all.
            answer: Free-text answer returned when include_answer is requested
            log_requests: Whether to log prompts
        """
        self.confirm_all = confirm_all
        self.answer = answer
        self.log_requests = log_requests
        self.prompts: List[str] = []

    async def confirm(
        self,
        prompt: str,
        include_answer: bool = False,
        default_value: bool = True,
    ) -> ConfirmationResult:
        self.prompts.append(prompt)
        if self.log_requests:
            logger.info(f"Auto-{'confirming' if self.confirm_all else 'declining'}: {prompt}")
        return ConfirmationResult(
            confirmed=self.confirm_all,
            answer=self.answer if include_answer else None,
        )
