# src/opsbox/sandbox/cancellation.py
"""
Cooperative cancellation and pause primitives for a task session.

A single :class:`CancellationToken` is supplied by the caller and threaded
explicitly through the loop, the command handlers, the command primitive
and the file transfer helpers. Nothing reads a module-level flag, so two
sessions can be cancelled independently.

:class:`PauseGate` is the blocking checkpoint the loop awaits once per
iteration before any model call. It is resumed externally.

Usage:
    >>> token = CancellationToken()
    >>> gate = PauseGate()
    >>> loop = CommandExecutionLoop(..., wait_if_paused=gate.wait_if_paused,
    ...                             cancel_token=token)
    >>> gate.pause()     # loop blocks at the start of its next iteration
    >>> gate.resume()
    >>> token.cancel()   # running command is killed, loop exits
"""

import asyncio
import logging
from typing import Optional

from ..exceptions import OperationCancelledError

logger = logging.getLogger(__name__)


class CancellationToken:
    """
    One-shot cancellation signal backed by an ``asyncio.Event``.

    Per-command timeouts are handled by the command primitive itself, so a
    session needs only this one token.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: Optional[str] = None) -> None:
        """Trigger the token. Idempotent."""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        logger.debug(f"Cancellation requested: {reason or 'no reason given'}")

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        """
        Raise OperationCancelledError if the token was triggered.

        Raises:
            OperationCancelledError: If cancelled
        """
        if self.is_cancelled:
            raise OperationCancelledError(self._reason or "Operation cancelled by user.")


class PauseGate:
    """
    Resumable checkpoint. Open by default.

    ``wait_if_paused`` returns immediately while the gate is open and
    blocks while it is paused.
    """

    def __init__(self) -> None:
        self._open = asyncio.Event()
        self._open.set()

    @property
    def is_paused(self) -> bool:
        return not self._open.is_set()

    def pause(self) -> None:
        if not self.is_paused:
            logger.info("Task paused")
        self._open.clear()

    def resume(self) -> None:
        if self.is_paused:
            logger.info("Task resumed")
        self._open.set()

    async def wait_if_paused(self) -> None:
        await self._open.wait()
