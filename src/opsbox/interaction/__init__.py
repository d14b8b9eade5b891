# src/opsbox/interaction/__init__.py
"""
User interaction for opsbox: the confirmation gate used before transfers
and before retrying failed model calls.
"""

from .callbacks import AutoConfirmCallback, ConfirmationCallback, ConsoleConfirmationCallback

__all__ = [
    "ConfirmationCallback",
    "ConsoleConfirmationCallback",
    "AutoConfirmCallback",
]
