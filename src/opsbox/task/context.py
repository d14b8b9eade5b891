# src/opsbox/task/context.py
"""
Context budget accounting for the task transcript.

Metrics are recomputed from the task-specific transcript every loop
iteration. Exceeding the message or token threshold adds a warning to the
transcript; exceeding both tells the model it must call ``wrapContext``.
The budget is soft: the loop never terminates because of it.
"""

import math
from typing import List, Sequence

from ..models import ContextMetrics, PromptItem

CHARS_PER_TOKEN = 4


def estimate_tokens(items: Sequence[PromptItem]) -> int:
    """Rough token estimate: serialized characters divided by four."""
    return math.ceil(sum(item.content_length() for item in items) / CHARS_PER_TOKEN)


def compute_context_metrics(items: Sequence[PromptItem]) -> ContextMetrics:
    return ContextMetrics(message_count=len(items), estimated_tokens=estimate_tokens(items))


def context_budget_notice(metrics: ContextMetrics, max_messages: int, max_tokens: int) -> str:
    """
    Build the per-iteration context notice: one metrics line plus any warnings.
    """
    lines: List[str] = [
        f"[context] Context metrics: messages={metrics.message_count}, tokens≈{metrics.estimated_tokens}."
    ]

    messages_exceeded = metrics.message_count > max_messages
    tokens_exceeded = metrics.estimated_tokens > max_tokens

    if messages_exceeded and tokens_exceeded:
        lines.append(
            f"[context] Limits exceeded: messages>{max_messages} and tokens>{max_tokens}. "
            "You must call wrapContext now."
        )
    elif messages_exceeded:
        lines.append(
            f"[context] Message count exceeds {max_messages}. Consider calling wrapContext soon."
        )
    elif tokens_exceeded:
        lines.append(
            f"[context] Estimated tokens exceed {max_tokens}. Consider calling wrapContext soon."
        )

    return "\n".join(lines)
