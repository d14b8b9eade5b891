# src/opsbox/gateway/base.py
"""
Model gateway contract.

Provider integrations live outside opsbox. Anything that satisfies
:class:`GenerateContent` can drive the task loop: given the transcript and
a request describing the tool schema and model tier, it returns text
and/or typed tool calls.
"""

from typing import List, Mapping, Protocol

from ..models import GenerateContentRequest, Part, PromptItem, TaskOptions


class GenerateContent(Protocol):
    """Provider-agnostic model call."""

    async def __call__(
        self,
        transcript: List[PromptItem],
        request: GenerateContentRequest,
        options: TaskOptions,
    ) -> List[Part]:
        ...


ProviderRegistry = Mapping[str, GenerateContent]
