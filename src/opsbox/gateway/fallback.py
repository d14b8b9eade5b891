# src/opsbox/gateway/fallback.py
"""
Fallback coordinator wrapping every model gateway call.

Contract:

    call_with_fallback(provider_registry, options, *request_args) -> list[Part]

The provider is selected by ``options.ai_service``; it is never rotated
automatically. A successful result passes through
:func:`validate_and_recover` before being returned.

On failure:
    - cancellation always propagates immediately;
    - with ``disable_ai_service_fallback`` set, in a non-interactive
      session, or without a confirmation callback, the error propagates;
    - otherwise the user is asked whether to retry. Confirming re-issues
      the identical request to the same provider; declining re-raises the
      original error unchanged.

The retry loop is unbounded but every iteration is gated by an explicit
confirmation, so it never retries silently.

Usage:
    >>> coordinator = FallbackCoordinator(
    ...     {"anthropic": anthropic_generate},
    ...     options,
    ...     confirmation=ConsoleConfirmationCallback(),
    ... )
    >>> parts = await coordinator.generate_content(transcript, request, options)
"""

import asyncio
import logging
from typing import Any, List, Optional

from ..exceptions import OperationCancelledError, ProviderError
from ..interaction.callbacks import ConfirmationCallback
from ..logging_config import log_display
from ..models import GenerateContentRequest, Part, PromptItem, TaskOptions
from .base import GenerateContent, ProviderRegistry
from .validation import validate_and_recover

logger = logging.getLogger(__name__)


def _select_provider(provider_registry: ProviderRegistry, options: TaskOptions) -> GenerateContent:
    if not provider_registry:
        raise ProviderError("none", "No model providers are registered.")

    name = options.ai_service
    if name is None:
        if len(provider_registry) == 1:
            return next(iter(provider_registry.values()))
        raise ProviderError("none", "No ai_service selected and more than one provider is registered.")

    try:
        return provider_registry[name]
    except KeyError:
        raise ProviderError(name, f"Provider is not registered. Available: {sorted(provider_registry)}")


async def call_with_fallback(
    provider_registry: ProviderRegistry,
    options: TaskOptions,
    *request_args: Any,
    confirmation: Optional[ConfirmationCallback] = None,
) -> List[Part]:
    """
    Call the selected provider, validating the result and offering retries on failure.

    Args:
        provider_registry: Provider name to gateway callable
        options: Session options (provider selection, interactivity, fallback switch)
        *request_args: ``(transcript, request, options)`` forwarded to the provider
        confirmation: Gate used to ask the user before each retry

    Returns:
        Validated list of parts

    Raises:
        ProviderError: If the selected provider is not registered
        OperationCancelledError: If the call was cancelled
        Exception: The provider's original error when no retry is made
    """
    generate_fn = _select_provider(provider_registry, options)
    provider_name = options.ai_service or "default"
    attempt = 0

    while True:
        attempt += 1
        try:
            result = await generate_fn(*request_args)
            return await validate_and_recover(request_args, result, generate_fn)
        except (OperationCancelledError, asyncio.CancelledError):
            raise
        except Exception as error:
            logger.error(f"Model call to {provider_name} failed (attempt {attempt}): {error}")

            if options.disable_ai_service_fallback or not options.interactive or confirmation is None:
                raise

            decision = await confirmation.confirm(
                f"The model call to {provider_name} failed: {error}. Do you want to retry?",
                include_answer=False,
                default_value=True,
            )
            if not decision.confirmed:
                raise

            log_display(logger, logging.INFO, f"Retrying model call to {provider_name}")


class FallbackCoordinator:
    """
    Binds a provider registry and confirmation gate into a :class:`GenerateContent`.

    The loop receives :meth:`generate_content` as its model gateway.
    """

    def __init__(
        self,
        provider_registry: ProviderRegistry,
        options: TaskOptions,
        confirmation: Optional[ConfirmationCallback] = None,
    ):
        self.provider_registry = provider_registry
        self.options = options
        self.confirmation = confirmation

    async def generate_content(
        self,
        transcript: List[PromptItem],
        request: GenerateContentRequest,
        options: Optional[TaskOptions] = None,
    ) -> List[Part]:
        effective = options or self.options
        return await call_with_fallback(
            self.provider_registry,
            effective,
            transcript,
            request,
            effective,
            confirmation=self.confirmation,
        )
