# tests/gateway/test_fallback.py
"""
Tests for the fallback coordinator.

Providers are AsyncMocks; confirmation goes through AutoConfirmCallback or
a scripted callback, so every retry decision is observable.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from opsbox.exceptions import OperationCancelledError, ProviderError
from opsbox.gateway.fallback import FallbackCoordinator, call_with_fallback
from opsbox.interaction.callbacks import AutoConfirmCallback, ConfirmationCallback
from opsbox.models import (
    ConfirmationResult,
    GenerateContentRequest,
    PromptItem,
    TaskOptions,
    TextPart,
)


class ScriptedConfirmation(ConfirmationCallback):
    """Answers confirmations from a list of decisions."""

    def __init__(self, decisions):
        self.decisions = list(decisions)
        self.prompts = []

    async def confirm(self, prompt, include_answer=False, default_value=True):
        self.prompts.append(prompt)
        return ConfirmationResult(confirmed=self.decisions.pop(0))


@pytest.fixture
def options() -> TaskOptions:
    """Interactive options selecting the 'primary' provider."""
    return TaskOptions(ai_service="primary", interactive=True)


@pytest.fixture
def request_args():
    """A transcript and request without a required function."""
    return [PromptItem.user(text="hello")], GenerateContentRequest()


PARTS = [TextPart(text="ok")]


class TestProviderSelection:
    """Tests for provider lookup."""

    @pytest.mark.asyncio
    async def test_unknown_provider(self, options, request_args):
        """Test an unregistered provider name raises ProviderError."""
        with pytest.raises(ProviderError):
            await call_with_fallback({"other": AsyncMock()}, options, *request_args, options)

    @pytest.mark.asyncio
    async def test_empty_registry(self, options, request_args):
        """Test an empty registry raises ProviderError."""
        with pytest.raises(ProviderError):
            await call_with_fallback({}, options, *request_args, options)

    @pytest.mark.asyncio
    async def test_single_provider_auto_selected(self, request_args):
        """Test the only provider is used when none is named."""
        provider = AsyncMock(return_value=PARTS)
        options = TaskOptions(ai_service=None)
        assert await call_with_fallback({"only": provider}, options, *request_args, options) == PARTS

    @pytest.mark.asyncio
    async def test_ambiguous_without_selection(self, request_args):
        """Test several providers without a selection raise ProviderError."""
        options = TaskOptions(ai_service=None)
        with pytest.raises(ProviderError):
            await call_with_fallback({"a": AsyncMock(), "b": AsyncMock()}, options, *request_args, options)


class TestFallback:
    """Tests for retry-on-confirmation behaviour."""

    @pytest.mark.asyncio
    async def test_success_first_try(self, options, request_args):
        """Test a successful call asks nothing."""
        provider = AsyncMock(return_value=PARTS)
        confirmation = AutoConfirmCallback()
        result = await call_with_fallback(
            {"primary": provider}, options, *request_args, options, confirmation=confirmation
        )
        assert result == PARTS
        assert confirmation.prompts == []

    @pytest.mark.asyncio
    async def test_retry_after_confirmation(self, options, request_args):
        """Test a confirmed retry re-issues the identical request to the same provider."""
        provider = AsyncMock(side_effect=[RuntimeError("overloaded"), PARTS])
        confirmation = ScriptedConfirmation([True])

        result = await call_with_fallback(
            {"primary": provider}, options, *request_args, options, confirmation=confirmation
        )

        assert result == PARTS
        assert provider.await_count == 2
        first, second = provider.call_args_list
        assert first.args == second.args
        assert len(confirmation.prompts) == 1
        assert "overloaded" in confirmation.prompts[0]

    @pytest.mark.asyncio
    async def test_decline_reraises_original(self, options, request_args):
        """Test declining the retry re-raises the provider's error unchanged."""
        error = RuntimeError("rate limited")
        provider = AsyncMock(side_effect=error)
        confirmation = ScriptedConfirmation([False])

        with pytest.raises(RuntimeError) as exc_info:
            await call_with_fallback(
                {"primary": provider}, options, *request_args, options, confirmation=confirmation
            )

        assert exc_info.value is error
        assert provider.await_count == 1

    @pytest.mark.asyncio
    async def test_every_retry_is_confirmed(self, options, request_args):
        """Test each retry is preceded by exactly one confirmation."""
        provider = AsyncMock(side_effect=[RuntimeError("1"), RuntimeError("2"), PARTS])
        confirmation = ScriptedConfirmation([True, True])
        await call_with_fallback(
            {"primary": provider}, options, *request_args, options, confirmation=confirmation
        )
        assert provider.await_count == 3
        assert len(confirmation.prompts) == 2

    @pytest.mark.asyncio
    async def test_disabled_fallback_propagates(self, request_args):
        """Test disable_ai_service_fallback propagates without asking."""
        options = TaskOptions(ai_service="primary", disable_ai_service_fallback=True)
        provider = AsyncMock(side_effect=RuntimeError("boom"))
        confirmation = ScriptedConfirmation([])
        with pytest.raises(RuntimeError):
            await call_with_fallback(
                {"primary": provider}, options, *request_args, options, confirmation=confirmation
            )
        assert confirmation.prompts == []

    @pytest.mark.asyncio
    async def test_non_interactive_propagates(self, request_args):
        """Test non-interactive sessions never prompt."""
        options = TaskOptions(ai_service="primary", interactive=False)
        provider = AsyncMock(side_effect=RuntimeError("boom"))
        confirmation = ScriptedConfirmation([])
        with pytest.raises(RuntimeError):
            await call_with_fallback(
                {"primary": provider}, options, *request_args, options, confirmation=confirmation
            )
        assert confirmation.prompts == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [OperationCancelledError(), asyncio.CancelledError()])
    async def test_cancellation_propagates(self, options, request_args, error):
        """Test cancellation is never retried."""
        provider = AsyncMock(side_effect=error)
        confirmation = ScriptedConfirmation([])
        with pytest.raises(type(error)):
            await call_with_fallback(
                {"primary": provider}, options, *request_args, options, confirmation=confirmation
            )
        assert confirmation.prompts == []


class TestFallbackCoordinator:
    """Tests for the bound coordinator."""

    @pytest.mark.asyncio
    async def test_generate_content(self, options, request_args):
        """Test the coordinator forwards transcript, request and options."""
        provider = AsyncMock(return_value=PARTS)
        coordinator = FallbackCoordinator({"primary": provider}, options, AutoConfirmCallback())
        transcript, request = request_args

        assert await coordinator.generate_content(transcript, request) == PARTS
        provider.assert_awaited_once_with(transcript, request, options)
