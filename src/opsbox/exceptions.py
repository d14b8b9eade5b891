# src/opsbox/exceptions.py
"""
Custom exceptions for the opsbox library.

This module defines the library-level exception hierarchy. Errors raised
by container operations live in :mod:`opsbox.sandbox.exceptions`; the
classes here cover configuration, model providers, cancellation and
model response validation.
"""

from typing import Any, Optional


class OpsboxError(Exception):
    """Base class for all opsbox specific errors."""
    def __init__(self, message: str = "An unspecified error occurred in opsbox."):
        super().__init__(message)

class ConfigError(OpsboxError):
    """Raised for errors related to configuration loading or validation."""
    def __init__(self, message: str = "Configuration error."):
        super().__init__(message)

class ProviderError(OpsboxError):
    """Raised for errors originating from a model provider (unknown provider, API errors)."""
    def __init__(self, provider_name: str = "Unknown", message: str = "Provider error."):
        self.provider_name = provider_name
        super().__init__(f"Error with provider '{provider_name}': {message}")

class OperationCancelledError(OpsboxError):
    """
    Raised when a cancellation token has been triggered.

    The fallback coordinator never retries this error; it always propagates.
    """
    def __init__(self, message: str = "Operation cancelled by user."):
        super().__init__(message)

class FunctionCallValidationError(OpsboxError):
    """Raised when a model response cannot be repaired into the required function call."""
    def __init__(
        self,
        function_name: str = "Unknown",
        message: str = "Invalid function call.",
        details: Optional[Any] = None,
    ):
        self.function_name = function_name
        self.details = details
        super().__init__(f"Function call '{function_name}' failed validation: {message}")
