# src/opsbox/gateway/__init__.py
"""
Model gateway layer: the provider-agnostic call contract, the fallback
coordinator that wraps every call, and response validation/recovery.
"""

from .base import GenerateContent, ProviderRegistry
from .fallback import FallbackCoordinator, call_with_fallback
from .validation import validate_and_recover, validate_function_call

__all__ = [
    "GenerateContent",
    "ProviderRegistry",
    "FallbackCoordinator",
    "call_with_fallback",
    "validate_and_recover",
    "validate_function_call",
]
