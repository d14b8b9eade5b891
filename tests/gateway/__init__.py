# tests/gateway/__init__.py
"""Tests for function-call validation and provider fallback."""
