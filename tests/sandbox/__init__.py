# tests/sandbox/__init__.py
"""
Sandbox Test Package.

Contains unit tests and integration tests for:
    - Container lifecycle and orphan sweeping
    - Command execution and cancellation
    - Archive transfer in both directions
    - The container-id registry
"""
