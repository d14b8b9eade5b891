# tests/task/__init__.py
"""
Task Test Package.

Covers the tool handlers, the command execution loop, context metrics
and the end-to-end runner.
"""
