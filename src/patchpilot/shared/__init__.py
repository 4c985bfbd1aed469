# src/patchpilot/shared/__init__.py
"""
Shared utilities for PatchPilot.
"""
from .process import CommandError, run_async

__all__ = [
    'CommandError',
    'run_async'
]
