# src/patchpilot/core/__init__.py
"""
Core modules for PatchPilot.
"""

from patchpilot.core.classifier import ComplexityClassifier
from patchpilot.core.context_cache import ContextCache
from patchpilot.core.prompt_builder import PromptAssembler, PromptPair
from patchpilot.core.code_validator import ValidationEngine, format_verdict
from patchpilot.core.action_protocol import ActionProtocolParser, clean_code_response
from patchpilot.core.action_executor import ActionExecutor, PermissionPolicy

__all__ = [
    'ComplexityClassifier',
    'ContextCache',
    'PromptAssembler',
    'PromptPair',
    'ValidationEngine',
    'format_verdict',
    'ActionProtocolParser',
    'clean_code_response',
    'ActionExecutor',
    'PermissionPolicy'
]
