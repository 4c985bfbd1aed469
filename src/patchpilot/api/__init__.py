# src/patchpilot/api/__init__.py
"""
Model client for PatchPilot.
"""

from patchpilot.api.client import (
    Completion,
    ModelClient,
    ChatCompletionClient,
    ModelClientError,
    AuthenticationError,
    RateLimitError,
    APIError,
    ConfigurationError
)

__all__ = [
    'Completion',
    'ModelClient',
    'ChatCompletionClient',
    'ModelClientError',
    'AuthenticationError',
    'RateLimitError',
    'APIError',
    'ConfigurationError'
]
