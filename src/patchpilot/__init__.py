# src/patchpilot/__init__.py
"""
PatchPilot - turns a natural-language edit request into validated code.
"""

__version__ = "0.1.0"
__author__ = "PatchPilot Team"

from patchpilot.core.models import EditRequest, OrchestrationResult
from patchpilot.core.orchestrator import Orchestrator
from patchpilot.config import AssistantConfig, load_config

__all__ = [
    'EditRequest',
    'OrchestrationResult',
    'Orchestrator',
    'AssistantConfig',
    'load_config'
]
