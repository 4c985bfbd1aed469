# src/patchpilot/core/classifier.py
"""
Complexity classifier - decides how much context and latency budget a
request gets.

SYNC, pure and total: keyword matching on the instruction plus the line
count of the selected code. Confidence values are fixed per branch and
purely advisory.
"""
import logging
from typing import Dict, List

from patchpilot.core.models import ComplexityProfile, ComplexityTier

logger = logging.getLogger(__name__)


TRIVIAL_KEYWORDS = (
    "fix typo",
    "add comment",
    "rename variable",
    "format",
    "prettier",
    "indent",
    "remove console",
    "add semicolon",
    "fix syntax",
)

MODERATE_KEYWORDS = (
    "refactor",
    "optimize",
    "improve",
    "add error handling",
    "add types",
    "convert to",
    "update",
    "modify",
)

SUBSTANTIAL_KEYWORDS = (
    "implement",
    "create",
    "build",
    "design",
    "architect",
    "restructure",
    "migrate",
    "rewrite",
)

TRIVIAL_MAX_LINES = 10        # fewer lines than this is always trivial
SUBSTANTIAL_MIN_LINES = 100   # more lines than this is substantial
SUBSTANTIAL_MIN_INSTRUCTION_CHARS = 100


class ComplexityClassifier:
    """Map (instruction, selected code) to a complexity profile."""

    def classify(self, instruction: str, selected_code: str) -> ComplexityProfile:
        prompt = instruction.lower()
        line_count = len(selected_code.split("\n"))

        # Trivial wins ties: a short snippet stays trivial even with a
        # substantial keyword in the instruction.
        if _matches(prompt, TRIVIAL_KEYWORDS) or line_count < TRIVIAL_MAX_LINES:
            profile = ComplexityProfile(
                tier=ComplexityTier.TRIVIAL,
                requires_project_context=False,
                requires_deep_analysis=False,
                confidence=0.9
            )
        elif (_matches(prompt, SUBSTANTIAL_KEYWORDS)
              or line_count > SUBSTANTIAL_MIN_LINES
              or len(prompt) > SUBSTANTIAL_MIN_INSTRUCTION_CHARS):
            profile = ComplexityProfile(
                tier=ComplexityTier.SUBSTANTIAL,
                requires_project_context=True,
                requires_deep_analysis=True,
                confidence=0.85
            )
        else:
            profile = ComplexityProfile(
                tier=ComplexityTier.MODERATE,
                requires_project_context=True,
                requires_deep_analysis=False,
                confidence=0.8
            )

        logger.debug(f"Classified request ({line_count} lines) as {profile.tier.value}")
        return profile

    def matched_keywords(self, instruction: str) -> Dict[str, List[str]]:
        """Which keywords of each set appear in the instruction."""
        prompt = instruction.lower()
        return {
            ComplexityTier.TRIVIAL.value: [k for k in TRIVIAL_KEYWORDS if k in prompt],
            ComplexityTier.MODERATE.value: [k for k in MODERATE_KEYWORDS if k in prompt],
            ComplexityTier.SUBSTANTIAL.value: [k for k in SUBSTANTIAL_KEYWORDS if k in prompt],
        }


def _matches(prompt: str, keywords) -> bool:
    return any(keyword in prompt for keyword in keywords)
