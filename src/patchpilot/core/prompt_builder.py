# src/patchpilot/core/prompt_builder.py
"""
Prompt assembly.

Builds the (system, user) message pair for one model invocation from the
complexity profile, the request, an optional project snapshot, optional web
enrichment text and the previous attempt's verdict. Pure and SYNC.
"""

from dataclasses import dataclass
from pathlib import PurePath
from typing import Dict, Optional
import logging

from patchpilot.core.models import (
    ComplexityProfile,
    ComplexityTier,
    EditRequest,
    ProjectContextSnapshot,
    PromptMode,
    ValidationVerdict,
)

logger = logging.getLogger(__name__)


FULL_DOCUMENT_LINE_LIMIT = 500


BASE_RULES = """You are an expert AI coding assistant focused on precision and efficiency.

# Core Rules

1. **Output Format**: Return ONLY the fixed/improved code
   - NO markdown code fences (```)
   - NO explanations unless explicitly asked
   - NO "Here's the fix:" or similar text
   - Just clean, working code

2. **Code Quality**:
   - Maintain existing style and conventions
   - Preserve comments unless outdated
   - Keep user's naming unless asked to change
   - Follow language best practices

3. **Scope**: Only change what's requested
   - Don't add unrequested features
   - Don't refactor surrounding code
   - Focus on the specific instruction

4. **Safety**:
   - Add error handling where critical
   - Ensure type safety
   - Avoid breaking changes
   - Consider edge cases
"""

ACTION_SECTION = """
# Autonomous Actions

You can request automatic actions using special tags:

**Install Packages:**
<action:install_package packages="react,react-dom" />
<action:install_package packages="typescript" dev="true" />

**Create Files:**
<action:create_file path="src/components/Button.tsx" />

**Create Folders:**
<action:create_folder path="src/components" />

**Run Scripts:**
<action:run_script script="build" />
<action:run_script script="test" args="--watch" />

Tags are removed from your answer before the code is used.
Use them only when the task requires packages, files, or folders that don't exist.
"""

WEB_SECTION = """
# Web Search Access

You have access to up-to-date information from the web.
If web search results are provided in the user prompt, use them to:
- Get latest package versions and best practices
- Find solutions to errors
- Learn about new APIs and features
- Understand current documentation
"""

MODE_SECTIONS: Dict[PromptMode, str] = {
    PromptMode.INSTANT: """
# Mode: INSTANT (Quick Fix)

This is a simple task requiring a quick, focused change.
- Make the minimal necessary change
- No need for deep analysis
- Fast and precise
{context}
Provide the fixed code immediately.""",
    PromptMode.SMART: """
# Mode: SMART (Context-Aware)

This task benefits from project context understanding.
{context}
- Consider the project patterns
- Maintain consistency with codebase
- Use appropriate dependencies
- Follow project conventions

Provide the improved code.""",
    PromptMode.DEEP: """
# Mode: DEEP (Comprehensive Analysis)

This is a complex task requiring thorough understanding.
{context}
- Analyze the full context
- Consider architectural implications
- Plan before implementing
- Ensure robustness

Think through the solution, then provide the complete implementation.""",
}

DEEP_PROJECT_NOTE = "Note: Consider the full project context and dependencies when making changes."
CLOSING_INSTRUCTION = "Provide the fixed code (no explanations, no markdown):"
RETRY_HEADER = "PREVIOUS ATTEMPT HAD ERRORS:"


@dataclass(frozen=True)
class PromptPair:
    system: str
    user: str

    def to_messages(self):
        """Chat-completion message list."""
        return [
            {"role": "system", "content": self.system},
            {"role": "user", "content": self.user}
        ]


class PromptAssembler:
    """Assemble system and user prompts for one attempt."""

    def __init__(self, enrichment_enabled: bool = True,
                 full_document_line_limit: int = FULL_DOCUMENT_LINE_LIMIT):
        self.enrichment_enabled = enrichment_enabled
        self.full_document_line_limit = full_document_line_limit

    def build(self, profile: ComplexityProfile, request: EditRequest,
              snapshot: Optional[ProjectContextSnapshot] = None,
              enrichment_text: Optional[str] = None,
              prior_verdict: Optional[ValidationVerdict] = None) -> PromptPair:
        pair = PromptPair(
            system=self.system_prompt(profile, snapshot),
            user=self.user_prompt(profile, request, enrichment_text, prior_verdict)
        )
        logger.debug(f"Prompt sizes: system={len(pair.system)} user={len(pair.user)} chars")
        return pair

    def system_prompt(self, profile: ComplexityProfile,
                      snapshot: Optional[ProjectContextSnapshot] = None) -> str:
        parts = [BASE_RULES, ACTION_SECTION]
        if self.enrichment_enabled:
            parts.append(WEB_SECTION)
        parts.append(MODE_SECTIONS[profile.mode].format(context=self._context_block(profile, snapshot)))
        return "".join(parts)

    def _context_block(self, profile: ComplexityProfile,
                       snapshot: Optional[ProjectContextSnapshot]) -> str:
        # Trivial requests never carry project context.
        if profile.tier == ComplexityTier.TRIVIAL or snapshot is None or snapshot.is_empty:
            return ""
        return "\n## Project Context\n\n" + "\n".join(snapshot.sections()) + "\n"

    def user_prompt(self, profile: ComplexityProfile, request: EditRequest,
                    enrichment_text: Optional[str] = None,
                    prior_verdict: Optional[ValidationVerdict] = None) -> str:
        file_name = PurePath(request.document_id).name or request.document_id

        prompt = f"File: {file_name}\n\n"
        prompt += f"Task: {request.instruction}\n\n"

        if enrichment_text:
            prompt += f"{enrichment_text}\n\n"

        prompt += f"Selected Code:\n{request.selected_code}\n\n"

        if self._include_full_document(profile, request):
            prompt += f"Full File Context:\n{request.full_document}\n\n"

        if profile.tier == ComplexityTier.SUBSTANTIAL and request.project_root:
            prompt += f"{DEEP_PROJECT_NOTE}\n\n"

        prompt += CLOSING_INSTRUCTION

        if prior_verdict is not None and not prior_verdict.is_acceptable:
            prompt += f"\n\n{RETRY_HEADER}\n{prior_verdict.feedback_block()}"

        return prompt

    def _include_full_document(self, profile: ComplexityProfile, request: EditRequest) -> bool:
        if not profile.requires_project_context or request.selection_is_whole_document:
            return False
        return len(request.full_document.split("\n")) < self.full_document_line_limit
