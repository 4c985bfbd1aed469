# src/patchpilot/core/models.py
"""
Data models for the PatchPilot orchestration pipeline.

All sync - no async needed for data structures. These records describe the
input of one orchestration run, the intermediate judgments made along the
way (complexity profile, project snapshot, validation verdict, side effects)
and the terminal result handed back to the caller.

Designed for JSON serialization with to_dict() methods.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Any, Tuple
from enum import Enum


# ============================================================================
# ENUMS
# ============================================================================

class ComplexityTier(str, Enum):
    """Coarse complexity bucket of an edit request."""
    TRIVIAL = "trivial"
    MODERATE = "moderate"
    SUBSTANTIAL = "substantial"


class PromptMode(str, Enum):
    """Prompt profile used for a tier."""
    INSTANT = "instant"
    SMART = "smart"
    DEEP = "deep"


class SideEffectKind(str, Enum):
    """Kind of side effect the model may request."""
    INSTALL_PACKAGE = "install_package"
    CREATE_FILE = "create_file"
    CREATE_FOLDER = "create_folder"
    MODIFY_FILE = "modify_file"
    RUN_SCRIPT = "run_script"
    GIT_OPERATION = "git_operation"
    FORMAT_CODE = "format_code"


class OutcomeStatus(str, Enum):
    """Terminal status of one executed side effect."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    DENIED = "denied"


class RunState(str, Enum):
    """States of the orchestration control loop."""
    CLASSIFYING = "classifying"
    BUILDING_CONTEXT = "building_context"
    ASSEMBLING_PROMPT = "assembling_prompt"
    INVOKING_MODEL = "invoking_model"
    EXECUTING_SIDE_EFFECTS = "executing_side_effects"
    VALIDATING = "validating"
    SUCCEEDED = "succeeded"
    FAILED_EXHAUSTED = "failed_exhausted"
    FAILED_FATAL = "failed_fatal"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.SUCCEEDED, RunState.FAILED_EXHAUSTED, RunState.FAILED_FATAL)


class FailureCategory(str, Enum):
    """Why a run did not succeed."""
    VALIDATION_EXHAUSTED = "validation_exhausted"  # model kept producing broken code
    MODEL_UNREACHABLE = "model_unreachable"        # transport/provider failure
    TIMED_OUT = "timed_out"
    EMPTY_RESPONSE = "empty_response"


_TIER_MODES = {
    ComplexityTier.TRIVIAL: PromptMode.INSTANT,
    ComplexityTier.MODERATE: PromptMode.SMART,
    ComplexityTier.SUBSTANTIAL: PromptMode.DEEP,
}


# ============================================================================
# REQUEST AND CLASSIFICATION
# ============================================================================

@dataclass(frozen=True)
class EditRequest:
    """Immutable input to one orchestration run."""
    instruction: str
    selected_code: str
    full_document: str = ""
    document_id: str = "untitled.txt"  # file name or path, drives validator dispatch
    project_root: Optional[str] = None

    @property
    def selection_is_whole_document(self) -> bool:
        return not self.full_document or self.selected_code == self.full_document

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'instruction': self.instruction,
            'selected_code': self.selected_code,
            'full_document': self.full_document,
            'document_id': self.document_id,
            'project_root': self.project_root
        }


@dataclass(frozen=True)
class ComplexityProfile:
    """Derived once per request; advisory confidence only."""
    tier: ComplexityTier
    requires_project_context: bool
    requires_deep_analysis: bool
    confidence: float

    @property
    def mode(self) -> PromptMode:
        return _TIER_MODES[self.tier]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'tier': self.tier.value,
            'mode': self.mode.value,
            'requires_project_context': self.requires_project_context,
            'requires_deep_analysis': self.requires_deep_analysis,
            'confidence': self.confidence
        }


@dataclass(frozen=True)
class ProjectContextSnapshot:
    """Lightweight project summary. Superseded, never mutated."""
    structure_summary: str
    detected_patterns: str
    dependency_summary: str
    captured_at: float
    project_root: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.structure_summary or self.detected_patterns or self.dependency_summary)

    def sections(self) -> List[str]:
        """Non-empty sections in prompt order."""
        return [s for s in (self.structure_summary, self.detected_patterns, self.dependency_summary) if s]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'structure_summary': self.structure_summary,
            'detected_patterns': self.detected_patterns,
            'dependency_summary': self.dependency_summary,
            'captured_at': self.captured_at,
            'project_root': self.project_root
        }


# ============================================================================
# VALIDATION
# ============================================================================

@dataclass(frozen=True)
class CodeError:
    """An issue that means the code would not parse or run."""
    line: int
    column: int
    message: str
    suggestion: Optional[str] = None
    code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'line': self.line,
            'column': self.column,
            'message': self.message,
            'suggestion': self.suggestion,
            'code': self.code
        }


@dataclass(frozen=True)
class CodeWarning:
    """Advisory finding. Never blocks acceptance."""
    line: int
    message: str
    category: str

    def to_dict(self) -> Dict[str, Any]:
        return {'line': self.line, 'message': self.message, 'category': self.category}


def compute_quality_score(error_count: int, warning_count: int) -> int:
    """100 minus 10 per error and 2 per warning, clamped to 0..100."""
    score = 100 - error_count * 10 - warning_count * 2
    return max(0, min(100, score))


@dataclass(frozen=True)
class ValidationVerdict:
    """Structured judgment of one candidate code string."""
    is_acceptable: bool
    errors: Tuple[CodeError, ...] = ()
    warnings: Tuple[CodeWarning, ...] = ()
    quality_score: int = 100
    suggestions: Tuple[str, ...] = ()

    @classmethod
    def from_findings(cls, errors: List[CodeError], warnings: List[CodeWarning],
                      suggestions: Optional[List[str]] = None) -> 'ValidationVerdict':
        return cls(
            is_acceptable=not errors,
            errors=tuple(errors),
            warnings=tuple(warnings),
            quality_score=compute_quality_score(len(errors), len(warnings)),
            suggestions=tuple(suggestions or ())
        )

    def with_error(self, error: CodeError) -> 'ValidationVerdict':
        """Return a new verdict carrying one more error."""
        errors = self.errors + (error,)
        return replace(
            self,
            is_acceptable=False,
            errors=errors,
            quality_score=compute_quality_score(len(errors), len(self.warnings))
        )

    def error_summary(self) -> str:
        if self.is_acceptable:
            return "No errors found"
        return f"{len(self.errors)} error(s), {len(self.warnings)} warning(s)"

    def feedback_block(self) -> str:
        """Error listing fed back to the model on retry."""
        if self.is_acceptable:
            return ""

        lines = ["The generated code has the following errors:", ""]
        for index, error in enumerate(self.errors, 1):
            lines.append(f"{index}. Line {error.line}: {error.message}")
            if error.suggestion:
                lines.append(f"   Suggestion: {error.suggestion}")
        lines.append("")
        lines.append("Please fix these errors and regenerate the code.")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'is_acceptable': self.is_acceptable,
            'errors': [e.to_dict() for e in self.errors],
            'warnings': [w.to_dict() for w in self.warnings],
            'quality_score': self.quality_score,
            'suggestions': list(self.suggestions)
        }


# ============================================================================
# SIDE EFFECTS
# ============================================================================

@dataclass(frozen=True)
class SideEffectRequest:
    """Base of the side-effect variants. Carries no result until executed."""

    kind = None  # set by each variant

    def describe(self) -> str:
        raise NotImplementedError

    def attributes(self) -> Dict[str, Any]:
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:
        data = {'kind': self.kind.value, 'description': self.describe()}
        data.update(self.attributes())
        return data


@dataclass(frozen=True)
class InstallPackages(SideEffectRequest):
    packages: Tuple[str, ...]
    dev: bool = False

    kind = SideEffectKind.INSTALL_PACKAGE

    def describe(self) -> str:
        suffix = " (dev)" if self.dev else ""
        return f"Install packages: {', '.join(self.packages)}{suffix}"

    def attributes(self) -> Dict[str, Any]:
        return {'packages': list(self.packages), 'dev': self.dev}


@dataclass(frozen=True)
class CreateFile(SideEffectRequest):
    path: str
    content: str = ""

    kind = SideEffectKind.CREATE_FILE

    def describe(self) -> str:
        return f"Create file: {self.path}"

    def attributes(self) -> Dict[str, Any]:
        return {'path': self.path}


@dataclass(frozen=True)
class CreateFolder(SideEffectRequest):
    path: str

    kind = SideEffectKind.CREATE_FOLDER

    def describe(self) -> str:
        return f"Create folder: {self.path}"

    def attributes(self) -> Dict[str, Any]:
        return {'path': self.path}


@dataclass(frozen=True)
class ModifyFile(SideEffectRequest):
    path: str
    content: str = ""

    kind = SideEffectKind.MODIFY_FILE

    def describe(self) -> str:
        return f"Modify file: {self.path}"

    def attributes(self) -> Dict[str, Any]:
        return {'path': self.path}


@dataclass(frozen=True)
class RunScript(SideEffectRequest):
    script: str
    args: str = ""

    kind = SideEffectKind.RUN_SCRIPT

    def describe(self) -> str:
        return f"Run script: {self.script}" + (f" {self.args}" if self.args else "")

    def attributes(self) -> Dict[str, Any]:
        return {'script': self.script, 'args': self.args}


@dataclass(frozen=True)
class GitOperation(SideEffectRequest):
    operation: str  # add | commit | push
    message: Optional[str] = None

    kind = SideEffectKind.GIT_OPERATION

    def describe(self) -> str:
        return f"Git {self.operation}"

    def attributes(self) -> Dict[str, Any]:
        return {'operation': self.operation, 'message': self.message}


@dataclass(frozen=True)
class FormatFile(SideEffectRequest):
    path: str

    kind = SideEffectKind.FORMAT_CODE

    def describe(self) -> str:
        return f"Format file: {self.path}"

    def attributes(self) -> Dict[str, Any]:
        return {'path': self.path}


@dataclass(frozen=True)
class SideEffectOutcome:
    """Result of executing one side effect. One per executed request."""
    request: SideEffectRequest
    status: OutcomeStatus
    detail: str
    error: Optional[str] = None
    attempt: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == OutcomeStatus.SUCCEEDED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'request': self.request.to_dict(),
            'status': self.status.value,
            'detail': self.detail,
            'error': self.error,
            'attempt': self.attempt
        }


# ============================================================================
# RESULT
# ============================================================================

@dataclass(frozen=True)
class OrchestrationResult:
    """Terminal artifact of one run. Immutable once produced."""
    succeeded: bool
    profile: ComplexityProfile
    final_state: RunState
    final_code: Optional[str] = None
    cache_hit: bool = False
    verdict: Optional[ValidationVerdict] = None
    retry_count: int = 0
    effect_outcomes: Tuple[SideEffectOutcome, ...] = ()
    elapsed_seconds: float = 0.0
    failure_reason: Optional[str] = None
    failure_category: Optional[FailureCategory] = None
    validated: bool = False
    enrichment_used: bool = False

    def changes_made(self) -> Dict[str, List[str]]:
        """Group successful side effects by what they changed."""
        changes: Dict[str, List[str]] = {}
        for outcome in self.effect_outcomes:
            if not outcome.succeeded:
                continue
            request = outcome.request
            if isinstance(request, InstallPackages):
                changes.setdefault('packages_installed', []).extend(request.packages)
            elif isinstance(request, CreateFile):
                changes.setdefault('files_created', []).append(request.path)
            elif isinstance(request, CreateFolder):
                changes.setdefault('folders_created', []).append(request.path)
            elif isinstance(request, ModifyFile):
                changes.setdefault('files_modified', []).append(request.path)
            else:
                changes.setdefault('other_actions', []).append(request.describe())
        return changes

    def summary(self) -> str:
        """One-paragraph human summary of the run."""
        parts = [
            f"tier={self.profile.tier.value}",
            f"mode={self.profile.mode.value}",
            f"cache={'hit' if self.cache_hit else 'miss'}",
            f"retries={self.retry_count}",
        ]
        if self.verdict is not None:
            parts.append(f"score={self.verdict.quality_score}/100")
        if not self.validated:
            parts.append("validation=off")

        succeeded = sum(1 for o in self.effect_outcomes if o.succeeded)
        denied = sum(1 for o in self.effect_outcomes if o.status == OutcomeStatus.DENIED)
        failed = sum(1 for o in self.effect_outcomes if o.status == OutcomeStatus.FAILED)
        if self.effect_outcomes:
            parts.append(f"side_effects={succeeded} ok/{denied} denied/{failed} failed")

        head = "Succeeded" if self.succeeded else f"Failed ({self.final_state.value})"
        text = f"{head}: " + ", ".join(parts) + f" in {self.elapsed_seconds:.2f}s"
        if self.failure_reason:
            text += f"\nReason: {self.failure_reason}"
        return text

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'succeeded': self.succeeded,
            'final_state': self.final_state.value,
            'final_code': self.final_code,
            'profile': self.profile.to_dict(),
            'cache_hit': self.cache_hit,
            'verdict': self.verdict.to_dict() if self.verdict else None,
            'retry_count': self.retry_count,
            'effect_outcomes': [o.to_dict() for o in self.effect_outcomes],
            'elapsed_seconds': self.elapsed_seconds,
            'failure_reason': self.failure_reason,
            'failure_category': self.failure_category.value if self.failure_category else None,
            'validated': self.validated,
            'enrichment_used': self.enrichment_used,
            'changes_made': self.changes_made()
        }
