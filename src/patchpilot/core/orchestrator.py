# src/patchpilot/core/orchestrator.py
"""
Orchestrator - the request-to-patch control loop.

ASYNC: one run is a sequential chain of awaits (context build, enrichment,
model invocation, side-effect execution). Everything between those points is
SYNC and in-memory.

    Classifying -> BuildingContext (if needed) -> AssemblingPrompt
      -> InvokingModel -> ExecutingSideEffects -> Validating
         -> Succeeded | AssemblingPrompt (retry) | FailedExhausted
      -> FailedFatal (invocation failed on the last attempt)

Model failures and unacceptable verdicts draw on the same retry budget, so a
run makes at most max_retries + 1 model invocations.
"""

import asyncio
import time
from typing import Callable, Dict, List, Optional, Tuple
import logging

from patchpilot.api.client import Completion, ModelClient, ModelClientError
from patchpilot.config import AssistantConfig
from patchpilot.core.action_executor import ActionExecutor, ConfirmCallback, CommandRunner
from patchpilot.core.action_protocol import ActionProtocolParser, clean_code_response
from patchpilot.core.classifier import ComplexityClassifier
from patchpilot.core.code_validator import ValidationEngine
from patchpilot.core.context_cache import ContextCache
from patchpilot.core.enrichment import EnrichmentProvider, detect_search_request, format_search_report
from patchpilot.core.models import (
    CodeError,
    ComplexityProfile,
    ComplexityTier,
    EditRequest,
    FailureCategory,
    OrchestrationResult,
    OutcomeStatus,
    ProjectContextSnapshot,
    RunState,
    SideEffectOutcome,
    SideEffectRequest,
    ValidationVerdict,
)
from patchpilot.core.prompt_builder import PromptAssembler
from patchpilot.shared.process import run_async

logger = logging.getLogger(__name__)


ProgressCallback = Callable[[str], None]

TRUNCATION_ERROR = CodeError(
    line=0,
    column=0,
    message="Response was truncated before the code was complete",
    suggestion="Return the complete code, shorter if necessary, without omissions",
    code="truncated-output"
)

EMPTY_CODE_ERROR = CodeError(
    line=0,
    column=0,
    message="Response contained no code",
    suggestion="Return the fixed code itself",
    code="empty-code"
)


class Orchestrator:
    """Run one EditRequest through classification, generation and validation."""

    def __init__(self, client: ModelClient, config: Optional[AssistantConfig] = None,
                 cache: Optional[ContextCache] = None,
                 classifier: Optional[ComplexityClassifier] = None,
                 assembler: Optional[PromptAssembler] = None,
                 validator: Optional[ValidationEngine] = None,
                 parser: Optional[ActionProtocolParser] = None,
                 enrichment: Optional[EnrichmentProvider] = None,
                 confirm: Optional[ConfirmCallback] = None,
                 runner: CommandRunner = run_async):
        self.client = client
        self.config = config or AssistantConfig()
        self.cache = cache or ContextCache(ttl_seconds=self.config.cache_ttl_seconds)
        self.classifier = classifier or ComplexityClassifier()
        self.assembler = assembler or PromptAssembler(
            enrichment_enabled=self.config.enable_web_search and enrichment is not None
        )
        self.validator = validator or ValidationEngine()
        self.parser = parser or ActionProtocolParser()
        self.enrichment = enrichment
        self.confirm = confirm
        self.runner = runner

    async def run(self, request: EditRequest,
                  progress: Optional[ProgressCallback] = None) -> OrchestrationResult:
        started = time.monotonic()
        report = _Reporter(progress)

        # ---- Classifying ----
        report.state(RunState.CLASSIFYING)
        profile = self.classifier.classify(request.instruction, request.selected_code)
        logger.info(f"Classified request as {profile.tier.value} ({profile.mode.value} mode)")
        report(f"Mode: {profile.mode.value.upper()}")

        # ---- BuildingContext ----
        snapshot: Optional[ProjectContextSnapshot] = None
        cache_hit = False
        if self._needs_context(profile, request):
            report.state(RunState.BUILDING_CONTEXT)
            report("Loading project context...")
            snapshot, cache_hit = await self.cache.get_with_status(request.project_root)

        enrichment_text = await self._enrich(request, report)

        executor = self._executor(request)
        effect_outcomes: List[SideEffectOutcome] = []
        executed: Dict[SideEffectRequest, SideEffectOutcome] = {}

        verdict: Optional[ValidationVerdict] = None
        code: Optional[str] = None
        failure: Optional[Tuple[FailureCategory, str]] = None
        max_attempts = self.config.max_retries + 1

        for attempt in range(max_attempts):
            if attempt:
                report(f"Retrying ({attempt}/{self.config.max_retries})...")

            # ---- AssemblingPrompt ----
            report.state(RunState.ASSEMBLING_PROMPT)
            prompt = self.assembler.build(profile, request, snapshot, enrichment_text, verdict)

            # ---- InvokingModel ----
            report.state(RunState.INVOKING_MODEL)
            report("Generating code...")
            completion, failure = await self._invoke(prompt.system, prompt.user)
            if failure is not None:
                logger.warning(f"Attempt {attempt + 1}/{max_attempts} failed: {failure[1]}")
                continue

            # ---- ExecutingSideEffects ----
            requested = self.parser.parse(completion.text)
            if requested:
                report.state(RunState.EXECUTING_SIDE_EFFECTS)
                report(f"Executing {len(requested)} action(s)...")
                effect_outcomes.extend(
                    await self._execute_side_effects(executor, requested, executed, attempt)
                )

            # ---- Validating ----
            code = clean_code_response(completion.text, self.parser)
            verdict = self._judge(code, completion, request)
            if verdict is None or verdict.is_acceptable:
                return self._result(
                    succeeded=True,
                    state=RunState.SUCCEEDED,
                    profile=profile,
                    started=started,
                    code=code,
                    verdict=verdict,
                    cache_hit=cache_hit,
                    retry_count=attempt,
                    effect_outcomes=effect_outcomes,
                    enrichment_used=enrichment_text is not None
                )

            logger.warning(f"Attempt {attempt + 1}/{max_attempts} rejected: {verdict.error_summary()}")
            report(f"Found {len(verdict.errors)} error(s)")

        retry_count = max_attempts - 1

        if failure is not None:
            category, reason = failure
            logger.error(f"Run failed after {max_attempts} attempt(s): {reason}")
            return self._result(
                succeeded=False,
                state=RunState.FAILED_FATAL,
                profile=profile,
                started=started,
                verdict=verdict,
                cache_hit=cache_hit,
                retry_count=retry_count,
                effect_outcomes=effect_outcomes,
                enrichment_used=enrichment_text is not None,
                failure_reason=reason,
                failure_category=category
            )

        logger.error(f"Validation failed after {max_attempts} attempt(s): {verdict.error_summary()}")
        return self._result(
            succeeded=False,
            state=RunState.FAILED_EXHAUSTED,
            profile=profile,
            started=started,
            code=code,
            verdict=verdict,
            cache_hit=cache_hit,
            retry_count=retry_count,
            effect_outcomes=effect_outcomes,
            enrichment_used=enrichment_text is not None,
            failure_reason=f"Validation failed after {max_attempts} attempt(s): {verdict.error_summary()}",
            failure_category=FailureCategory.VALIDATION_EXHAUSTED
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _needs_context(self, profile: ComplexityProfile, request: EditRequest) -> bool:
        return (profile.requires_project_context
                and profile.tier != ComplexityTier.TRIVIAL
                and bool(request.project_root))

    async def _enrich(self, request: EditRequest, report: "_Reporter") -> Optional[str]:
        """Run one web lookup when the instruction asks for outside information."""
        if not self.config.enable_web_search or self.enrichment is None:
            return None

        search = detect_search_request(request.instruction)
        if search is None:
            return None

        report(f"Searching the web: {search.query}")
        try:
            result = await self.enrichment.search(search)
        except Exception as e:
            logger.warning(f"Web search failed, continuing without it: {e}")
            return None

        if not result.has_hits:
            logger.info(f"Web search returned nothing for {search.query!r}")
            return None
        logger.info(f"Web search found {len(result.hits)} result(s)")
        return format_search_report(result, search)

    async def _invoke(self, system: str, user: str) -> Tuple[Optional[Completion], Optional[Tuple[FailureCategory, str]]]:
        """Call the model once. Returns (completion, None) or (None, failure)."""
        timeout = self.config.model_timeout_seconds
        try:
            completion = await asyncio.wait_for(self.client.complete(system, user), timeout)
        except asyncio.TimeoutError:
            return None, (FailureCategory.TIMED_OUT, f"Model did not respond within {timeout}s")
        except ModelClientError as e:
            return None, (FailureCategory.MODEL_UNREACHABLE, f"Model invocation failed: {e}")
        except Exception as e:
            # Any client error counts as a failed attempt.
            logger.exception(f"Unexpected error from model client: {e}")
            return None, (FailureCategory.MODEL_UNREACHABLE, f"Model invocation failed: {e}")

        if completion.is_empty:
            return None, (FailureCategory.EMPTY_RESPONSE, "Model returned an empty response")
        return completion, None

    def _executor(self, request: EditRequest) -> Optional[ActionExecutor]:
        if not request.project_root:
            return None
        return ActionExecutor(
            request.project_root,
            policy=self.config.permission_policy(),
            confirm=self.confirm,
            runner=self.runner
        )

    async def _execute_side_effects(self, executor: Optional[ActionExecutor],
                                    requested: List[SideEffectRequest],
                                    executed: Dict[SideEffectRequest, SideEffectOutcome],
                                    attempt: int) -> List[SideEffectOutcome]:
        outcomes = []
        for effect in requested:
            if executor is None:
                outcomes.append(SideEffectOutcome(
                    request=effect,
                    status=OutcomeStatus.FAILED,
                    detail=f"Failed: {effect.describe()}",
                    error="No project root available",
                    attempt=attempt
                ))
                continue

            if self.config.dedupe_side_effects and effect in executed:
                logger.info(f"Skipping already executed action: {effect.describe()}")
                continue

            outcome = await executor.execute(effect, attempt)
            if outcome.succeeded:
                executed[effect] = outcome
            outcomes.append(outcome)
        return outcomes

    def _judge(self, code: str, completion: Completion,
               request: EditRequest) -> Optional[ValidationVerdict]:
        verdict: Optional[ValidationVerdict] = None
        if self.config.enable_validation:
            verdict = self.validator.validate(code, request.document_id)

        # Truncated or code-less answers are rejected even with validation off.
        if completion.truncated:
            verdict = (verdict or ValidationVerdict(is_acceptable=True)).with_error(TRUNCATION_ERROR)
        if not code.strip():
            verdict = (verdict or ValidationVerdict(is_acceptable=True)).with_error(EMPTY_CODE_ERROR)
        return verdict

    def _result(self, succeeded: bool, state: RunState, profile: ComplexityProfile,
                started: float, code: Optional[str] = None,
                verdict: Optional[ValidationVerdict] = None, cache_hit: bool = False,
                retry_count: int = 0, effect_outcomes: Optional[List[SideEffectOutcome]] = None,
                enrichment_used: bool = False, failure_reason: Optional[str] = None,
                failure_category: Optional[FailureCategory] = None) -> OrchestrationResult:
        return OrchestrationResult(
            succeeded=succeeded,
            profile=profile,
            final_state=state,
            final_code=code,
            cache_hit=cache_hit,
            verdict=verdict,
            retry_count=retry_count,
            effect_outcomes=tuple(effect_outcomes or ()),
            elapsed_seconds=time.monotonic() - started,
            failure_reason=failure_reason,
            failure_category=failure_category,
            validated=self.config.enable_validation,
            enrichment_used=enrichment_used
        )


class _Reporter:
    """Forwards status strings to the optional progress callback."""

    def __init__(self, progress: Optional[ProgressCallback]):
        self.progress = progress

    def __call__(self, message: str) -> None:
        if self.progress is not None:
            self.progress(message)

    def state(self, state: RunState) -> None:
        logger.debug(f"State -> {state.value}")
