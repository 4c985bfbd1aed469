"""Unit tests for the Orchestrator control loop.

Covers:
- end-to-end scenarios: trivial fix, retry after a syntax error,
  exhausted retries, denied side effect
- invocation failures, timeouts, empty and truncated completions
- side-effect re-execution vs. dedupe, context caching, enrichment
"""

from __future__ import annotations

import pytest

from patchpilot.api.client import APIError, Completion
from patchpilot.config import AssistantConfig
from patchpilot.core.context_cache import ContextCache
from patchpilot.core.enrichment import SearchHit, SearchReport
from patchpilot.core.models import (
    ComplexityTier,
    CreateFolder,
    EditRequest,
    FailureCategory,
    InstallPackages,
    OutcomeStatus,
    RunState,
)
from patchpilot.core.orchestrator import Orchestrator
from patchpilot.core.prompt_builder import RETRY_HEADER

BROKEN_JS = "function load() {\n  return fetch(url).then((r) => r.json();\n}"
VALID_JS = (
    "async function load() {\n"
    "  try {\n"
    "    const r = await fetch(url);\n"
    "    return r.json();\n"
    "  } catch (e) {\n"
    "    throw e;\n"
    "  }\n"
    "}"
)

THEN_CHAIN = "\n".join(
    [
        "function load(url) {",
        "  return fetch(url)",
        "    .then((response) => {",
        "      if (!response.ok) {",
        "        throw new Error('bad status');",
        "      }",
        "      return response.json();",
        "    })",
        "    .then((data) => {",
        "      return data.items;",
        "    })",
        "    .catch((error) => {",
        "      throw error;",
        "    });",
        "}",
    ]
)


def _request(instruction: str = "refactor to async style", code: str = THEN_CHAIN, **overrides) -> EditRequest:
    values = dict(
        instruction=instruction,
        selected_code=code,
        full_document=code,
        document_id="src/api.js",
        project_root=None,
    )
    values.update(overrides)
    return EditRequest(**values)


class FakeSearch:
    def __init__(self, report=None, error=None):
        self.report = report
        self.error = error
        self.requests = []

    async def search(self, request):
        self.requests.append(request)
        if self.error:
            raise self.error
        return self.report


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_trivial_fix_succeeds_on_first_attempt(fake_client, js_project):
    client = fake_client('const name = "john";')
    orchestrator = Orchestrator(client, AssistantConfig())
    request = _request("fix typo", 'const name = "jhon";', document_id="name.ts", project_root=str(js_project))

    result = await orchestrator.run(request)

    assert result.succeeded
    assert result.final_state is RunState.SUCCEEDED
    assert result.profile.tier is ComplexityTier.TRIVIAL
    assert result.final_code == 'const name = "john";'
    assert result.retry_count == 0
    assert result.cache_hit is False
    assert result.verdict.is_acceptable
    assert len(client.calls) == 1
    assert orchestrator.cache.stats()["total_entries"] == 0


@pytest.mark.asyncio
async def test_syntax_error_is_fed_back_and_retried(fake_client):
    client = fake_client(BROKEN_JS, VALID_JS)

    result = await Orchestrator(client, AssistantConfig()).run(_request())

    assert result.succeeded
    assert result.profile.tier is ComplexityTier.MODERATE
    assert result.retry_count == 1
    assert result.final_code == VALID_JS
    first_user, second_user = client.calls[0][1], client.calls[1][1]
    assert RETRY_HEADER not in first_user
    assert RETRY_HEADER in second_user
    assert "1. Line " in second_user


@pytest.mark.asyncio
async def test_retries_exhausted_keeps_candidate_code(fake_client):
    client = fake_client(BROKEN_JS, BROKEN_JS, BROKEN_JS)

    result = await Orchestrator(client, AssistantConfig(max_retries=2)).run(_request())

    assert not result.succeeded
    assert result.final_state is RunState.FAILED_EXHAUSTED
    assert result.failure_category is FailureCategory.VALIDATION_EXHAUSTED
    assert result.retry_count == 2
    assert result.final_code == BROKEN_JS
    assert result.verdict.errors
    assert "Validation failed after 3 attempt(s)" in result.failure_reason
    assert len(client.calls) == 3


@pytest.mark.asyncio
async def test_denied_install_is_recorded_and_marker_stripped(fake_client, js_project, runner):
    output = '<action:install_package packages="left-pad" dev="false" />\n' + VALID_JS
    client = fake_client(output)
    config = AssistantConfig(allow_package_install=False)

    result = await Orchestrator(client, config, runner=runner).run(_request(project_root=str(js_project)))

    assert result.succeeded
    assert "<action:" not in result.final_code
    assert result.final_code == VALID_JS
    assert len(result.effect_outcomes) == 1
    outcome = result.effect_outcomes[0]
    assert outcome.request == InstallPackages(packages=("left-pad",), dev=False)
    assert outcome.status is OutcomeStatus.DENIED
    assert runner.commands == []
    assert result.changes_made() == {}


# ---------------------------------------------------------------------------
# Invocation failures
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_transient_failure_uses_the_shared_budget(fake_client):
    client = fake_client(APIError("502 from upstream", 502), VALID_JS)

    result = await Orchestrator(client, AssistantConfig(max_retries=1)).run(_request())

    assert result.succeeded
    assert result.retry_count == 1


@pytest.mark.asyncio
async def test_unreachable_model_is_fatal_without_code(fake_client):
    client = fake_client(APIError("down"), APIError("down"), APIError("down"))

    result = await Orchestrator(client, AssistantConfig(max_retries=2)).run(_request())

    assert result.final_state is RunState.FAILED_FATAL
    assert result.failure_category is FailureCategory.MODEL_UNREACHABLE
    assert result.final_code is None
    assert result.retry_count == 2
    assert "down" in result.failure_reason


@pytest.mark.asyncio
async def test_unexpected_client_exception_is_a_failed_attempt(fake_client):
    client = fake_client(RuntimeError("socket closed"), RuntimeError("socket closed"))

    result = await Orchestrator(client, AssistantConfig(max_retries=1)).run(_request())

    assert result.final_state is RunState.FAILED_FATAL
    assert result.failure_category is FailureCategory.MODEL_UNREACHABLE
    assert result.retry_count == 1
    assert "socket closed" in result.failure_reason
    assert len(client.calls) == 2


@pytest.mark.asyncio
async def test_unexpected_client_exception_can_recover(fake_client):
    client = fake_client(RuntimeError("socket closed"), VALID_JS)

    result = await Orchestrator(client, AssistantConfig(max_retries=1)).run(_request())

    assert result.succeeded
    assert result.retry_count == 1


@pytest.mark.asyncio
async def test_mixed_failures_end_on_the_last_attempt(fake_client):
    client = fake_client(BROKEN_JS, APIError("down"))

    result = await Orchestrator(client, AssistantConfig(max_retries=1)).run(_request())

    assert result.final_state is RunState.FAILED_FATAL
    assert result.final_code is None


@pytest.mark.asyncio
async def test_timeout_consumes_one_retry(fake_client):
    client = fake_client(1.0, VALID_JS)
    config = AssistantConfig(max_retries=1, model_timeout_seconds=0.05)

    result = await Orchestrator(client, config).run(_request())

    assert result.succeeded
    assert result.retry_count == 1


@pytest.mark.asyncio
async def test_timeout_on_last_attempt_is_reported(fake_client):
    client = fake_client(1.0)
    config = AssistantConfig(max_retries=0, model_timeout_seconds=0.05)

    result = await Orchestrator(client, config).run(_request())

    assert result.final_state is RunState.FAILED_FATAL
    assert result.failure_category is FailureCategory.TIMED_OUT


@pytest.mark.asyncio
async def test_empty_completion_is_an_invocation_failure(fake_client):
    client = fake_client("   \n")

    result = await Orchestrator(client, AssistantConfig(max_retries=0)).run(_request())

    assert result.failure_category is FailureCategory.EMPTY_RESPONSE
    assert result.final_code is None


@pytest.mark.asyncio
async def test_truncated_completion_drives_a_retry(fake_client):
    client = fake_client(Completion(text=VALID_JS, finish_reason="length"), VALID_JS)

    result = await Orchestrator(client, AssistantConfig()).run(_request())

    assert result.succeeded
    assert result.retry_count == 1
    assert "truncated" in client.calls[1][1]


@pytest.mark.asyncio
async def test_marker_only_answer_is_rejected(fake_client):
    client = fake_client('<action:create_folder path="lib" />', VALID_JS)

    result = await Orchestrator(client, AssistantConfig()).run(_request())

    assert result.succeeded
    assert result.retry_count == 1
    assert result.effect_outcomes[0].error == "No project root available"


@pytest.mark.parametrize("max_retries", range(0, 6))
@pytest.mark.asyncio
async def test_invocations_never_exceed_budget(fake_client, max_retries):
    client = fake_client(*([BROKEN_JS] * 10))

    result = await Orchestrator(client, AssistantConfig(max_retries=max_retries)).run(_request())

    assert result.retry_count == max_retries
    assert len(client.calls) == max_retries + 1


# ---------------------------------------------------------------------------
# Validation switch, side effects, context and enrichment
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_validation_disabled_accepts_first_answer(fake_client):
    client = fake_client(BROKEN_JS)

    result = await Orchestrator(client, AssistantConfig(enable_validation=False)).run(_request())

    assert result.succeeded
    assert result.verdict is None
    assert result.validated is False
    assert result.final_code == BROKEN_JS


@pytest.mark.asyncio
async def test_side_effects_rerun_on_every_attempt(fake_client, js_project):
    marker = '<action:create_folder path="lib" />\n'
    client = fake_client(marker + BROKEN_JS, marker + VALID_JS)

    result = await Orchestrator(client, AssistantConfig()).run(_request(project_root=str(js_project)))

    assert [(o.request, o.attempt) for o in result.effect_outcomes] == [
        (CreateFolder(path="lib"), 0),
        (CreateFolder(path="lib"), 1),
    ]
    assert all(o.succeeded for o in result.effect_outcomes)


@pytest.mark.asyncio
async def test_dedupe_skips_already_succeeded_side_effects(fake_client, js_project):
    marker = '<action:create_folder path="lib" />\n'
    client = fake_client(marker + BROKEN_JS, marker + VALID_JS)
    config = AssistantConfig(dedupe_side_effects=True)

    result = await Orchestrator(client, config).run(_request(project_root=str(js_project)))

    assert result.succeeded
    assert len(result.effect_outcomes) == 1
    assert result.changes_made() == {"folders_created": ["lib"]}


@pytest.mark.asyncio
async def test_project_context_is_cached_across_runs(fake_client, js_project):
    cache = ContextCache()
    client = fake_client(VALID_JS, VALID_JS)
    orchestrator = Orchestrator(client, AssistantConfig(), cache=cache)

    first = await orchestrator.run(_request(project_root=str(js_project)))
    second = await orchestrator.run(_request(project_root=str(js_project)))

    assert first.cache_hit is False
    assert second.cache_hit is True
    assert "Project Structure:" in client.calls[0][0]
    assert "React project" in client.calls[1][0]


@pytest.mark.asyncio
async def test_enrichment_results_reach_the_prompt(fake_client):
    provider = FakeSearch(SearchReport(True, [SearchHit("Zod docs", "https://zod.dev", "Schema validation")]))
    client = fake_client(VALID_JS)

    result = await Orchestrator(client, AssistantConfig(), enrichment=provider).run(
        _request("look up the latest docs for zod and refactor")
    )

    assert result.enrichment_used
    assert provider.requests[0].kind == "documentation"
    system, user = client.calls[0]
    assert "# Web Search Access" in system
    assert "=== Web Search Results ===" in user
    assert "https://zod.dev" in user


@pytest.mark.asyncio
async def test_enrichment_failure_is_ignored(fake_client):
    provider = FakeSearch(error=RuntimeError("search offline"))
    client = fake_client(VALID_JS)

    result = await Orchestrator(client, AssistantConfig(), enrichment=provider).run(
        _request("search for a fix and refactor")
    )

    assert result.succeeded
    assert result.enrichment_used is False


@pytest.mark.asyncio
async def test_enrichment_disabled_by_config(fake_client):
    provider = FakeSearch(SearchReport(True, [SearchHit("t", "u")]))
    client = fake_client(VALID_JS)

    await Orchestrator(client, AssistantConfig(enable_web_search=False), enrichment=provider).run(
        _request("search for a fix and refactor")
    )

    assert provider.requests == []
    assert "# Web Search Access" not in client.calls[0][0]


@pytest.mark.asyncio
async def test_progress_messages(fake_client):
    messages = []
    client = fake_client(BROKEN_JS, VALID_JS)

    await Orchestrator(client, AssistantConfig()).run(_request(), progress=messages.append)

    assert messages[0] == "Mode: SMART"
    assert "Generating code..." in messages
    assert any(m.startswith("Found ") and m.endswith(" error(s)") for m in messages)
    assert "Retrying (1/2)..." in messages
