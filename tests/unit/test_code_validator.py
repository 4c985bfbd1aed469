"""Unit tests for ValidationEngine dispatch, heuristics and scoring."""

from __future__ import annotations

import pytest

from patchpilot.core.code_validator import ScriptChecker, ValidationEngine, format_verdict
from patchpilot.core.models import CodeError, CodeWarning, ValidationVerdict, compute_quality_score

VALID_TS = """const x: number = 1;
export function greet(name: string): string {
  return `hello ${name}`;
}
"""


class BrokenParser(ScriptChecker):
    def syntax_errors(self, code, grammar):
        raise OSError("grammar not available")


@pytest.fixture
def engine() -> ValidationEngine:
    return ValidationEngine()


# ---------------------------------------------------------------------------
# JavaScript / TypeScript
# ---------------------------------------------------------------------------


def test_valid_typescript_is_clean(engine):
    verdict = engine.validate(VALID_TS, "src/greet.ts")

    assert verdict.is_acceptable
    assert verdict.errors == ()
    assert verdict.warnings == ()
    assert verdict.quality_score == 100


@pytest.mark.parametrize("file_id", ["a.js", "a.jsx", "a.mjs", "a.cjs", "a.tsx", "A.TS"])
def test_syntax_error_is_detected_for_every_script_extension(engine, file_id):
    verdict = engine.validate("function f() {\n  return 1;\n", file_id)

    assert not verdict.is_acceptable
    assert all(error.line >= 1 and error.column >= 1 for error in verdict.errors)


def test_quality_smells_are_warnings(engine):
    code = 'console.log("x");\n// console.log("commented")\n// TODO: tidy\ndebugger;\n'

    verdict = engine.validate(code, "app.js")

    assert verdict.is_acceptable
    messages = [(w.line, w.message) for w in verdict.warnings]
    assert (1, "console.log statement found") in messages
    assert not any(line == 2 and "console.log" in message for line, message in messages)
    assert (3, "TODO/FIXME comment found") in messages
    assert (4, "debugger statement found") in messages
    assert verdict.quality_score == 100 - 2 * len(verdict.warnings)


def test_long_line_warning(engine):
    verdict = engine.validate('const s = "' + "a" * 200 + '";\n', "long.js")

    assert [w.category for w in verdict.warnings] == ["style"]


def test_suggestions_only_for_error_free_code(engine):
    code = "var x = 1;\nfetch(u).then(r => r).catch(e => e);\n"

    verdict = engine.validate(code, "s.js")

    assert "Use const or let instead of var" in verdict.suggestions
    assert "Consider using async/await instead of .then()/.catch()" in verdict.suggestions

    broken = engine.validate("var x = (;\n", "s.js")
    assert not broken.is_acceptable
    assert broken.suggestions == ()


def test_parser_failure_falls_back_to_basic_checks():
    engine = ValidationEngine(script_checker=BrokenParser())

    assert engine.validate("const a = [1, 2];\n", "x.ts").is_acceptable
    verdict = engine.validate("const a = [1, 2;\n", "x.ts")
    assert not verdict.is_acceptable
    assert verdict.errors[0].suggestion == "Check for missing closing ]"


# ---------------------------------------------------------------------------
# Python
# ---------------------------------------------------------------------------


def test_assignment_in_condition(engine):
    verdict = engine.validate("if x = 5:\n    pass\n", "m.py")

    assert not verdict.is_acceptable
    error = verdict.errors[0]
    assert (error.line, error.column) == (1, 6)
    assert error.message == "Use '==' for comparison, not '='"
    assert error.suggestion == "Replace '=' with '=='"


@pytest.mark.parametrize(
    "header",
    [
        "if x == 5:",
        "if a <= b:",
        "elif a >= b:",
        "while a != b:",
        "while (n := step()):",
        "if f(a=1):",
        "if s == '=':",
    ],
)
def test_comparisons_are_not_flagged(engine, header):
    assert engine.validate(f"{header}\n    pass\n", "m.py").is_acceptable


def test_missing_colon_on_block_header(engine):
    verdict = engine.validate("def foo()\n    pass\nelse\n", "m.py")

    assert [e.line for e in verdict.errors] == [1, 3]
    assert verdict.errors[0].message == "Missing colon after 'def' statement"
    assert verdict.errors[0].suggestion == "Add ':' at the end of the line"


def test_keyword_prefixes_are_not_block_headers(engine):
    code = "class_name = 1\nformat_value = 2\nelse_branch = 3\nasync def run():\n    pass\nelse:  # trailing\n    pass\n"

    assert engine.validate(code, "m.py").errors == ()


def test_paren_mismatch_is_only_a_warning(engine):
    verdict = engine.validate("total = sum((1, 2)\n# if x = 1\n\n", "m.py")

    assert verdict.is_acceptable
    assert [(w.line, w.category) for w in verdict.warnings] == [(1, "syntax")]
    assert verdict.quality_score == 98


# ---------------------------------------------------------------------------
# Generic
# ---------------------------------------------------------------------------


def test_unbalanced_brackets_one_error_per_kind(engine):
    verdict = engine.validate("a { [ (", "notes.txt")

    assert len(verdict.errors) == 3
    assert {e.suggestion for e in verdict.errors} == {
        "Check for missing closing }",
        "Check for missing closing ]",
        "Check for missing closing )",
    }
    assert all(e.line == 0 for e in verdict.errors)
    assert verdict.quality_score == 70


def test_generic_whitespace_warnings(engine):
    verdict = engine.validate("key: value  \n" + "x" * 201, "config.yml")

    assert verdict.is_acceptable
    assert [(w.line, w.message) for w in verdict.warnings] == [
        (1, "Trailing whitespace"),
        (2, "Line too long (201 characters)"),
    ]


# ---------------------------------------------------------------------------
# Scoring and rendering
# ---------------------------------------------------------------------------


def test_score_is_clamped():
    assert compute_quality_score(0, 0) == 100
    assert compute_quality_score(2, 3) == 74
    assert compute_quality_score(20, 0) == 0


def test_format_verdict_lists_everything():
    verdict = ValidationVerdict.from_findings(
        [CodeError(2, 4, "Syntax error", suggestion="Check the brace")],
        [CodeWarning(5, "debugger statement found", "best-practice")],
        ["Use const or let instead of var"],
    )

    text = format_verdict(verdict)

    assert text.startswith("Quality Score: 88/100")
    assert "Errors (1):\n  Line 2:4 - Syntax error\n    Suggestion: Check the brace" in text
    assert "Warnings (1):\n  Line 5 - debugger statement found" in text
    assert text.endswith("Suggestions:\n  - Use const or let instead of var")


def test_format_verdict_for_clean_code():
    assert format_verdict(ValidationVerdict.from_findings([], [])) == "Code is valid! (Quality score: 100/100)"


@pytest.mark.parametrize("file_id", ["a.ts", "a.py", "a.txt"])
def test_validation_is_deterministic(engine, file_id):
    code = "if x = 1:\n  console.log(y)\n{ (\n"

    assert engine.validate(code, file_id) == engine.validate(code, file_id)
