# src/patchpilot/core/code_validator.py
"""
Code validation.

SYNC, deterministic, no I/O. Dispatches on the file extension:

- JavaScript/TypeScript: real parse with tree-sitter, plus quality smells
- Python: line heuristics
- everything else: bracket balance and whitespace hygiene

Errors block acceptance; warnings and suggestions only lower the score.
"""

import re
from pathlib import PurePath
from typing import List, Optional, Tuple
import logging

from tree_sitter_languages import get_parser

from patchpilot.core.models import CodeError, CodeWarning, ValidationVerdict

logger = logging.getLogger(__name__)


MAX_LINE_LENGTH = 200

# extension -> tree-sitter grammar
SCRIPT_GRAMMARS = {
    ".ts": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".tsx": "tsx",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
}

PYTHON_BLOCK_KEYWORDS = ("if", "elif", "else", "for", "while", "def", "class",
                         "try", "except", "finally", "with")
_BLOCK_HEADER = re.compile(
    r"^\s*(?:async\s+)?(" + "|".join(PYTHON_BLOCK_KEYWORDS) + r")(?=[\s:]|$)"
)
_CONDITION_HEADER = re.compile(r"^\s*(if|elif|while)\s")

BRACKET_PAIRS = (("{", "}"), ("[", "]"), ("(", ")"))

_CONSOLE_LOG = re.compile(r"console\.log\(")
_TODO = re.compile(r"\b(TODO|FIXME)\b")
_DEBUGGER = re.compile(r"\bdebugger\b")


def _line_comment_start(line: str) -> Optional[int]:
    index = line.find("//")
    return index if index >= 0 else None


# ============================================================================
# JAVASCRIPT / TYPESCRIPT
# ============================================================================

class ScriptChecker:
    """tree-sitter backed checks for JS/TS sources."""

    def syntax_errors(self, code: str, grammar: str) -> List[CodeError]:
        """ERROR and missing nodes as CodeErrors. Raises if the parser is unavailable."""
        parser = get_parser(grammar)
        source = code.encode("utf-8")
        tree = parser.parse(source)

        errors: List[CodeError] = []
        if not tree.root_node.has_error:
            return errors

        stack = [tree.root_node]
        while stack:
            node = stack.pop()
            line, column = node.start_point[0] + 1, node.start_point[1] + 1
            if node.is_missing:
                errors.append(CodeError(
                    line=line,
                    column=column,
                    message=f"Missing '{node.type}'",
                    suggestion=f"Insert '{node.type}'",
                    code="missing-token"
                ))
                continue
            if node.type == "ERROR":
                snippet = source[node.start_byte:node.end_byte].decode("utf-8", errors="replace")
                snippet = snippet.strip().splitlines()[0][:40] if snippet.strip() else ""
                message = f"Syntax error near '{snippet}'" if snippet else "Syntax error"
                errors.append(CodeError(line=line, column=column, message=message, code="syntax-error"))
                # Children of an ERROR node repeat the same fault.
                continue
            if node.has_error:
                stack.extend(reversed(node.children))

        errors.sort(key=lambda e: (e.line, e.column))
        return errors

    def quality_warnings(self, code: str) -> List[CodeWarning]:
        warnings = []
        for index, line in enumerate(code.split("\n"), 1):
            comment_at = _line_comment_start(line)
            code_part = line if comment_at is None else line[:comment_at]

            if _CONSOLE_LOG.search(code_part):
                warnings.append(CodeWarning(index, "console.log statement found", "best-practice"))
            if _TODO.search(line):
                warnings.append(CodeWarning(index, "TODO/FIXME comment found", "style"))
            if _DEBUGGER.search(code_part):
                warnings.append(CodeWarning(index, "debugger statement found", "best-practice"))
            if len(line) > MAX_LINE_LENGTH:
                warnings.append(CodeWarning(index, f"Line too long ({len(line)} characters)", "style"))
        return warnings

    def suggestions(self, code: str) -> List[str]:
        suggestions = []
        if ".then(" in code and ".catch(" in code:
            suggestions.append("Consider using async/await instead of .then()/.catch()")
        if re.search(r"\bvar\s", code):
            suggestions.append("Use const or let instead of var")
        if re.search(r"\bawait\b", code) and not re.search(r"\btry\b", code):
            suggestions.append("Consider wrapping await calls in try/catch")
        return suggestions


# ============================================================================
# PYTHON
# ============================================================================

def _lone_assignment(header: str) -> int:
    """Index of a bare '=' at bracket depth 0 in a condition header, or -1."""
    depth = 0
    in_string: Optional[str] = None
    for i, ch in enumerate(header):
        if in_string:
            if ch == in_string:
                in_string = None
            continue
        if ch in "\"'":
            in_string = ch
        elif ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
        elif ch == "=" and depth == 0:
            before = header[i - 1] if i > 0 else ""
            after = header[i + 1] if i + 1 < len(header) else ""
            if before not in "=!<>:" and after != "=":
                return i
    return -1


def python_findings(code: str) -> Tuple[List[CodeError], List[CodeWarning]]:
    errors: List[CodeError] = []
    warnings: List[CodeWarning] = []

    for index, line in enumerate(code.split("\n"), 1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue

        if _CONDITION_HEADER.match(line):
            header = stripped.split("#", 1)[0].rstrip()
            if header.endswith(":"):
                header = header[:-1]
            position = _lone_assignment(header)
            if position >= 0:
                errors.append(CodeError(
                    line=index,
                    column=len(line) - len(line.lstrip()) + position + 1,
                    message="Use '==' for comparison, not '='",
                    suggestion="Replace '=' with '=='",
                    code="assignment-in-condition"
                ))

        block = _BLOCK_HEADER.match(line)
        if block and not stripped.split("#", 1)[0].rstrip().endswith(":"):
            errors.append(CodeError(
                line=index,
                column=len(line.rstrip()) + 1,
                message=f"Missing colon after '{block.group(1)}' statement",
                suggestion="Add ':' at the end of the line",
                code="missing-colon"
            ))

        if stripped.count("(") != stripped.count(")"):
            warnings.append(CodeWarning(index, "Mismatched parentheses", "syntax"))

    return errors, warnings


# ============================================================================
# GENERIC
# ============================================================================

def generic_findings(code: str) -> Tuple[List[CodeError], List[CodeWarning]]:
    errors: List[CodeError] = []
    warnings: List[CodeWarning] = []

    for opening, closing in BRACKET_PAIRS:
        if code.count(opening) != code.count(closing):
            errors.append(CodeError(
                line=0,
                column=0,
                message=f"Unbalanced '{opening}{closing}' brackets",
                suggestion=f"Check for missing closing {closing}",
                code="unbalanced-brackets"
            ))

    for index, line in enumerate(code.split("\n"), 1):
        if len(line) > MAX_LINE_LENGTH:
            warnings.append(CodeWarning(index, f"Line too long ({len(line)} characters)", "style"))
        if line != line.rstrip():
            warnings.append(CodeWarning(index, "Trailing whitespace", "style"))

    return errors, warnings


# ============================================================================
# ENGINE
# ============================================================================

class ValidationEngine:
    """Judge one candidate code string. Pure function of (code, file_id)."""

    def __init__(self, script_checker: Optional[ScriptChecker] = None):
        self.script_checker = script_checker or ScriptChecker()

    def validate(self, code: str, file_id: str) -> ValidationVerdict:
        extension = PurePath(file_id).suffix.lower()

        if extension in SCRIPT_GRAMMARS:
            verdict = self._validate_script(code, SCRIPT_GRAMMARS[extension])
        elif extension == ".py":
            errors, warnings = python_findings(code)
            verdict = ValidationVerdict.from_findings(errors, warnings)
        else:
            errors, warnings = generic_findings(code)
            verdict = ValidationVerdict.from_findings(errors, warnings)

        logger.debug(f"Validated {file_id}: {verdict.error_summary()}, score {verdict.quality_score}")
        return verdict

    def _validate_script(self, code: str, grammar: str) -> ValidationVerdict:
        try:
            errors = self.script_checker.syntax_errors(code, grammar)
        except Exception as e:
            logger.warning(f"{grammar} parser unavailable, using basic checks: {e}")
            errors, warnings = generic_findings(code)
            return ValidationVerdict.from_findings(errors, warnings)

        warnings = self.script_checker.quality_warnings(code)
        suggestions = [] if errors else self.script_checker.suggestions(code)
        return ValidationVerdict.from_findings(errors, warnings, suggestions)


def format_verdict(verdict: ValidationVerdict) -> str:
    """Human-readable rendering of a verdict."""
    if verdict.is_acceptable and not verdict.warnings:
        return f"Code is valid! (Quality score: {verdict.quality_score}/100)"

    lines = [f"Quality Score: {verdict.quality_score}/100", ""]

    if verdict.errors:
        lines.append(f"Errors ({len(verdict.errors)}):")
        for error in verdict.errors:
            lines.append(f"  Line {error.line}:{error.column} - {error.message}")
            if error.suggestion:
                lines.append(f"    Suggestion: {error.suggestion}")
        lines.append("")

    if verdict.warnings:
        lines.append(f"Warnings ({len(verdict.warnings)}):")
        for warning in verdict.warnings:
            lines.append(f"  Line {warning.line} - {warning.message}")
        lines.append("")

    if verdict.suggestions:
        lines.append("Suggestions:")
        lines.extend(f"  - {s}" for s in verdict.suggestions)

    return "\n".join(lines).rstrip()
