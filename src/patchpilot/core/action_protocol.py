# src/patchpilot/core/action_protocol.py
"""
Side-effect marker protocol.

The model embeds self-closing markers in its output, e.g.

    <action:install_package packages="left-pad,lodash" dev="false" />

Each recognized marker shape is declared once in MARKER_SHAPES. Parsing scans
the shapes in that fixed order; malformed or unknown markers are skipped, and
every marker is stripped from the text before it is treated as code.
"""
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from patchpilot.core.models import (
    SideEffectKind,
    SideEffectRequest,
    InstallPackages,
    CreateFile,
    CreateFolder,
    RunScript,
    GitOperation,
    FormatFile,
)


@dataclass(frozen=True)
class MarkerShape:
    """One recognized marker: tag name, ordered attributes and a builder."""
    kind: SideEffectKind
    required: Tuple[str, ...]
    optional: Tuple[str, ...]
    build: Callable[[Dict[str, Optional[str]]], Optional[SideEffectRequest]]
    render: Callable[[SideEffectRequest], Dict[str, str]]

    @property
    def tag(self) -> str:
        return f"action:{self.kind.value}"

    def pattern(self) -> 're.Pattern[str]':
        # Attributes are positional: required ones first, then optional ones.
        parts = [rf"<{re.escape(self.tag)}"]
        for name in self.required:
            parts.append(rf'\s+{name}="([^"]+)"')
        for name in self.optional:
            parts.append(rf'(?:\s+{name}="([^"]*)")?')
        parts.append(r"\s*/>")
        return re.compile("".join(parts))


def _split_packages(raw: str) -> Tuple[str, ...]:
    return tuple(p.strip() for p in raw.split(",") if p.strip())


def _build_install(attrs: Dict[str, Optional[str]]) -> Optional[SideEffectRequest]:
    packages = _split_packages(attrs["packages"] or "")
    if not packages:
        return None
    return InstallPackages(packages=packages, dev=attrs.get("dev") == "true")


def _build_git(attrs: Dict[str, Optional[str]]) -> Optional[SideEffectRequest]:
    operation = (attrs["operation"] or "").strip().lower()
    if operation not in GIT_OPERATIONS:
        return None
    return GitOperation(operation=operation, message=attrs.get("message") or None)


GIT_OPERATIONS = ("add", "commit", "push")

MARKER_SHAPES: Tuple[MarkerShape, ...] = (
    MarkerShape(
        kind=SideEffectKind.INSTALL_PACKAGE,
        required=("packages",),
        optional=("dev",),
        build=_build_install,
        render=lambda r: {"packages": ",".join(r.packages), "dev": "true" if r.dev else "false"},
    ),
    MarkerShape(
        kind=SideEffectKind.CREATE_FILE,
        required=("path",),
        optional=(),
        build=lambda a: CreateFile(path=a["path"]),
        render=lambda r: {"path": r.path},
    ),
    MarkerShape(
        kind=SideEffectKind.CREATE_FOLDER,
        required=("path",),
        optional=(),
        build=lambda a: CreateFolder(path=a["path"]),
        render=lambda r: {"path": r.path},
    ),
    MarkerShape(
        kind=SideEffectKind.RUN_SCRIPT,
        required=("script",),
        optional=("args",),
        build=lambda a: RunScript(script=a["script"], args=a.get("args") or ""),
        render=lambda r: {"script": r.script, **({"args": r.args} if r.args else {})},
    ),
    MarkerShape(
        kind=SideEffectKind.FORMAT_CODE,
        required=("path",),
        optional=(),
        build=lambda a: FormatFile(path=a["path"]),
        render=lambda r: {"path": r.path},
    ),
    MarkerShape(
        kind=SideEffectKind.GIT_OPERATION,
        required=("operation",),
        optional=("message",),
        build=_build_git,
        render=lambda r: {"operation": r.operation, **({"message": r.message} if r.message else {})},
    ),
)

# Any marker-looking token, recognized or not. Quoted values may hold '<' or '>'.
_MARKER_BODY = r"""(?:"[^"]*"|'[^']*'|[^<>"'])*?"""
_MARKER_LINE_BODY = r"""(?:"[^"\n]*"|'[^'\n]*'|[^<>"'\n])*?"""
ANY_MARKER = re.compile(r"<action:[A-Za-z_][\w-]*\b" + _MARKER_BODY + r"/>")
_MARKER_LINE = re.compile(
    r"^[ \t]*<action:[A-Za-z_][\w-]*\b" + _MARKER_LINE_BODY + r"/>[ \t]*(?:\r?\n|$)", re.MULTILINE
)

_FENCED_RESPONSE = re.compile(r"^```[\w+-]*\n([\s\S]*?)\n```$")
_EXPLANATION_PATTERNS = (
    re.compile(r"^Here'?s?\s+(?:the\s+)?(?:fixed|improved|refactored|updated)\s+code(?=[\s:])[ \t:]*\n?", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^Here\s+is\s+(?:the\s+)?(?:fixed|improved)\s+code(?=[\s:])[ \t:]*\n?", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^(?:Fixed|Improved|Refactored)\s+code(?=[\s:])[ \t:]*\n?", re.IGNORECASE | re.MULTILINE),
)
_OPENING_FENCE = re.compile(r"^```[\w+-]*\s*\n?")
_CLOSING_FENCE = re.compile(r"\n?```\s*$")
_LEADING_BLANK_LINES = re.compile(r"\A(?:[ \t]*\r?\n)+")


class ActionProtocolParser:
    """Extract side-effect requests from raw model output."""

    def __init__(self, shapes: Tuple[MarkerShape, ...] = MARKER_SHAPES):
        self.shapes = shapes
        self._compiled = [(shape, shape.pattern()) for shape in shapes]

    def parse(self, text: str) -> List[SideEffectRequest]:
        """Ordered requests: shapes in registry order, matches in text order."""
        requests: List[SideEffectRequest] = []
        for shape, pattern in self._compiled:
            names = shape.required + shape.optional
            for match in pattern.finditer(text):
                attrs = dict(zip(names, match.groups()))
                request = shape.build(attrs)
                if request is not None:
                    requests.append(request)
        return requests

    def strip_markers(self, text: str) -> str:
        """Remove every marker; lines holding only a marker go entirely."""
        text = _MARKER_LINE.sub("", text)
        return ANY_MARKER.sub("", text)

    def shape_for(self, kind: SideEffectKind) -> Optional[MarkerShape]:
        for shape in self.shapes:
            if shape.kind == kind:
                return shape
        return None

    def render(self, request: SideEffectRequest) -> str:
        """Serialize a request back into marker form."""
        shape = self.shape_for(request.kind)
        if shape is None:
            raise ValueError(f"No marker shape for {request.kind.value}")
        attrs = shape.render(request)
        rendered = " ".join(f'{name}="{value}"' for name, value in attrs.items())
        return f"<{shape.tag} {rendered} />"


def clean_code_response(text: str, parser: Optional[ActionProtocolParser] = None) -> str:
    """Turn raw model output into plain code: no markers, fences or preambles."""
    parser = parser or ActionProtocolParser()
    cleaned = parser.strip_markers(text)

    match = _FENCED_RESPONSE.match(cleaned.strip())
    if match:
        cleaned = match.group(1)

    for pattern in _EXPLANATION_PATTERNS:
        cleaned = pattern.sub("", cleaned, count=1)

    cleaned = _OPENING_FENCE.sub("", cleaned.lstrip("\r\n"))
    cleaned = _CLOSING_FENCE.sub("", cleaned)
    # Keep the first line's indentation; only blank edges go.
    return _LEADING_BLANK_LINES.sub("", cleaned).rstrip()


def render_marker(request: SideEffectRequest) -> str:
    return ActionProtocolParser().render(request)
