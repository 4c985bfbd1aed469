# src/patchpilot/core/enrichment.py
"""
Web enrichment hooks.

The search backend itself is an external collaborator. This module decides
*when* an instruction warrants a lookup, describes the lookup, and renders
the provider's findings into prompt text.
"""
import re
from dataclasses import dataclass, field
from typing import List, Optional, Protocol


SEARCH_TRIGGERS = ("search", "find", "look up", "latest", "current", "up-to-date",
                   "documentation", "docs")
VERSION_TRIGGERS = ("latest version", "upgrade", "update to", "migrate")

_FILLER = re.compile(r"please|can you|could you|search for|find|look up", re.IGNORECASE)
_QUOTED = re.compile(r'"([^"]+)"')
MAX_QUERY_CHARS = 100


@dataclass(frozen=True)
class SearchRequest:
    query: str
    kind: str  # general | error | documentation | package | github
    max_results: int = 5


@dataclass(frozen=True)
class SearchHit:
    title: str
    url: str
    snippet: str = ""
    source: str = "direct"


@dataclass
class SearchReport:
    success: bool
    hits: List[SearchHit] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def has_hits(self) -> bool:
        return self.success and bool(self.hits)


class EnrichmentProvider(Protocol):
    """Anything that can answer a SearchRequest."""

    async def search(self, request: SearchRequest) -> SearchReport:
        ...


def detect_search_request(instruction: str, error_message: Optional[str] = None,
                          package_name: Optional[str] = None) -> Optional[SearchRequest]:
    """Decide whether the instruction asks for outside information."""
    prompt = instruction.lower()

    if any(trigger in prompt for trigger in SEARCH_TRIGGERS):
        if "error" in prompt or error_message:
            return SearchRequest(error_message or extract_query(instruction), "error", 3)
        if "github" in prompt or "example" in prompt:
            return SearchRequest(extract_query(instruction), "github", 3)
        if "docs" in prompt or "documentation" in prompt:
            return SearchRequest(package_name or extract_query(instruction), "documentation", 5)
        return SearchRequest(extract_query(instruction), "general", 5)

    if any(trigger in prompt for trigger in VERSION_TRIGGERS):
        return SearchRequest(extract_query(instruction) + " latest version", "package", 3)

    if error_message and len(error_message) > 10:
        return SearchRequest(error_message, "error", 3)

    return None


def extract_query(instruction: str) -> str:
    """Strip command filler; prefer a quoted phrase when present."""
    query = _FILLER.sub("", instruction).strip()
    quoted = _QUOTED.search(query)
    if quoted:
        return quoted.group(1)
    return query[:MAX_QUERY_CHARS]


def format_search_report(report: SearchReport, request: SearchRequest) -> str:
    """Render provider findings as prompt text."""
    if not report.has_hits:
        return f'No web search results found for: "{request.query}"'

    lines = [
        "=== Web Search Results ===",
        "",
        f'Query: "{request.query}"',
        f"Type: {request.kind}",
        f"Found: {len(report.hits)} result(s)",
        "",
    ]
    for index, hit in enumerate(report.hits, 1):
        lines.append(f"Result {index}:")
        lines.append(f"Title: {hit.title}")
        lines.append(f"Source: {hit.source}")
        lines.append(f"URL: {hit.url}")
        if hit.snippet:
            lines.append(f"Summary: {hit.snippet}")
        lines.append("")
    lines.append("Use this information to provide an accurate, up-to-date response.")
    return "\n".join(lines)
