# src/patchpilot/core/context_cache.py
"""
Project context cache.

Memoizes a lightweight summary of a project (top-level layout, framework
signatures, declared dependencies) per project root with a time-to-live.
Building a snapshot is best-effort: any filesystem or manifest problem
degrades to an empty section instead of raising.

Snapshot building is SYNC file I/O pushed to a worker thread; the cache
itself is an injected service, one instance per process.
"""
import asyncio
import json
import time
import tomllib
from pathlib import Path
from typing import Callable, Dict, Any, List, Optional, Tuple
import logging

from patchpilot.core.models import ProjectContextSnapshot

logger = logging.getLogger(__name__)


DEFAULT_TTL_SECONDS = 5 * 60

IGNORED_DIRS = {"node_modules", ".git", "dist", "out", "build", "__pycache__", ".venv", "venv"}
MAX_LISTED_FILES = 10
MAX_LISTED_DEPENDENCIES = 10

# manifest dependency name -> pattern description
JS_FRAMEWORK_SIGNATURES = {
    "react": "React project",
    "vue": "Vue project",
    "@angular/core": "Angular project",
    "next": "Next.js project",
    "express": "Express backend",
    "typescript": "TypeScript enabled",
}

PY_FRAMEWORK_SIGNATURES = {
    "django": "Django project",
    "flask": "Flask backend",
    "fastapi": "FastAPI backend",
    "pytest": "pytest test suite",
}


class SnapshotBuilder:
    """Builds one ProjectContextSnapshot from the filesystem. SYNC."""

    def build(self, project_root: str, captured_at: float) -> ProjectContextSnapshot:
        root = Path(project_root)
        js_deps, js_dev_deps = self._read_package_json(root)
        py_deps = self._read_python_manifest(root)

        return ProjectContextSnapshot(
            structure_summary=self._structure(root),
            detected_patterns=self._patterns(js_deps + js_dev_deps, py_deps),
            dependency_summary=self._dependencies(js_deps, py_deps),
            captured_at=captured_at,
            project_root=project_root
        )

    def _structure(self, root: Path) -> str:
        try:
            entries = sorted(root.iterdir(), key=lambda p: p.name)
            dirs = [e for e in entries if e.is_dir() and e.name not in IGNORED_DIRS]
            files = [e for e in entries if e.is_file()]
        except OSError as e:
            logger.debug(f"Could not list {root}: {e}")
            return ""

        if not dirs and not files:
            return ""

        lines = ["Project Structure:"]
        lines.extend(f"  {d.name}/" for d in dirs)
        lines.extend(f"  {f.name}" for f in files[:MAX_LISTED_FILES])
        return "\n".join(lines)

    def _patterns(self, js_deps: List[str], py_deps: List[str]) -> str:
        found = [desc for name, desc in JS_FRAMEWORK_SIGNATURES.items() if name in js_deps]
        found.extend(desc for name, desc in PY_FRAMEWORK_SIGNATURES.items() if name in py_deps)
        if not found:
            return ""
        return "Common Patterns:\n" + "\n".join(f"  - {p}" for p in found)

    def _dependencies(self, js_deps: List[str], py_deps: List[str]) -> str:
        names = (js_deps + py_deps)[:MAX_LISTED_DEPENDENCIES]
        if not names:
            return ""
        return "Key Dependencies:\n" + "\n".join(f"  - {d}" for d in names)

    def _read_package_json(self, root: Path) -> Tuple[List[str], List[str]]:
        """Return (dependencies, devDependencies) names from package.json."""
        path = root / "package.json"
        if not path.is_file():
            return [], []
        try:
            with open(path, 'r', encoding='utf-8') as f:
                pkg = json.load(f)
        except (OSError, ValueError) as e:
            logger.debug(f"Unreadable package.json in {root}: {e}")
            return [], []
        if not isinstance(pkg, dict):
            return [], []
        deps = pkg.get('dependencies') or {}
        dev_deps = pkg.get('devDependencies') or {}
        return (list(deps) if isinstance(deps, dict) else [],
                list(dev_deps) if isinstance(dev_deps, dict) else [])

    def _read_python_manifest(self, root: Path) -> List[str]:
        """Declared dependency names from pyproject.toml or requirements.txt."""
        names: List[str] = []

        pyproject = root / "pyproject.toml"
        if pyproject.is_file():
            try:
                with open(pyproject, 'rb') as f:
                    data = tomllib.load(f)
                for spec in data.get('project', {}).get('dependencies', []):
                    names.append(_requirement_name(spec))
            except (OSError, tomllib.TOMLDecodeError, AttributeError, TypeError) as e:
                logger.debug(f"Unreadable pyproject.toml in {root}: {e}")

        requirements = root / "requirements.txt"
        if requirements.is_file():
            try:
                with open(requirements, 'r', encoding='utf-8', errors='ignore') as f:
                    for line in f:
                        line = line.strip()
                        if line and not line.startswith(('#', '-')):
                            names.append(_requirement_name(line))
            except OSError as e:
                logger.debug(f"Unreadable requirements.txt in {root}: {e}")

        return [n for n in dict.fromkeys(names) if n]


def _requirement_name(spec: str) -> str:
    """'fastapi[all]>=0.100' -> 'fastapi'."""
    name = spec.strip()
    for sep in ("[", "=", "<", ">", "!", "~", ";", " "):
        name = name.split(sep, 1)[0]
    return name.lower()


class ContextCache:
    """TTL cache of project snapshots keyed by project root."""

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS,
                 clock: Callable[[], float] = time.time,
                 builder: Optional[SnapshotBuilder] = None):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.builder = builder or SnapshotBuilder()
        self._entries: Dict[str, ProjectContextSnapshot] = {}

    def peek(self, project_root: str) -> Optional[ProjectContextSnapshot]:
        """Return a live entry without building. Expired entries are a miss."""
        snapshot = self._entries.get(project_root)
        if snapshot is None:
            return None
        if self.clock() - snapshot.captured_at >= self.ttl_seconds:
            return None
        return snapshot

    async def get(self, project_root: str) -> ProjectContextSnapshot:
        snapshot, _ = await self.get_with_status(project_root)
        return snapshot

    async def get_with_status(self, project_root: str) -> Tuple[ProjectContextSnapshot, bool]:
        """Return (snapshot, cache_hit), building on a miss."""
        cached = self.peek(project_root)
        if cached is not None:
            logger.info(f"Using cached project context for {project_root}")
            return cached, True

        logger.info(f"Building project context for {project_root}")
        snapshot = await asyncio.to_thread(self._build, project_root)
        # Concurrent rebuilds may race here; snapshots are values, last one wins.
        self._entries[project_root] = snapshot
        return snapshot, False

    def _build(self, project_root: str) -> ProjectContextSnapshot:
        captured_at = self.clock()
        try:
            return self.builder.build(project_root, captured_at)
        except Exception as e:
            logger.warning(f"Project context build failed for {project_root}: {e}")
            return ProjectContextSnapshot("", "", "", captured_at, project_root)

    def invalidate(self, project_root: str) -> None:
        """Drop the entry for one project."""
        self._entries.pop(project_root, None)
        logger.info(f"Cache cleared for: {project_root}")

    def invalidate_all(self) -> None:
        self._entries.clear()
        logger.info("All project caches cleared")

    def stats(self) -> Dict[str, Any]:
        return {
            'total_entries': len(self._entries),
            'keys': list(self._entries.keys()),
            'ttl_seconds': self.ttl_seconds
        }
