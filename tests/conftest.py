"""Shared fixtures: scripted model client, fake command runner, temp projects."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import pytest

from patchpilot.api.client import Completion
from patchpilot.shared.process import CommandError


class FakeModelClient:
    """Replays a script of responses, one per complete() call.

    Each entry is a str (normal completion), a Completion, an exception
    instance (raised), or a float (seconds to sleep, to force a timeout).
    """

    def __init__(self, *script: Any) -> None:
        self.script = list(script)
        self.calls: list[tuple[str, str]] = []

    async def complete(self, system: str, user: str) -> Completion:
        self.calls.append((system, user))
        if not self.script:
            raise AssertionError("model called more often than scripted")
        entry = self.script.pop(0)
        if isinstance(entry, BaseException):
            raise entry
        if isinstance(entry, float):
            await asyncio.sleep(entry)
            return Completion(text="late", finish_reason="stop")
        if isinstance(entry, Completion):
            return entry
        return Completion(text=entry, finish_reason="stop", model="fake")


class RecordingRunner:
    """Stands in for run_async; records commands and optionally fails."""

    def __init__(self, fail_on: tuple[str, ...] = ()) -> None:
        self.commands: list[list[str]] = []
        self.fail_on = fail_on

    async def __call__(self, cmd, cwd=None, timeout=None) -> str:
        self.commands.append(list(cmd))
        if any(word in cmd for word in self.fail_on):
            raise CommandError(f"Command failed: {' '.join(cmd)}", returncode=1)
        return "ok"


@pytest.fixture
def runner() -> RecordingRunner:
    return RecordingRunner()


@pytest.fixture
def failing_install_runner() -> RecordingRunner:
    return RecordingRunner(fail_on=("install",))


@pytest.fixture
def js_project(tmp_path: Path) -> Path:
    (tmp_path / "src").mkdir()
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "src" / "index.ts").write_text("export const x = 1;\n", encoding="utf-8")
    (tmp_path / "package.json").write_text(
        json.dumps(
            {
                "name": "demo",
                "dependencies": {"react": "^18.0.0", "axios": "^1.0.0"},
                "devDependencies": {"typescript": "^5.0.0"},
            }
        ),
        encoding="utf-8",
    )
    return tmp_path


@pytest.fixture
def python_project(tmp_path: Path) -> Path:
    (tmp_path / "pyproject.toml").write_text(
        '[project]\nname = "demo"\ndependencies = ["fastapi[all]>=0.100", "httpx"]\n',
        encoding="utf-8",
    )
    (tmp_path / "requirements.txt").write_text("# pinned\npytest==8.0\n-e .\n", encoding="utf-8")
    return tmp_path


@pytest.fixture
def code_lines():
    def _make(count: int, template: str = "const value{i} = {i};") -> str:
        return "\n".join(template.format(i=i) for i in range(count))

    return _make


@pytest.fixture
def fake_client():
    """Factory: fake_client("first answer", APIError("down"), ...)."""
    return FakeModelClient
