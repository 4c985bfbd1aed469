"""Unit tests for the subprocess helper."""

from __future__ import annotations

import sys

import pytest

from patchpilot.shared.process import CommandError, run_async


@pytest.mark.asyncio
async def test_run_async_returns_stripped_stdout(tmp_path):
    out = await run_async([sys.executable, "-c", "print('  hello  ')"], cwd=tmp_path)

    assert out == "hello"


@pytest.mark.asyncio
async def test_run_async_runs_in_cwd(tmp_path):
    out = await run_async([sys.executable, "-c", "import os; print(os.getcwd())"], cwd=tmp_path)

    assert out == str(tmp_path.resolve())


@pytest.mark.asyncio
async def test_nonzero_exit_raises_with_output():
    script = "import sys; print('out'); print('boom', file=sys.stderr); sys.exit(3)"
    with pytest.raises(CommandError) as excinfo:
        await run_async([sys.executable, "-c", script])

    err = excinfo.value
    assert err.returncode == 3
    assert "out" in err.stdout
    assert "boom" in err.stderr
    assert "Exit code: 3" in str(err)


@pytest.mark.asyncio
async def test_missing_executable_raises_command_error():
    with pytest.raises(CommandError, match="Could not start"):
        await run_async(["patchpilot-no-such-binary-xyz"])


@pytest.mark.asyncio
async def test_timeout_kills_process():
    with pytest.raises(CommandError, match="timed out"):
        await run_async([sys.executable, "-c", "import time; time.sleep(5)"], timeout=0.2)
