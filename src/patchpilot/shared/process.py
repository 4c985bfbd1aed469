# src/patchpilot/shared/process.py
"""
Subprocess helpers used by side-effect execution.
Commands run asynchronously with captured output.
"""
from __future__ import annotations

import asyncio
from pathlib import Path
import logging

logger = logging.getLogger(__name__)


class CommandError(RuntimeError):
    """A command exited non-zero or could not be started."""

    def __init__(self, message: str, returncode: int | None = None,
                 stdout: str = "", stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


def _failure_message(cmd: list[str], returncode: int, stdout: str, stderr: str) -> str:
    return (
        f"Command failed: {' '.join(cmd)}\n"
        f"Exit code: {returncode}\n"
        f"STDOUT:\n{stdout}\n"
        f"STDERR:\n{stderr}"
    )


async def run_async(cmd: list[str], cwd: str | Path | None = None,
                    timeout: float | None = None) -> str:
    """Run command asynchronously, raising CommandError on failure or timeout."""
    cwd_str = str(cwd) if cwd else None
    logger.debug(f"Running {' '.join(cmd)} in {cwd_str or '.'}")

    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=cwd_str,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise CommandError(f"Could not start {cmd[0]}: {e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise CommandError(f"Command timed out after {timeout}s: {' '.join(cmd)}")

    out = stdout.decode(errors="replace")
    err = stderr.decode(errors="replace")

    if process.returncode != 0:
        raise CommandError(_failure_message(cmd, process.returncode, out, err),
                           process.returncode, out, err)

    return out.strip()
