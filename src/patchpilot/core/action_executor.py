# src/patchpilot/core/action_executor.py
"""
Side-effect executor.

Runs one SideEffectRequest at a time against the project, gated by a
PermissionPolicy. Per request:

    Requested -> PermissionChecked -> (Confirmed) -> Executing
              -> Succeeded | Failed | Denied

A denial or a failure is recorded as an outcome and never aborts the batch;
side effects are independent and best-effort.

ASYNC: installs, scripts, formatters and git run as subprocesses.
"""
import asyncio
import shlex
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional
import logging

from patchpilot.core.models import (
    SideEffectKind,
    SideEffectRequest,
    SideEffectOutcome,
    OutcomeStatus,
    InstallPackages,
    CreateFile,
    CreateFolder,
    ModifyFile,
    RunScript,
    GitOperation,
    FormatFile,
)
from patchpilot.shared.process import run_async, CommandError

logger = logging.getLogger(__name__)


ConfirmCallback = Callable[[SideEffectRequest], Awaitable[bool]]
CommandRunner = Callable[..., Awaitable[str]]

DEFAULT_COMMAND_TIMEOUT = 300.0
DEFAULT_COMMIT_MESSAGE = "Auto-commit by PatchPilot"


class ExecutionStage(str, Enum):
    """Stages a single request walks through."""
    REQUESTED = "requested"
    PERMISSION_CHECKED = "permission_checked"
    CONFIRMED = "confirmed"
    EXECUTING = "executing"


@dataclass(frozen=True)
class PermissionPolicy:
    """Capability map keyed by side-effect kind.

    Script execution and git operations are off unless explicitly enabled.
    """
    allow_package_install: bool = True
    allow_file_creation: bool = True
    allow_folder_creation: bool = True
    allow_file_modification: bool = True
    allow_script_execution: bool = False
    allow_git_operations: bool = False
    allow_formatting: bool = True
    require_confirmation: bool = False

    def allows(self, kind: SideEffectKind) -> bool:
        return self.capabilities().get(kind, False)

    def capabilities(self) -> Dict[SideEffectKind, bool]:
        return {
            SideEffectKind.INSTALL_PACKAGE: self.allow_package_install,
            SideEffectKind.CREATE_FILE: self.allow_file_creation,
            SideEffectKind.CREATE_FOLDER: self.allow_folder_creation,
            SideEffectKind.MODIFY_FILE: self.allow_file_modification,
            SideEffectKind.RUN_SCRIPT: self.allow_script_execution,
            SideEffectKind.GIT_OPERATION: self.allow_git_operations,
            SideEffectKind.FORMAT_CODE: self.allow_formatting,
        }


class ActionExecutionError(Exception):
    """A side effect could not be carried out."""
    pass


class ActionExecutor:
    """Execute side-effect requests for one project root."""

    def __init__(self, project_root: str, policy: Optional[PermissionPolicy] = None,
                 confirm: Optional[ConfirmCallback] = None,
                 runner: CommandRunner = run_async,
                 command_timeout: float = DEFAULT_COMMAND_TIMEOUT):
        self.project_root = Path(project_root).resolve()
        self.policy = policy or PermissionPolicy()
        self.confirm = confirm
        self.runner = runner
        self.command_timeout = command_timeout
        self.executed: List[SideEffectRequest] = []

    async def execute(self, request: SideEffectRequest, attempt: int = 0) -> SideEffectOutcome:
        """Walk one request through the state machine and report the outcome."""
        stage = ExecutionStage.REQUESTED
        logger.debug(f"{request.describe()}: {stage.value}")

        if not self.policy.allows(request.kind):
            logger.warning(f"Denied {request.describe()}: {request.kind.value} is disabled")
            return SideEffectOutcome(
                request=request,
                status=OutcomeStatus.DENIED,
                detail=f"Action {request.kind.value} is disabled in settings",
                attempt=attempt
            )
        stage = ExecutionStage.PERMISSION_CHECKED

        if self.policy.require_confirmation:
            if self.confirm is None:
                logger.warning(f"Denied {request.describe()}: confirmation required but unavailable")
                return SideEffectOutcome(
                    request=request,
                    status=OutcomeStatus.DENIED,
                    detail="Confirmation required but no confirmation handler is available",
                    attempt=attempt
                )
            if not await self.confirm(request):
                logger.info(f"User declined {request.describe()}")
                return SideEffectOutcome(
                    request=request,
                    status=OutcomeStatus.DENIED,
                    detail="Action cancelled by user",
                    attempt=attempt
                )
            stage = ExecutionStage.CONFIRMED

        stage = ExecutionStage.EXECUTING
        logger.debug(f"{request.describe()}: {stage.value}")
        try:
            detail = await self._dispatch(request)
        except (ActionExecutionError, CommandError, OSError, ValueError) as e:
            logger.warning(f"Action failed: {request.describe()}: {e}")
            return SideEffectOutcome(
                request=request,
                status=OutcomeStatus.FAILED,
                detail=f"Failed: {request.describe()}",
                error=str(e),
                attempt=attempt
            )

        self.executed.append(request)
        logger.info(f"Executed {request.describe()}")
        return SideEffectOutcome(
            request=request,
            status=OutcomeStatus.SUCCEEDED,
            detail=detail,
            attempt=attempt
        )

    async def execute_all(self, requests: List[SideEffectRequest], attempt: int = 0) -> List[SideEffectOutcome]:
        """Execute sequentially in the given order."""
        outcomes = []
        for request in requests:
            outcomes.append(await self.execute(request, attempt))
        return outcomes

    def summary(self) -> str:
        if not self.executed:
            return "No actions executed"
        lines = [f"Executed {len(self.executed)} action(s):"]
        lines.extend(f"{i}. {request.describe()}" for i, request in enumerate(self.executed, 1))
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Action implementations
    # ------------------------------------------------------------------

    async def _dispatch(self, request: SideEffectRequest) -> str:
        if isinstance(request, InstallPackages):
            return await self._install_packages(request)
        if isinstance(request, CreateFile):
            return await asyncio.to_thread(self._create_file, request)
        if isinstance(request, CreateFolder):
            return await asyncio.to_thread(self._create_folder, request)
        if isinstance(request, ModifyFile):
            return await asyncio.to_thread(self._modify_file, request)
        if isinstance(request, RunScript):
            return await self._run_script(request)
        if isinstance(request, GitOperation):
            return await self._git_operation(request)
        if isinstance(request, FormatFile):
            return await self._format_file(request)
        raise ActionExecutionError(f"Action type {request.kind.value} not supported")

    async def _run(self, cmd: List[str]) -> str:
        return await self.runner(cmd, cwd=self.project_root, timeout=self.command_timeout)

    def install_command(self, request: InstallPackages) -> List[str]:
        """Pick the installer from the project's manifests and lockfiles.

        pip has no dev-dependency flag, so `dev` is ignored for Python
        projects and the outcome detail says so.
        """
        root = self.project_root
        packages = list(request.packages)

        if (root / "pnpm-lock.yaml").exists():
            return ["pnpm", "add"] + (["-D"] if request.dev else []) + packages
        if (root / "yarn.lock").exists():
            return ["yarn", "add"] + (["--dev"] if request.dev else []) + packages
        if (root / "package.json").exists():
            return ["npm", "install"] + (["-D"] if request.dev else []) + packages
        if any((root / name).exists() for name in ("pyproject.toml", "requirements.txt", "setup.py")):
            return [sys.executable, "-m", "pip", "install"] + packages
        return ["npm", "install"] + (["-D"] if request.dev else []) + packages

    async def _install_packages(self, request: InstallPackages) -> str:
        cmd = self.install_command(request)
        output = await self._run(cmd)
        message = f"Successfully installed: {' '.join(request.packages)}"
        if request.dev and "pip" in cmd:
            message += " (pip has no dev dependencies; installed as regular packages)"
        return f"{message}\n{output}" if output else message

    def _create_file(self, request: CreateFile) -> str:
        target = self._resolve(request.path)
        if target.exists():
            raise ActionExecutionError(f"File already exists: {request.path}")
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, 'w', encoding='utf-8') as f:
            f.write(request.content)
        return f"Created file: {request.path}"

    def _create_folder(self, request: CreateFolder) -> str:
        target = self._resolve(request.path)
        target.mkdir(parents=True, exist_ok=True)
        return f"Created folder: {request.path}"

    def _modify_file(self, request: ModifyFile) -> str:
        target = self._resolve(request.path)
        if not target.is_file():
            raise ActionExecutionError(f"File not found: {request.path}")
        with open(target, 'w', encoding='utf-8') as f:
            f.write(request.content)
        return f"Modified file: {request.path}"

    async def _run_script(self, request: RunScript) -> str:
        cmd = ["npm", "run", request.script]
        if request.args:
            cmd += ["--"] + shlex.split(request.args)
        output = await self._run(cmd)
        return f"Script executed: {request.script}\n{output}".rstrip()

    async def _git_operation(self, request: GitOperation) -> str:
        if request.operation == "add":
            cmd = ["git", "add", "."]
        elif request.operation == "commit":
            cmd = ["git", "commit", "-m", request.message or DEFAULT_COMMIT_MESSAGE]
        elif request.operation == "push":
            cmd = ["git", "push"]
        else:
            raise ActionExecutionError(f"Unknown git operation: {request.operation}")
        output = await self._run(cmd)
        return f"Git {request.operation} completed\n{output}".rstrip()

    async def _format_file(self, request: FormatFile) -> str:
        target = self._resolve(request.path)
        if not target.is_file():
            raise ActionExecutionError(f"File not found: {request.path}")
        if target.suffix == ".py":
            cmd = [sys.executable, "-m", "black", "--quiet", str(target)]
        else:
            cmd = ["npx", "--no-install", "prettier", "--write", str(target)]
        await self._run(cmd)
        return f"Formatted: {request.path}"

    def _resolve(self, relative: str) -> Path:
        """Resolve a project-relative path, refusing anything outside the root."""
        target = (self.project_root / relative).resolve()
        if not target.is_relative_to(self.project_root):
            raise ActionExecutionError(f"Path escapes project root: {relative}")
        return target
