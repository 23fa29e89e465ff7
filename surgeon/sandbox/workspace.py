"""
Workspace Lifecycle Manager
===========================
Creates, populates and destroys the isolated per-issue working directory.

Philosophy:
    - One fresh directory per attempt, never reused
      (<WORKSPACE_ROOT>/ws-<issue>-<epoch ms>-<random>)
    - Shallow, single-branch clone only
    - Every external process has a timeout; processes run in worker threads
      so the event loop keeps serving other issues
    - destroy() is idempotent and never raises - a leaked directory must
      never mask the pipeline's real outcome

BOUNDARY RULES:
    - The manager never calls the LLM and never talks to the hosting API.
    - All file primitives are scoped to the repository directory; a path
      that escapes it raises UnsafePathError.

Error contract:
    create            → ResourceError
    clone             → RetrievalError (not retried)
    install           → never raises (warnings in workspace.logs)
    read_file         → RetrievalError
    write_file        → UnsafePathError / ResourceError
    validate          → ValidationError if the command cannot finish;
                        a non-zero exit is a ValidationResult, not an error
    destroy           → never raises
"""
import asyncio
import json
import logging
import os
import shutil
import subprocess
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, List, Optional, Sequence, Tuple

from surgeon.core.config import (
    CLONE_TIMEOUT,
    GITHUB_TOKEN,
    INSTALL_TIMEOUT,
    VALIDATE_TIMEOUT,
    VALIDATION_OUTPUT_LIMIT,
    WORKSPACE_ROOT,
)
from surgeon.core.errors import ResourceError, RetrievalError, UnsafePathError, ValidationError
from surgeon.utils.ignore_rules import is_ignored_dir
from surgeon.utils.path_utils import resolve_within, to_relative

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Manifest → install command (ordered by priority, first match wins)
# ---------------------------------------------------------------------------
INSTALL_SIGNALS: List[Tuple[str, List[str]]] = [
    ("package-lock.json", ["npm", "install", "--legacy-peer-deps"]),
    ("yarn.lock",         ["yarn", "install", "--non-interactive"]),
    ("pnpm-lock.yaml",    ["pnpm", "install", "--frozen-lockfile"]),
    ("requirements.txt",  ["pip", "install", "-r", "requirements.txt"]),
    ("pyproject.toml",    ["pip", "install", "."]),
]

PYTHON_MARKERS = ("pyproject.toml", "setup.py", "requirements.txt", "pytest.ini", "tox.ini")


# ---------------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------------
@dataclass
class Workspace:
    """Handle to one ephemeral workspace directory."""
    workspace_id: str
    root: str
    repo_dir: str
    logs: List[str] = field(default_factory=list)
    destroyed: bool = False

    def log(self, line: str) -> None:
        self.logs.append(line)

    def drain_logs(self) -> List[str]:
        """Return the lines logged so far and start a fresh buffer."""
        lines, self.logs = self.logs, []
        return lines


@dataclass
class ValidationResult:
    """Outcome of the advisory tests/build run."""
    success: bool
    output: str = ""
    command: Optional[str] = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def get_repo_name(repo_url: str) -> str:
    """Extract repository name from URL."""
    name = repo_url.rstrip("/").split("/")[-1]
    if name.endswith(".git"):
        name = name[:-4]
    return name or "repo"


def to_clone_url(repo_url: str) -> str:
    """Normalise a repository URL to its .git clone form."""
    url = repo_url.strip().rstrip("/")
    if url.endswith(".git"):
        url = url[:-4]
    return url + ".git"


def _with_token(clone_url: str, token: str) -> str:
    if token and clone_url.startswith("https://github.com/"):
        return clone_url.replace("https://", f"https://x-access-token:{token}@", 1)
    return clone_url


def _redact(text: str, token: str) -> str:
    return text.replace(token, "***") if token else text


def _tail(text: str, limit: int) -> str:
    return text if len(text) <= limit else "..." + text[-limit:]


def _new_workspace_id() -> str:
    """Time token plus random suffix: unique even for same-millisecond calls."""
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


async def _run(
    cmd: Sequence[str],
    cwd: Optional[str] = None,
    timeout: float = 60,
    env: Optional[dict] = None,
) -> subprocess.CompletedProcess:
    """Run a command in a worker thread. Raises TimeoutExpired / OSError."""
    return await asyncio.to_thread(
        subprocess.run,
        list(cmd),
        cwd=cwd,
        capture_output=True,
        text=True,
        timeout=timeout,
        env=env,
    )


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------
class WorkspaceManager:
    """
    Lifecycle of per-issue workspaces on the host filesystem.

    Parameters
    ----------
    base_dir : str
        Parent directory for all workspaces.
    github_token : str
        Injected into https://github.com clone URLs for private repositories.
    """

    def __init__(
        self,
        base_dir: str = WORKSPACE_ROOT,
        github_token: str = GITHUB_TOKEN or "",
        clone_timeout: float = CLONE_TIMEOUT,
        install_timeout: float = INSTALL_TIMEOUT,
        validate_timeout: float = VALIDATE_TIMEOUT,
        output_limit: int = VALIDATION_OUTPUT_LIMIT,
    ) -> None:
        self.base_dir = os.path.abspath(base_dir)
        self.github_token = github_token
        self.clone_timeout = clone_timeout
        self.install_timeout = install_timeout
        self.validate_timeout = validate_timeout
        self.output_limit = output_limit

    # -------------------------------------------------------------------
    # Create / destroy
    # -------------------------------------------------------------------
    async def create(self, repo_url: str, issue_id: str = "") -> Workspace:
        """Allocate a fresh, uniquely named workspace root."""
        workspace_id = _new_workspace_id()
        prefix = f"ws-{issue_id[:8]}-" if issue_id else "ws-"
        root = os.path.join(self.base_dir, prefix + workspace_id)
        try:
            os.makedirs(self.base_dir, exist_ok=True)
            os.makedirs(root, exist_ok=False)
        except OSError as e:
            raise ResourceError(f"Could not allocate workspace directory {root}: {e}") from e

        workspace = Workspace(
            workspace_id=workspace_id,
            root=root,
            repo_dir=os.path.join(root, get_repo_name(repo_url)),
        )
        workspace.log(f"[sandbox] Workspace created: {workspace_id}")
        logger.info("Workspace %s created at %s", workspace_id, root)
        return workspace

    async def destroy(self, workspace: Workspace) -> None:
        """Recursively remove the workspace root. Idempotent; never raises."""
        if workspace.destroyed and not os.path.exists(workspace.root):
            return
        try:
            if os.path.exists(workspace.root):
                await asyncio.to_thread(shutil.rmtree, workspace.root)
            workspace.destroyed = True
            workspace.log(f"[sandbox] Destroyed: {workspace.workspace_id}")
            logger.info("Workspace %s destroyed", workspace.workspace_id)
        except Exception as e:
            logger.warning("Failed to destroy workspace %s: %s", workspace.workspace_id, e)
            workspace.log(f"[sandbox] Warning: cleanup failed: {e}")

    @asynccontextmanager
    async def session(self, repo_url: str, issue_id: str = "") -> AsyncIterator[Workspace]:
        """create() on entry, destroy() on exit, whatever happened in between."""
        workspace = await self.create(repo_url, issue_id)
        try:
            yield workspace
        finally:
            await self.destroy(workspace)

    # -------------------------------------------------------------------
    # Populate
    # -------------------------------------------------------------------
    async def clone(self, workspace: Workspace, repo_url: str) -> None:
        """Shallow, single-branch clone into workspace.repo_dir."""
        clone_url = to_clone_url(repo_url)
        workspace.log(f"Cloning {clone_url}...")
        logger.info("Cloning %s into %s", clone_url, workspace.repo_dir)

        cmd = [
            "git", "clone", "--depth", "1", "--single-branch",
            _with_token(clone_url, self.github_token), workspace.repo_dir,
        ]
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
        try:
            result = await _run(cmd, timeout=self.clone_timeout, env=env)
        except subprocess.TimeoutExpired as e:
            workspace.log(f"[clone] Timed out after {self.clone_timeout:.0f}s")
            raise RetrievalError(f"Clone timed out after {self.clone_timeout:.0f}s: {clone_url}") from e
        except OSError as e:
            workspace.log(f"[clone] git unavailable: {e}")
            raise RetrievalError(f"git could not be started: {e}") from e

        if result.returncode != 0:
            stderr = _redact((result.stderr or "").strip(), self.github_token)
            workspace.log(f"[clone] EXIT {result.returncode}")
            raise RetrievalError(
                f"Clone failed (exit {result.returncode}) for {clone_url}: {stderr[:500]}"
            )

        workspace.log("[clone] OK")
        logger.info("Repository cloned into %s", workspace.repo_dir)

    def detect_install_command(self, workspace: Workspace) -> Optional[List[str]]:
        """First matching manifest in INSTALL_SIGNALS order, or None."""
        for signal_file, cmd in INSTALL_SIGNALS:
            if os.path.isfile(os.path.join(workspace.repo_dir, signal_file)):
                return list(cmd)
        return None

    async def install_dependencies(self, workspace: Workspace) -> None:
        """
        Run exactly one install command, if a manifest is recognised.

        Failures (non-zero exit, timeout, missing tool) are warnings:
        a broken install must not block an otherwise viable fix attempt.
        """
        cmd = self.detect_install_command(workspace)
        if cmd is None:
            workspace.log("[install] No package manager detected - skipping.")
            return

        printable = " ".join(cmd)
        workspace.log(f"[install] Running: {printable}")
        logger.info("Installing dependencies: %s", printable)
        try:
            result = await _run(cmd, cwd=workspace.repo_dir, timeout=self.install_timeout)
        except subprocess.TimeoutExpired:
            logger.warning("Dependency install timed out after %.0fs (continuing)", self.install_timeout)
            workspace.log(f"[install] Warning: timed out after {self.install_timeout:.0f}s")
            return
        except OSError as e:
            logger.warning("Dependency install could not start (continuing): %s", e)
            workspace.log(f"[install] Warning: {e}")
            return

        if result.returncode != 0:
            output = ((result.stdout or "") + (result.stderr or "")).strip()
            logger.warning("Dependency install exited %d (continuing)", result.returncode)
            workspace.log(f"[install] Warning: exit {result.returncode}: {output[-300:]}")
            return
        workspace.log("[install] Done.")

    # -------------------------------------------------------------------
    # File primitives
    # -------------------------------------------------------------------
    def list_files(self, workspace: Workspace) -> List[str]:
        """
        Enumerate regular files under repo_dir, skipping IGNORED_DIRS.

        Order is traversal order with directories visited in sorted order,
        so the listing is reproducible for the same tree on the same host.
        """
        files: List[str] = []
        for current, dirs, names in os.walk(workspace.repo_dir):
            dirs[:] = sorted(d for d in dirs if not is_ignored_dir(d))
            for name in sorted(names):
                abs_path = os.path.join(current, name)
                if os.path.isfile(abs_path) and not os.path.islink(abs_path):
                    files.append(to_relative(workspace.repo_dir, abs_path))
        return files

    def read_file(self, workspace: Workspace, relative_path: str) -> str:
        try:
            abs_path = resolve_within(workspace.repo_dir, relative_path)
        except UnsafePathError as e:
            raise RetrievalError(str(e)) from e
        try:
            with open(abs_path, "r", encoding="utf-8", errors="replace") as f:
                return f.read()
        except OSError as e:
            raise RetrievalError(f"Could not read {relative_path}: {e}") from e

    def write_file(self, workspace: Workspace, relative_path: str, content: str) -> None:
        abs_path = resolve_within(workspace.repo_dir, relative_path)
        try:
            os.makedirs(os.path.dirname(abs_path), exist_ok=True)
            with open(abs_path, "w", encoding="utf-8") as f:
                f.write(content)
        except OSError as e:
            raise ResourceError(f"Could not write {relative_path}: {e}") from e

    # -------------------------------------------------------------------
    # Validation (advisory)
    # -------------------------------------------------------------------
    def detect_validation_command(self, workspace: Workspace) -> Optional[List[str]]:
        """npm test, else npm run build, else pytest for Python trees, else None."""
        package_json = os.path.join(workspace.repo_dir, "package.json")
        if os.path.isfile(package_json):
            try:
                with open(package_json, "r", encoding="utf-8") as f:
                    scripts = (json.load(f) or {}).get("scripts") or {}
            except (OSError, ValueError, AttributeError):
                scripts = {}
            if not isinstance(scripts, dict):
                scripts = {}
            if scripts.get("test"):
                return ["npm", "test", "--", "--passWithNoTests"]
            if scripts.get("build"):
                return ["npm", "run", "build"]
            return None

        for marker in PYTHON_MARKERS:
            if os.path.isfile(os.path.join(workspace.repo_dir, marker)):
                return ["python", "-m", "pytest", "--tb=short", "-q"]
        return None

    async def validate(self, workspace: Workspace) -> ValidationResult:
        """
        Run the discoverable tests/build command.

        Raises
        ------
        ValidationError
            The command timed out or could not be started.
        """
        cmd = self.detect_validation_command(workspace)
        if cmd is None:
            workspace.log("[test/build] No test or build script found.")
            return ValidationResult(success=True, output="No test/build script.")

        printable = " ".join(cmd)
        logger.info("Running validation: %s", printable)
        try:
            result = await _run(cmd, cwd=workspace.repo_dir, timeout=self.validate_timeout)
        except subprocess.TimeoutExpired as e:
            message = f"Validation timed out after {self.validate_timeout:.0f}s"
            workspace.log(f"[test/build] {message}")
            raise ValidationError(message, command=printable) from e
        except OSError as e:
            workspace.log(f"[test/build] Could not start: {e}")
            raise ValidationError(f"Could not start {printable}: {e}", command=printable) from e

        output = _tail((result.stdout or "") + (result.stderr or ""), self.output_limit)
        workspace.log(f"[test/build] {printable}: exit {result.returncode}")
        return ValidationResult(
            success=result.returncode == 0, output=output, command=printable
        )
