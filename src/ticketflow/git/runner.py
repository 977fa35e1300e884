"""Async runner for the git CLI."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from ..utils import sanitize_environment

logger = logging.getLogger(__name__)

BASE_BRANCH_CANDIDATES = (
    "main",
    "master",
    "develop",
    "origin/main",
    "origin/master",
    "origin/develop",
)


class GitCommandError(RuntimeError):
    """Raised when a git command exits unsuccessfully."""

    def __init__(self, message: str, result: "GitResult | None" = None) -> None:
        super().__init__(message)
        self.result = result


class GitNotFoundError(GitCommandError):
    """Raised when the git executable cannot be located."""


@dataclass(slots=True)
class GitResult:
    """Holds the outcome of a git invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(slots=True, frozen=True)
class WorktreeEntry:
    path: str
    branch: str
    is_main: bool


@dataclass(slots=True, frozen=True)
class BranchListing:
    current: str
    local: tuple[str, ...]
    remote: tuple[str, ...]

    def has_local(self, branch: str) -> bool:
        return branch in self.local

    def has_remote(self, branch: str) -> bool:
        return any(ref.endswith(f"/{branch}") for ref in self.remote)


@dataclass(slots=True, frozen=True)
class DiffSnapshot:
    path: str
    base: str
    diff_length: int


def parse_worktree_list(output: str) -> list[WorktreeEntry]:
    """Parse ``git worktree list --porcelain`` output.

    Detached worktrees (no ``branch`` line) are skipped. The first block git
    reports is the main working tree, detached or not.
    """

    entries: list[WorktreeEntry] = []
    path: str | None = None
    branch: str | None = None
    blocks = 0

    def _flush() -> None:
        if path and branch:
            entries.append(WorktreeEntry(path=path, branch=branch, is_main=blocks == 1))

    for line in output.splitlines():
        if line.startswith("worktree "):
            path = line[len("worktree "):]
            blocks += 1
        elif line.startswith("branch "):
            branch = line[len("branch "):].removeprefix("refs/heads/")
        elif line == "":
            _flush()
            path = branch = None
    _flush()
    return entries


class GitRunner:
    """Execute git commands asynchronously."""

    def __init__(self, executable: Path | None = None, *, diff_dir_name: str = ".ticketflow") -> None:
        self._executable_path = self._resolve_executable(executable)
        self._diff_dir_name = diff_dir_name

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise GitNotFoundError(f"git executable not found at {candidate}")

        binary = shutil.which("git")
        if binary is None:
            raise GitNotFoundError("git executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    async def is_repo(self, path: str) -> bool:
        if not Path(path).is_dir():
            return False
        result = await self._invoke(path, "rev-parse", "--is-inside-work-tree")
        return result.ok and result.stdout.strip() == "true"

    async def current_branch(self, path: str) -> str:
        result = await self._invoke(path, "branch", "--show-current")
        return result.stdout.strip() or "HEAD"

    async def branches(self, path: str) -> BranchListing:
        current = await self.current_branch(path)
        local = await self._invoke(path, "branch", "--format=%(refname:short)")
        remote = await self._invoke(path, "branch", "-r", "--format=%(refname:short)")
        return BranchListing(
            current=current,
            local=tuple(_split_lines(local.stdout)),
            remote=tuple(_split_lines(remote.stdout)),
        )

    async def fetch(self, path: str) -> GitResult:
        result = await self._invoke(path, "fetch", "--all", "--prune")
        if result.ok:
            logger.info("Fetched all remotes", extra={"path": path})
        else:
            logger.warning("Fetch failed", extra={"path": path, "stderr": result.stderr})
        return result

    async def list_worktrees(self, path: str) -> list[WorktreeEntry]:
        result = await self._check(path, "worktree", "list", "--porcelain")
        return parse_worktree_list(result.stdout)

    async def add_worktree(self, path: str, new_path: str, branch: str, *, create_branch: bool) -> str:
        """Add a worktree and return its absolute path."""

        target = os.path.join(os.path.abspath(path), new_path)
        args = ["worktree", "add", target, "-b", branch] if create_branch else ["worktree", "add", target, branch]
        await self._check(path, *args)
        return str(Path(target).resolve())

    async def remove_worktree(self, path: str, target: str, *, force: bool = True) -> None:
        args = ["worktree", "remove", "--force", target] if force else ["worktree", "remove", target]
        await self._check(path, *args)

    async def prune_worktrees(self, path: str) -> GitResult:
        return await self._invoke(path, "worktree", "prune")

    async def detect_base_branch(self, path: str) -> str:
        for candidate in BASE_BRANCH_CANDIDATES:
            check = await self._invoke(path, "rev-parse", "--verify", "--quiet", candidate)
            if check.ok:
                return candidate
        return "HEAD~1"

    def diff_path(self, worktree_path: str, session_id: str) -> Path:
        return Path(worktree_path) / self._diff_dir_name / f"worktree-{session_id}.patch"

    async def save_diff(
        self,
        worktree_path: str,
        session_id: str,
        base_branch: str | None = None,
    ) -> DiffSnapshot:
        """Write the worktree diff against its merge base to the snapshot file."""

        base = base_branch or await self.detect_base_branch(worktree_path)

        compare_ref = base
        merge_base = await self._invoke(worktree_path, "merge-base", base, "HEAD")
        if merge_base.ok and merge_base.stdout.strip():
            compare_ref = merge_base.stdout.strip()

        committed = await self._check(worktree_path, "diff", compare_ref)
        full_diff = committed.stdout

        uncommitted = await self._invoke(worktree_path, "diff", "HEAD")
        if uncommitted.ok and uncommitted.stdout.strip():
            full_diff = uncommitted.stdout
        if full_diff:
            full_diff += "\n"

        target = self.diff_path(worktree_path, session_id)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(full_diff, encoding="utf-8")
        logger.info("Saved worktree diff", extra={"path": str(target), "base": base})
        return DiffSnapshot(path=str(target), base=base, diff_length=len(full_diff))

    def read_diff(self, worktree_path: str, session_id: str) -> str | None:
        target = self.diff_path(worktree_path, session_id)
        if not target.exists():
            return None
        return target.read_text(encoding="utf-8")

    def delete_diff(self, worktree_path: str, session_id: str) -> bool:
        target = self.diff_path(worktree_path, session_id)
        try:
            target.unlink()
        except FileNotFoundError:
            return False
        return True

    async def _check(self, cwd: str, *args: str) -> GitResult:
        result = await self._invoke(cwd, *args)
        if not result.ok:
            message = result.stderr.strip() or f"git {args[0]} exited with code {result.returncode}"
            raise GitCommandError(message, result)
        return result

    async def _invoke(self, cwd: str, *args: str) -> GitResult:
        cmd = [str(self._executable_path), *args]
        process = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=sanitize_environment({"GIT_TERMINAL_PROMPT": "0"}),
        )
        stdout_bytes, stderr_bytes = await process.communicate()
        stdout = stdout_bytes.decode("utf-8", errors="replace").rstrip()
        stderr = stderr_bytes.decode("utf-8", errors="replace").strip()
        if process.returncode != 0:
            logger.debug(
                "git command failed",
                extra={"command": list(args), "returncode": process.returncode, "stderr": stderr},
            )
        return GitResult(args=tuple(cmd), returncode=process.returncode, stdout=stdout, stderr=stderr)


def _split_lines(text: str) -> Iterable[str]:
    return [line.strip() for line in text.splitlines() if line.strip()]


__all__ = [
    "BranchListing",
    "DiffSnapshot",
    "GitCommandError",
    "GitNotFoundError",
    "GitResult",
    "GitRunner",
    "WorktreeEntry",
    "parse_worktree_list",
]
