"""Idempotent creation of per-branch git worktrees."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from ..git import GitCommandError, GitRunner, WorktreeEntry

logger = logging.getLogger(__name__)


class WorktreeProvisionError(RuntimeError):
    """Raised when a worktree cannot be created for a branch."""


@dataclass(slots=True, frozen=True)
class ProvisionResult:
    path: str
    created: bool
    branch_existed: bool
    fetched: bool


def default_worktree_path(repo_path: str, branch_name: str) -> str:
    """Worktrees live next to the repository, named after the branch."""

    return os.path.normpath(os.path.join(repo_path, "..", branch_name))


def _same_path(left: str, right: str) -> bool:
    return os.path.realpath(left) == os.path.realpath(right)


class WorktreeProvisioner:
    """Create or locate the worktree that has ``branch_name`` checked out."""

    def __init__(self, git: GitRunner) -> None:
        self._git = git

    async def find(self, repo_path: str, branch_name: str) -> WorktreeEntry | None:
        for entry in await self._git.list_worktrees(repo_path):
            if entry.branch == branch_name:
                return entry
        return None

    async def provision(self, repo_path: str, branch_name: str) -> ProvisionResult:
        # git runs with cwd=repo, so a relative target would land inside the repository.
        repo_path = os.path.abspath(repo_path)
        fetched = (await self._git.fetch(repo_path)).ok

        try:
            existing = await self.find(repo_path, branch_name)
        except GitCommandError as exc:
            raise WorktreeProvisionError(f"Unable to list worktrees: {exc}") from exc
        if existing is not None:
            logger.info(
                "Worktree already exists",
                extra={"worktree_path": existing.path, "branch": branch_name},
            )
            return ProvisionResult(path=existing.path, created=False, branch_existed=True, fetched=fetched)

        listing = await self._git.branches(repo_path)
        branch_existed = listing.has_local(branch_name) or listing.has_remote(branch_name)
        target = default_worktree_path(repo_path, branch_name)

        try:
            added = await self._git.add_worktree(
                repo_path,
                target,
                branch_name,
                create_branch=not branch_existed,
            )
        except GitCommandError as exc:
            await self._cleanup(repo_path, target)
            raise WorktreeProvisionError(f"Failed to create worktree for '{branch_name}': {exc}") from exc

        path = await self._canonical_path(repo_path, branch_name, added)
        logger.info(
            "Created worktree",
            extra={"worktree_path": path, "branch": branch_name, "branch_existed": branch_existed},
        )
        return ProvisionResult(path=path, created=True, branch_existed=branch_existed, fetched=fetched)

    async def _canonical_path(self, repo_path: str, branch_name: str, fallback: str) -> str:
        try:
            entry = await self.find(repo_path, branch_name)
        except GitCommandError:
            entry = None
        return entry.path if entry is not None else str(Path(fallback).resolve())

    async def _cleanup(self, repo_path: str, target: str) -> None:
        """Drop any registration git left behind for ``target``."""

        try:
            entries = await self._git.list_worktrees(repo_path)
        except GitCommandError:
            entries = []
        for entry in entries:
            if not entry.is_main and _same_path(entry.path, target):
                try:
                    await self._git.remove_worktree(repo_path, entry.path, force=True)
                except GitCommandError:
                    logger.warning("Could not remove partial worktree", extra={"worktree_path": entry.path})
        await self._git.prune_worktrees(repo_path)


__all__ = ["ProvisionResult", "WorktreeProvisionError", "WorktreeProvisioner", "default_worktree_path"]
