"""Git CLI integration."""

from .runner import (
    BranchListing,
    DiffSnapshot,
    GitCommandError,
    GitNotFoundError,
    GitResult,
    GitRunner,
    WorktreeEntry,
    parse_worktree_list,
)

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
