"""Worktree provisioning."""

from .provisioner import ProvisionResult, WorktreeProvisionError, WorktreeProvisioner, default_worktree_path

__all__ = ["ProvisionResult", "WorktreeProvisionError", "WorktreeProvisioner", "default_worktree_path"]
