"""Environment helpers for the git and assistant subprocesses."""

from __future__ import annotations

import os
from typing import Mapping

# Interpreter settings of the server process must not leak into the repositories we work in.
_PYTHON_VARS = frozenset({"PYTHONHOME", "PYTHONPATH", "VIRTUAL_ENV", "PIP_RESPECT_VIRTUALENV"})

# Commands run with an explicit cwd inside a worktree; these would redirect git elsewhere.
_GIT_LOCATION_VARS = frozenset({"GIT_DIR", "GIT_WORK_TREE", "GIT_INDEX_FILE", "GIT_COMMON_DIR"})


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Copy ``os.environ`` without interpreter and git location overrides, then apply ``additional``."""

    env = {
        key: value
        for key, value in os.environ.items()
        if key not in _PYTHON_VARS and key not in _GIT_LOCATION_VARS
    }
    if additional:
        env.update(additional)
    return env
