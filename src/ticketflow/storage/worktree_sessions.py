"""Execution-phase worktree session store."""

from __future__ import annotations

import logging
import os
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable

from ..planning.models import TicketInfo
from .base import RecordStore
from .models import WorktreeSession, WorktreeStatus

logger = logging.getLogger(__name__)


class WorktreeBusyError(RuntimeError):
    """Raised when a worktree already has an implementation run in progress."""


def normalize_path(path: str) -> str:
    return os.path.normpath(path)


class WorktreeSessionStore(RecordStore[WorktreeSession]):
    """Holds one WorktreeSession per worktree path.

    Output appends and completions are only accepted while the record is in
    the matching phase, so chunks that arrive after a stop are dropped.
    """

    def __init__(self, *, clock: Callable[[], datetime] | None = None) -> None:
        super().__init__()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def get(self, key: str) -> WorktreeSession | None:
        return super().get(normalize_path(key))

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and super().__contains__(normalize_path(key))

    def require(self, path: str) -> WorktreeSession:
        session = self.get(path)
        if session is None:
            raise LookupError(f"No worktree session for '{path}'")
        return session

    def status_of(self, path: str) -> WorktreeStatus:
        session = self.get(path)
        return session.status if session else "idle"

    def has_active_session(self, path: str) -> bool:
        return self.status_of(path) == "running"

    def mark_planning(self, path: str, ticket_info: TicketInfo | None = None) -> WorktreeSession:
        """Record that a worktree is being planned. The record does not own the work."""

        key = normalize_path(path)
        if self.has_active_session(key):
            raise WorktreeBusyError(f"Worktree '{key}' already has a running implementation")
        return self._write(
            key,
            WorktreeSession(
                worktree_path=key,
                status="planning",
                started_at=self._clock(),
                ticket_info=ticket_info,
            ),
        )

    def start(self, path: str, ticket_info: TicketInfo | None = None) -> WorktreeSession:
        """Move the worktree to ``running``, creating the record if absent."""

        key = normalize_path(path)
        existing = super().get(key)
        if existing is not None and existing.status == "running":
            raise WorktreeBusyError(f"Worktree '{key}' already has a running implementation")
        if existing is not None and existing.status == "planning":
            record = replace(
                existing,
                status="running",
                ticket_info=ticket_info or existing.ticket_info,
                started_at=self._clock(),
                error=None,
                completed_at=None,
            )
        else:
            record = WorktreeSession(
                worktree_path=key,
                status="running",
                started_at=self._clock(),
                ticket_info=ticket_info or (existing.ticket_info if existing else None),
            )
        return self._write(key, record)

    def update(self, path: str, **changes: Any) -> WorktreeSession:
        key = normalize_path(path)
        return self._write(key, replace(self.require(key), **changes))

    def set_status(self, path: str, status: WorktreeStatus) -> WorktreeSession | None:
        session = self.get(path)
        if session is None:
            return None
        return self._write(session.worktree_path, replace(session, status=status))

    def append_analysis_output(self, path: str, chunk: str) -> bool:
        session = self.get(path)
        if session is None or session.status != "planning":
            return False
        self._write(session.worktree_path, replace(session, analysis_output=session.analysis_output + chunk))
        return True

    def append_implementation_output(self, path: str, chunk: str) -> bool:
        session = self.get(path)
        if session is None or session.status != "running":
            logger.debug("Dropped implementation chunk", extra={"worktree_path": path})
            return False
        self._write(
            session.worktree_path,
            replace(session, implementation_output=session.implementation_output + chunk),
        )
        return True

    def set_error(self, path: str, error: str) -> WorktreeSession | None:
        session = self.get(path)
        if session is None or session.status != "running":
            return None
        return self._write(session.worktree_path, replace(session, error=error))

    def set_diff_path(self, path: str, diff_path: str) -> WorktreeSession | None:
        session = self.get(path)
        if session is None:
            return None
        return self._write(session.worktree_path, replace(session, diff_path=diff_path))

    def complete(self, path: str, success: bool, error: str | None = None) -> WorktreeSession | None:
        session = self.get(path)
        if session is None or session.status != "running":
            return None
        return self._write(
            session.worktree_path,
            replace(
                session,
                status="success" if success else "error",
                error=None if success else (error or session.error or "Implementation failed"),
                completed_at=self._clock(),
            ),
        )

    def stop(self, path: str) -> WorktreeSession | None:
        """Mark the worktree stopped. Terminal: later output and completions are ignored.

        Records that already finished keep their outcome.
        """

        session = self.get(path)
        if session is None:
            return None
        if session.is_terminal:
            return session
        return self._write(
            session.worktree_path,
            replace(session, status="stopped", completed_at=self._clock()),
        )

    def remove(self, path: str) -> WorktreeSession | None:
        return self._delete(normalize_path(path))


__all__ = ["WorktreeBusyError", "WorktreeSessionStore", "normalize_path"]
