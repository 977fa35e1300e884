"""Planning-phase session store."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Iterable
from uuid import uuid4

from ..planning.codec import DEFAULT_BRANCH_SLUG_LENGTH, derive_branch_name
from ..planning.models import Ticket
from .base import RecordStore
from .models import LogEntry, Session, SessionStep


class SessionNotFoundError(LookupError):
    """Raised when a session id is not present in the store."""


class SessionStore(RecordStore[Session]):
    """Holds one Session per in-flight ticket while it is planned and approved."""

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] | None = None,
        branch_slug_length: int = DEFAULT_BRANCH_SLUG_LENGTH,
    ) -> None:
        super().__init__()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._branch_slug_length = branch_slug_length

    def create(self, ticket: Ticket, branch_name: str | None = None) -> Session:
        """Create a session for ``ticket``, or return the one already planning it."""

        existing = self.get_by_ticket(ticket.id)
        if existing is not None:
            return existing

        session_id = f"startwork-{ticket.id}-{uuid4().hex[:8]}"
        branch = branch_name or ticket.branch_name or derive_branch_name(
            ticket.identifier, ticket.title, max_length=self._branch_slug_length
        )
        session = Session(
            id=session_id,
            ticket=ticket,
            branch_name=branch,
            started_at=self._clock(),
            logs=(
                LogEntry("init", f"Starting work on {ticket.identifier}"),
                LogEntry("info", ticket.title, indent=1),
                LogEntry("info", ""),
                LogEntry("prompt", "Select the repository for this ticket:"),
            ),
        )
        return self._write(session_id, session)

    def require(self, session_id: str) -> Session:
        session = self.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session '{session_id}' not found")
        return session

    def get_by_ticket(self, ticket_id: str) -> Session | None:
        for session in self.values():
            if session.ticket_id == ticket_id:
                return session
        return None

    def update(self, session_id: str, **changes: Any) -> Session:
        return self._write(session_id, replace(self.require(session_id), **changes))

    def remove(self, session_id: str) -> Session | None:
        return self._delete(session_id)

    def add_logs(self, session_id: str, entries: Iterable[LogEntry]) -> Session:
        session = self.require(session_id)
        return self._write(session_id, replace(session, logs=session.logs + tuple(entries)))

    def add_log(self, session_id: str, type_: str, message: str, indent: int = 0) -> Session:
        return self.add_logs(session_id, [LogEntry(type_, message, indent)])  # type: ignore[arg-type]

    def await_input(self, session_id: str, step: SessionStep | None = None, **changes: Any) -> Session:
        """Pause the session for user input, optionally moving it to ``step``."""

        session = self.require(session_id)
        return self._write(
            session_id,
            replace(
                session,
                current_step=step or session.current_step,
                needs_input=True,
                is_processing=False,
                **changes,
            ),
        )

    def begin_processing(self, session_id: str, step: SessionStep | None = None, **changes: Any) -> Session:
        session = self.require(session_id)
        return self._write(
            session_id,
            replace(
                session,
                current_step=step or session.current_step,
                needs_input=False,
                is_processing=True,
                **changes,
            ),
        )

    def append_streaming_output(self, session_id: str, chunk: str) -> None:
        """Append a streamed chunk; chunks for sessions that no longer exist are dropped."""

        session = self.get(session_id)
        if session is None:
            return
        self._write(session_id, replace(session, streaming_output=session.streaming_output + chunk))

    def clear_streaming_output(self, session_id: str) -> None:
        session = self.get(session_id)
        if session is None:
            return
        self._write(session_id, replace(session, streaming_output=""))

    def answer_questions(self, session_id: str, answers: dict[str, str]) -> Session:
        session = self.require(session_id)
        questions = tuple(
            replace(question, answer=answers.get(question.id, question.answer).strip())
            for question in session.questions
        )
        return self._write(session_id, replace(session, questions=questions))

    def complete(self, session_id: str) -> Session:
        session = self.require(session_id)
        return self._write(
            session_id,
            replace(
                session,
                current_step="complete",
                needs_input=False,
                is_processing=False,
                completed_at=self._clock(),
            ),
        )


__all__ = ["SessionNotFoundError", "SessionStore"]
