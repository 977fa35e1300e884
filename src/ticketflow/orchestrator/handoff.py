"""Transfer of a ticket's work from the planning store to the worktree store."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..planning.models import PlanStep, TicketInfo
from ..storage.sessions import SessionStore
from ..storage.worktree_sessions import WorktreeSessionStore

logger = logging.getLogger(__name__)


class InvalidTransitionError(RuntimeError):
    """Raised when an action is not valid for the session's current step."""


@dataclass(slots=True, frozen=True)
class HandOff:
    """What the detached implementation run needs once the Session is gone."""

    session_id: str
    worktree_path: str
    ticket_info: TicketInfo
    plan_steps: tuple[PlanStep, ...]
    context: str | None

    @property
    def diff_session_id(self) -> str:
        return self.ticket_info.identifier


def hand_off(
    sessions: SessionStore,
    worktrees: WorktreeSessionStore,
    session_id: str,
    *,
    context: str | None = None,
) -> HandOff:
    """Make the worktree store the owner of ``session_id``'s work.

    The worktree record is written as ``running`` before the Session is
    removed, so at every point exactly one store owns the work. Raises
    ``WorktreeBusyError`` without touching either store when another run
    already owns the worktree.
    """

    session = sessions.require(session_id)
    if not session.worktree_path:
        raise InvalidTransitionError(f"Session '{session_id}' has no worktree to hand off")

    ticket_info = TicketInfo.from_ticket(session.ticket)
    record = worktrees.start(session.worktree_path, ticket_info)
    sessions.remove(session_id)

    logger.info(
        "Handed off session",
        extra={"session_id": session_id, "worktree_path": record.worktree_path},
    )
    return HandOff(
        session_id=session_id,
        worktree_path=record.worktree_path,
        ticket_info=ticket_info,
        plan_steps=session.plan_steps,
        context=context if context is not None else session.additional_context,
    )


__all__ = ["HandOff", "InvalidTransitionError", "hand_off"]
