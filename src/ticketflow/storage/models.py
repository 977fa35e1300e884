"""Records held by the session stores."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

from ..planning.models import PlanQuestion, PlanStep, Ticket, TicketInfo

SessionStep = Literal[
    "repo-select",
    "repo-verify",
    "worktree-setup",
    "analyze",
    "planning",
    "plan-review",
    "complete",
]
WorktreeStatus = Literal["idle", "planning", "running", "success", "error", "stopped"]
LogType = Literal[
    "init",
    "info",
    "success",
    "error",
    "warning",
    "prompt",
    "input",
    "analysis",
    "plan",
    "file",
]

NON_OWNING_STATUSES = frozenset({"idle", "planning"})
TERMINAL_STATUSES = frozenset({"success", "error", "stopped"})


@dataclass(slots=True, frozen=True)
class LogEntry:
    type: LogType
    message: str
    indent: int = 0

    def render(self) -> str:
        return "  " * self.indent + self.message


@dataclass(slots=True, frozen=True)
class Session:
    """Planning-phase record for one ticket.

    Records are immutable; stores replace them whole on every change.
    """

    id: str
    ticket: Ticket
    branch_name: str
    started_at: datetime
    current_step: SessionStep = "repo-select"
    selected_repo_path: str | None = None
    worktree_path: str | None = None
    plan_steps: tuple[PlanStep, ...] = ()
    questions: tuple[PlanQuestion, ...] = ()
    analysis: str = ""
    logs: tuple[LogEntry, ...] = ()
    streaming_output: str = ""
    needs_input: bool = True
    is_processing: bool = False
    additional_context: str | None = None
    has_unanswered_questions: bool = False
    feedback: tuple[str, ...] = ()
    completed_at: datetime | None = None

    @property
    def ticket_id(self) -> str:
        return self.ticket.id

    @property
    def ticket_identifier(self) -> str:
        return self.ticket.identifier

    @property
    def ticket_title(self) -> str:
        return self.ticket.title

    @property
    def ticket_description(self) -> str | None:
        return self.ticket.description

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "ticket_id": self.ticket_id,
            "ticket_identifier": self.ticket_identifier,
            "ticket_title": self.ticket_title,
            "branch_name": self.branch_name,
            "current_step": self.current_step,
            "selected_repo_path": self.selected_repo_path,
            "worktree_path": self.worktree_path,
            "needs_input": self.needs_input,
            "is_processing": self.is_processing,
            "has_unanswered_questions": self.has_unanswered_questions,
            "additional_context": self.additional_context,
            "analysis": self.analysis,
            "plan_steps": [
                {"id": step.id, "description": step.description, "files": list(step.files), "status": step.status}
                for step in self.plan_steps
            ],
            "questions": [
                {"id": question.id, "question": question.question, "answer": question.answer}
                for question in self.questions
            ],
            "logs": [{"type": entry.type, "message": entry.message, "indent": entry.indent} for entry in self.logs],
            "streaming_output": self.streaming_output,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass(slots=True, frozen=True)
class WorktreeSession:
    """Execution-phase record for one worktree, keyed by its absolute path."""

    worktree_path: str
    status: WorktreeStatus
    started_at: datetime
    ticket_info: TicketInfo | None = None
    analysis_output: str = ""
    implementation_output: str = ""
    error: str | None = None
    diff_path: str | None = None
    completed_at: datetime | None = None

    @property
    def owns_work(self) -> bool:
        return self.status not in NON_OWNING_STATUSES

    @property
    def is_active(self) -> bool:
        return self.status == "running"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        ticket = self.ticket_info
        return {
            "worktree_path": self.worktree_path,
            "status": self.status,
            "ticket": (
                {
                    "id": ticket.id,
                    "identifier": ticket.identifier,
                    "title": ticket.title,
                    "description": ticket.description,
                }
                if ticket
                else None
            ),
            "analysis_output": self.analysis_output,
            "implementation_output": self.implementation_output,
            "error": self.error,
            "diff_path": self.diff_path,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


__all__ = [
    "LogEntry",
    "LogType",
    "NON_OWNING_STATUSES",
    "Session",
    "SessionStep",
    "TERMINAL_STATUSES",
    "WorktreeSession",
    "WorktreeStatus",
]
