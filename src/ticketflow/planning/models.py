"""Ticket and plan models."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

PlanStepStatus = Literal["pending", "done"]


class TicketRef(BaseModel):
    """Lightweight reference to a related ticket."""

    identifier: str
    title: str = ""


class TicketComment(BaseModel):
    author: str = Field(default="unknown", description="Display name of the comment author.")
    body: str


class Ticket(BaseModel):
    """Read-only work item supplied by the ticket source."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Stable identifier assigned by the ticket source.")
    identifier: str = Field(..., description="Human-facing key such as ENG-42.")
    title: str = Field(..., description="Ticket title.")
    description: str | None = Field(default=None, description="Free-form ticket body.")
    branch_name: str | None = Field(
        default=None,
        description="Branch name suggested by the ticket source, if any.",
    )
    labels: list[str] = Field(default_factory=list)
    project: str | None = None
    parent: TicketRef | None = None
    children: list[TicketRef] = Field(default_factory=list)
    comments: list[TicketComment] = Field(default_factory=list)

    @field_validator("id", "identifier")
    @classmethod
    def _require_value(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Ticket id and identifier must not be empty")
        return normalized

    @field_validator("labels", mode="before")
    @classmethod
    def _flatten_labels(cls, value: Any):
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return [item.get("name", "") if isinstance(item, dict) else item for item in value]
        raise TypeError("labels must be a sequence of names")


@dataclass(slots=True, frozen=True)
class TicketInfo:
    """Snapshot of a ticket carried by execution-phase records."""

    id: str
    identifier: str
    title: str
    description: str | None = None

    @classmethod
    def from_ticket(cls, ticket: Ticket) -> "TicketInfo":
        return cls(
            id=ticket.id,
            identifier=ticket.identifier,
            title=ticket.title,
            description=ticket.description,
        )


@dataclass(slots=True, frozen=True)
class PlanStep:
    id: str
    description: str
    files: tuple[str, ...] = ()
    status: PlanStepStatus = "pending"

    @property
    def title(self) -> str:
        return self.description.split("\n", 1)[0]


@dataclass(slots=True, frozen=True)
class PlanQuestion:
    id: str
    question: str
    answer: str = ""


@dataclass(slots=True, frozen=True)
class ParsedPlan:
    """Structured form of the assistant's plan response."""

    analysis: str = ""
    questions: tuple[PlanQuestion, ...] = ()
    steps: tuple[PlanStep, ...] = ()
    used_fallback: bool = False

    @property
    def has_questions(self) -> bool:
        return bool(self.questions)


__all__ = [
    "ParsedPlan",
    "PlanQuestion",
    "PlanStep",
    "PlanStepStatus",
    "Ticket",
    "TicketComment",
    "TicketInfo",
    "TicketRef",
]
