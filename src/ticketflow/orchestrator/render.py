"""Turn parsed plans into the boxed log entries shown to the user."""

from __future__ import annotations

from typing import Iterable

from ..planning.codec import DEFAULT_WRAP_WIDTH, wrap_text
from ..planning.models import PlanQuestion, PlanStep
from ..storage.models import LogEntry, LogType

BOX_WIDTH = 63
APPROVAL_PROMPT = "Approve this plan? (y/n)"
FALLBACK_PROMPT = "Continue with setup? (y/n)"
FEEDBACK_PROMPT = "Would you like to provide feedback for a new plan? (y/n)"
BLANK = LogEntry("info", "")


def box_top(title: str) -> str:
    head = f"┌─ {title} "
    return head + "─" * max(BOX_WIDTH - len(head), 3)


def box_bottom() -> str:
    return "└" + "─" * (BOX_WIDTH - 1)


def analysis_entries(analysis: str, width: int = DEFAULT_WRAP_WIDTH) -> list[LogEntry]:
    lines = wrap_text(analysis, width)
    if not lines:
        return []
    return [
        LogEntry("analysis", box_top("Analysis")),
        *(LogEntry("info", f"  {line}") for line in lines),
        LogEntry("analysis", box_bottom()),
    ]


def question_entries(questions: Iterable[PlanQuestion]) -> list[LogEntry]:
    items = list(questions)
    if not items:
        return []
    entries = [LogEntry("warning", box_top("Questions"))]
    for question in items:
        first, *rest = question.question.split("\n")
        entries.append(LogEntry("warning", f"  + {first}"))
        entries.extend(LogEntry("warning", f"  {line}") for line in rest if line.strip())
        if question.answer:
            entries.append(LogEntry("info", f"    > {question.answer}"))
    entries.append(LogEntry("warning", box_bottom()))
    return entries


def plan_entries(steps: Iterable[PlanStep]) -> list[LogEntry]:
    entries = [LogEntry("plan", box_top("Implementation Plan"))]
    for index, step in enumerate(steps, start=1):
        entries.append(LogEntry("plan", f"  Step {index}: {step.title}"))
        for line in step.description.split("\n")[1:]:
            if line.strip():
                entries.append(LogEntry("info", f"    {line.strip()}"))
        if step.files:
            entries.append(LogEntry("file", f"    Files: {', '.join(step.files)}"))
        entries.append(BLANK)
    entries.append(LogEntry("plan", box_bottom()))
    return entries


def approval_entries(steps: Iterable[PlanStep]) -> list[LogEntry]:
    return [BLANK, *plan_entries(steps), BLANK, LogEntry("prompt", APPROVAL_PROMPT)]


def fallback_entries(steps: Iterable[PlanStep]) -> list[LogEntry]:
    return [
        BLANK,
        LogEntry("warning", "Using basic plan structure:"),
        *(LogEntry("plan", f"{index}. {step.title}") for index, step in enumerate(steps, start=1)),
        BLANK,
        LogEntry("prompt", FALLBACK_PROMPT),
    ]


def rejection_entries() -> list[LogEntry]:
    return [LogEntry("info", "Plan rejected"), LogEntry("prompt", FEEDBACK_PROMPT)]


def log(type_: LogType, message: str, indent: int = 0) -> LogEntry:
    return LogEntry(type_, message, indent)


__all__ = [
    "APPROVAL_PROMPT",
    "FALLBACK_PROMPT",
    "FEEDBACK_PROMPT",
    "analysis_entries",
    "approval_entries",
    "box_bottom",
    "box_top",
    "fallback_entries",
    "log",
    "plan_entries",
    "question_entries",
    "rejection_entries",
]
