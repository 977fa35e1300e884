"""Prompt building and plan response parsing for the planning protocol."""

from __future__ import annotations

import re
import textwrap
from typing import Iterable, Sequence

from .models import ParsedPlan, PlanQuestion, PlanStep, Ticket, TicketInfo

SECTION_NAMES = ("ANALYSIS", "QUESTIONS", "PLAN", "END")
NO_QUESTIONS_SENTINEL = "none"
DEFAULT_BRANCH_SLUG_LENGTH = 30
DEFAULT_WRAP_WIDTH = 60
_MIN_QUESTION_LENGTH = 6

FALLBACK_STEP_TITLES = (
    "Review ticket requirements",
    "Identify affected files",
    "Implement changes",
    "Write tests",
    "Create PR",
)

_SECTION_RE = re.compile(r"---\s*(ANALYSIS|QUESTIONS|PLAN|END)\s*---", re.IGNORECASE)
_STEP_RE = re.compile(
    r"STEP\s+(\d+):\s*([^\n]+)(?:\n(.*?))?(?=STEP\s+\d+:|\Z)",
    re.IGNORECASE | re.DOTALL,
)
_FILES_LINE_RE = re.compile(r"^\s*FILES:.*$", re.IGNORECASE | re.MULTILINE)
_FILES_RE = re.compile(r"FILES:\s*(.+)", re.IGNORECASE)
_NUMBERED_RE = re.compile(r"^(\d+)\.\s*(.*)")
_BULLET_RE = re.compile(r"^[-+•*]\s*")
_LETTER_RE = re.compile(r"^[a-z]\)\s*", re.IGNORECASE)
_SLUG_RE = re.compile(r"[^a-z0-9]+")

PLAN_RESPONSE_TEMPLATE = """Format your response EXACTLY like this:
---ANALYSIS---
[Your 2-3 sentence analysis of the task]

---QUESTIONS---
[List specific clarifying questions you need answered before implementing. Ask about unclear requirements, missing technical details, or ambiguous specs. Only say "None" if the ticket is truly complete and unambiguous.]

---PLAN---
STEP 1: [Step title]
[Step description]
FILES: [comma-separated list of likely files to modify, or "TBD" if unknown]

STEP 2: [Step title]
[Step description]
FILES: [files]

[Continue with more steps as needed]
---END---"""


def derive_branch_name(identifier: str, title: str, *, max_length: int = DEFAULT_BRANCH_SLUG_LENGTH) -> str:
    """Return ``<identifier>-<title slug>`` lower-cased, e.g. ``eng-42-add-login-button``."""

    slug = _SLUG_RE.sub("-", title.lower())[:max_length].strip("-")
    prefix = _SLUG_RE.sub("-", identifier.lower()).strip("-")
    return f"{prefix}-{slug}" if slug else prefix


def wrap_text(text: str, width: int = DEFAULT_WRAP_WIDTH) -> list[str]:
    """Greedy word wrap per paragraph; blank paragraphs are dropped and long words kept whole."""

    lines: list[str] = []
    for paragraph in text.split("\n"):
        if not paragraph.strip():
            continue
        lines.extend(
            textwrap.wrap(
                paragraph.strip(),
                width=width,
                break_long_words=False,
                break_on_hyphens=False,
            )
        )
    return lines


def format_ticket_context(ticket: Ticket) -> str:
    lines = [
        f"Ticket: {ticket.identifier}",
        f"Title: {ticket.title}",
        f"Description: {ticket.description}" if ticket.description else "No description provided",
    ]
    if ticket.labels:
        lines.append(f"Labels: {', '.join(ticket.labels)}")
    if ticket.project:
        lines.append(f"Project: {ticket.project}")
    if ticket.parent:
        lines.append(f"Parent Issue: {ticket.parent.identifier} - {ticket.parent.title}")
    if ticket.children:
        lines.append("Sub-tasks:")
        lines.extend(f"  - {child.identifier}: {child.title}" for child in ticket.children)
    if ticket.comments:
        lines.append("Discussion:")
        lines.extend(f"  - {comment.author}: {comment.body}" for comment in ticket.comments)
    return "\n".join(lines)


def build_plan_prompt(
    ticket: Ticket,
    repo_context: str | None = None,
    *,
    feedback: Sequence[str] = (),
) -> str:
    """Build the read-only planning prompt for a ticket."""

    sections = [
        "You are helping a developer start work on a ticket. Analyze this ticket and "
        "create a detailed implementation plan.",
        format_ticket_context(ticket),
    ]
    if repo_context and repo_context.strip():
        sections.append("Repository context:\n" + repo_context.strip())
    if feedback:
        sections.append(
            "The developer rejected a previous plan. Address this feedback:\n"
            + "\n".join(f"- {item}" for item in feedback)
        )
    sections.append(
        "IMPORTANT: If the ticket is missing critical information needed to implement it "
        "properly, you MUST ask clarifying questions. Examples of what to ask about:\n"
        "- Unclear acceptance criteria or expected behavior\n"
        "- Missing technical details (API endpoints, data structures, etc.)\n"
        "- Ambiguous requirements that could be interpreted multiple ways\n"
        "- Missing context about existing code or architecture\n"
        "- Edge cases that aren't addressed"
    )
    sections.append(
        "Based on this ticket, provide:\n"
        "1. A brief analysis of what needs to be done\n"
        "2. Any questions or missing context that would help (ACTIVELY ask if anything is "
        "unclear - don't assume)\n"
        "3. A step-by-step implementation plan"
    )
    sections.append(PLAN_RESPONSE_TEMPLATE)
    return "\n\n".join(sections)


def build_implementation_prompt(
    ticket: TicketInfo,
    plan_steps: Iterable[PlanStep],
    context: str | None = None,
) -> str:
    """Build the prompt for the detached implementation turn."""

    ticket_lines = [f"Ticket: {ticket.identifier}", f"Title: {ticket.title}"]
    if ticket.description:
        ticket_lines.append(f"Description: {ticket.description}")
    if context and context.strip():
        ticket_lines.append(f"\nAdditional Context from User:\n{context.strip()}")

    plan_text = "\n\n".join(
        f"Step {index}: {step.description}"
        + (f"\nFiles: {', '.join(step.files)}" if step.files else "")
        for index, step in enumerate(plan_steps, start=1)
    )

    return (
        "You are implementing a feature based on a ticket. Work in the current project directory.\n\n"
        f"TICKET:\n{chr(10).join(ticket_lines)}\n\n"
        f"APPROVED IMPLEMENTATION PLAN:\n{plan_text}\n\n"
        "INSTRUCTIONS:\n"
        "1. Implement each step of the plan\n"
        "2. Create or modify files as needed\n"
        "3. Write clean, production-ready code\n"
        "4. Follow existing code patterns in the project\n"
        "5. Do NOT commit - just make the changes\n\n"
        "Start implementing now. Work through each step methodically."
    )


def split_sections(raw: str) -> dict[str, str]:
    """Return the body of each ``---NAME---`` section keyed by upper-case name.

    A section runs until the next recognised header, whatever its order. The
    first occurrence of a header wins.
    """

    headers = list(_SECTION_RE.finditer(raw))
    sections: dict[str, str] = {}
    for index, match in enumerate(headers):
        name = match.group(1).upper()
        if name == "END" or name in sections:
            continue
        end = headers[index + 1].start() if index + 1 < len(headers) else len(raw)
        sections[name] = raw[match.end():end].strip()
    return sections


def parse_questions(text: str) -> tuple[PlanQuestion, ...]:
    """Parse the QUESTIONS section.

    A numbered line only starts a new question when its number is greater than
    the last top-level number; lower numbers are sub-items of the current
    question.
    """

    stripped = text.strip()
    if not stripped or stripped.lower() == NO_QUESTIONS_SENTINEL:
        return ()

    questions: list[PlanQuestion] = []
    current = ""
    last_number = 0

    def _flush() -> None:
        if len(current) >= _MIN_QUESTION_LENGTH:
            questions.append(PlanQuestion(id=f"q-{len(questions)}", question=current))

    for line in stripped.splitlines():
        trimmed = line.strip().replace("**", "")
        if not trimmed:
            continue
        numbered = _NUMBERED_RE.match(trimmed)
        if numbered:
            number = int(numbered.group(1))
            content = numbered.group(2)
            if last_number == 0 or number > last_number:
                _flush()
                current = content
                last_number = number
            else:
                current += f"\n  {number}. {content}"
            continue

        cleaned = _LETTER_RE.sub("", _BULLET_RE.sub("", trimmed))
        if not cleaned:
            continue
        current = f"{current}\n  {cleaned}" if current else cleaned

    _flush()
    return tuple(questions)


def parse_plan_steps(text: str) -> tuple[PlanStep, ...]:
    steps: list[PlanStep] = []
    for match in _STEP_RE.finditer(text):
        number, title, body = match.group(1), match.group(2).strip(), match.group(3) or ""
        files_match = _FILES_RE.search(body)
        files: tuple[str, ...] = ()
        if files_match:
            files = tuple(
                item.strip()
                for item in files_match.group(1).split(",")
                if item.strip() and item.strip().upper() != "TBD"
            )
        details = _FILES_LINE_RE.sub("", body).strip()
        description = f"{title}\n{details}".strip()
        steps.append(PlanStep(id=f"step-{number}", description=description, files=files))
    return tuple(steps)


def fallback_plan() -> tuple[PlanStep, ...]:
    return tuple(
        PlanStep(id=f"step-{index}", description=title)
        for index, title in enumerate(FALLBACK_STEP_TITLES, start=1)
    )


def parse_plan_response(raw: str) -> ParsedPlan:
    """Parse an assistant response into analysis, questions and steps.

    Never raises: a response without usable steps yields the fallback plan.
    """

    sections = split_sections(raw or "")
    steps = parse_plan_steps(sections.get("PLAN", ""))
    used_fallback = not steps
    return ParsedPlan(
        analysis=sections.get("ANALYSIS", ""),
        questions=parse_questions(sections.get("QUESTIONS", "")),
        steps=steps or fallback_plan(),
        used_fallback=used_fallback,
    )


__all__ = [
    "FALLBACK_STEP_TITLES",
    "build_implementation_prompt",
    "build_plan_prompt",
    "derive_branch_name",
    "fallback_plan",
    "format_ticket_context",
    "parse_plan_response",
    "parse_plan_steps",
    "parse_questions",
    "split_sections",
    "wrap_text",
]
