from __future__ import annotations

import pytest

from ticketflow.orchestrator import render
from ticketflow.planning.codec import (
    FALLBACK_STEP_TITLES,
    build_implementation_prompt,
    build_plan_prompt,
    derive_branch_name,
    parse_plan_response,
    parse_questions,
    split_sections,
    wrap_text,
)
from ticketflow.planning.models import PlanQuestion, PlanStep, Ticket, TicketInfo


FULL_RESPONSE = """Some preamble the assistant added.
---ANALYSIS---
The login page needs a button that opens the OAuth flow.

---QUESTIONS---
None

---PLAN---
STEP 1: Add button component
Create the button and wire the click handler.
FILES: src/Login.tsx, src/Button.tsx

STEP 2: Hook up OAuth
Call the existing auth client.
FILES: TBD
---END---
"""


def make_ticket(**overrides) -> Ticket:
    payload = {"id": "t-1", "identifier": "ENG-42", "title": "Add Login Button"}
    payload.update(overrides)
    return Ticket.model_validate(payload)


def test_derive_branch_name_matches_example() -> None:
    assert derive_branch_name("ENG-42", "Add Login Button") == "eng-42-add-login-button"


def test_derive_branch_name_truncates_slug_and_trims_hyphens() -> None:
    branch = derive_branch_name("ENG-7", "Fix: the very long title thats going on")
    slug = branch[len("eng-7-"):]
    assert len(slug) <= 30
    assert not slug.endswith("-")
    assert branch == "eng-7-fix-the-very-long-title-thats"


def test_derive_branch_name_is_deterministic() -> None:
    assert derive_branch_name("ENG-1", "Same") == derive_branch_name("ENG-1", "Same")


def test_derive_branch_name_without_usable_title() -> None:
    assert derive_branch_name("ENG-9", "!!!") == "eng-9"


def test_split_sections_out_of_order_and_missing_end() -> None:
    raw = "---PLAN---\nSTEP 1: Do it\n---ANALYSIS---\nShort analysis"
    sections = split_sections(raw)
    assert sections["PLAN"] == "STEP 1: Do it"
    assert sections["ANALYSIS"] == "Short analysis"
    assert "QUESTIONS" not in sections


def test_parse_full_response() -> None:
    parsed = parse_plan_response(FULL_RESPONSE)

    assert parsed.analysis.startswith("The login page")
    assert parsed.questions == ()
    assert not parsed.used_fallback
    assert [step.id for step in parsed.steps] == ["step-1", "step-2"]
    assert parsed.steps[0].title == "Add button component"
    assert parsed.steps[0].files == ("src/Login.tsx", "src/Button.tsx")
    assert "FILES" not in parsed.steps[0].description
    assert parsed.steps[1].files == ()


def test_parse_response_without_plan_uses_fallback() -> None:
    parsed = parse_plan_response("---ANALYSIS---\nOnly analysis\n---END---")

    assert parsed.used_fallback
    assert tuple(step.description for step in parsed.steps) == FALLBACK_STEP_TITLES
    assert parsed.analysis == "Only analysis"


@pytest.mark.parametrize("raw", ["", "no markers at all", "---PLAN---\nnothing that looks like a step"])
def test_parse_response_never_raises(raw: str) -> None:
    parsed = parse_plan_response(raw)
    assert len(parsed.steps) == 5
    assert parsed.used_fallback


def test_parse_questions_numbered_with_sub_items() -> None:
    text = "\n".join(
        [
            "1. **Which auth provider should we use?**",
            "2. What happens on failure?",
            "   1. Retry silently",
            "   2. Show an error",
            "3. Should the button be disabled while loading?",
        ]
    )
    questions = parse_questions(text)

    assert [question.id for question in questions] == ["q-0", "q-1", "q-2"]
    assert questions[0].question == "Which auth provider should we use?"
    assert questions[1].question == "What happens on failure?\n  1. Retry silently\n  2. Show an error"


def test_parse_questions_bullets_and_letters() -> None:
    questions = parse_questions("- Which locale is the default?\n  a) English\n+ Any analytics events?")

    assert len(questions) == 1
    assert questions[0].question == "Which locale is the default?\n  English\n  Any analytics events?"


@pytest.mark.parametrize("text", ["None", "none", "  NONE  ", ""])
def test_parse_questions_sentinel(text: str) -> None:
    assert parse_questions(text) == ()


def test_parse_questions_drops_short_entries() -> None:
    assert parse_questions("1. Why?\n2. Which database should we target?") == (
        PlanQuestion(id="q-0", question="Which database should we target?"),
    )


def test_wrap_text_respects_width_and_long_words() -> None:
    long_word = "x" * 80
    lines = wrap_text(f"short words here\n\n{long_word} tail", width=20)

    assert lines[0] == "short words here"
    assert long_word in lines
    assert all(len(line) <= 20 for line in lines if line != long_word)


def test_build_plan_prompt_includes_ticket_context_and_feedback() -> None:
    ticket = make_ticket(
        description="Users need to sign in.",
        labels=[{"name": "frontend"}, "auth"],
        parent={"identifier": "ENG-1", "title": "Auth epic"},
        comments=[{"author": "sam", "body": "Use the new design"}],
    )
    prompt = build_plan_prompt(ticket, "Repository: web", feedback=["Smaller steps please"])

    assert "Ticket: ENG-42" in prompt
    assert "Labels: frontend, auth" in prompt
    assert "Parent Issue: ENG-1 - Auth epic" in prompt
    assert "  - sam: Use the new design" in prompt
    assert "Repository context:\nRepository: web" in prompt
    assert "- Smaller steps please" in prompt
    assert prompt.rstrip().endswith("---END---")


def test_build_implementation_prompt_lists_steps_and_context() -> None:
    info = TicketInfo(id="t-1", identifier="ENG-42", title="Add Login Button", description="desc")
    steps = [PlanStep(id="step-1", description="Add button", files=("a.py",)), PlanStep(id="step-2", description="Test")]

    prompt = build_implementation_prompt(info, steps, "Use blue")

    assert "Step 1: Add button\nFiles: a.py" in prompt
    assert "Step 2: Test" in prompt
    assert "Additional Context from User:\nUse blue" in prompt
    assert "Do NOT commit" in prompt


def test_render_boxes_analysis_and_plan() -> None:
    parsed = parse_plan_response(FULL_RESPONSE)

    analysis = render.analysis_entries(parsed.analysis, width=20)
    assert analysis[0].message.startswith("┌─ Analysis ")
    assert analysis[-1].message.startswith("└")
    assert all(len(entry.message) <= 22 for entry in analysis[1:-1])

    approval = render.approval_entries(parsed.steps)
    messages = [entry.message for entry in approval]
    assert "  Step 1: Add button component" in messages
    assert "    Files: src/Login.tsx, src/Button.tsx" in messages
    assert approval[-1].type == "prompt"
    assert approval[-1].message == render.APPROVAL_PROMPT


def test_render_fallback_entries() -> None:
    entries = render.fallback_entries(parse_plan_response("").steps)
    messages = [entry.message for entry in entries]

    assert "1. Review ticket requirements" in messages
    assert "5. Create PR" in messages
    assert messages[-1] == render.FALLBACK_PROMPT
