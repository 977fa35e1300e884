"""Ticket models and the plan prompt/response codec."""

from .codec import (
    build_implementation_prompt,
    build_plan_prompt,
    derive_branch_name,
    fallback_plan,
    parse_plan_response,
)
from .models import ParsedPlan, PlanQuestion, PlanStep, Ticket, TicketInfo

__all__ = [
    "ParsedPlan",
    "PlanQuestion",
    "PlanStep",
    "Ticket",
    "TicketInfo",
    "build_implementation_prompt",
    "build_plan_prompt",
    "derive_branch_name",
    "fallback_plan",
    "parse_plan_response",
]
