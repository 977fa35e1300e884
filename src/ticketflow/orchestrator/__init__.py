"""Session orchestration: planning flow, hand-off and detached execution."""

from .detacher import BackgroundExecutionDetacher
from .flow import Orchestrator
from .handoff import HandOff, InvalidTransitionError, hand_off

__all__ = [
    "BackgroundExecutionDetacher",
    "HandOff",
    "InvalidTransitionError",
    "Orchestrator",
    "hand_off",
]
