"""Assistant CLI orchestration utilities."""

from .runner import (
    AssistantNotFoundError,
    AssistantRunner,
    AssistantRunnerError,
    ContextFile,
    FakeAssistantRunner,
    ScriptedTurn,
    TurnResult,
    parse_stream_line,
)
from .streams import StreamHub

__all__ = [
    "AssistantNotFoundError",
    "AssistantRunner",
    "AssistantRunnerError",
    "ContextFile",
    "FakeAssistantRunner",
    "ScriptedTurn",
    "StreamHub",
    "TurnResult",
    "parse_stream_line",
]
