"""In-memory session stores and the optional event journal."""

from .base import RecordStore
from .journal import EventJournal, JournalEvent, JournalUnavailableError
from .models import LogEntry, Session, WorktreeSession
from .sessions import SessionNotFoundError, SessionStore
from .worktree_sessions import WorktreeBusyError, WorktreeSessionStore

__all__ = [
    "EventJournal",
    "JournalEvent",
    "JournalUnavailableError",
    "LogEntry",
    "RecordStore",
    "Session",
    "SessionNotFoundError",
    "SessionStore",
    "WorktreeBusyError",
    "WorktreeSession",
    "WorktreeSessionStore",
]
