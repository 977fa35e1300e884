"""Optional ChromaDB journal of session lifecycle events."""

from __future__ import annotations

import json
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol


class JournalUnavailableError(RuntimeError):
    """Raised when the Chroma client backing the journal cannot be constructed."""


class CollectionProtocol(Protocol):
    """The slice of the Chroma collection API the journal relies on."""

    def add(
        self,
        *,
        documents: Iterable[str],
        metadatas: Iterable[dict[str, Any]],
        ids: Iterable[str],
    ) -> None:
        ...

    def get(
        self,
        *,
        ids: Iterable[str] | None = None,
        where: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> dict[str, list[Any]]:
        ...


class ClientProtocol(Protocol):
    def get_or_create_collection(self, name: str) -> CollectionProtocol:
        ...


@dataclass(slots=True)
class JournalEvent:
    """A lifecycle event as stored in the journal."""

    id: str
    subject: str
    event_type: str
    document: str
    metadata: dict[str, Any]
    timestamp: datetime

    @property
    def payload(self) -> dict[str, Any]:
        try:
            decoded = json.loads(self.document)
        except json.JSONDecodeError:
            return {"text": self.document}
        return decoded if isinstance(decoded, dict) else {"value": decoded}


class EventJournal:
    """Append-only record of session and worktree lifecycle events.

    Events are grouped by ``subject``: the session id for planning events and
    the worktree path for execution events.
    """

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = "ticketflow_events",
        client_factory: Callable[[], ClientProtocol] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._default_client_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._collection: CollectionProtocol | None = None
        self._sequence: dict[str, int] = defaultdict(int)

    @property
    def path(self) -> Path:
        return self._path

    def _default_client_factory(self) -> ClientProtocol:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise JournalUnavailableError(
                "chromadb package is not installed; install ticketflow with the persistence extra"
            ) from exc

        self._path.mkdir(parents=True, exist_ok=True)
        return chromadb.PersistentClient(path=str(self._path))

    def _collection_or_create(self) -> CollectionProtocol:
        if self._collection is None:
            self._collection = self._client_factory().get_or_create_collection(self._collection_name)
        return self._collection

    def ping(self) -> bool:
        self._collection_or_create()
        return True

    def record(
        self,
        subject: str,
        event_type: str,
        body: Any,
        *,
        metadata: dict[str, Any] | None = None,
    ) -> JournalEvent:
        collection = self._collection_or_create()
        self._sequence[subject] += 1
        event_id = f"{subject}:{uuid.uuid4().hex}"
        timestamp = self._clock()
        document = body if isinstance(body, str) else json.dumps(body, default=str)

        event_metadata: dict[str, Any] = {
            "subject": subject,
            "event_type": event_type,
            "timestamp": timestamp.isoformat(),
            "sequence": self._sequence[subject],
        }
        # Chroma only stores scalar metadata values.
        for key, value in (metadata or {}).items():
            if value is None:
                continue
            event_metadata[key] = value if isinstance(value, (str, int, float, bool)) else str(value)

        collection.add(documents=[document], metadatas=[event_metadata], ids=[event_id])
        return JournalEvent(
            id=event_id,
            subject=subject,
            event_type=event_type,
            document=document,
            metadata=event_metadata,
            timestamp=timestamp,
        )

    def session_created(self, session_id: str, *, ticket_identifier: str, branch_name: str) -> JournalEvent:
        return self.record(
            session_id,
            "session_created",
            {"ticket_identifier": ticket_identifier, "branch_name": branch_name},
            metadata={"ticket_identifier": ticket_identifier},
        )

    def handoff(
        self,
        session_id: str,
        *,
        worktree_path: str,
        ticket_identifier: str,
        step_count: int,
        has_context: bool,
    ) -> JournalEvent:
        return self.record(
            worktree_path,
            "handoff",
            {
                "session_id": session_id,
                "ticket_identifier": ticket_identifier,
                "step_count": step_count,
                "has_context": has_context,
            },
            metadata={"session_id": session_id, "ticket_identifier": ticket_identifier},
        )

    def completion(self, worktree_path: str, *, status: str, error: str | None = None) -> JournalEvent:
        return self.record(
            worktree_path,
            "completion",
            {"status": status, "error": error},
            metadata={"status": status},
        )

    def stopped(self, subject: str, *, phase: str) -> JournalEvent:
        return self.record(subject, "stop", {"phase": phase}, metadata={"phase": phase})

    def events_for(self, subject: str, *, limit: int | None = None) -> list[JournalEvent]:
        result = self._collection_or_create().get(where={"subject": subject})
        events = self._to_events(result)
        return events[:limit] if limit else events

    def search(
        self,
        text: str | None = None,
        *,
        event_type: str | None = None,
        limit: int | None = None,
    ) -> list[JournalEvent]:
        where = {"event_type": event_type} if event_type else None
        events = self._to_events(self._collection_or_create().get(where=where, limit=None))
        if text:
            needle = text.lower()
            events = [
                event
                for event in events
                if needle in event.document.lower()
                or any(needle in str(value).lower() for value in event.metadata.values())
            ]
        return events[:limit] if limit else events

    def _to_events(self, result: dict[str, list[Any]]) -> list[JournalEvent]:
        events: list[JournalEvent] = []
        for event_id, document, metadata in zip(
            result.get("ids", []),
            result.get("documents", []),
            result.get("metadatas", []),
        ):
            raw_timestamp = metadata.get("timestamp")
            events.append(
                JournalEvent(
                    id=event_id,
                    subject=metadata.get("subject", ""),
                    event_type=metadata.get("event_type", ""),
                    document=document,
                    metadata=metadata,
                    timestamp=(
                        datetime.fromisoformat(raw_timestamp)
                        if isinstance(raw_timestamp, str)
                        else self._clock()
                    ),
                )
            )
        events.sort(key=lambda event: (event.timestamp, event.metadata.get("sequence", 0)))
        return events


__all__ = ["EventJournal", "JournalEvent", "JournalUnavailableError"]
