"""Keyed record store with whole-record replacement and change listeners."""

from __future__ import annotations

import logging
from typing import Callable, Generic, Iterator, TypeVar

logger = logging.getLogger(__name__)

R = TypeVar("R")


class RecordStore(Generic[R]):
    """Holds immutable records keyed by string.

    Every write swaps the whole record under its key, so readers only ever see
    a complete old or complete new record. Listeners are told about each write
    (``None`` for deletions) after it has been applied.
    """

    def __init__(self) -> None:
        self._records: dict[str, R] = {}
        self._listeners: list[Callable[[str, R | None], None]] = []

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._records))

    def get(self, key: str) -> R | None:
        return self._records.get(key)

    def values(self) -> list[R]:
        return list(self._records.values())

    def snapshot(self) -> dict[str, R]:
        return dict(self._records)

    def subscribe(self, listener: Callable[[str, R | None], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return _unsubscribe

    def _write(self, key: str, record: R) -> R:
        self._records[key] = record
        self._notify(key, record)
        return record

    def _delete(self, key: str) -> R | None:
        record = self._records.pop(key, None)
        if record is not None:
            self._notify(key, None)
        return record

    def _notify(self, key: str, record: R | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(key, record)
            except Exception:
                logger.exception("Store listener failed", extra={"record_key": key})


__all__ = ["RecordStore"]
