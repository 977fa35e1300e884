"""Chunk delivery keyed by working directory."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Callable

logger = logging.getLogger(__name__)

ChunkListener = Callable[[str], None]


class StreamHub:
    """Fan assistant output chunks out to listeners registered for a key.

    Keys are worktree paths, so output from concurrent turns in different
    worktrees never reaches the same listener. Subscriptions are not tied to
    any caller's lifetime; they last until the returned callable is invoked.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[ChunkListener]] = defaultdict(list)

    def subscribe(self, key: str, listener: ChunkListener) -> Callable[[], None]:
        self._listeners[key].append(listener)

        def _unsubscribe() -> None:
            listeners = self._listeners.get(key)
            if not listeners:
                return
            try:
                listeners.remove(listener)
            except ValueError:
                return
            if not listeners:
                del self._listeners[key]

        return _unsubscribe

    def publish(self, key: str, chunk: str) -> None:
        for listener in list(self._listeners.get(key, ())):
            try:
                listener(chunk)
            except Exception:  # a failing listener must not starve the others
                logger.exception("Stream listener failed", extra={"stream_key": key})

    def listener_count(self, key: str) -> int:
        return len(self._listeners.get(key, ()))


__all__ = ["ChunkListener", "StreamHub"]
