"""Fire-and-forget implementation runs."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable

from ..assistant import AssistantRunner
from ..git import DiffSnapshot, GitRunner
from ..planning.codec import build_implementation_prompt
from ..planning.models import PlanStep, TicketInfo
from ..storage.worktree_sessions import WorktreeBusyError, normalize_path

logger = logging.getLogger(__name__)

StreamSink = Callable[[str, str], object]
CompletionSink = Callable[[str, bool], object]
ErrorSink = Callable[[str, str], object]
DiffSink = Callable[[str, DiffSnapshot], object]


class BackgroundExecutionDetacher:
    """Runs implementation turns as tasks that outlive whoever started them.

    The detacher keeps a strong reference to each task until it finishes.
    Nothing raised inside a task escapes it: failures are reported through
    the error and completion sinks.
    """

    def __init__(
        self,
        assistant: AssistantRunner,
        git: GitRunner | None = None,
        *,
        stop_grace: float = 5.0,
    ) -> None:
        self._assistant = assistant
        self._git = git
        self._stop_grace = stop_grace
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def is_running(self, worktree_path: str) -> bool:
        task = self._tasks.get(normalize_path(worktree_path))
        return task is not None and not task.done()

    @property
    def active_paths(self) -> list[str]:
        return [path for path, task in self._tasks.items() if not task.done()]

    def detach(
        self,
        worktree_path: str,
        context: str | None,
        plan_steps: Iterable[PlanStep],
        ticket_info: TicketInfo,
        stream_sink: StreamSink,
        completion_sink: CompletionSink,
        *,
        error_sink: ErrorSink | None = None,
        diff_sink: DiffSink | None = None,
        diff_session_id: str | None = None,
    ) -> asyncio.Task[None]:
        """Schedule the implementation run and return without waiting for it."""

        key = normalize_path(worktree_path)
        if self.is_running(key):
            raise WorktreeBusyError(f"Worktree '{key}' already has a detached run")

        task = asyncio.create_task(
            self._run(
                key,
                build_implementation_prompt(ticket_info, plan_steps, context),
                stream_sink,
                completion_sink,
                error_sink,
                diff_sink,
                diff_session_id or ticket_info.identifier,
            ),
            name=f"ticketflow-implement:{key}",
        )
        self._tasks[key] = task
        task.add_done_callback(lambda finished, key=key: self._forget(key, finished))
        logger.info("Detached implementation run", extra={"worktree_path": key})
        return task

    def _forget(self, key: str, task: asyncio.Task[None]) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]

    async def _run(
        self,
        path: str,
        prompt: str,
        stream_sink: StreamSink,
        completion_sink: CompletionSink,
        error_sink: ErrorSink | None,
        diff_sink: DiffSink | None,
        diff_session_id: str,
    ) -> None:
        unsubscribe = self._assistant.subscribe(path, lambda chunk: stream_sink(path, chunk))
        success = False
        error: str | None = None
        try:
            result = await self._assistant.send_turn(prompt, cwd=path, plan_only=False)
        except asyncio.CancelledError:
            logger.info("Implementation run cancelled", extra={"worktree_path": path})
            raise
        except Exception as exc:
            logger.exception("Implementation run crashed", extra={"worktree_path": path})
            error = str(exc) or exc.__class__.__name__
        else:
            if result.stopped:
                logger.info("Implementation run stopped", extra={"worktree_path": path})
                return
            success = result.success
            error = result.error
        finally:
            unsubscribe()

        if self._git is not None:
            await self._save_diff(path, diff_session_id, diff_sink)

        try:
            if not success and error and error_sink is not None:
                error_sink(path, error)
            completion_sink(path, success)
        except Exception:
            logger.exception("Completion sink failed", extra={"worktree_path": path})

    async def _save_diff(self, path: str, diff_session_id: str, diff_sink: DiffSink | None) -> None:
        assert self._git is not None
        try:
            snapshot = await self._git.save_diff(path, diff_session_id)
            if diff_sink is not None:
                diff_sink(path, snapshot)
        except Exception:
            logger.warning("Could not save worktree diff", exc_info=True, extra={"worktree_path": path})

    async def stop(self, worktree_path: str) -> bool:
        """Kill the assistant process for the path and cancel its task.

        Callers mark the worktree stopped before calling this so output that
        is still in flight is dropped.
        """

        key = normalize_path(worktree_path)
        killed = await self._assistant.stop(key)
        task = self._tasks.get(key)
        if task is None or task.done():
            return killed

        done, _ = await asyncio.wait({task}, timeout=self._stop_grace)
        if not done:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        return True

    async def join(self) -> None:
        """Wait for every detached run to finish."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)


__all__ = ["BackgroundExecutionDetacher", "CompletionSink", "DiffSink", "ErrorSink", "StreamSink"]
