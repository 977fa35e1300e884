"""Interactive start-work flow: repository selection, planning and approval."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Callable, Mapping

from ..assistant import AssistantRunner, AssistantRunnerError, TurnResult
from ..git import GitRunner
from ..planning.codec import (
    DEFAULT_WRAP_WIDTH,
    build_plan_prompt,
    fallback_plan,
    parse_plan_response,
)
from ..planning.models import Ticket, TicketInfo
from ..profiles import ProfileLoader
from ..storage.journal import EventJournal
from ..storage.models import LogEntry, Session, SessionStep, WorktreeSession
from ..storage.sessions import SessionNotFoundError, SessionStore
from ..storage.worktree_sessions import WorktreeBusyError, WorktreeSessionStore, normalize_path
from ..worktrees import WorktreeProvisionError, WorktreeProvisioner
from . import render
from .detacher import BackgroundExecutionDetacher
from .handoff import HandOff, InvalidTransitionError, hand_off

logger = logging.getLogger(__name__)

APPROVE_WORDS = frozenset({"y", "yes", ""})
REJECT_WORDS = frozenset({"n", "no"})


class Orchestrator:
    """Drives Sessions from repository selection to hand-off.

    Each action runs under a per-session lock so two phases of one Session
    never overlap. ``stop_session`` deliberately skips the lock so it can
    interrupt a planning turn that holds it.
    """

    def __init__(
        self,
        *,
        git: GitRunner,
        assistant: AssistantRunner,
        sessions: SessionStore | None = None,
        worktrees: WorktreeSessionStore | None = None,
        provisioner: WorktreeProvisioner | None = None,
        detacher: BackgroundExecutionDetacher | None = None,
        profiles: ProfileLoader | None = None,
        profile_id: str | None = None,
        journal: EventJournal | None = None,
        wrap_width: int = DEFAULT_WRAP_WIDTH,
    ) -> None:
        self.git = git
        self.assistant = assistant
        self.sessions = sessions or SessionStore()
        self.worktrees = worktrees or WorktreeSessionStore()
        self.provisioner = provisioner or WorktreeProvisioner(git)
        self.detacher = detacher or BackgroundExecutionDetacher(assistant, git)
        self.profiles = profiles
        self.profile_id = profile_id
        self.journal = journal
        self.wrap_width = wrap_width
        self.active_worktree: str | None = None
        self._locks: dict[str, asyncio.Lock] = {}

    # -- entry points -----------------------------------------------------

    async def start_work(self, ticket: Ticket | Mapping[str, Any], branch_name: str | None = None) -> Session:
        """Open (or return the existing) planning session for a ticket."""

        if not isinstance(ticket, Ticket):
            ticket = Ticket.model_validate(ticket)
        existing = self.sessions.get_by_ticket(ticket.id)
        if existing is not None:
            return existing

        session = self.sessions.create(ticket, branch_name)
        logger.info(
            "Started work session",
            extra={"session_id": session.id, "ticket": ticket.identifier, "branch": session.branch_name},
        )
        self._journal(
            lambda journal: journal.session_created(
                session.id,
                ticket_identifier=ticket.identifier,
                branch_name=session.branch_name,
            )
        )
        return session

    async def select_repo(self, session_id: str, repo_path: str) -> Session | None:
        """Verify ``repo_path``, provision the worktree and generate a plan.

        Returns the updated Session, or ``None`` if it was stopped meanwhile.
        """

        repo_path = os.path.abspath(repo_path)
        async with self._lock(session_id):
            session = self._expect(session_id, "repo-select")
            if session.is_processing:
                raise InvalidTransitionError(f"Session '{session_id}' is busy")

            self.sessions.begin_processing(session_id, "repo-verify", selected_repo_path=repo_path)
            self._log(
                session_id,
                LogEntry("input", f"> {repo_path}"),
                LogEntry("info", f"Selected: {repo_path}", 1),
                render.BLANK,
                LogEntry("init", "Verifying git repository..."),
            )

            if not await self.git.is_repo(repo_path):
                if not self._alive(session_id):
                    return None
                self._log(
                    session_id,
                    LogEntry("error", "Not a git repository"),
                    LogEntry("prompt", "Select a different folder:"),
                )
                return self.sessions.await_input(session_id, "repo-select", selected_repo_path=None)

            listing = await self.git.branches(repo_path)
            if not self._alive(session_id):
                return None
            branch = session.branch_name
            entries = [
                LogEntry("success", "Valid git repository"),
                LogEntry("info", f"Current branch: {listing.current}", 1),
            ]
            if listing.has_local(branch):
                entries.append(LogEntry("info", f"Branch {branch} exists locally", 1))
            elif listing.has_remote(branch):
                entries.append(LogEntry("info", f"Branch {branch} exists on a remote", 1))
            entries.append(render.BLANK)
            self._log(session_id, *entries)

            worktree_path = await self._setup_worktree(session_id, repo_path)
            if worktree_path is None:
                return self.sessions.get(session_id)
            await self._generate_plan(session_id)
            return self.sessions.get(session_id)

    async def submit_answers(self, session_id: str, answers: Mapping[str, str]) -> Session:
        async with self._lock(session_id):
            session = self._expect(session_id, "plan-review")
            if not session.has_unanswered_questions:
                raise InvalidTransitionError(f"Session '{session_id}' has no open questions")

            session = self.sessions.answer_questions(session_id, dict(answers))
            pairs = [
                f"Q: {question.question}\nA: {question.answer}"
                for question in session.questions
                if question.answer
            ]
            context = _merge_context(session.additional_context, "\n\n".join(pairs))
            self._log(
                session_id,
                LogEntry("success", "Answers recorded"),
                render.BLANK,
                *render.question_entries(session.questions),
                *render.approval_entries(session.plan_steps),
            )
            return self.sessions.await_input(
                session_id,
                has_unanswered_questions=False,
                additional_context=context,
            )

    async def submit_context(self, session_id: str, text: str) -> Session:
        async with self._lock(session_id):
            self._expect_review(session_id)
            return self._add_context(session_id, text)

    async def approve_plan(
        self,
        session_id: str,
        approved: bool,
        feedback: str | None = None,
    ) -> Session | WorktreeSession:
        """Approve (hand off and detach) or reject the reviewed plan.

        Approval returns the running WorktreeSession; rejection returns the
        Session, which stays in plan-review.
        """

        async with self._lock(session_id):
            self._expect_review(session_id)
            if approved:
                return self._approve(session_id)
            return self._reject(session_id, feedback)

    async def submit_input(self, session_id: str, text: str) -> Session | WorktreeSession:
        """Free-text plan-review input.

        ``y``/``yes``/empty approves and ``n``/``no`` rejects. Any other text
        is taken as context and approves the plan when no context has been
        given yet; otherwise it is recorded as rejection feedback.
        """

        async with self._lock(session_id):
            session = self._expect_review(session_id)
            cleaned = text.strip()
            normalized = cleaned.lower()
            if cleaned:
                self._log(session_id, LogEntry("input", f"> {cleaned}"))

            if normalized in APPROVE_WORDS:
                return self._approve(session_id)
            if normalized in REJECT_WORDS:
                return self._reject(session_id, None)
            if not session.additional_context:
                self.sessions.update(session_id, additional_context=cleaned)
                return self._approve(session_id)
            return self._reject(session_id, cleaned)

    async def regenerate_plan(self, session_id: str) -> Session | None:
        async with self._lock(session_id):
            session = self._expect(session_id, "plan-review")
            if session.is_processing:
                raise InvalidTransitionError(f"Session '{session_id}' is busy")
            if session.worktree_path is None:
                raise InvalidTransitionError(f"Session '{session_id}' has no worktree")

            self.sessions.update(
                session_id,
                plan_steps=(),
                questions=(),
                analysis="",
                has_unanswered_questions=False,
            )
            self._log(session_id, LogEntry("init", "Regenerating plan with feedback..."))
            self.worktrees.mark_planning(session.worktree_path, TicketInfo.from_ticket(session.ticket))
            await self._generate_plan(session_id)
            return self.sessions.get(session_id)

    async def stop_session(self, session_id: str) -> bool:
        """Abort planning: kill the assistant, drop the Session, mark the worktree stopped."""

        session = self.sessions.require(session_id)
        path = session.worktree_path
        if path is not None:
            await self.assistant.stop(path)
        self.sessions.remove(session_id)
        self._locks.pop(session_id, None)
        if path is not None and self.worktrees.status_of(path) == "planning":
            self.worktrees.stop(path)
        logger.info("Stopped work session", extra={"session_id": session_id, "worktree_path": path})
        self._journal(lambda journal: journal.stopped(session_id, phase="planning"))
        return True

    async def remove_session(self, session_id: str) -> bool:
        if self.sessions.remove(session_id) is None:
            raise SessionNotFoundError(f"Session '{session_id}' not found")
        self._locks.pop(session_id, None)
        return True

    async def stop_worktree(self, worktree_path: str) -> WorktreeSession | None:
        """Stop whatever runs in the worktree. Stopping is terminal for the record."""

        path = normalize_path(worktree_path)
        was_active = self.worktrees.status_of(path) in {"planning", "running"}
        record = self.worktrees.stop(path)
        if self.detacher.is_running(path):
            await self.detacher.stop(path)
        else:
            await self.assistant.stop(path)
        if was_active:
            self._journal(lambda journal: journal.stopped(path, phase="implementation"))
        return record

    async def remove_worktree(self, repo_path: str, worktree_path: str) -> bool:
        path = normalize_path(worktree_path)
        record = self.worktrees.get(path)
        if record is not None and record.status in {"planning", "running"}:
            await self.stop_worktree(path)

        await self.git.remove_worktree(repo_path, path, force=True)
        if record is not None and record.ticket_info is not None:
            self.git.delete_diff(path, record.ticket_info.identifier)
        self.worktrees.remove(path)
        if self.active_worktree == path:
            self.active_worktree = None
        logger.info("Removed worktree", extra={"worktree_path": path})
        return True

    def switch_to_worktree(self, worktree_path: str) -> WorktreeSession | None:
        self.active_worktree = normalize_path(worktree_path)
        return self.worktrees.get(self.active_worktree)

    def list_sessions(self) -> list[Session]:
        return sorted(self.sessions.values(), key=lambda session: session.started_at)

    def get_session(self, session_id: str) -> Session:
        return self.sessions.require(session_id)

    def list_worktree_sessions(self) -> list[WorktreeSession]:
        return sorted(self.worktrees.values(), key=lambda record: record.started_at)

    def read_diff(self, worktree_path: str) -> str | None:
        record = self.worktrees.get(worktree_path)
        if record is None or record.ticket_info is None:
            return None
        return self.git.read_diff(record.worktree_path, record.ticket_info.identifier)

    async def wait_for_background(self) -> None:
        await self.detacher.join()

    # -- phases -----------------------------------------------------------

    async def _setup_worktree(self, session_id: str, repo_path: str) -> str | None:
        session = self.sessions.begin_processing(session_id, "worktree-setup")
        branch = session.branch_name
        self._log(
            session_id,
            LogEntry("init", "Fetching latest from remote..."),
            LogEntry("init", "Checking existing worktrees..."),
        )

        try:
            result = await self.provisioner.provision(repo_path, branch)
        except WorktreeProvisionError as exc:
            if not self._alive(session_id):
                return None
            self._log(
                session_id,
                LogEntry("error", str(exc)),
                LogEntry("prompt", "Try selecting a different repository?"),
            )
            self.sessions.await_input(session_id, "repo-select", selected_repo_path=None)
            return None
        if not self._alive(session_id):
            return None

        entries = [
            LogEntry("success", "Remote updated")
            if result.fetched
            else LogEntry("warning", "Could not fetch (continuing anyway)")
        ]
        if result.created:
            entries += [
                LogEntry("init", f"Creating worktree at: {result.path}"),
                LogEntry(
                    "info",
                    f"Using existing branch: {branch}" if result.branch_existed else f"Creating new branch: {branch}",
                    1,
                ),
                LogEntry("success", "Worktree created successfully"),
            ]
        else:
            entries += [
                LogEntry("success", f"Worktree already exists for branch: {branch}"),
                LogEntry("info", f"Path: {result.path}", 1),
            ]
        self._log(session_id, *entries)

        try:
            self.worktrees.mark_planning(result.path, TicketInfo.from_ticket(session.ticket))
        except WorktreeBusyError as exc:
            self._log(
                session_id,
                LogEntry("error", str(exc)),
                LogEntry("prompt", "Select the repository for this ticket:"),
            )
            self.sessions.await_input(session_id, "repo-select", selected_repo_path=None)
            return None

        self.sessions.update(session_id, worktree_path=result.path)
        self.active_worktree = result.path
        return result.path

    async def _generate_plan(self, session_id: str) -> None:
        session = self.sessions.begin_processing(session_id, "analyze")
        path = session.worktree_path
        assert path is not None
        self._log(session_id, render.BLANK, LogEntry("init", "Analyzing ticket and codebase..."))

        repo_context = None
        if self.profiles is not None and session.selected_repo_path:
            repo_context = self.profiles.repo_context(session.selected_repo_path, self.profile_id)
        prompt = build_plan_prompt(session.ticket, repo_context, feedback=session.feedback)

        self.sessions.begin_processing(session_id, "planning")
        self._log(
            session_id,
            LogEntry("success", "Ticket loaded"),
            render.BLANK,
            LogEntry("init", "Generating implementation plan..."),
            LogEntry("info", "The assistant is analyzing the ticket and codebase...", 1),
        )

        def _on_chunk(chunk: str) -> None:
            self.sessions.append_streaming_output(session_id, chunk)
            self.worktrees.append_analysis_output(path, chunk)

        unsubscribe = self.assistant.subscribe(path, _on_chunk)
        try:
            result = await self.assistant.send_turn(prompt, cwd=path, plan_only=True)
        except AssistantRunnerError as exc:
            logger.warning("Planning turn could not run", extra={"session_id": session_id, "error": str(exc)})
            result = TurnResult(success=False, response="", error=str(exc))
        finally:
            unsubscribe()
            self.sessions.clear_streaming_output(session_id)

        if not self._alive(session_id):
            return

        if result.stopped:
            steps = fallback_plan()
            self._log(session_id, LogEntry("warning", "Planning stopped"), *render.fallback_entries(steps))
            self.sessions.await_input(session_id, "plan-review", plan_steps=steps, questions=(), analysis="")
            return

        if not (result.success and result.response):
            steps = fallback_plan()
            self._log(
                session_id,
                LogEntry("error", "Failed to generate plan"),
                LogEntry("info", result.error or "Unknown error", 1),
                *render.fallback_entries(steps),
            )
            self.sessions.await_input(session_id, "plan-review", plan_steps=steps, questions=(), analysis="")
            return

        parsed = parse_plan_response(result.response)
        entries = [
            LogEntry("success", "Plan generated"),
            render.BLANK,
            *render.analysis_entries(parsed.analysis, self.wrap_width),
        ]
        if parsed.has_questions:
            entries += [
                render.BLANK,
                LogEntry("warning", "The assistant has questions before it can continue:"),
                *render.question_entries(parsed.questions),
                LogEntry("prompt", "Answer the questions to continue"),
            ]
        elif parsed.used_fallback:
            entries += render.fallback_entries(parsed.steps)
        else:
            entries += render.approval_entries(parsed.steps)
        self._log(session_id, *entries)
        self.sessions.await_input(
            session_id,
            "plan-review",
            plan_steps=parsed.steps,
            questions=parsed.questions,
            analysis=parsed.analysis,
            has_unanswered_questions=parsed.has_questions,
        )

    # -- plan-review helpers (lock held) ----------------------------------

    def _add_context(self, session_id: str, text: str) -> Session:
        cleaned = text.strip()
        if not cleaned:
            raise ValueError("Context must not be empty")
        session = self.sessions.require(session_id)
        self._log(
            session_id,
            LogEntry("input", f"> {cleaned}"),
            LogEntry("success", "Context added"),
            LogEntry("prompt", render.APPROVAL_PROMPT),
        )
        return self.sessions.await_input(
            session_id,
            additional_context=_merge_context(session.additional_context, cleaned),
        )

    def _approve(self, session_id: str) -> WorktreeSession:
        worktree_path = self.sessions.require(session_id).worktree_path
        if worktree_path and self.worktrees.has_active_session(worktree_path):
            self._log(
                session_id,
                LogEntry("error", f"Worktree {worktree_path} already has a running implementation"),
                LogEntry("prompt", render.APPROVAL_PROMPT),
            )
            raise WorktreeBusyError(f"Worktree '{worktree_path}' already has a running implementation")
        self._log(session_id, LogEntry("success", "Plan approved!"), render.BLANK)
        handed = hand_off(self.sessions, self.worktrees, session_id)
        self._locks.pop(session_id, None)
        self._journal(
            lambda journal: journal.handoff(
                session_id,
                worktree_path=handed.worktree_path,
                ticket_identifier=handed.ticket_info.identifier,
                step_count=len(handed.plan_steps),
                has_context=bool(handed.context),
            )
        )
        self._detach(handed)
        self.active_worktree = handed.worktree_path
        return self.worktrees.require(handed.worktree_path)

    def _reject(self, session_id: str, feedback: str | None) -> Session:
        session = self.sessions.require(session_id)
        changes: dict[str, Any] = {}
        if feedback and feedback.strip():
            changes["feedback"] = session.feedback + (feedback.strip(),)
        self._log(session_id, *render.rejection_entries())
        return self.sessions.await_input(session_id, **changes)

    def _detach(self, handed: HandOff) -> None:
        worktrees = self.worktrees

        def _complete(path: str, success: bool) -> None:
            record = worktrees.complete(path, success)
            if record is not None:
                self._journal(
                    lambda journal: journal.completion(path, status=record.status, error=record.error)
                )

        self.detacher.detach(
            handed.worktree_path,
            handed.context,
            handed.plan_steps,
            handed.ticket_info,
            worktrees.append_implementation_output,
            _complete,
            error_sink=worktrees.set_error,
            diff_sink=lambda path, snapshot: worktrees.set_diff_path(path, snapshot.path),
            diff_session_id=handed.diff_session_id,
        )

    # -- plumbing ---------------------------------------------------------

    def _lock(self, session_id: str) -> asyncio.Lock:
        self.sessions.require(session_id)
        return self._locks.setdefault(session_id, asyncio.Lock())

    def _alive(self, session_id: str) -> bool:
        return session_id in self.sessions

    def _expect(self, session_id: str, *steps: SessionStep) -> Session:
        session = self.sessions.require(session_id)
        if session.current_step not in steps:
            raise InvalidTransitionError(
                f"Session '{session_id}' is in step '{session.current_step}', expected {', '.join(steps)}"
            )
        return session

    def _expect_review(self, session_id: str) -> Session:
        session = self._expect(session_id, "plan-review")
        if session.is_processing:
            raise InvalidTransitionError(f"Session '{session_id}' is busy")
        if session.has_unanswered_questions:
            raise InvalidTransitionError(f"Session '{session_id}' has unanswered questions")
        return session

    def _log(self, session_id: str, *entries: LogEntry) -> None:
        self.sessions.add_logs(session_id, entries)

    def _journal(self, write: Callable[[EventJournal], Any]) -> None:
        if self.journal is None:
            return
        try:
            write(self.journal)
        except Exception:
            logger.warning("Journal write failed", exc_info=True)


def _merge_context(existing: str | None, addition: str) -> str | None:
    addition = addition.strip()
    if not addition:
        return existing
    return f"{existing}\n\n{addition}" if existing else addition


__all__ = ["APPROVE_WORDS", "Orchestrator", "REJECT_WORDS"]
