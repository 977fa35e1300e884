"""Tool registration for the Ticketflow MCP server."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastmcp import Context, FastMCP

from ..config import TicketflowSettings
from ..orchestrator import Orchestrator
from ..storage.models import Session, WorktreeSession

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    start_work: Any
    select_repo: Any
    submit_answers: Any
    submit_context: Any
    submit_input: Any
    approve_plan: Any
    regenerate_plan: Any
    stop_session: Any
    remove_session: Any
    stop_worktree: Any
    remove_worktree: Any
    switch_to_worktree: Any
    list_sessions: Any
    get_session: Any
    list_worktree_sessions: Any
    read_diff: Any


def _project(record: Session | WorktreeSession | None) -> dict[str, Any] | None:
    if record is None:
        return None
    if isinstance(record, WorktreeSession):
        return {"kind": "worktree_session", **record.to_dict()}
    return {"kind": "session", **record.to_dict()}


def register_tools(
    server: FastMCP,
    *,
    orchestrator: Orchestrator,
    settings: TicketflowSettings,
) -> ToolHandles:
    """Register the start-work actions and read-only projections on ``server``."""

    async def _start_work(
        ticket: dict[str, Any],
        branch_name: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Open a planning session for a ticket; returns the existing one for a known ticket."""

        session = await orchestrator.start_work(ticket, branch_name)
        _emit_log(
            context,
            "info",
            "Work session ready",
            extra={"session_id": session.id, "branch": session.branch_name},
        )
        return _project(session)  # type: ignore[return-value]

    async def _select_repo(session_id: str, repo_path: str, context: Context | None = None) -> dict[str, Any] | None:
        """Verify the repository, provision the worktree and generate a plan."""

        session = await orchestrator.select_repo(session_id, repo_path)
        _emit_log(
            context,
            "info",
            "Repository selected",
            extra={"session_id": session_id, "step": session.current_step if session else None},
        )
        return _project(session)

    async def _submit_answers(
        session_id: str,
        answers: dict[str, str],
        context: Context | None = None,
    ) -> dict[str, Any]:
        session = await orchestrator.submit_answers(session_id, answers)
        _emit_log(context, "info", "Answers submitted", extra={"session_id": session_id, "count": len(answers)})
        return _project(session)  # type: ignore[return-value]

    async def _submit_context(session_id: str, text: str, context: Context | None = None) -> dict[str, Any]:
        session = await orchestrator.submit_context(session_id, text)
        _emit_log(context, "debug", "Context submitted", extra={"session_id": session_id})
        return _project(session)  # type: ignore[return-value]

    async def _submit_input(session_id: str, text: str = "", context: Context | None = None) -> dict[str, Any]:
        """Terminal-style plan review input: y/yes/empty approves, n/no rejects."""

        result = await orchestrator.submit_input(session_id, text)
        _emit_log(context, "info", "Input submitted", extra={"session_id": session_id})
        return _project(result)  # type: ignore[return-value]

    async def _approve_plan(
        session_id: str,
        approved: bool = True,
        feedback: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        result = await orchestrator.approve_plan(session_id, approved, feedback)
        _emit_log(
            context,
            "info",
            "Plan approved" if approved else "Plan rejected",
            extra={"session_id": session_id},
        )
        return _project(result)  # type: ignore[return-value]

    async def _regenerate_plan(session_id: str, context: Context | None = None) -> dict[str, Any] | None:
        session = await orchestrator.regenerate_plan(session_id)
        _emit_log(context, "info", "Plan regenerated", extra={"session_id": session_id})
        return _project(session)

    async def _stop_session(session_id: str, context: Context | None = None) -> dict[str, Any]:
        stopped = await orchestrator.stop_session(session_id)
        _emit_log(context, "warning", "Session stopped", extra={"session_id": session_id})
        return {"session_id": session_id, "stopped": stopped}

    async def _remove_session(session_id: str, context: Context | None = None) -> dict[str, Any]:
        removed = await orchestrator.remove_session(session_id)
        _emit_log(context, "info", "Session removed", extra={"session_id": session_id})
        return {"session_id": session_id, "removed": removed}

    async def _stop_worktree(worktree_path: str, context: Context | None = None) -> dict[str, Any] | None:
        record = await orchestrator.stop_worktree(worktree_path)
        _emit_log(context, "warning", "Worktree stopped", extra={"worktree_path": worktree_path})
        return _project(record)

    async def _remove_worktree(
        repo_path: str,
        worktree_path: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        removed = await orchestrator.remove_worktree(repo_path, worktree_path)
        _emit_log(context, "info", "Worktree removed", extra={"worktree_path": worktree_path})
        return {"worktree_path": worktree_path, "removed": removed}

    def _switch_to_worktree(worktree_path: str, context: Context | None = None) -> dict[str, Any]:
        record = orchestrator.switch_to_worktree(worktree_path)
        _emit_log(context, "debug", "Switched worktree", extra={"worktree_path": worktree_path})
        return {"active_worktree": orchestrator.active_worktree, "session": _project(record)}

    def _list_sessions(context: Context | None = None) -> list[dict[str, Any]]:
        return [session.to_dict() for session in orchestrator.list_sessions()]

    def _get_session(session_id: str, context: Context | None = None) -> dict[str, Any]:
        return orchestrator.get_session(session_id).to_dict()

    def _list_worktree_sessions(context: Context | None = None) -> list[dict[str, Any]]:
        return [record.to_dict() for record in orchestrator.list_worktree_sessions()]

    def _read_diff(worktree_path: str, context: Context | None = None) -> dict[str, Any]:
        diff = orchestrator.read_diff(worktree_path)
        return {
            "worktree_path": worktree_path,
            "available": diff is not None,
            "diff": diff or "",
            "diff_dir": settings.diff_dir_name,
        }

    def _register(name: str, description: str, fn):
        return server.tool(name=name, description=description)(fn)

    return ToolHandles(
        start_work=_register(
            "start_work",
            "Open a planning session for a ticket (id, identifier, title, description, ...).",
            _start_work,
        ),
        select_repo=_register(
            "select_repo",
            "Choose the repository for a session; provisions the worktree and drafts a plan.",
            _select_repo,
        ),
        submit_answers=_register(
            "submit_answers",
            "Answer the assistant's clarifying questions, keyed by question id.",
            _submit_answers,
        ),
        submit_context=_register(
            "submit_context",
            "Add free-text context for the implementation run without approving.",
            _submit_context,
        ),
        submit_input=_register(
            "submit_input",
            "Terminal-style plan review input (y/n, context or feedback).",
            _submit_input,
        ),
        approve_plan=_register(
            "approve_plan",
            "Approve the plan and start implementation in the background, or reject it.",
            _approve_plan,
        ),
        regenerate_plan=_register(
            "regenerate_plan",
            "Draft a new plan that takes the collected feedback into account.",
            _regenerate_plan,
        ),
        stop_session=_register(
            "stop_session",
            "Abort a planning session and stop its assistant process.",
            _stop_session,
        ),
        remove_session=_register(
            "remove_session",
            "Forget a planning session without stopping anything.",
            _remove_session,
        ),
        stop_worktree=_register(
            "stop_worktree",
            "Stop the implementation run in a worktree.",
            _stop_worktree,
        ),
        remove_worktree=_register(
            "remove_worktree",
            "Stop any work, remove the git worktree and its diff snapshot.",
            _remove_worktree,
        ),
        switch_to_worktree=_register(
            "switch_to_worktree",
            "Mark a worktree as the active one and return its session.",
            _switch_to_worktree,
        ),
        list_sessions=_register("list_sessions", "List planning sessions.", _list_sessions),
        get_session=_register("get_session", "Fetch one planning session with its logs.", _get_session),
        list_worktree_sessions=_register(
            "list_worktree_sessions",
            "List worktree sessions with their status and output.",
            _list_worktree_sessions,
        ),
        read_diff=_register("read_diff", "Read the saved diff snapshot for a worktree.", _read_diff),
    )


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Log through the MCP context logger when one is supplied, else the module logger."""

    payload = extra or {}
    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        log_method = getattr(ctx_logger, level, None) if ctx_logger is not None else None
        if callable(log_method):
            log_method(message, extra=payload)
            return
    getattr(logger, level, logger.info)(message, extra=payload)


__all__ = ["ToolHandles", "register_tools"]
