"""FastMCP server bootstrap for Ticketflow."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from fastmcp import Context, FastMCP

from . import __version__
from .assistant import AssistantNotFoundError, AssistantRunner
from .config import TicketflowSettings, get_settings
from .git import GitNotFoundError, GitRunner
from .orchestrator import Orchestrator
from .profiles import ProfileLoadError, ProfileLoader
from .storage import EventJournal, JournalUnavailableError, SessionStore
from .tools import register_tools

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure root logging for the Ticketflow server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _open_journal(settings: TicketflowSettings) -> tuple[EventJournal | None, dict[str, Any]]:
    metadata: dict[str, Any] = {
        "available": False,
        "path": str(settings.journal_path),
        "error": None,
    }
    try:
        journal = EventJournal(settings.journal_path)
        journal.ping()
    except JournalUnavailableError as exc:
        metadata["error"] = str(exc)
        return None, metadata
    metadata["available"] = True
    return journal, metadata


def build_orchestrator(
    settings: TicketflowSettings,
    *,
    git: GitRunner | None = None,
    assistant: AssistantRunner | None = None,
    journal: EventJournal | None = None,
) -> Orchestrator:
    git = git or GitRunner(
        Path(settings.git_path) if settings.git_path else None,
        diff_dir_name=settings.diff_dir_name,
    )
    assistant = assistant or AssistantRunner(Path(settings.claude_path) if settings.claude_path else None)
    return Orchestrator(
        git=git,
        assistant=assistant,
        sessions=SessionStore(branch_slug_length=settings.branch_slug_length),
        profiles=ProfileLoader(settings.profile_paths),
        profile_id=settings.profile_id,
        journal=journal,
        wrap_width=settings.wrap_width,
    )


def status_payload(
    orchestrator: Orchestrator,
    settings: TicketflowSettings,
    journal_metadata: dict[str, Any],
    *,
    request_id: Any = None,
) -> dict[str, Any]:
    """Summarize runtime state for the status resource."""

    try:
        profile_ids = sorted(orchestrator.profiles.load_all()) if orchestrator.profiles else []
        profile_error: str | None = None
    except ProfileLoadError as exc:
        profile_ids = []
        profile_error = str(exc)

    worktree_counts: dict[str, int] = {}
    for record in orchestrator.worktrees.values():
        worktree_counts[record.status] = worktree_counts.get(record.status, 0) + 1

    step_counts: dict[str, int] = {}
    for session in orchestrator.sessions.values():
        step_counts[session.current_step] = step_counts.get(session.current_step, 0) + 1

    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "server_version": __version__,
        "log_level": settings.log_level,
        "profiles": {"count": len(profile_ids), "ids": profile_ids, "error": profile_error},
        "git": {"path": str(orchestrator.git.executable)},
        "assistant": {"path": str(orchestrator.assistant.executable)},
        "journal": journal_metadata,
        "sessions": {"count": len(orchestrator.sessions), "by_step": step_counts},
        "worktrees": {
            "count": len(orchestrator.worktrees),
            "by_status": worktree_counts,
            "active": orchestrator.active_worktree,
            "running": orchestrator.detacher.active_paths,
        },
        "request_id": request_id,
    }


def create_server(
    settings: Optional[TicketflowSettings] = None,
    orchestrator: Orchestrator | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server with the start-work tools and status resource."""

    settings = settings or get_settings()
    journal, journal_metadata = _open_journal(settings)
    orchestrator = orchestrator or build_orchestrator(settings, journal=journal)
    if orchestrator.journal is None:
        orchestrator.journal = journal

    server = FastMCP(
        name="Ticketflow",
        version=__version__,
        instructions=(
            "Ticketflow turns tickets into isolated git worktrees, drafts an implementation "
            "plan with the assistant, and runs approved plans in the background. Start with "
            "start_work, then select_repo, review the plan and approve it."
        ),
    )

    handles = register_tools(server, orchestrator=orchestrator, settings=settings)

    @server.resource(
        "resource://ticketflow/status",
        name="ticketflow_status",
        title="Ticketflow Status",
        description="Current sessions, worktree runs and journal availability.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        return json.dumps(
            status_payload(
                orchestrator,
                settings,
                journal_metadata,
                request_id=getattr(context, "request_id", None),
            )
        )

    setattr(server, "orchestrator", orchestrator)
    setattr(server, "journal", journal)
    setattr(server, "journal_metadata", journal_metadata)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the Ticketflow MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    try:
        server = create_server(settings)
    except (AssistantNotFoundError, GitNotFoundError) as exc:
        logger.error("Cannot start Ticketflow", extra={"error": str(exc)})
        raise SystemExit(1) from exc

    logger.info(
        "Launching Ticketflow MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "journal_available": getattr(server, "journal_metadata", {}).get("available"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
