from __future__ import annotations

import argparse
import importlib.util
import json
from pathlib import Path

import pytest

from ticketflow.storage import EventJournal, JournalUnavailableError

from test_journal import StubClient


def load_diag(module_name: str):
    module_path = Path(__file__).resolve().parents[1] / "scripts" / "ticketflow_diag.py"
    spec = importlib.util.spec_from_file_location(module_name, module_path)
    assert spec and spec.loader
    diag = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(diag)
    return diag


def seeded_journal(tmp_path: Path) -> EventJournal:
    client = StubClient()
    journal = EventJournal(tmp_path, client_factory=lambda: client)
    journal.session_created("startwork-1", ticket_identifier="ENG-1", branch_name="eng-1-x")
    journal.handoff(
        "startwork-1",
        worktree_path="/wt/eng-1",
        ticket_identifier="ENG-1",
        step_count=2,
        has_context=False,
    )
    journal.completion("/wt/eng-1", status="success")
    journal.completion("/wt/eng-2", status="error", error="exit code 1")
    return journal


def test_diagnostics_cli_reports_missing_journal(monkeypatch, capsys) -> None:
    diag = load_diag("ticketflow_diag_missing_module")

    class UnavailableJournal:
        def __init__(self, path) -> None:
            self.path = path

        def ping(self) -> bool:
            raise JournalUnavailableError("chromadb package is not installed")

    monkeypatch.setattr(diag, "EventJournal", UnavailableJournal)

    with pytest.raises(SystemExit) as excinfo:
        diag.main(["summary"])

    assert excinfo.value.code == 1
    assert "Journal unavailable" in capsys.readouterr().out


def test_summary_counts_outcomes(monkeypatch, capsys, tmp_path: Path) -> None:
    diag = load_diag("ticketflow_diag_summary_module")
    journal = seeded_journal(tmp_path)
    monkeypatch.setattr(diag, "load_journal", lambda _settings: journal)

    diag.cmd_summary(argparse.Namespace())

    payload = json.loads(capsys.readouterr().out)
    assert payload["events_total"] == 4
    assert payload["by_type"] == {"session_created": 1, "handoff": 1, "completion": 2}
    assert payload["completion_status_counts"] == {"success": 1, "error": 1}
    assert payload["subjects"] == 3


def test_events_json_for_worktree(monkeypatch, capsys, tmp_path: Path) -> None:
    diag = load_diag("ticketflow_diag_events_module")
    journal = seeded_journal(tmp_path)
    monkeypatch.setattr(diag, "load_journal", lambda _settings: journal)

    diag.main(["events", "/wt/eng-1", "--json"])

    events = json.loads(capsys.readouterr().out)
    assert [event["event_type"] for event in events] == ["handoff", "completion"]
    assert events[0]["payload"]["session_id"] == "startwork-1"


def test_search_by_type(monkeypatch, capsys, tmp_path: Path) -> None:
    diag = load_diag("ticketflow_diag_search_module")
    journal = seeded_journal(tmp_path)
    monkeypatch.setattr(diag, "load_journal", lambda _settings: journal)

    diag.main(["search", "--type", "completion", "--text", "exit code"])

    events = json.loads(capsys.readouterr().out)
    assert [event["subject"] for event in events] == ["/wt/eng-2"]


def test_diff_stat(capsys, tmp_path: Path) -> None:
    diag = load_diag("ticketflow_diag_diff_module")
    snapshot_dir = tmp_path / ".ticketflow"
    snapshot_dir.mkdir()
    (snapshot_dir / "worktree-ENG-1.patch").write_text(
        "diff --git a/app.py b/app.py\n"
        "--- a/app.py\n"
        "+++ b/app.py\n"
        "@@ -1 +1,2 @@\n"
        "-print('hello')\n"
        "+print('hi')\n"
        "+print('there')\n",
        encoding="utf-8",
    )

    diag.main(["diff", str(tmp_path), "--ticket", "ENG-1", "--stat"])

    payload = json.loads(capsys.readouterr().out)
    assert payload == {
        "path": str(snapshot_dir / "worktree-ENG-1.patch"),
        "files": 1,
        "added": 2,
        "removed": 1,
    }


def test_diff_missing_snapshot(capsys, tmp_path: Path) -> None:
    diag = load_diag("ticketflow_diag_nodiff_module")

    with pytest.raises(SystemExit):
        diag.main(["diff", str(tmp_path), "--ticket", "ENG-9"])

    assert "No diff snapshot" in capsys.readouterr().out
