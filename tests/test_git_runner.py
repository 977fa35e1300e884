from __future__ import annotations

import asyncio
import os
from pathlib import Path

import pytest

from ticketflow.git import GitCommandError, GitNotFoundError, GitRunner, parse_worktree_list
from ticketflow.utils import sanitize_environment
from ticketflow.worktrees import WorktreeProvisionError, WorktreeProvisioner

from conftest import requires_git, run_git


PORCELAIN = """worktree /work/repo
HEAD 1111111111111111111111111111111111111111
branch refs/heads/main

worktree /work/eng-42-add-login
HEAD 2222222222222222222222222222222222222222
branch refs/heads/eng-42-add-login

worktree /work/detached
HEAD 3333333333333333333333333333333333333333
detached
"""


def test_parse_worktree_list() -> None:
    entries = parse_worktree_list(PORCELAIN)

    assert [(entry.path, entry.branch, entry.is_main) for entry in entries] == [
        ("/work/repo", "main", True),
        ("/work/eng-42-add-login", "eng-42-add-login", False),
    ]


def test_parse_worktree_list_with_detached_main_tree() -> None:
    output = (
        "worktree /work/repo\n"
        "HEAD 1111111111111111111111111111111111111111\n"
        "detached\n"
        "\n"
        "worktree /work/feat\n"
        "HEAD 2222222222222222222222222222222222222222\n"
        "branch refs/heads/feat\n"
    )

    entries = parse_worktree_list(output)

    assert [(entry.path, entry.branch, entry.is_main) for entry in entries] == [("/work/feat", "feat", False)]


def test_git_not_found(tmp_path: Path) -> None:
    with pytest.raises(GitNotFoundError):
        GitRunner(tmp_path / "missing-git")


@requires_git
def test_repository_queries(git_repo: Path, tmp_path: Path) -> None:
    git = GitRunner()
    plain = tmp_path / "plain"
    plain.mkdir()

    assert asyncio.run(git.is_repo(str(git_repo)))
    assert not asyncio.run(git.is_repo(str(plain)))
    assert not asyncio.run(git.is_repo(str(tmp_path / "nope")))

    listing = asyncio.run(git.branches(str(git_repo)))
    assert listing.current == "main"
    assert listing.has_local("main")
    assert not listing.has_remote("main")


@requires_git
def test_remove_missing_worktree_raises(git_repo: Path, tmp_path: Path) -> None:
    git = GitRunner()
    with pytest.raises(GitCommandError):
        asyncio.run(git.remove_worktree(str(git_repo), str(tmp_path / "not-a-worktree")))


@requires_git
def test_provision_creates_then_reuses(git_repo: Path, tmp_path: Path) -> None:
    provisioner = WorktreeProvisioner(GitRunner())

    first = asyncio.run(provisioner.provision(str(git_repo), "eng-42-add-login"))
    second = asyncio.run(provisioner.provision(str(git_repo), "eng-42-add-login"))

    expected = os.path.realpath(tmp_path / "eng-42-add-login")
    assert first.created and not first.branch_existed
    assert os.path.realpath(first.path) == expected
    assert os.path.isabs(first.path) and ".." not in Path(first.path).parts
    assert not second.created
    assert second.path == first.path
    assert "eng-42-add-login" in run_git(git_repo, "branch", "--format=%(refname:short)")


@requires_git
def test_provision_checks_out_existing_branch(git_repo: Path) -> None:
    run_git(git_repo, "branch", "eng-7-existing")

    result = asyncio.run(WorktreeProvisioner(GitRunner()).provision(str(git_repo), "eng-7-existing"))

    assert result.created and result.branch_existed
    assert run_git(Path(result.path), "branch", "--show-current").strip() == "eng-7-existing"


@requires_git
def test_provision_with_relative_repo_path_places_worktree_beside_repo(
    git_repo: Path, tmp_path: Path, monkeypatch
) -> None:
    monkeypatch.chdir(tmp_path)

    result = asyncio.run(WorktreeProvisioner(GitRunner()).provision("repo", "eng-1-relative"))

    assert os.path.isabs(result.path)
    assert os.path.realpath(result.path) == os.path.realpath(tmp_path / "eng-1-relative")
    assert not (git_repo / "eng-1-relative").exists()


@requires_git
def test_provision_failure_leaves_no_registration(git_repo: Path, tmp_path: Path) -> None:
    blocker = tmp_path / "eng-9-blocked"
    blocker.mkdir()
    (blocker / "occupied.txt").write_text("x", encoding="utf-8")
    git = GitRunner()

    with pytest.raises(WorktreeProvisionError):
        asyncio.run(WorktreeProvisioner(git).provision(str(git_repo), "eng-9-blocked"))

    entries = asyncio.run(git.list_worktrees(str(git_repo)))
    assert [entry.branch for entry in entries] == ["main"]
    assert (blocker / "occupied.txt").exists()


@requires_git
def test_save_diff_prefers_uncommitted_changes(git_repo: Path) -> None:
    git = GitRunner(diff_dir_name=".ticketflow")
    result = asyncio.run(WorktreeProvisioner(git).provision(str(git_repo), "eng-1-diff"))
    worktree = Path(result.path)
    (worktree / "app.py").write_text("print('changed')\n", encoding="utf-8")

    snapshot = asyncio.run(git.save_diff(result.path, "ENG-1"))

    assert snapshot.base == "main"
    assert snapshot.path == str(worktree / ".ticketflow" / "worktree-ENG-1.patch")
    text = git.read_diff(result.path, "ENG-1")
    assert text is not None and "+print('changed')" in text
    assert text.endswith("\n")
    assert snapshot.diff_length == len(text)

    assert git.delete_diff(result.path, "ENG-1")
    assert not git.delete_diff(result.path, "ENG-1")
    assert git.read_diff(result.path, "ENG-1") is None


@requires_git
def test_save_diff_against_merge_base_for_commits(git_repo: Path) -> None:
    git = GitRunner()
    result = asyncio.run(WorktreeProvisioner(git).provision(str(git_repo), "eng-2-commit"))
    worktree = Path(result.path)
    (worktree / "feature.py").write_text("VALUE = 1\n", encoding="utf-8")
    run_git(worktree, "add", "feature.py")
    run_git(worktree, "commit", "-q", "-m", "feature")

    asyncio.run(git.save_diff(result.path, "ENG-2"))

    text = git.read_diff(result.path, "ENG-2")
    assert text is not None
    assert "+VALUE = 1" in text
    assert "app.py" not in text


def test_subprocess_environment_drops_location_overrides(monkeypatch) -> None:
    monkeypatch.setenv("GIT_DIR", "/elsewhere/.git")
    monkeypatch.setenv("PYTHONPATH", "/server/src")
    monkeypatch.setenv("HOME", "/home/dev")

    env = sanitize_environment({"GIT_TERMINAL_PROMPT": "0"})

    assert "GIT_DIR" not in env and "PYTHONPATH" not in env
    assert env["HOME"] == "/home/dev"
    assert env["GIT_TERMINAL_PROMPT"] == "0"
