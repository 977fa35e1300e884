from pathlib import Path
import textwrap

import pytest

from ticketflow.profiles import ProfileLoadError, ProfileLoader, RepoProfile


def write_profile(path: Path, *, profile_id: str = "web", title: str, repositories: str = "[web-app]") -> None:
    path.write_text(
        textwrap.dedent(
            """
            id: {profile_id}
            title: {title}
            repositories: {repositories}
            context: React front end served by Vite.
            conventions:
              - Components live in src/components
            constraints: Never touch generated files
            test_command: npm test
            """
        ).strip().format(profile_id=profile_id, title=title, repositories=repositories),
        encoding="utf-8",
    )


def test_loader_merges_paths(tmp_path: Path) -> None:
    base = tmp_path / "base"
    base.mkdir()
    override = tmp_path / "override"
    override.mkdir()

    write_profile(base / "web.yaml", title="Base Title")
    write_profile(override / "web.yml", title="Override Title")

    loader = ProfileLoader([base, override, tmp_path / "missing"])
    profiles = loader.load_all()

    assert profiles["web"].title == "Override Title"
    assert profiles["web"].constraints == ["Never touch generated files"]
    assert loader.search_paths == [base, override]


def test_loader_handles_missing_profiles(tmp_path: Path) -> None:
    loader = ProfileLoader([tmp_path])
    assert loader.load_all() == {}
    assert loader.resolve(str(tmp_path)) is None


def test_loader_reports_validation_error(tmp_path: Path) -> None:
    invalid = tmp_path / "invalid"
    invalid.mkdir()
    (invalid / "broken.yaml").write_text("id: \ntitle: test", encoding="utf-8")

    loader = ProfileLoader([invalid])

    with pytest.raises(ProfileLoadError):
        loader.load_all()
    assert loader.repo_context(str(tmp_path)) is None


def test_resolve_by_directory_name_or_absolute_path(tmp_path: Path) -> None:
    profiles = tmp_path / "profiles"
    profiles.mkdir()
    repo = tmp_path / "checkouts" / "web-app"
    repo.mkdir(parents=True)
    api = tmp_path / "api"
    api.mkdir()
    write_profile(profiles / "web.yaml", title="Web")
    write_profile(profiles / "api.yaml", profile_id="api", title="API", repositories=f"['{api}']")
    write_profile(profiles / "default.yaml", profile_id="default", title="Anything", repositories="[]")

    loader = ProfileLoader([profiles])

    assert loader.resolve(str(repo)).id == "web"
    assert loader.resolve(str(api / ".." / "api")).id == "api"
    assert loader.resolve(str(tmp_path / "other")) is None
    assert loader.resolve(str(tmp_path / "other"), "default").id == "default"


def test_get_unknown_profile(tmp_path: Path) -> None:
    with pytest.raises(ProfileLoadError):
        ProfileLoader([tmp_path]).get("nope")


def test_repo_context_rendering() -> None:
    profile = RepoProfile(
        id="web",
        title="Web",
        context="React front end.",
        conventions=["Use hooks"],
        constraints=["No new deps"],
        test_command="npm test",
    )

    assert profile.repo_context() == (
        "Repository: Web\n"
        "React front end.\n"
        "Conventions:\n- Use hooks\n"
        "Constraints:\n- No new deps\n"
        "Run tests with: npm test"
    )
