"""Repository profile loading."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

import yaml
from pydantic import ValidationError

from .models import RepoProfile

logger = logging.getLogger(__name__)


class ProfileLoadError(RuntimeError):
    """Raised when one or more profile files cannot be parsed."""


class ProfileLoader:
    """Loads repository profiles from YAML files on disk."""

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        paths = [Path(path) for path in (search_paths or [])]
        self._search_paths: list[Path] = [path for path in paths if path.is_dir()]

    @property
    def search_paths(self) -> list[Path]:
        return list(self._search_paths)

    def load_all(self) -> dict[str, RepoProfile]:
        """Load profiles from every search path.

        Later search paths override earlier ones when profile ids collide.
        """

        profiles: dict[str, RepoProfile] = {}
        errors: list[str] = []

        for base in self._search_paths:
            for path in sorted(base.glob("*.yml")) + sorted(base.glob("*.yaml")):
                try:
                    document = yaml.safe_load(path.read_text(encoding="utf-8"))
                except yaml.YAMLError as exc:
                    errors.append(f"Failed to parse YAML in {path}: {exc}")
                    continue
                if document is None:
                    continue
                try:
                    profile = RepoProfile.model_validate(document)
                except ValidationError as exc:
                    errors.append(f"Profile validation error in {path}: {exc}")
                    continue
                profiles[profile.id] = profile

        if errors:
            raise ProfileLoadError("; ".join(errors))
        return profiles

    def get(self, profile_id: str) -> RepoProfile:
        try:
            return self.load_all()[profile_id]
        except KeyError as exc:
            raise ProfileLoadError(f"Profile '{profile_id}' not found in search paths") from exc

    def resolve(self, repo_path: str, default_id: str | None = None) -> RepoProfile | None:
        """Pick the profile that lists ``repo_path``, else ``default_id``, else nothing."""

        profiles = self.load_all()
        for profile in profiles.values():
            if profile.matches(repo_path):
                return profile
        if default_id and default_id in profiles:
            return profiles[default_id]
        return None

    def repo_context(self, repo_path: str, default_id: str | None = None) -> str | None:
        try:
            profile = self.resolve(repo_path, default_id)
        except ProfileLoadError:
            logger.warning("Ignoring unreadable repository profiles", exc_info=True)
            return None
        return profile.repo_context() if profile else None


def load_profiles(search_paths: Iterable[Path] | None = None) -> dict[str, RepoProfile]:
    return ProfileLoader(search_paths).load_all()


__all__ = ["ProfileLoadError", "ProfileLoader", "RepoProfile", "load_profiles"]
