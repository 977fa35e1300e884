"""Repository profile models."""

from __future__ import annotations

import os
from typing import Any

from pydantic import BaseModel, Field, field_validator


class RepoProfile(BaseModel):
    """Prompt context the planner adds for a repository."""

    id: str = Field(..., description="Unique identifier for the profile.")
    title: str = Field(..., description="Display title for the repository.")
    repositories: list[str] = Field(
        default_factory=list,
        description="Repository directory names or absolute paths this profile applies to.",
    )
    context: str = Field(
        default="",
        description="Free-form description of the repository included in planning prompts.",
    )
    conventions: list[str] = Field(
        default_factory=list,
        description="Coding conventions the plan should respect.",
    )
    constraints: list[str] = Field(
        default_factory=list,
        description="Constraints or guardrails for implementation work.",
    )
    test_command: str | None = Field(
        default=None,
        description="Command used to run the repository's tests, if known.",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Repository profile id must not be empty")
        return normalized

    @field_validator("repositories", "conventions", "constraints", mode="before")
    @classmethod
    def _ensure_list(cls, value: Any):
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        if isinstance(value, (list, tuple)):
            return list(value)
        raise TypeError("repositories, conventions and constraints must be sequences of strings")

    def matches(self, repo_path: str) -> bool:
        resolved = os.path.realpath(repo_path)
        name = os.path.basename(resolved.rstrip(os.sep))
        for entry in self.repositories:
            if os.path.isabs(entry):
                if os.path.realpath(entry) == resolved:
                    return True
            elif entry == name:
                return True
        return False

    def repo_context(self) -> str:
        """Render the profile as the repository context block of a planning prompt."""

        parts = [f"Repository: {self.title}"]
        if self.context.strip():
            parts.append(self.context.strip())
        if self.conventions:
            parts.append("Conventions:\n" + "\n".join(f"- {item}" for item in self.conventions))
        if self.constraints:
            parts.append("Constraints:\n" + "\n".join(f"- {item}" for item in self.constraints))
        if self.test_command:
            parts.append(f"Run tests with: {self.test_command}")
        return "\n".join(parts)


__all__ = ["RepoProfile"]
