"""Pydantic models for persisted configuration and Buildkite API payloads."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_STATE_ICONS: dict[str, str] = {
    "passed": "✓",
    "failed": "✗",
    "canceled": "⊘",
    "running": "●",
    "scheduled": "○",
    "blocked": "■",
    "canceling": "…",
    "skipped": "○",
    "not_run": "○",
}

# ---------------------------------------------------------------------------
# Client settings
# ---------------------------------------------------------------------------


class NotificationSettings(BaseModel):
    """Controls which user-facing messages are shown."""

    enabled: bool = True
    level: int = logging.INFO


class UISettings(BaseModel):
    icons: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_STATE_ICONS))


class ClientSettings(BaseModel):
    """Effective client settings after defaults, global and project overrides."""

    default_org: str | None = None
    request_timeout_seconds: float = 30.0
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    ui: UISettings = Field(default_factory=UISettings)


# ---------------------------------------------------------------------------
# Persisted config files
# ---------------------------------------------------------------------------


class OrganizationConfig(BaseModel):
    """One organization entry in the global config file."""

    model_config = ConfigDict(extra="allow")

    token: str = ""
    default_pipeline: str | None = None
    repositories: list[str] = Field(default_factory=list)


class GlobalConfig(BaseModel):
    """Contents of ``<data_dir>/config.json``."""

    model_config = ConfigDict(extra="allow")

    current_organization: str | None = None
    organizations: dict[str, OrganizationConfig] = Field(default_factory=dict)
    settings: dict[str, Any] = Field(default_factory=dict)


class ProjectConfig(BaseModel):
    """Contents of ``<data_dir>/projects/<key>.json`` for one working directory."""

    model_config = ConfigDict(extra="allow")

    path: str = ""
    organization: str | None = None
    pipeline: str | None = None
    branch: str | None = None
    settings: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# API payloads
# ---------------------------------------------------------------------------


class Person(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str | None = None
    email: str | None = None


class Pipeline(BaseModel):
    """Subset of the ``/pipelines`` resource used by the client."""

    model_config = ConfigDict(extra="allow")

    slug: str
    name: str = ""
    repository: str | None = None
    default_branch: str | None = None
    web_url: str | None = None


class Build(BaseModel):
    """Subset of the ``/builds`` resource used by the client."""

    model_config = ConfigDict(extra="allow")

    number: int
    state: str = ""
    branch: str | None = None
    commit: str | None = None
    message: str | None = None
    web_url: str | None = None
    created_at: str | None = None
    author: Person | None = None
    creator: Person | None = None

    @property
    def short_commit(self) -> str:
        return (self.commit or "unknown")[:8]

    @property
    def author_name(self) -> str:
        for person in (self.author, self.creator):
            if person is not None and person.name:
                return person.name
        return "Unknown"
