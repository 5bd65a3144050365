"""Global and per-project configuration storage.

Layout under the data directory (``~/.buildkite_client`` by default, or
``$BUILDKITE_CLIENT_HOME``)::

    config.json              organizations, current organization, settings
    projects/<key>.json      pipeline / branch / settings for one directory

Effective settings are built from the model defaults, then the global
``settings`` block, then the project ``settings`` block; later layers win.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import shutil
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from buildkite_client.file_io import locked_path, read_json, write_json
from buildkite_client.schemas import ClientSettings, GlobalConfig, OrganizationConfig, ProjectConfig

logger = logging.getLogger(__name__)

DATA_DIR_ENV = "BUILDKITE_CLIENT_HOME"
_DEFAULT_DIR_NAME = ".buildkite_client"


class ConfigError(RuntimeError):
    """Raised when configuration is missing or cannot be applied."""


def default_data_dir() -> Path:
    override = str(os.getenv(DATA_DIR_ENV) or "").strip()
    if override:
        return Path(os.path.expanduser(override))
    return Path.home() / _DEFAULT_DIR_NAME


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge *override* into *base* (override wins)."""
    merged = dict(base)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def project_key(cwd: str | Path) -> str:
    """Stable file stem for a project directory: ``<basename>-<digest>``."""
    resolved = Path(cwd).resolve()
    digest = hashlib.sha256(str(resolved).encode("utf-8")).hexdigest()[:16]
    name = re.sub(r"[^A-Za-z0-9._-]+", "-", resolved.name).strip("-") or "root"
    return f"{name}-{digest}"


class ConfigStore:
    """Read/modify/write access to the JSON config files."""

    def __init__(self, data_dir: str | Path | None = None) -> None:
        self.data_dir = Path(data_dir) if data_dir is not None else default_data_dir()

    @property
    def config_path(self) -> Path:
        return self.data_dir / "config.json"

    @property
    def projects_dir(self) -> Path:
        return self.data_dir / "projects"

    def project_path(self, cwd: str | Path) -> Path:
        return self.projects_dir / f"{project_key(cwd)}.json"

    # -- raw load/save -----------------------------------------------------

    def load_global(self, *, strict: bool = False) -> GlobalConfig:
        """Load ``config.json``; a file failing validation reads as empty unless *strict*.

        Read-modify-write paths load with ``strict=True`` so an invalid file
        is reported instead of being replaced by an empty config.
        """
        data = read_json(self.config_path)
        try:
            return GlobalConfig.model_validate(data)
        except ValidationError as exc:
            if strict:
                raise ConfigError(
                    f"Invalid global config {self.config_path}; fix or remove it before making changes: {exc}"
                ) from exc
            logger.warning("Invalid global config %s; using defaults: %s", self.config_path, exc)
            return GlobalConfig()

    def save_global(self, config: GlobalConfig) -> None:
        write_json(self.config_path, config.model_dump(mode="json", exclude_none=True))

    def load_project(self, cwd: str | Path, *, strict: bool = False) -> ProjectConfig:
        path = self.project_path(cwd)
        data = read_json(path)
        try:
            config = ProjectConfig.model_validate(data)
        except ValidationError as exc:
            if strict:
                raise ConfigError(
                    f"Invalid project config {path}; fix or remove it before making changes: {exc}"
                ) from exc
            logger.warning("Invalid project config %s; using defaults: %s", path, exc)
            config = ProjectConfig()
        if not config.path:
            config.path = str(Path(cwd).resolve())
        return config

    def save_project(self, cwd: str | Path, config: ProjectConfig) -> None:
        config.path = str(Path(cwd).resolve())
        write_json(self.project_path(cwd), config.model_dump(mode="json", exclude_none=True))

    def delete_project(self, cwd: str | Path) -> bool:
        path = self.project_path(cwd)
        with locked_path(path):
            if not path.exists():
                return False
            path.unlink()
        return True

    def project_files(self) -> list[Path]:
        if not self.projects_dir.is_dir():
            return []
        return sorted(self.projects_dir.glob("*.json"))

    # -- effective settings -------------------------------------------------

    def settings(self, cwd: str | Path | None = None) -> ClientSettings:
        """Return settings with project overrides applied over global ones."""
        merged = ClientSettings().model_dump()
        merged = deep_merge(merged, self.load_global().settings)
        if cwd is not None:
            merged = deep_merge(merged, self.load_project(cwd).settings)
        try:
            return ClientSettings.model_validate(merged)
        except ValidationError as exc:
            raise ConfigError(f"Invalid settings: {exc}") from exc

    def update_settings(self, values: dict[str, Any], *, cwd: str | Path | None = None) -> None:
        """Merge *values* into the project settings block, or the global one without *cwd*."""
        if cwd is None:
            with locked_path(self.config_path):
                config = self.load_global(strict=True)
                config.settings = deep_merge(config.settings, values)
                self.save_global(config)
            return
        path = self.project_path(cwd)
        with locked_path(path):
            project = self.load_project(cwd, strict=True)
            project.settings = deep_merge(project.settings, values)
            self.save_project(cwd, project)

    # -- organizations -------------------------------------------------------

    def list_organizations(self) -> dict[str, OrganizationConfig]:
        return dict(self.load_global().organizations)

    def add_organization(
        self,
        name: str,
        token: str = "",
        *,
        set_current: bool = False,
        **extra: Any,
    ) -> OrganizationConfig:
        """Create or update an organization; the first one becomes current.

        *token* always replaces the stored one, so an empty token clears it.
        """
        slug = str(name or "").strip()
        if not slug:
            raise ConfigError("Organization name cannot be empty")
        with locked_path(self.config_path):
            config = self.load_global(strict=True)
            existing = config.organizations.get(slug, OrganizationConfig())
            payload = existing.model_dump()
            payload["token"] = token
            payload.update(extra)
            org = OrganizationConfig.model_validate(payload)
            config.organizations[slug] = org
            if set_current or not config.current_organization:
                config.current_organization = slug
            self.save_global(config)
        logger.debug("Stored organization %s (current=%s)", slug, config.current_organization)
        return org

    def remove_organization(self, name: str) -> bool:
        with locked_path(self.config_path):
            config = self.load_global(strict=True)
            if name not in config.organizations:
                return False
            del config.organizations[name]
            if config.current_organization == name:
                remaining = sorted(config.organizations)
                config.current_organization = remaining[0] if remaining else None
            self.save_global(config)
        return True

    def get_current_organization(self) -> tuple[str | None, OrganizationConfig | None]:
        config = self.load_global()
        name = config.current_organization
        if not name:
            return None, None
        return name, config.organizations.get(name)

    def set_current_organization(self, name: str) -> None:
        with locked_path(self.config_path):
            config = self.load_global(strict=True)
            if name not in config.organizations:
                raise ConfigError(f"Organization '{name}' is not configured")
            config.current_organization = name
            self.save_global(config)

    # -- project pipeline / branch ------------------------------------------

    def get_project_pipeline(self, cwd: str | Path) -> tuple[str | None, str | None]:
        """Return ``(organization, pipeline)`` with project values over global ones."""
        project = self.load_project(cwd)
        config = self.load_global()
        org_name = project.organization or config.current_organization
        pipeline = project.pipeline
        if not pipeline and org_name and org_name in config.organizations:
            pipeline = config.organizations[org_name].default_pipeline
        return org_name, pipeline

    def set_project_pipeline(
        self,
        pipeline: str,
        cwd: str | Path,
        *,
        organization: str | None = None,
    ) -> tuple[str, str]:
        slug = str(pipeline or "").strip()
        if not slug:
            raise ConfigError("Pipeline slug cannot be empty")
        org_name = organization or self.load_global().current_organization
        if not org_name:
            raise ConfigError("No current organization set")
        path = self.project_path(cwd)
        with locked_path(path):
            project = self.load_project(cwd, strict=True)
            project.organization = org_name
            project.pipeline = slug
            self.save_project(cwd, project)
        return org_name, slug

    def unset_project_pipeline(self, cwd: str | Path) -> bool:
        path = self.project_path(cwd)
        with locked_path(path):
            project = self.load_project(cwd, strict=True)
            if not project.pipeline and not project.organization:
                return False
            project.pipeline = None
            project.organization = None
            self.save_project(cwd, project)
        return True

    def get_project_branch(self, cwd: str | Path) -> str | None:
        return self.load_project(cwd).branch or None

    def set_project_branch(self, branch: str, cwd: str | Path) -> None:
        name = str(branch or "").strip()
        if not name:
            raise ConfigError("Branch name cannot be empty")
        path = self.project_path(cwd)
        with locked_path(path):
            project = self.load_project(cwd, strict=True)
            project.branch = name
            self.save_project(cwd, project)

    def unset_project_branch(self, cwd: str | Path) -> bool:
        path = self.project_path(cwd)
        with locked_path(path):
            project = self.load_project(cwd, strict=True)
            if not project.branch:
                return False
            project.branch = None
            self.save_project(cwd, project)
        return True

    # -- maintenance -----------------------------------------------------------

    def validate(self) -> list[str]:
        """Return human-readable configuration problems (empty when healthy)."""
        problems: list[str] = []
        config = self.load_global()
        if not config.organizations:
            problems.append("No organizations configured")
        current = config.current_organization
        if current and current not in config.organizations:
            problems.append(f"Current organization '{current}' is not configured")
        try:
            self.settings()
        except ConfigError as exc:
            problems.append(str(exc))
        return problems

    def reset(self) -> bool:
        """Delete the whole data directory."""
        if not self.data_dir.exists():
            return False
        shutil.rmtree(self.data_dir)
        logger.info("Removed configuration directory %s", self.data_dir)
        return True
