"""Organization management: current selection, add/remove, listing."""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Literal

from buildkite_client import credentials
from buildkite_client.api import validate_token
from buildkite_client.settings import ConfigError, ConfigStore

logger = logging.getLogger(__name__)

TokenValidator = Callable[[str, str], tuple[bool, str]]
Storage = Literal["keyring", "config"]


class OrganizationManager:
    """Tracks the current organization.

    Resolution order: session override, ``default_org`` setting, then the
    ``current_organization`` recorded in the global config file.
    """

    def __init__(
        self,
        store: ConfigStore | None = None,
        *,
        validator: TokenValidator | None = None,
    ) -> None:
        self.store = store or ConfigStore()
        self._validator = validator or validate_token
        self._override: str | None = None

    def current(self, cwd: str | Path | None = None) -> str | None:
        """Return the active organization; *cwd* brings in that project's ``default_org``."""
        if self._override:
            return self._override
        default_org = self.store.settings(cwd).default_org
        if default_org:
            return default_org
        name, _org = self.store.get_current_organization()
        return name

    def set_current(self, org_slug: str, *, persist: bool = True) -> None:
        """Switch organizations; ``persist=False`` only affects this session."""
        if persist:
            self.store.set_current_organization(org_slug)
            self._override = None
        else:
            self._override = org_slug
        logger.info("Switched to organization %s", org_slug)

    def names(self) -> list[str]:
        names = set(self.store.list_organizations())
        names.update(credentials.list_available(store=self.store))
        names.discard(credentials.DEFAULT_ORG_KEY)
        return sorted(names)

    def add(
        self,
        org_slug: str,
        token: str,
        *,
        storage: Storage = "config",
        set_current: bool = False,
        validate: bool = True,
    ) -> None:
        """Validate *token* and store it; keyring storage keeps the org record token-less."""
        slug = str(org_slug or "").strip()
        if not slug:
            raise ConfigError("Organization slug is required")
        if not str(token or "").strip():
            raise ConfigError("API token cannot be empty")
        if validate:
            valid, message = self._validator(slug, token)
            if not valid:
                raise ConfigError(f"Token validation failed: {message}")

        if storage == "keyring":
            credentials.store_in_keyring(slug, token)
            credentials.store_in_config(slug, "", store=self.store, set_current=set_current)
        else:
            credentials.store_in_config(slug, token, store=self.store, set_current=set_current)
        logger.info("Organization %s added (%s)", slug, storage)

    def remove(self, org_slug: str) -> bool:
        removed = self.store.remove_organization(org_slug)
        if credentials.delete_from_keyring(org_slug):
            removed = True
        if self._override == org_slug:
            self._override = None
        return removed

    def info_lines(self, pipeline_slug: str | None = None, cwd: str | Path | None = None) -> list[str]:
        current = self.current(cwd)
        orgs = self.names()
        lines = [
            "Buildkite Configuration",
            "=======================",
            "",
            f"Current Organization: {current or '(none)'}",
            f"Detected Pipeline:    {pipeline_slug or '(none)'}",
            "",
            "Configured Organizations:",
        ]
        if not orgs:
            lines.append("  (none)")
        for org in orgs:
            marker = " *" if org == current else ""
            lines.append(f"  - {org}{marker}")
        return lines
