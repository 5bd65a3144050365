"""API token lookup with precedence: environment > system keyring > config file."""

from __future__ import annotations

import logging
import os
from contextlib import suppress
from dataclasses import dataclass
from typing import Any

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from buildkite_client.settings import ConfigStore

logger = logging.getLogger(__name__)

KEYRING_SERVICE = "buildkite-client"
GENERIC_TOKEN_ENV = "BUILDKITE_API_TOKEN"
_ORG_TOKEN_ENV_PREFIX = "BUILDKITE_TOKEN_"
DEFAULT_ORG_KEY = "_default"


class CredentialError(RuntimeError):
    """Raised when no usable token can be found or stored."""


@dataclass(frozen=True, slots=True)
class Credential:
    token: str
    source: str


def org_token_env_var(org_slug: str) -> str:
    """Return the org-specific env var name, e.g. ``my-org`` -> ``BUILDKITE_TOKEN_MY_ORG``."""
    return _ORG_TOKEN_ENV_PREFIX + org_slug.replace("-", "_").upper()


def _from_env(org_slug: str) -> Credential | None:
    for name in (org_token_env_var(org_slug), GENERIC_TOKEN_ENV):
        value = str(os.getenv(name) or "").strip()
        if value:
            return Credential(token=value, source=f"env:{name}")
    return None


def _from_keyring(org_slug: str) -> Credential | None:
    try:
        value = keyring.get_password(KEYRING_SERVICE, org_slug)
    except KeyringError as exc:
        logger.debug("Keyring lookup for %s failed: %s", org_slug, exc)
        return None
    token = str(value or "").strip()
    if token:
        return Credential(token=token, source=f"keyring:{org_slug}")
    return None


def _from_config(org_slug: str, store: ConfigStore) -> Credential | None:
    org = store.load_global().organizations.get(org_slug)
    if org is not None and org.token.strip():
        return Credential(token=org.token.strip(), source=f"config:{store.config_path}")
    return None


def get_token(org_slug: str | None, *, store: ConfigStore | None = None) -> Credential:
    """Resolve the API token for *org_slug*.

    Raises :class:`CredentialError` when the slug is empty or no source
    provides a non-empty token.
    """
    slug = str(org_slug or "").strip()
    if not slug:
        raise CredentialError("Organization slug is required")
    store = store or ConfigStore()
    for lookup in (_from_env, _from_keyring):
        credential = lookup(slug)
        if credential is not None:
            logger.debug("Using token for %s from %s", slug, credential.source)
            return credential
    credential = _from_config(slug, store)
    if credential is not None:
        logger.debug("Using token for %s from %s", slug, credential.source)
        return credential
    raise CredentialError(f"No token found for organization '{slug}'")


def keyring_available() -> tuple[bool, str]:
    """Return ``(usable, backend_name)`` for the active keyring backend."""
    backend = keyring.get_keyring()
    name = f"{type(backend).__module__}.{type(backend).__name__}"
    priority = getattr(backend, "priority", 0)
    try:
        usable = float(priority) > 0
    except (TypeError, ValueError):
        usable = False
    return usable, name


def store_in_keyring(org_slug: str, token: str) -> None:
    """Replace the keyring entry for *org_slug*."""
    try:
        with suppress(PasswordDeleteError):
            keyring.delete_password(KEYRING_SERVICE, org_slug)
        keyring.set_password(KEYRING_SERVICE, org_slug, token)
    except KeyringError as exc:
        raise CredentialError(f"Failed to store in keyring: {exc}") from exc
    logger.info("Stored token for %s in keyring", org_slug)


def delete_from_keyring(org_slug: str) -> bool:
    try:
        keyring.delete_password(KEYRING_SERVICE, org_slug)
    except KeyringError:
        return False
    return True


def store_in_config(
    org_slug: str,
    token: str,
    extra: dict[str, Any] | None = None,
    *,
    store: ConfigStore | None = None,
    set_current: bool = False,
) -> None:
    """Write the token (possibly empty) and metadata into the global config file."""
    store = store or ConfigStore()
    store.add_organization(org_slug, token, set_current=set_current, **(extra or {}))


def list_available(*, store: ConfigStore | None = None) -> dict[str, str]:
    """Map org slug -> token source for every org with a known token."""
    store = store or ConfigStore()
    available: dict[str, str] = {}
    if str(os.getenv(GENERIC_TOKEN_ENV) or "").strip():
        available[DEFAULT_ORG_KEY] = f"env:{GENERIC_TOKEN_ENV}"
    for slug, org in store.load_global().organizations.items():
        if org.token.strip():
            available[slug] = "config"
    return available
