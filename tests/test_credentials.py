"""Tests for API token lookup precedence and storage."""

from __future__ import annotations

import pytest

from buildkite_client import credentials
from buildkite_client.settings import ConfigStore

pytestmark = pytest.mark.unit


def test_org_token_env_var_normalizes_slug() -> None:
    assert credentials.org_token_env_var("my-org") == "BUILDKITE_TOKEN_MY_ORG"


def test_env_beats_keyring_and_config(
    store: ConfigStore, fake_keyring, monkeypatch: pytest.MonkeyPatch
) -> None:
    store.add_organization("acme", "config-token")
    fake_keyring.set_password(credentials.KEYRING_SERVICE, "acme", "keyring-token")
    monkeypatch.setenv("BUILDKITE_TOKEN_ACME", "env-token")

    credential = credentials.get_token("acme", store=store)

    assert credential.token == "env-token"
    assert credential.source == "env:BUILDKITE_TOKEN_ACME"


def test_org_specific_env_beats_generic_env(store: ConfigStore, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BUILDKITE_API_TOKEN", "generic")
    monkeypatch.setenv("BUILDKITE_TOKEN_ACME", "specific")

    assert credentials.get_token("acme", store=store).token == "specific"
    assert credentials.get_token("globex", store=store).token == "generic"


def test_keyring_beats_config(store: ConfigStore, fake_keyring) -> None:
    store.add_organization("acme", "config-token")
    fake_keyring.set_password(credentials.KEYRING_SERVICE, "acme", "keyring-token")

    credential = credentials.get_token("acme", store=store)

    assert credential.token == "keyring-token"
    assert credential.source == "keyring:acme"


def test_config_is_last_resort(store: ConfigStore) -> None:
    store.add_organization("acme", "  config-token  ")

    credential = credentials.get_token("acme", store=store)

    assert credential.token == "config-token"
    assert credential.source.startswith("config:")


def test_blank_sources_are_skipped(store: ConfigStore, fake_keyring, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BUILDKITE_TOKEN_ACME", "   ")
    fake_keyring.set_password(credentials.KEYRING_SERVICE, "acme", "")
    store.add_organization("acme", "config-token")

    assert credentials.get_token("acme", store=store).token == "config-token"


def test_missing_token_raises(store: ConfigStore) -> None:
    with pytest.raises(credentials.CredentialError, match="No token found for organization 'acme'"):
        credentials.get_token("acme", store=store)


def test_empty_slug_raises(store: ConfigStore) -> None:
    with pytest.raises(credentials.CredentialError, match="Organization slug is required"):
        credentials.get_token("", store=store)


def test_keyring_errors_fall_through_to_config(store: ConfigStore, monkeypatch: pytest.MonkeyPatch) -> None:
    def broken(_service: str, _user: str) -> str:
        raise credentials.KeyringError("locked")

    monkeypatch.setattr(credentials.keyring, "get_password", broken)
    store.add_organization("acme", "config-token")

    assert credentials.get_token("acme", store=store).token == "config-token"


def test_store_in_keyring_replaces_existing_entry(fake_keyring) -> None:
    credentials.store_in_keyring("acme", "old")
    credentials.store_in_keyring("acme", "new")

    assert fake_keyring.passwords == {(credentials.KEYRING_SERVICE, "acme"): "new"}


def test_delete_from_keyring_reports_missing_entry(fake_keyring) -> None:
    assert credentials.delete_from_keyring("acme") is False

    credentials.store_in_keyring("acme", "tok")
    assert credentials.delete_from_keyring("acme") is True


def test_list_available_includes_generic_env_and_config_tokens(
    store: ConfigStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    store.add_organization("acme", "tok")
    store.add_organization("globex", "")
    monkeypatch.setenv("BUILDKITE_API_TOKEN", "generic")

    available = credentials.list_available(store=store)

    assert available == {
        credentials.DEFAULT_ORG_KEY: "env:BUILDKITE_API_TOKEN",
        "acme": "config",
    }
