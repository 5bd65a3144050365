"""Shared pytest configuration for marker registration, ordering and isolation."""

from __future__ import annotations

import os
from pathlib import Path

import keyring
import pytest
from keyring.errors import PasswordDeleteError

from buildkite_client.settings import DATA_DIR_ENV, ConfigStore


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: fast isolated unit tests")
    config.addinivalue_line("markers", "integration: filesystem/subprocess integration tests")
    config.addinivalue_line("markers", "slow: expensive tests that may call external APIs")


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Run fast unit tests first, integration tests second, slow tests last."""

    def sort_key(item: pytest.Item) -> tuple[int, str]:
        if item.get_closest_marker("slow"):
            return (2, item.nodeid)
        if item.get_closest_marker("integration"):
            return (1, item.nodeid)
        return (0, item.nodeid)

    items.sort(key=sort_key)


class FakeKeyring:
    """In-memory stand-in for the system keyring."""

    def __init__(self) -> None:
        self.passwords: dict[tuple[str, str], str] = {}

    def get_password(self, service: str, username: str) -> str | None:
        return self.passwords.get((service, username))

    def set_password(self, service: str, username: str, password: str) -> None:
        self.passwords[(service, username)] = password

    def delete_password(self, service: str, username: str) -> None:
        if (service, username) not in self.passwords:
            raise PasswordDeleteError("not found")
        del self.passwords[(service, username)]


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the data dir at tmp_path and drop any real Buildkite tokens."""
    data_dir = tmp_path / "buildkite-home"
    monkeypatch.setenv(DATA_DIR_ENV, str(data_dir))
    for name in list(os.environ):
        if name == "BUILDKITE_API_TOKEN" or name.startswith("BUILDKITE_TOKEN_"):
            monkeypatch.delenv(name, raising=False)
    return data_dir


@pytest.fixture(autouse=True)
def fake_keyring(monkeypatch: pytest.MonkeyPatch) -> FakeKeyring:
    fake = FakeKeyring()
    monkeypatch.setattr(keyring, "get_password", fake.get_password)
    monkeypatch.setattr(keyring, "set_password", fake.set_password)
    monkeypatch.setattr(keyring, "delete_password", fake.delete_password)
    return fake


@pytest.fixture
def store(isolated_environment: Path) -> ConfigStore:
    return ConfigStore(isolated_environment)


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    path = tmp_path / "my-project"
    path.mkdir()
    return path
