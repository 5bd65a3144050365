"""Unit tests for git_tools helpers."""

from __future__ import annotations

import subprocess
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from buildkite_client.git_tools import (
    GitError,
    _run_git,
    changed_files,
    current_branch,
    has_uncommitted_changes,
    head_sha,
    is_git_repo,
    remote_url,
    repo_name,
    repo_name_from_url,
    repo_root,
)


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    (tmp_path / ".git").mkdir()
    return tmp_path


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("git@github.com:acme/web-app.git", "acme/web-app"),
        ("git@github.com:acme/web-app", "acme/web-app"),
        ("ssh://git@github.com/acme/web-app.git", "acme/web-app"),
        ("https://github.com/acme/web-app.git", "acme/web-app"),
        ("https://user@gitlab.com/group/sub/web-app/", "group/sub/web-app"),
        ("", None),
        ("not a url", None),
    ],
)
def test_repo_name_from_url(url: str, expected: str | None):
    assert repo_name_from_url(url) == expected


def test_is_git_repo_checks_ancestors(repo: Path, tmp_path_factory: pytest.TempPathFactory):
    nested = repo / "src" / "pkg"
    nested.mkdir(parents=True)

    assert is_git_repo(nested)
    assert not is_git_repo(tmp_path_factory.mktemp("plain"))


def test_current_branch_uses_show_current(repo: Path):
    with patch(
        "buildkite_client.git_tools._run_git",
        return_value=SimpleNamespace(stdout="feature/login\n"),
    ) as run_git:
        assert current_branch(repo) == "feature/login"

    assert run_git.call_args.args == ("branch", "--show-current")


def test_current_branch_detached_head_returns_none(repo: Path):
    outputs = iter([SimpleNamespace(stdout=""), SimpleNamespace(stdout="HEAD\n")])
    with patch("buildkite_client.git_tools._run_git", side_effect=lambda *a, **k: next(outputs)):
        assert current_branch(repo) is None


def test_current_branch_outside_repo_does_not_call_git(tmp_path: Path):
    with patch("buildkite_client.git_tools._run_git") as run_git:
        assert current_branch(tmp_path) is None

    run_git.assert_not_called()


def test_remote_url_returns_none_when_git_fails(repo: Path):
    with patch("buildkite_client.git_tools._run_git", side_effect=GitError("no such remote")):
        assert remote_url("origin", repo) is None


def test_repo_name_reads_origin(repo: Path):
    with patch(
        "buildkite_client.git_tools._run_git",
        return_value=SimpleNamespace(stdout="git@github.com:acme/web-app.git\n"),
    ):
        assert repo_name(repo) == "acme/web-app"


def test_changed_files_parses_porcelain(repo: Path):
    sample = " M src/app.py\n?? notes.txt\nA  docs/new.md\n"
    with patch("buildkite_client.git_tools._run_git", return_value=SimpleNamespace(stdout=sample)):
        files = changed_files(repo)

    assert files == [
        {"status": " M", "file": "src/app.py"},
        {"status": "??", "file": "notes.txt"},
        {"status": "A ", "file": "docs/new.md"},
    ]


def test_has_uncommitted_changes_false_on_clean_tree(repo: Path):
    with patch("buildkite_client.git_tools._run_git", return_value=SimpleNamespace(stdout="")):
        assert has_uncommitted_changes(repo) is False


def test_run_git_wraps_missing_binary(tmp_path: Path):
    with patch("buildkite_client.git_tools.subprocess.run", side_effect=FileNotFoundError("git")):
        with pytest.raises(GitError, match="could not run"):
            _run_git("status", cwd=tmp_path)


def test_run_git_raises_on_nonzero_exit(tmp_path: Path):
    failed = subprocess.CompletedProcess(["git", "status"], 128, stdout="", stderr="fatal: not a repo")
    with patch("buildkite_client.git_tools.subprocess.run", return_value=failed):
        with pytest.raises(GitError, match="rc=128"):
            _run_git("status", cwd=tmp_path)


def test_head_sha_short_and_full(repo: Path):
    with patch(
        "buildkite_client.git_tools._run_git",
        return_value=SimpleNamespace(stdout="abc1234\n"),
    ) as run_git:
        assert head_sha(repo, short=True) == "abc1234"

    assert run_git.call_args.args == ("rev-parse", "--short", "HEAD")
    assert head_sha(repo.parent / "elsewhere") is None


def test_repo_root_returns_path(repo: Path):
    with patch(
        "buildkite_client.git_tools._run_git",
        return_value=SimpleNamespace(stdout=f"{repo}\n"),
    ):
        assert repo_root(repo / "sub") == repo
