"""Git helpers for branch, remote and working-tree metadata."""

from __future__ import annotations

import logging
import os
import re
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)

_REMOTE_URL_PATTERNS = (
    re.compile(r"^(?:ssh://)?git@[^:/]+[:/](?P<path>.+?)(?:\.git)?/?$"),
    re.compile(r"^https?://(?:[^@/]+@)?[^/]+/(?P<path>.+?)(?:\.git)?/?$"),
)


def _git_subprocess_isolation_kwargs() -> dict[str, object]:
    """Return kwargs that keep git from opening a console window on Windows."""
    if os.name != "nt":
        return {}
    flags = int(getattr(subprocess, "CREATE_NO_WINDOW", 0))
    return {"creationflags": flags} if flags else {}


class GitError(RuntimeError):
    """Raised when a git command fails unexpectedly."""


def _run_git(
    *args: str,
    cwd: Path,
    check: bool = True,
    timeout: int = 15,
) -> subprocess.CompletedProcess[str]:
    """Run a git command and return the CompletedProcess."""
    cmd = ["git", *args]
    logger.debug("git %s (cwd=%s)", " ".join(args), cwd)
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            **_git_subprocess_isolation_kwargs(),
        )
    except (OSError, subprocess.SubprocessError) as exc:
        raise GitError(f"`git {' '.join(args)}` could not run: {exc}") from exc
    if check and result.returncode != 0:
        raise GitError(
            f"`git {' '.join(args)}` failed (rc={result.returncode}): {result.stderr.strip()}"
        )
    return result


def _query(*args: str, cwd: str | Path | None) -> str | None:
    """Return stripped stdout of a read-only git query, or ``None`` on failure."""
    try:
        out = _run_git(*args, cwd=Path(cwd or Path.cwd())).stdout.strip()
    except GitError as exc:
        logger.debug("%s", exc)
        return None
    return out or None


def is_git_repo(cwd: str | Path | None = None) -> bool:
    """Return True when *cwd* (or an ancestor) contains a ``.git`` entry."""
    start = Path(cwd or Path.cwd()).resolve()
    return any((candidate / ".git").exists() for candidate in (start, *start.parents))


def current_branch(cwd: str | Path | None = None) -> str | None:
    """Return the checked-out branch name, or ``None`` (detached HEAD, not a repo)."""
    if not is_git_repo(cwd):
        return None
    branch = _query("branch", "--show-current", cwd=cwd)
    if branch:
        return branch
    branch = _query("rev-parse", "--abbrev-ref", "HEAD", cwd=cwd)
    return branch if branch and branch != "HEAD" else None


def remote_url(remote: str = "origin", cwd: str | Path | None = None) -> str | None:
    if not is_git_repo(cwd):
        return None
    return _query("remote", "get-url", remote, cwd=cwd)


def head_sha(cwd: str | Path | None = None, *, short: bool = False) -> str | None:
    if not is_git_repo(cwd):
        return None
    if short:
        return _query("rev-parse", "--short", "HEAD", cwd=cwd)
    return _query("rev-parse", "HEAD", cwd=cwd)


def repo_root(cwd: str | Path | None = None) -> Path | None:
    if not is_git_repo(cwd):
        return None
    root = _query("rev-parse", "--show-toplevel", cwd=cwd)
    return Path(root) if root else None


def repo_name_from_url(url: str | None) -> str | None:
    """Extract ``owner/repo`` from SSH or HTTP(S) remote URLs."""
    text = str(url or "").strip()
    if not text:
        return None
    for pattern in _REMOTE_URL_PATTERNS:
        match = pattern.match(text)
        if match:
            return match.group("path")
    return None


def repo_name(cwd: str | Path | None = None) -> str | None:
    return repo_name_from_url(remote_url("origin", cwd))


def changed_files(cwd: str | Path | None = None) -> list[dict[str, str]]:
    """Return ``[{"status": "XY", "file": path}, ...]`` from ``git status --porcelain``."""
    if not is_git_repo(cwd):
        return []
    try:
        out = _run_git("status", "--porcelain", cwd=Path(cwd or Path.cwd())).stdout
    except GitError as exc:
        logger.debug("%s", exc)
        return []
    files: list[dict[str, str]] = []
    for line in out.splitlines():
        if len(line) < 4:
            continue
        files.append({"status": line[:2], "file": line[3:]})
    return files


def has_uncommitted_changes(cwd: str | Path | None = None) -> bool:
    return bool(changed_files(cwd))
