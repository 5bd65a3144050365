"""Pipeline slug, pipeline file and branch detection for a working directory."""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from pathlib import Path

from buildkite_client import git_tools
from buildkite_client.file_io import read_json
from buildkite_client.settings import ConfigStore

logger = logging.getLogger(__name__)

LOCAL_CONFIG_FILE = ".buildkite.json"
PIPELINE_FILE_CANDIDATES: tuple[str, ...] = (
    ".buildkite/pipeline.yml",
    ".buildkite/pipeline.yaml",
    "buildkite.yml",
    "buildkite.yaml",
    ".buildkite.yml",
    ".buildkite.yaml",
)
_PIPELINE_FILE_PATTERNS = (
    re.compile(r"(^|/)\.buildkite/pipeline\.ya?ml$"),
    re.compile(r"buildkite\.ya?ml$"),
)


def pipeline_slug_from_url(url: str | None) -> str | None:
    """Return the repository name (last path component) of a git remote URL."""
    path = git_tools.repo_name_from_url(url)
    if not path:
        return None
    return path.rstrip("/").rsplit("/", 1)[-1] or None


def find_pipeline_file(cwd: str | Path | None = None) -> Path | None:
    """Return the first conventional pipeline file under *cwd*, then under the repo root."""
    start = Path(cwd or Path.cwd())
    roots = [start]
    root = git_tools.repo_root(start)
    if root is not None and root.resolve() != start.resolve():
        roots.append(root)
    for base in roots:
        for candidate in PIPELINE_FILE_CANDIDATES:
            path = base / candidate
            if path.is_file():
                return path
    return None


def is_pipeline_file(path: str | Path | None) -> bool:
    text = str(path or "").replace("\\", "/")
    if not text:
        return False
    return any(pattern.search(text) for pattern in _PIPELINE_FILE_PATTERNS)


def local_config_pipeline(cwd: str | Path | None = None) -> str | None:
    """Read ``{"pipeline": "<slug>"}`` from a project-local ``.buildkite.json``."""
    data = read_json(Path(cwd or Path.cwd()) / LOCAL_CONFIG_FILE)
    value = str(data.get("pipeline") or "").strip()
    return value or None


@dataclass(frozen=True, slots=True)
class BranchInfo:
    """Effective branch plus where it came from (``manual``, ``git`` or ``none``)."""

    branch: str | None
    source: str
    git_branch: str | None = None
    manual_branch: str | None = None


def effective_branch(cwd: str | Path | None = None, *, store: ConfigStore | None = None) -> BranchInfo:
    """Manual project override wins over the checked-out git branch."""
    store = store or ConfigStore()
    where = Path(cwd or Path.cwd())
    manual = store.get_project_branch(where)
    git_branch = git_tools.current_branch(where)
    if manual:
        return BranchInfo(manual, "manual", git_branch=git_branch, manual_branch=manual)
    if git_branch:
        return BranchInfo(git_branch, "git", git_branch=git_branch)
    return BranchInfo(None, "none")


class PipelineResolver:
    """Resolve the pipeline slug for a directory.

    Order: session override, project config, ``.buildkite.json``, git remote
    repository name (verified slugs cached per remote), directory basename.
    """

    def __init__(self, store: ConfigStore | None = None) -> None:
        self.store = store or ConfigStore()
        self._override: str | None = None
        self._slug_cache: dict[str, str] = {}
        self._lock = threading.Lock()

    @property
    def override(self) -> str | None:
        return self._override

    def set_override(self, slug: str) -> None:
        self._override = str(slug or "").strip() or None

    def clear_override(self) -> None:
        self._override = None

    def cache_slug(self, remote: str, slug: str) -> None:
        """Remember *slug* as verified for *remote* after a successful API call."""
        with self._lock:
            self._slug_cache[remote] = slug

    def resolve(self, cwd: str | Path | None = None) -> tuple[str | None, str]:
        """Return ``(slug, source)``; source is one of override/project/local/remote/directory/none."""
        where = Path(cwd or Path.cwd())
        if self._override:
            return self._override, "override"

        _org, project_pipeline = self.store.get_project_pipeline(where)
        if project_pipeline:
            return project_pipeline, "project"

        local = local_config_pipeline(where)
        if local:
            return local, "local"

        remote = git_tools.remote_url("origin", where)
        if remote:
            with self._lock:
                cached = self._slug_cache.get(remote)
            if cached:
                return cached, "remote"
            slug = pipeline_slug_from_url(remote)
            if slug:
                return slug, "remote"

        basename = where.resolve().name
        if basename:
            return basename, "directory"
        return None, "none"

    def slug(self, cwd: str | Path | None = None) -> str | None:
        return self.resolve(cwd)[0]
