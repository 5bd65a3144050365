"""Build queries and actions for the project in a working directory."""

from __future__ import annotations

import logging
import threading
import webbrowser
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from buildkite_client import git_tools
from buildkite_client.api import DEFAULT_TRIGGER_MESSAGE, BuildkiteAPIError, BuildkiteClient
from buildkite_client.organizations import OrganizationManager
from buildkite_client.pipeline import BranchInfo, PipelineResolver, effective_branch
from buildkite_client.schemas import Build, Pipeline
from buildkite_client.settings import ConfigError, ConfigStore

logger = logging.getLogger(__name__)

DEFAULT_BRANCH = "main"
CacheKey = tuple[str, str, str]
ClientFactory = Callable[..., BuildkiteClient]


class BuildCache:
    """Latest build per ``(org, pipeline, branch)``.

    Every refresh takes a ticket from :meth:`begin`; :meth:`complete` stores
    a result only when its ticket is still the newest one for the key, so
    the last request started wins regardless of completion order.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._generation = 0
        self._tickets: dict[CacheKey, int] = {}
        self._entries: dict[CacheKey, Build | None] = {}

    def begin(self, key: CacheKey) -> int:
        with self._lock:
            self._generation += 1
            self._tickets[key] = self._generation
            return self._generation

    def complete(self, key: CacheKey, ticket: int, build: Build | None) -> bool:
        with self._lock:
            if self._tickets.get(key) != ticket:
                logger.debug("Discarding stale build response for %s (ticket %d)", key, ticket)
                return False
            self._entries[key] = build
            return True

    def get(self, key: CacheKey) -> Build | None:
        with self._lock:
            return self._entries.get(key)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def clear(self) -> None:
        with self._lock:
            self._tickets.clear()
            self._entries.clear()


@dataclass(frozen=True, slots=True)
class ProjectContext:
    """Everything known about the project in one directory."""

    cwd: Path
    organization: str | None
    pipeline: str | None
    pipeline_source: str
    branch: BranchInfo
    is_git_repo: bool
    repo_name: str | None = None

    def require_pipeline(self) -> tuple[str, str]:
        if not self.organization:
            raise ConfigError("No organization configured. Run 'buildkite org add' first.")
        if not self.pipeline:
            raise ConfigError("Could not detect pipeline. Run 'buildkite pipeline set <slug>'.")
        return self.organization, self.pipeline

    def require_branch(self) -> str:
        if not self.branch.branch:
            raise ConfigError(
                "Could not determine current branch. Use 'buildkite branch set' to set it manually."
            )
        return self.branch.branch


class BuildService:
    def __init__(
        self,
        store: ConfigStore | None = None,
        *,
        organizations: OrganizationManager | None = None,
        resolver: PipelineResolver | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self.store = store or ConfigStore()
        self.organizations = organizations or OrganizationManager(self.store)
        self.resolver = resolver or PipelineResolver(self.store)
        self._client_factory = client_factory or BuildkiteClient.for_organization
        self.cache = BuildCache()

    # -- context -------------------------------------------------------------

    def context(self, cwd: str | Path | None = None) -> ProjectContext:
        where = Path(cwd or Path.cwd()).resolve()
        project = self.store.load_project(where)
        organization = project.organization or self.organizations.current(where)
        pipeline, source = self.resolver.resolve(where)
        return ProjectContext(
            cwd=where,
            organization=organization,
            pipeline=pipeline,
            pipeline_source=source,
            branch=effective_branch(where, store=self.store),
            is_git_repo=git_tools.is_git_repo(where),
            repo_name=git_tools.repo_name(where),
        )

    def client(self, organization: str, cwd: str | Path | None = None) -> BuildkiteClient:
        settings = self.store.settings(cwd)
        return self._client_factory(
            organization,
            store=self.store,
            timeout=settings.request_timeout_seconds,
        )

    def _remember_remote_slug(self, ctx: ProjectContext) -> None:
        if ctx.pipeline_source != "remote" or not ctx.pipeline:
            return
        remote = git_tools.remote_url("origin", ctx.cwd)
        if remote:
            self.resolver.cache_slug(remote, ctx.pipeline)

    @staticmethod
    def _pipeline_not_found(exc: BuildkiteAPIError, pipeline: str) -> BuildkiteAPIError:
        if exc.not_found:
            return BuildkiteAPIError(
                404,
                f"Pipeline '{pipeline}' not found. Use 'buildkite pipeline set' to set the correct slug.",
                exc.body,
            )
        return exc

    # -- queries ---------------------------------------------------------------

    def list_pipelines(self, cwd: str | Path | None = None) -> list[Pipeline]:
        ctx = self.context(cwd)
        if not ctx.organization:
            raise ConfigError("No organization configured. Run 'buildkite org add' first.")
        return self.client(ctx.organization, ctx.cwd).list_pipelines()

    def list_builds(
        self,
        cwd: str | Path | None = None,
        *,
        branch: str | None = None,
        limit: int = 10,
    ) -> list[Build]:
        ctx = self.context(cwd)
        organization, pipeline = ctx.require_pipeline()
        target_branch = branch or ctx.branch.branch
        try:
            builds = self.client(organization, ctx.cwd).list_builds(
                pipeline, branch=target_branch, per_page=max(int(limit), 1)
            )
        except BuildkiteAPIError as exc:
            raise self._pipeline_not_found(exc, pipeline) from exc
        self._remember_remote_slug(ctx)
        return builds

    def refresh_current_build(self, cwd: str | Path | None = None) -> Build | None:
        """Fetch the latest build for the effective branch and update the cache."""
        ctx = self.context(cwd)
        organization, pipeline = ctx.require_pipeline()
        branch = ctx.require_branch()
        key: CacheKey = (organization, pipeline, branch)
        ticket = self.cache.begin(key)
        try:
            build = self.client(organization, ctx.cwd).latest_build_for_branch(pipeline, branch)
        except BuildkiteAPIError as exc:
            raise self._pipeline_not_found(exc, pipeline) from exc
        self.cache.complete(key, ticket, build)
        self._remember_remote_slug(ctx)
        return build

    def current_build(self, cwd: str | Path | None = None, *, refresh: bool = True) -> Build | None:
        if refresh:
            return self.refresh_current_build(cwd)
        ctx = self.context(cwd)
        organization, pipeline = ctx.require_pipeline()
        key: CacheKey = (organization, pipeline, ctx.require_branch())
        if key in self.cache:
            return self.cache.get(key)
        return self.refresh_current_build(cwd)

    # -- actions ---------------------------------------------------------------

    def trigger(
        self,
        cwd: str | Path | None = None,
        *,
        branch: str | None = None,
        commit: str = "HEAD",
        message: str = DEFAULT_TRIGGER_MESSAGE,
    ) -> Build:
        ctx = self.context(cwd)
        organization, pipeline = ctx.require_pipeline()
        target_branch = branch or ctx.branch.branch or DEFAULT_BRANCH
        try:
            build = self.client(organization, ctx.cwd).trigger_build(
                pipeline, branch=target_branch, commit=commit, message=message
            )
        except BuildkiteAPIError as exc:
            raise self._pipeline_not_found(exc, pipeline) from exc
        self.cache.clear()
        return build

    def rebuild_current(self, cwd: str | Path | None = None) -> tuple[Build, Build]:
        """Rebuild the latest build on the effective branch; return ``(old, new)``."""
        ctx = self.context(cwd)
        organization, pipeline = ctx.require_pipeline()
        branch = ctx.require_branch()
        client = self.client(organization, ctx.cwd)
        try:
            latest = client.latest_build_for_branch(pipeline, branch)
            if latest is None:
                raise ConfigError(f"No builds found for branch '{branch}'")
            rebuilt = client.rebuild(pipeline, latest.number)
        except BuildkiteAPIError as exc:
            raise self._pipeline_not_found(exc, pipeline) from exc
        key: CacheKey = (organization, pipeline, branch)
        self.cache.complete(key, self.cache.begin(key), rebuilt)
        return latest, rebuilt

    def open_current_in_browser(
        self,
        cwd: str | Path | None = None,
        *,
        opener: Callable[[str], bool] = webbrowser.open,
    ) -> Build:
        build = self.current_build(cwd)
        if build is None:
            branch = self.context(cwd).branch.branch
            raise ConfigError(f"No builds found for branch '{branch}'")
        if not build.web_url:
            raise ConfigError("No web URL available for this build")
        opener(build.web_url)
        return build

    # -- branch override -------------------------------------------------------

    def set_branch(self, branch: str, cwd: str | Path | None = None) -> None:
        self.store.set_project_branch(branch, Path(cwd or Path.cwd()))
        self.cache.clear()

    def unset_branch(self, cwd: str | Path | None = None) -> bool:
        removed = self.store.unset_project_branch(Path(cwd or Path.cwd()))
        self.cache.clear()
        return removed
