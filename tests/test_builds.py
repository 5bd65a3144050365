"""Tests for the build service and its latest-build cache."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from buildkite_client.api import BuildkiteAPIError
from buildkite_client.builds import BuildCache, BuildService
from buildkite_client.organizations import OrganizationManager
from buildkite_client.schemas import Build, Pipeline
from buildkite_client.settings import ConfigError, ConfigStore

pytestmark = pytest.mark.unit


class FakeClient:
    def __init__(self, builds: list[Build] | None = None, error: BuildkiteAPIError | None = None) -> None:
        self.builds = builds or []
        self.error = error
        self.calls: list[tuple] = []

    def _maybe_fail(self) -> None:
        if self.error is not None:
            raise self.error

    def list_pipelines(self) -> list[Pipeline]:
        self.calls.append(("list_pipelines",))
        return [Pipeline(slug="web")]

    def list_builds(self, pipeline: str, *, branch=None, per_page=20) -> list[Build]:
        self.calls.append(("list_builds", pipeline, branch, per_page))
        self._maybe_fail()
        return self.builds[:per_page]

    def latest_build_for_branch(self, pipeline: str, branch: str) -> Build | None:
        self.calls.append(("latest", pipeline, branch))
        self._maybe_fail()
        return self.builds[0] if self.builds else None

    def trigger_build(self, pipeline: str, *, branch: str, commit: str, message: str) -> Build:
        self.calls.append(("trigger", pipeline, branch, commit, message))
        self._maybe_fail()
        return Build(number=100, state="scheduled", branch=branch)

    def rebuild(self, pipeline: str, number: int) -> Build:
        self.calls.append(("rebuild", pipeline, number))
        return Build(number=number + 1, state="scheduled", branch="main")


@pytest.fixture
def client() -> FakeClient:
    return FakeClient([Build(number=7, state="passed", branch="main", web_url="https://bk/7")])


@pytest.fixture
def service(store: ConfigStore, project_dir: Path, client: FakeClient) -> BuildService:
    store.add_organization("acme", "tok")
    store.set_project_pipeline("web", project_dir)
    store.set_project_branch("main", project_dir)
    factory_calls: list[tuple] = []

    def factory(org, *, store, timeout):
        factory_calls.append((org, timeout))
        return client

    svc = BuildService(store, organizations=OrganizationManager(store), client_factory=factory)
    svc.factory_calls = factory_calls
    return svc


def test_cache_keeps_result_of_last_started_request() -> None:
    cache = BuildCache()
    key = ("acme", "web", "main")
    first = cache.begin(key)
    second = cache.begin(key)

    assert cache.complete(key, second, Build(number=2)) is True
    assert cache.complete(key, first, Build(number=1)) is False
    assert cache.get(key).number == 2


def test_cache_tickets_are_independent_per_key() -> None:
    cache = BuildCache()
    main_key = ("acme", "web", "main")
    dev_key = ("acme", "web", "dev")
    main_ticket = cache.begin(main_key)
    cache.begin(dev_key)

    assert cache.complete(main_key, main_ticket, None) is True
    assert main_key in cache
    assert cache.get(main_key) is None
    assert dev_key not in cache


def test_cache_clear_invalidates_in_flight_tickets() -> None:
    cache = BuildCache()
    key = ("acme", "web", "main")
    ticket = cache.begin(key)
    cache.clear()

    assert cache.complete(key, ticket, Build(number=1)) is False
    assert key not in cache


def test_context_collects_project_state(service: BuildService, project_dir: Path) -> None:
    ctx = service.context(project_dir)

    assert ctx.organization == "acme"
    assert ctx.pipeline == "web"
    assert ctx.pipeline_source == "project"
    assert ctx.branch.branch == "main"
    assert ctx.branch.source == "manual"
    assert ctx.is_git_repo is False


def test_refresh_uses_settings_timeout_and_caches(service: BuildService, client: FakeClient, project_dir: Path) -> None:
    service.store.update_settings({"request_timeout_seconds": 5})

    build = service.refresh_current_build(project_dir)

    assert build.number == 7
    assert service.factory_calls == [("acme", 5.0)]
    assert service.cache.get(("acme", "web", "main")).number == 7


def test_current_build_without_refresh_reuses_cache(service: BuildService, client: FakeClient, project_dir: Path) -> None:
    service.current_build(project_dir)
    service.current_build(project_dir, refresh=False)

    assert [c[0] for c in client.calls] == ["latest"]


def test_missing_branch_raises_config_error(service: BuildService, project_dir: Path) -> None:
    service.unset_branch(project_dir)

    with pytest.raises(ConfigError, match="Could not determine current branch"):
        service.refresh_current_build(project_dir)


def test_missing_organization_raises_config_error(store: ConfigStore, project_dir: Path) -> None:
    svc = BuildService(store)

    with pytest.raises(ConfigError, match="No organization configured"):
        svc.list_builds(project_dir)


def test_pipeline_404_gets_actionable_message(service: BuildService, client: FakeClient, project_dir: Path) -> None:
    client.error = BuildkiteAPIError(404, "Not Found")

    with pytest.raises(BuildkiteAPIError, match="Pipeline 'web' not found"):
        service.list_builds(project_dir)


def test_other_api_errors_pass_through(service: BuildService, client: FakeClient, project_dir: Path) -> None:
    client.error = BuildkiteAPIError(401, "Unauthorized")

    with pytest.raises(BuildkiteAPIError, match="Unauthorized") as exc_info:
        service.refresh_current_build(project_dir)

    assert exc_info.value.unauthorized


def test_list_builds_passes_branch_and_limit(service: BuildService, client: FakeClient, project_dir: Path) -> None:
    service.list_builds(project_dir, branch="dev", limit=3)

    assert client.calls == [("list_builds", "web", "dev", 3)]


def test_trigger_defaults_and_clears_cache(service: BuildService, client: FakeClient, project_dir: Path) -> None:
    service.refresh_current_build(project_dir)

    build = service.trigger(project_dir)

    assert build.number == 100
    assert client.calls[-1] == ("trigger", "web", "main", "HEAD", "Build triggered from buildkite-client")
    assert ("acme", "web", "main") not in service.cache


def test_rebuild_current_returns_old_and_new(service: BuildService, client: FakeClient, project_dir: Path) -> None:
    old, new = service.rebuild_current(project_dir)

    assert (old.number, new.number) == (7, 8)
    assert service.cache.get(("acme", "web", "main")).number == 8


def test_rebuild_without_builds_fails(service: BuildService, client: FakeClient, project_dir: Path) -> None:
    client.builds = []

    with pytest.raises(ConfigError, match="No builds found for branch 'main'"):
        service.rebuild_current(project_dir)


def test_open_current_in_browser(service: BuildService, project_dir: Path) -> None:
    opened: list[str] = []

    build = service.open_current_in_browser(project_dir, opener=lambda url: opened.append(url) or True)

    assert build.number == 7
    assert opened == ["https://bk/7"]


def test_open_without_web_url_fails(service: BuildService, client: FakeClient, project_dir: Path) -> None:
    client.builds = [Build(number=9, state="running")]

    with pytest.raises(ConfigError, match="No web URL"):
        service.open_current_in_browser(project_dir, opener=lambda url: True)


def test_remote_slug_is_cached_after_success(store: ConfigStore, project_dir: Path, client: FakeClient) -> None:
    store.add_organization("acme", "tok")
    store.set_project_branch("main", project_dir)
    svc = BuildService(store, client_factory=lambda org, **kwargs: client)
    remote = "git@github.com:acme/web-app.git"

    with patch("buildkite_client.git_tools.remote_url", return_value=remote):
        svc.refresh_current_build(project_dir)

    assert svc.resolver._slug_cache == {remote: "web-app"}


def test_set_branch_clears_cache(service: BuildService, project_dir: Path) -> None:
    service.refresh_current_build(project_dir)

    service.set_branch("release", project_dir)

    assert len(service.cache._entries) == 0
    assert service.context(project_dir).branch.branch == "release"


def test_list_pipelines(service: BuildService, project_dir: Path) -> None:
    assert [p.slug for p in service.list_pipelines(project_dir)] == ["web"]


def test_context_uses_project_default_org(store: ConfigStore, project_dir: Path, tmp_path: Path) -> None:
    store.add_organization("acme", "tok")
    store.add_organization("globex", "tok")
    other = tmp_path / "other-project"
    other.mkdir()
    store.update_settings({"default_org": "globex"}, cwd=other)
    service = BuildService(store)

    assert service.context(other).organization == "globex"
    assert service.context(project_dir).organization == "acme"
