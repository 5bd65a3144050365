"""Setup diagnostics shown by ``buildkite doctor``."""

from __future__ import annotations

import os
import shutil
import webbrowser
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from buildkite_client import credentials, git_tools
from buildkite_client.api import validate_token
from buildkite_client.lint import lint_file, summarize
from buildkite_client.organizations import OrganizationManager
from buildkite_client.pipeline import PipelineResolver, effective_branch, find_pipeline_file
from buildkite_client.runner import AGENT_BINARY, has_agent
from buildkite_client.settings import ConfigError, ConfigStore

TokenValidator = Callable[[str, str], tuple[bool, str]]


@dataclass(frozen=True)
class PreflightCheck:
    """A single readiness check result. ``status`` is pass, warn, fail or info."""

    category: str
    key: str
    label: str
    status: str
    detail: str
    hint: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "category": self.category,
            "key": self.key,
            "label": self.label,
            "status": self.status,
            "detail": self.detail,
            "hint": self.hint,
        }


@dataclass(frozen=True)
class PreflightReport:
    cwd: str
    checks: list[PreflightCheck] = field(default_factory=list)

    @property
    def summary(self) -> dict[str, int]:
        counts = {"pass": 0, "warn": 0, "fail": 0, "info": 0}
        for check in self.checks:
            if check.status in counts:
                counts[check.status] += 1
        return counts

    @property
    def ready(self) -> bool:
        return self.summary["fail"] == 0

    @property
    def categories(self) -> list[str]:
        seen: list[str] = []
        for check in self.checks:
            if check.category not in seen:
                seen.append(check.category)
        return seen

    def failure_messages(self) -> list[str]:
        messages: list[str] = []
        for check in self.checks:
            if check.status != "fail":
                continue
            messages.append(f"{check.label}: {check.hint or check.detail}")
        return messages

    def to_dict(self) -> dict[str, object]:
        return {
            "cwd": self.cwd,
            "checks": [c.to_dict() for c in self.checks],
            "summary": self.summary,
            "ready": self.ready,
        }


def binary_exists(binary: str) -> bool:
    """Return ``True`` when an executable exists for *binary*."""
    name = os.path.expandvars(os.path.expanduser(str(binary or "").strip()))
    if not name:
        return False
    candidate = Path(name)
    if candidate.is_file():
        return os.access(candidate, os.X_OK)
    return shutil.which(name) is not None


def browser_available() -> tuple[bool, str]:
    try:
        controller = webbrowser.get()
    except webbrowser.Error:
        return False, ""
    return True, str(getattr(controller, "name", "") or type(controller).__name__)


def _current_org(cwd: Path, store: ConfigStore, orgs: OrganizationManager) -> str | None:
    try:
        return orgs.current(cwd)
    except ConfigError:
        name, _org = store.get_current_organization()
        return name


def _configuration_checks(cwd: Path, store: ConfigStore) -> list[PreflightCheck]:
    category = "Configuration"
    try:
        store.settings(cwd)
    except ConfigError as exc:
        return [
            PreflightCheck(
                category, "settings", "Configuration valid", "fail", str(exc),
                hint=(
                    f"Fix or remove the 'settings' block in {store.config_path} "
                    f"or {store.project_path(cwd)}."
                ),
            )
        ]
    return [PreflightCheck(category, "settings", "Configuration valid", "pass", "Settings parsed successfully.")]


def _organization_checks(cwd: Path, store: ConfigStore, orgs: OrganizationManager) -> list[PreflightCheck]:
    category = "Organizations"
    names = orgs.names()
    if not names:
        return [
            PreflightCheck(
                category, "configured", "Organizations configured", "warn",
                "No organizations configured.",
                hint="Run 'buildkite org add' to add an organization.",
            )
        ]
    checks = [
        PreflightCheck(
            category, "configured", "Organizations configured", "pass",
            f"{len(names)} organization(s) configured: {', '.join(names)}.",
        )
    ]
    current = _current_org(cwd, store, orgs)
    if not current:
        checks.append(
            PreflightCheck(
                category, "current", "Current organization", "warn",
                "No current organization set.",
                hint="Run 'buildkite org switch <name>'.",
            )
        )
        return checks
    checks.append(PreflightCheck(category, "current", "Current organization", "pass", current))
    try:
        credential = credentials.get_token(current, store=store)
    except credentials.CredentialError as exc:
        checks.append(
            PreflightCheck(
                category, "token", "API token available", "fail", str(exc),
                hint=(
                    f"Set {credentials.org_token_env_var(current)} or "
                    f"{credentials.GENERIC_TOKEN_ENV}, or run 'buildkite org add'."
                ),
            )
        )
    else:
        checks.append(
            PreflightCheck(category, "token", "API token available", "pass", f"Token source: {credential.source}")
        )
    return checks


def _project_checks(cwd: Path, store: ConfigStore, resolver: PipelineResolver) -> list[PreflightCheck]:
    category = "Current Project"
    checks: list[PreflightCheck] = []
    if git_tools.is_git_repo(cwd):
        checks.append(PreflightCheck(category, "git_repo", "Git repository", "pass", str(cwd)))
        branch = effective_branch(cwd, store=store)
        if branch.branch:
            checks.append(
                PreflightCheck(category, "branch", "Current branch", "pass", f"{branch.branch} ({branch.source})")
            )
        else:
            checks.append(
                PreflightCheck(
                    category, "branch", "Current branch", "warn", "Could not determine current branch.",
                    hint="Check out a branch or run 'buildkite branch set <name>'.",
                )
            )
        repo = git_tools.repo_name(cwd)
        if repo:
            checks.append(PreflightCheck(category, "repository", "Repository", "info", repo))
        commit = git_tools.head_sha(cwd, short=True)
        if commit:
            checks.append(PreflightCheck(category, "commit", "Current commit", "info", commit))
        if git_tools.has_uncommitted_changes(cwd):
            checks.append(
                PreflightCheck(category, "changes", "Working tree", "info", "Working directory has uncommitted changes.")
            )
    else:
        checks.append(
            PreflightCheck(
                category, "git_repo", "Git repository", "info",
                "Current directory is not a git repository.",
                hint="Navigate to a git repository to use build features.",
            )
        )

    slug, source = resolver.resolve(cwd)
    if source in {"override", "project", "local"}:
        checks.append(PreflightCheck(category, "pipeline", "Pipeline configured", "pass", f"{slug} ({source})"))
    else:
        checks.append(
            PreflightCheck(
                category, "pipeline", "Pipeline configured", "warn",
                f"No pipeline configured; guessing '{slug}' from the {source}.",
                hint="Run 'buildkite pipeline set <slug>'.",
            )
        )

    pipeline_file = find_pipeline_file(cwd)
    if pipeline_file is None:
        checks.append(PreflightCheck(category, "pipeline_file", "Pipeline file", "info", "No pipeline file found."))
    else:
        errors, warnings = summarize(lint_file(pipeline_file))
        status = "fail" if errors else ("warn" if warnings else "pass")
        checks.append(
            PreflightCheck(
                category, "pipeline_file", "Pipeline file", status,
                f"{pipeline_file}: {errors} error(s), {warnings} warning(s).",
                hint="Run 'buildkite pipeline lint' for details." if status != "pass" else "",
            )
        )
    return checks


def _api_checks(
    cwd: Path, store: ConfigStore, orgs: OrganizationManager, validator: TokenValidator
) -> list[PreflightCheck]:
    category = "API Connectivity"
    current = _current_org(cwd, store, orgs)
    if not current:
        return []
    try:
        credential = credentials.get_token(current, store=store)
    except credentials.CredentialError:
        return []
    valid, message = validator(current, credential.token)
    if valid:
        return [PreflightCheck(category, "api", "API connection", "pass", f"{current}: {message}")]
    return [
        PreflightCheck(
            category, "api", "API connection", "warn", f"{current}: {message}",
            hint="Check your API token and network connection. "
            "Token scopes needed: read_builds, read_pipelines, read_organizations.",
        )
    ]


def _tool_checks() -> list[PreflightCheck]:
    category = "External Tools"
    checks = []
    if binary_exists("git"):
        checks.append(PreflightCheck(category, "git", "git available", "pass", "git found on PATH."))
    else:
        checks.append(
            PreflightCheck(
                category, "git", "git available", "fail", "git command not found.",
                hint="Git is required for repository detection.",
            )
        )
    has_browser, browser_name = browser_available()
    if has_browser:
        checks.append(PreflightCheck(category, "browser", "Browser opening", "pass", f"Using {browser_name}."))
    else:
        checks.append(
            PreflightCheck(
                category, "browser", "Browser opening", "warn", "No browser found.",
                hint="Build URLs can still be copied manually.",
            )
        )
    if has_agent():
        checks.append(PreflightCheck(category, "agent", "buildkite-agent", "pass", f"{AGENT_BINARY} found on PATH."))
    else:
        checks.append(
            PreflightCheck(
                category, "agent", "buildkite-agent", "info",
                f"{AGENT_BINARY} not found; local steps run with the system shell.",
            )
        )
    usable, backend = credentials.keyring_available()
    checks.append(
        PreflightCheck(
            category, "keyring", "System keyring", "pass" if usable else "warn", backend,
            hint="" if usable else "Tokens can be stored in the config file instead.",
        )
    )
    return checks


def _location_checks(store: ConfigStore) -> list[PreflightCheck]:
    category = "File Locations"
    config_state = "found" if store.config_path.is_file() else "not found"
    return [
        PreflightCheck(category, "data_dir", "Configuration directory", "info", str(store.data_dir)),
        PreflightCheck(category, "global_config", "Global config", "info", f"{store.config_path} ({config_state})"),
        PreflightCheck(
            category, "project_configs", "Project configs", "info", f"{len(store.project_files())} found"
        ),
    ]


def build_preflight_report(
    cwd: str | Path | None = None,
    *,
    store: ConfigStore | None = None,
    organizations: OrganizationManager | None = None,
    resolver: PipelineResolver | None = None,
    check_api: bool = True,
    validator: TokenValidator | None = None,
) -> PreflightReport:
    """Run every diagnostic for *cwd* and return the report."""
    where = Path(cwd or Path.cwd()).resolve()
    store = store or ConfigStore()
    orgs = organizations or OrganizationManager(store)
    resolver = resolver or PipelineResolver(store)

    checks: list[PreflightCheck] = []
    checks.extend(_configuration_checks(where, store))
    checks.extend(_organization_checks(where, store, orgs))
    checks.extend(_project_checks(where, store, resolver))
    if check_api:
        checks.extend(_api_checks(where, store, orgs, validator or validate_token))
    checks.extend(_tool_checks())
    checks.extend(_location_checks(store))
    return PreflightReport(cwd=str(where), checks=checks)
