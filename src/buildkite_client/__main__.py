"""CLI entrypoint for buildkite-client."""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv
from pydantic import ValidationError

from buildkite_client import credentials, git_tools
from buildkite_client.api import BuildkiteAPIError
from buildkite_client.builds import BuildService
from buildkite_client.formatting import build_details, build_line, pipeline_line, state_icon
from buildkite_client.lint import lint_file, summarize
from buildkite_client.notifications import Notifier
from buildkite_client.organizations import OrganizationManager
from buildkite_client.pipeline import PipelineResolver, effective_branch, find_pipeline_file
from buildkite_client.preflight import PreflightReport, build_preflight_report
from buildkite_client.runner import Step, build_shell_command, parse_steps_file, run_step, step_at_line
from buildkite_client.schemas import ClientSettings
from buildkite_client.settings import ConfigError, ConfigStore, deep_merge

logger = logging.getLogger(__name__)

_TOKEN_PREVIEW_CHARS = 10


def _load_dotenv() -> None:
    """Load .env from cwd or its parent so tokens can live next to the project."""
    for dir_ in (Path.cwd(), Path.cwd().parent):
        env_file = dir_ / ".env"
        if env_file.is_file():
            load_dotenv(env_file)
            return
    load_dotenv()


@dataclass
class _Session:
    cwd: Path
    store: ConfigStore
    organizations: OrganizationManager
    resolver: PipelineResolver
    builds: BuildService
    notifier: Notifier

    @property
    def icons(self) -> dict[str, str]:
        return self.store.settings(self.cwd).ui.icons


def _open_session(cwd: str | None) -> _Session:
    where = Path(cwd or Path.cwd()).resolve()
    store = ConfigStore()
    organizations = OrganizationManager(store)
    resolver = PipelineResolver(store)
    try:
        notifier = Notifier(store.settings(where).notifications)
    except ConfigError as exc:
        logger.warning("Falling back to default notification settings: %s", exc)
        notifier = Notifier()
    return _Session(
        cwd=where,
        store=store,
        organizations=organizations,
        resolver=resolver,
        builds=BuildService(store, organizations=organizations, resolver=resolver),
        notifier=notifier,
    )


# ---------------------------------------------------------------------------
# Interactive prompts
# ---------------------------------------------------------------------------


def _interactive() -> bool:
    return sys.stdin.isatty()


def _prompt(label: str, *, default: str = "", secret: bool = False) -> str:
    """Ask for a value on an interactive terminal; raise ConfigError otherwise."""
    if not _interactive():
        raise ConfigError(f"{label} is required")
    suffix = f" [{default}]" if default else ""
    try:
        if secret:
            value = getpass.getpass(f"{label}: ")
        else:
            value = input(f"{label}{suffix}: ")
    except EOFError as exc:
        raise ConfigError("Cancelled") from exc
    return value.strip() or default


def _confirm(question: str, *, assume_yes: bool = False) -> bool:
    if assume_yes:
        return True
    if not _interactive():
        raise ConfigError(f"{question} Re-run with --yes to confirm.")
    try:
        answer = input(f"{question} [y/N]: ")
    except EOFError:
        return False
    return answer.strip().lower() in {"y", "yes"}


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    """Build and return the command-line parser for all command groups."""
    p = argparse.ArgumentParser(
        prog="buildkite",
        description="Buildkite client - pipeline linting, build status and local step runs.",
    )
    p.add_argument(
        "--cwd",
        "-C",
        type=str,
        default=None,
        help="Project directory (default: current directory).",
    )
    p.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging.",
    )
    sub = p.add_subparsers(dest="command")

    # -- org ------------------------------------------------------------------
    org_p = sub.add_parser("org", help="Manage organizations and their API tokens.")
    org_sub = org_p.add_subparsers(dest="action")
    add_p = org_sub.add_parser("add", help="Add an organization (prompts for missing values).")
    add_p.add_argument("name", nargs="?", default="", help="Organization slug.")
    add_p.add_argument("--token", type=str, default="", help="API token (prompted when omitted).")
    add_p.add_argument(
        "--storage",
        choices=["config", "keyring"],
        default=None,
        help="Where to store the token (default: ask, or config).",
    )
    add_p.add_argument("--no-validate", action="store_true", help="Skip the token check against the API.")
    add_p.add_argument("--set-current", action="store_true", help="Make this the current organization.")
    remove_p = org_sub.add_parser("remove", help="Remove an organization and its stored token.")
    remove_p.add_argument("name", help="Organization slug.")
    remove_p.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation.")
    org_sub.add_parser("list", help="List configured organizations.")
    switch_p = org_sub.add_parser("switch", help="Switch the current organization.")
    switch_p.add_argument("name", nargs="?", default="", help="Organization slug.")
    org_sub.add_parser("current", help="Show the current organization.")

    # -- pipeline -------------------------------------------------------------
    pipe_p = sub.add_parser("pipeline", help="Pipeline detection, listing and linting.")
    pipe_sub = pipe_p.add_subparsers(dest="action")
    set_p = pipe_sub.add_parser("set", help="Set the pipeline for this project.")
    set_p.add_argument("slug", nargs="?", default="", help="Pipeline slug.")
    pipe_sub.add_parser("unset", help="Forget the pipeline set for this project.")
    pipe_sub.add_parser("info", help="Show organization and detected pipeline.")
    pipe_sub.add_parser("list", help="List pipelines in the current organization.")
    lint_p = pipe_sub.add_parser("lint", help="Lint a pipeline file.")
    lint_p.add_argument("file", nargs="?", default="", help="Pipeline file (default: auto-detect).")
    lint_p.add_argument("--json", action="store_true", help="Emit diagnostics as JSON.")

    # -- build ----------------------------------------------------------------
    build_p = sub.add_parser("build", help="Query and trigger builds.")
    build_sub = build_p.add_subparsers(dest="action")
    current_p = build_sub.add_parser("current", help="Show the latest build for the current branch.")
    current_p.add_argument("--json", action="store_true", help="Emit the build as JSON.")
    list_p = build_sub.add_parser("list", help="List recent builds.")
    list_p.add_argument("branch", nargs="?", default=None, help="Branch (default: effective branch).")
    list_p.add_argument("--limit", type=int, default=10, help="Maximum builds to show (default: 10).")
    build_sub.add_parser("open", help="Open the latest build in a browser.")
    build_sub.add_parser("refresh", help="Refresh the latest build status.")
    rebuild_p = build_sub.add_parser("rebuild", help="Rebuild the latest build on the current branch.")
    rebuild_p.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation.")
    trigger_p = build_sub.add_parser("trigger", help="Trigger a new build.")
    trigger_p.add_argument("--branch", type=str, default=None, help="Branch (default: effective branch).")
    trigger_p.add_argument("--commit", type=str, default="HEAD", help="Commit (default: HEAD).")
    trigger_p.add_argument("--message", type=str, default=None, help="Build message.")

    # -- branch ---------------------------------------------------------------
    branch_p = sub.add_parser("branch", help="Override the branch used for build queries.")
    branch_sub = branch_p.add_subparsers(dest="action")
    bset_p = branch_sub.add_parser("set", help="Set a manual branch for this project.")
    bset_p.add_argument("name", nargs="?", default="", help="Branch name.")
    branch_sub.add_parser("unset", help="Go back to the checked-out git branch.")
    branch_sub.add_parser("info", help="Show effective, manual and git branches.")

    # -- step -----------------------------------------------------------------
    step_p = sub.add_parser("step", help="Run pipeline command steps locally.")
    step_sub = step_p.add_subparsers(dest="action")
    slist_p = step_sub.add_parser("list", help="List command steps in the pipeline file.")
    slist_p.add_argument("file", nargs="?", default="", help="Pipeline file (default: auto-detect).")
    run_p = step_sub.add_parser("run", help="Run one command step locally.")
    run_p.add_argument("file", nargs="?", default="", help="Pipeline file (default: auto-detect).")
    selector = run_p.add_mutually_exclusive_group()
    selector.add_argument("--line", type=int, default=None, help="1-based line inside the step.")
    selector.add_argument("--index", type=int, default=None, help="1-based step index from 'step list'.")
    run_p.add_argument("--dry-run", action="store_true", help="Print the shell command without running it.")

    # -- doctor / debug ---------------------------------------------------------
    doctor_p = sub.add_parser("doctor", help="Run setup diagnostics.")
    doctor_p.add_argument("--json", action="store_true", help="Emit JSON report instead of text.")
    doctor_p.add_argument("--offline", action="store_true", help="Skip the API connectivity check.")

    debug_p = sub.add_parser("debug", help="Inspect or reset stored configuration.")
    debug_sub = debug_p.add_subparsers(dest="action")
    dconfig_p = debug_sub.add_parser("config", help="Show stored configuration with tokens masked.")
    dconfig_p.add_argument("--json", action="store_true", help="Emit JSON.")
    reset_p = debug_sub.add_parser("reset", help="Delete all stored configuration.")
    reset_p.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation.")
    reset_p.add_argument(
        "--project",
        action="store_true",
        help="Only forget the pipeline, branch and settings stored for this project.",
    )
    dset_p = debug_sub.add_parser("set", help="Store one setting, e.g. notifications.level 30.")
    dset_p.add_argument("key", help="Dotted setting name.")
    dset_p.add_argument("value", help="JSON value; anything that is not JSON is stored as a string.")
    dset_p.add_argument("--project", action="store_true", help="Store it for this project only.")
    return p


# ---------------------------------------------------------------------------
# org
# ---------------------------------------------------------------------------


def _org_add(session: _Session, args: argparse.Namespace) -> int:
    name = args.name or _prompt("Organization slug")
    token = args.token or _prompt("API token", secret=True)
    storage = args.storage
    if storage is None:
        usable, _backend = credentials.keyring_available()
        if usable and _interactive():
            storage = "keyring" if _confirm("Store token in system keyring?") else "config"
        else:
            storage = "config"
    session.organizations.add(
        name,
        token,
        storage=storage,
        set_current=args.set_current,
        validate=not args.no_validate,
    )
    session.notifier.info(f"Organization '{name}' added ({storage})")
    return 0


def _org_remove(session: _Session, args: argparse.Namespace) -> int:
    if not _confirm(f"Remove organization '{args.name}'?", assume_yes=args.yes):
        session.notifier.info("Cancelled")
        return 1
    if not session.organizations.remove(args.name):
        raise ConfigError(f"Organization '{args.name}' not found")
    session.notifier.info(f"Organization '{args.name}' removed")
    return 0


def _org_list(session: _Session, args: argparse.Namespace) -> int:
    names = session.organizations.names()
    if not names:
        session.notifier.info("No organizations configured. Run 'buildkite org add'.")
        return 0
    current = session.organizations.current(session.cwd)
    for name in names:
        marker = "*" if name == current else " "
        try:
            source = credentials.get_token(name, store=session.store).source
        except credentials.CredentialError:
            source = "no token"
        print(f"{marker} {name}  ({source})")
    return 0


def _org_switch(session: _Session, args: argparse.Namespace) -> int:
    names = session.organizations.names()
    name = args.name
    if not name:
        if not names:
            raise ConfigError("No organizations configured. Run 'buildkite org add' first.")
        for idx, org in enumerate(names, start=1):
            print(f"  {idx}. {org}")
        choice = _prompt("Select organization", default=names[0])
        name = names[int(choice) - 1] if choice.isdigit() and 0 < int(choice) <= len(names) else choice
    if name not in names:
        raise ConfigError(f"Organization '{name}' is not configured")
    session.organizations.set_current(name)
    session.builds.cache.clear()
    session.notifier.info(f"Switched to organization '{name}'")
    return 0


def _org_current(session: _Session, args: argparse.Namespace) -> int:
    current = session.organizations.current(session.cwd)
    if not current:
        session.notifier.warn("No organization configured")
        return 1
    print(current)
    return 0


# ---------------------------------------------------------------------------
# pipeline
# ---------------------------------------------------------------------------


def _pipeline_set(session: _Session, args: argparse.Namespace) -> int:
    slug = args.slug or _prompt("Pipeline slug", default=session.resolver.slug(session.cwd) or "")
    org, pipeline = session.store.set_project_pipeline(
        slug, session.cwd, organization=session.organizations.current(session.cwd)
    )
    session.builds.cache.clear()
    session.notifier.info(f"Pipeline set to '{org}/{pipeline}' for {session.cwd}")
    return 0


def _pipeline_unset(session: _Session, args: argparse.Namespace) -> int:
    if session.store.unset_project_pipeline(session.cwd):
        session.builds.cache.clear()
        session.notifier.info("Pipeline unset for this project")
    else:
        session.notifier.info("No pipeline set for this project")
    return 0


def _pipeline_info(session: _Session, args: argparse.Namespace) -> int:
    slug, source = session.resolver.resolve(session.cwd)
    for line in session.organizations.info_lines(slug, session.cwd):
        print(line)
    print("")
    print(f"Pipeline source: {source}")
    return 0


def _pipeline_list(session: _Session, args: argparse.Namespace) -> int:
    pipelines = session.builds.list_pipelines(session.cwd)
    if not pipelines:
        session.notifier.info("No pipelines found")
        return 0
    for pipeline in pipelines:
        print(pipeline_line(pipeline))
    return 0


def _resolve_pipeline_file(session: _Session, file_arg: str) -> Path:
    if file_arg:
        path = Path(file_arg)
        if not path.is_absolute():
            path = session.cwd / path
        if not path.is_file():
            raise ConfigError(f"Pipeline file not found: {path}")
        return path
    found = find_pipeline_file(session.cwd)
    if found is None:
        raise ConfigError("No pipeline file found")
    return found


def _pipeline_lint(session: _Session, args: argparse.Namespace) -> int:
    path = _resolve_pipeline_file(session, args.file)
    diagnostics = lint_file(path)
    errors, warnings = summarize(diagnostics)
    if args.json:
        payload = {
            "file": str(path),
            "errors": errors,
            "warnings": warnings,
            "diagnostics": [d.to_dict() for d in diagnostics],
        }
        print(json.dumps(payload, indent=2))
        return 1 if errors else 0
    for diagnostic in diagnostics:
        print(diagnostic.format(str(path)))
    if errors or warnings:
        message = f"Pipeline lint: {errors} error(s), {warnings} warning(s)"
        if errors:
            session.notifier.error(message)
        else:
            session.notifier.warn(message)
    else:
        session.notifier.info("Pipeline is valid")
    return 1 if errors else 0


# ---------------------------------------------------------------------------
# build
# ---------------------------------------------------------------------------


def _no_builds(session: _Session) -> int:
    branch = effective_branch(session.cwd, store=session.store).branch
    session.notifier.info(f"No builds found for branch '{branch}'")
    return 0


def _build_current(session: _Session, args: argparse.Namespace) -> int:
    build = session.builds.current_build(session.cwd)
    if build is None:
        return _no_builds(session)
    if args.json:
        print(json.dumps(build.model_dump(mode="json"), indent=2))
        return 0
    for line in build_details(build, session.icons):
        print(line)
    return 0


def _build_list(session: _Session, args: argparse.Namespace) -> int:
    builds = session.builds.list_builds(session.cwd, branch=args.branch, limit=args.limit)
    if not builds:
        session.notifier.info("No builds found")
        return 0
    icons = session.icons
    for build in builds:
        print(build_line(build, icons))
    return 0


def _build_open(session: _Session, args: argparse.Namespace) -> int:
    build = session.builds.open_current_in_browser(session.cwd)
    session.notifier.info(f"Opened build #{build.number} in browser")
    return 0


def _build_refresh(session: _Session, args: argparse.Namespace) -> int:
    build = session.builds.refresh_current_build(session.cwd)
    if build is None:
        return _no_builds(session)
    session.notifier.info(f"Build #{build.number}: {state_icon(build.state, session.icons)} {build.state}")
    return 0


def _build_rebuild(session: _Session, args: argparse.Namespace) -> int:
    if not _confirm("Rebuild the latest build on this branch?", assume_yes=args.yes):
        session.notifier.info("Cancelled")
        return 1
    old, new = session.builds.rebuild_current(session.cwd)
    session.notifier.info(f"Rebuilding build #{old.number} as #{new.number}")
    if new.web_url:
        print(new.web_url)
    return 0


def _build_trigger(session: _Session, args: argparse.Namespace) -> int:
    kwargs: dict[str, str] = {"commit": args.commit}
    if args.message:
        kwargs["message"] = args.message
    build = session.builds.trigger(session.cwd, branch=args.branch, **kwargs)
    session.notifier.info(f"Triggered build #{build.number} on branch '{build.branch}'")
    if build.web_url:
        print(build.web_url)
    return 0


# ---------------------------------------------------------------------------
# branch
# ---------------------------------------------------------------------------


def _branch_set(session: _Session, args: argparse.Namespace) -> int:
    name = args.name or _prompt("Branch", default=git_tools.current_branch(session.cwd) or "")
    session.builds.set_branch(name, session.cwd)
    session.notifier.info(f"Branch set to '{name}' for this project")
    return 0


def _branch_unset(session: _Session, args: argparse.Namespace) -> int:
    if session.builds.unset_branch(session.cwd):
        session.notifier.info("Manual branch cleared; using the git branch")
    else:
        session.notifier.info("No manual branch set for this project")
    return 0


def _branch_info(session: _Session, args: argparse.Namespace) -> int:
    info = effective_branch(session.cwd, store=session.store)
    print(f"Effective branch: {info.branch or '(none)'} ({info.source})")
    print(f"Manual branch:    {info.manual_branch or '(not set)'}")
    print(f"Git branch:       {info.git_branch or '(not detected)'}")
    print(f"Git commit:       {git_tools.head_sha(session.cwd, short=True) or '(not detected)'}")
    return 0


# ---------------------------------------------------------------------------
# step
# ---------------------------------------------------------------------------


def _load_steps(session: _Session, file_arg: str) -> tuple[Path, list[Step]]:
    path = _resolve_pipeline_file(session, file_arg)
    steps = parse_steps_file(path)
    if not steps:
        raise ConfigError(f"No command steps found in {path}")
    return path, steps


def _step_list(session: _Session, args: argparse.Namespace) -> int:
    _path, steps = _load_steps(session, args.file)
    for idx, step in enumerate(steps, start=1):
        print(f"{idx}. {step.display_label} (line {step.row + 1})")
    return 0


def _select_step(steps: list[Step], args: argparse.Namespace) -> Step:
    if args.line is not None:
        step = step_at_line(steps, args.line - 1)
        if step is None:
            raise ConfigError(f"No step found at line {args.line}")
        return step
    if args.index is not None:
        if not 0 < args.index <= len(steps):
            raise ConfigError(f"Step index must be between 1 and {len(steps)}")
        return steps[args.index - 1]
    if len(steps) == 1:
        return steps[0]
    if not _interactive():
        raise ConfigError("Multiple steps found; choose one with --index or --line")
    for idx, step in enumerate(steps, start=1):
        print(f"  {idx}. {step.display_label}")
    choice = _prompt("Select step to run")
    if not choice.isdigit() or not 0 < int(choice) <= len(steps):
        raise ConfigError(f"Invalid step selection: {choice}")
    return steps[int(choice) - 1]


def _step_run(session: _Session, args: argparse.Namespace) -> int:
    _path, steps = _load_steps(session, args.file)
    step = _select_step(steps, args)
    try:
        command = build_shell_command(step)
    except ValueError as exc:
        raise ConfigError(f"{exc}: {step.display_label}") from exc
    if args.dry_run:
        print(command)
        return 0
    if step.has_plugins:
        session.notifier.warn("Step has plugins which will be skipped in local execution")
    session.notifier.info(f"Running step: {step.display_label}")
    result = run_step(step, cwd=session.cwd)
    if result.success:
        session.notifier.info(f"Step '{result.label}' completed successfully")
        return 0
    session.notifier.error(f"Step '{result.label}' failed with exit code {result.exit_code}")
    return 1


# ---------------------------------------------------------------------------
# doctor / debug
# ---------------------------------------------------------------------------


def _print_doctor_report(report: PreflightReport) -> None:
    """Print a human-readable diagnostics report."""

    print("\n  Buildkite - Setup Diagnostics")
    print("  " + "=" * 58)
    print(f"  Directory: {report.cwd}")

    for category in report.categories:
        print(f"\n  {category}")
        print("  " + "-" * len(category))
        for check in report.checks:
            if check.category != category:
                continue
            status = {"pass": "PASS", "warn": "WARN", "fail": "FAIL"}.get(check.status, "INFO")
            print(f"  [{status}] {check.label}")
            print(f"    {check.detail}")
            if check.hint and check.status != "pass":
                print(f"    Fix: {check.hint}")

    summary = report.summary
    print("\n  " + "-" * 58)
    print(f"  Summary: {summary['pass']} pass, {summary['warn']} warn, {summary['fail']} fail")
    print(f"  Ready:   {'yes' if report.ready else 'no'}")
    print()


def _run_doctor(session: _Session, args: argparse.Namespace) -> int:
    """Run setup diagnostics and print the report."""
    report = build_preflight_report(
        session.cwd,
        store=session.store,
        organizations=session.organizations,
        resolver=session.resolver,
        check_api=not args.offline,
    )
    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
        return 0 if report.ready else 1
    _print_doctor_report(report)
    if report.ready:
        return 0
    print("Error: setup checks failed.", file=sys.stderr)
    for message in report.failure_messages():
        print(f"  - {message}", file=sys.stderr)
    return 1


def _mask_token(token: str) -> str:
    if not token:
        return ""
    return token[:_TOKEN_PREVIEW_CHARS] + "..."


def _debug_config(session: _Session, args: argparse.Namespace) -> int:
    config = session.store.load_global().model_dump(mode="json")
    for org in config.get("organizations", {}).values():
        org["token"] = _mask_token(str(org.get("token") or ""))
    payload = {
        "data_dir": str(session.store.data_dir),
        "config_path": str(session.store.config_path),
        "global": config,
        "project": session.store.load_project(session.cwd).model_dump(mode="json"),
        "effective_settings": session.store.settings(session.cwd).model_dump(mode="json"),
        "problems": session.store.validate(),
    }
    if args.json:
        print(json.dumps(payload, indent=2))
        return 0
    print(f"Data directory: {payload['data_dir']}")
    print(f"Global config:  {payload['config_path']}")
    for key in ("global", "project", "effective_settings"):
        print(f"\n{key}:")
        print(json.dumps(payload[key], indent=2, sort_keys=True))
    if payload["problems"]:
        print("\nProblems:")
        for problem in payload["problems"]:
            print(f"  - {problem}")
    return 0


def _debug_reset(session: _Session, args: argparse.Namespace) -> int:
    if args.project:
        if not _confirm(f"Forget stored settings for {session.cwd}?", assume_yes=args.yes):
            session.notifier.info("Cancelled")
            return 1
        if session.store.delete_project(session.cwd):
            session.builds.cache.clear()
            session.notifier.info(f"Removed project settings for {session.cwd}")
        else:
            session.notifier.info("No project settings stored for this directory")
        return 0
    if not _confirm("Delete all buildkite-client configuration?", assume_yes=args.yes):
        session.notifier.info("Cancelled")
        return 1
    if session.store.reset():
        session.notifier.info(f"Removed {session.store.data_dir}")
    else:
        session.notifier.info("Nothing to reset")
    return 0


def _debug_set(session: _Session, args: argparse.Namespace) -> int:
    parts = [part for part in str(args.key).split(".") if part]
    if not parts:
        raise ConfigError("Setting name cannot be empty")
    try:
        value = json.loads(args.value)
    except json.JSONDecodeError:
        value = args.value
    values: dict[str, object] = {parts[-1]: value}
    for part in reversed(parts[:-1]):
        values = {part: values}
    try:
        ClientSettings.model_validate(deep_merge(ClientSettings().model_dump(), values))
    except ValidationError as exc:
        raise ConfigError(f"Invalid settings: {exc}") from exc
    session.store.update_settings(values, cwd=session.cwd if args.project else None)
    scope = f"project {session.cwd}" if args.project else "global config"
    session.notifier.info(f"Set {'.'.join(parts)} = {json.dumps(value)} in {scope}")
    return 0


_HANDLERS = {
    ("org", "add"): _org_add,
    ("org", "remove"): _org_remove,
    ("org", "list"): _org_list,
    ("org", "switch"): _org_switch,
    ("org", "current"): _org_current,
    ("pipeline", "set"): _pipeline_set,
    ("pipeline", "unset"): _pipeline_unset,
    ("pipeline", "info"): _pipeline_info,
    ("pipeline", "list"): _pipeline_list,
    ("pipeline", "lint"): _pipeline_lint,
    ("build", "current"): _build_current,
    ("build", "list"): _build_list,
    ("build", "open"): _build_open,
    ("build", "refresh"): _build_refresh,
    ("build", "rebuild"): _build_rebuild,
    ("build", "trigger"): _build_trigger,
    ("branch", "set"): _branch_set,
    ("branch", "unset"): _branch_unset,
    ("branch", "info"): _branch_info,
    ("step", "list"): _step_list,
    ("step", "run"): _step_run,
    ("doctor", None): _run_doctor,
    ("debug", "config"): _debug_config,
    ("debug", "reset"): _debug_reset,
    ("debug", "set"): _debug_set,
}


def main(argv: list[str] | None = None) -> int:
    """Parse arguments and dispatch to the matching command handler."""
    _load_dotenv()
    parser = _build_parser()
    args = parser.parse_args(argv)
    # -- Logging setup (early, for all commands) -----------------------------
    level = logging.DEBUG if getattr(args, "verbose", False) else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )
    action = getattr(args, "action", None)
    handler = _HANDLERS.get((args.command, action))
    if handler is None:
        parser.print_help()
        print(
            "\nTip: run 'buildkite org add' to configure an organization,\n"
            "     'buildkite doctor' to validate setup,\n"
            "     or 'buildkite build current' for the latest build on this branch.",
            file=sys.stderr,
        )
        return 1

    try:
        session = _open_session(args.cwd)
        return handler(session, args)
    except BuildkiteAPIError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        if exc.unauthorized:
            print("Check your API token with 'buildkite doctor'.", file=sys.stderr)
        return 1
    except (ConfigError, credentials.CredentialError, git_tools.GitError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nCancelled", file=sys.stderr)
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
