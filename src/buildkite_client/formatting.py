"""Text rendering for builds and pipelines."""

from __future__ import annotations

import time
from datetime import datetime, timezone

from buildkite_client.schemas import DEFAULT_STATE_ICONS, Build, Pipeline

_MESSAGE_WIDTH = 50


def state_icon(state: str | None, icons: dict[str, str] | None = None) -> str:
    return (icons or DEFAULT_STATE_ICONS).get(str(state or ""), "?")


def _parse_utc_iso(value: str | None) -> datetime | None:
    text = str(value or "").strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def relative_time(timestamp: str | None, *, now_epoch_s: float | None = None) -> str:
    """Render an ISO timestamp as ``just now`` / ``5m ago`` / ``3h ago`` / ``2d ago``."""
    parsed = _parse_utc_iso(timestamp)
    if parsed is None:
        return ""
    now = time.time() if now_epoch_s is None else now_epoch_s
    diff = max(int(now - parsed.timestamp()), 0)
    if diff < 60:
        return "just now"
    if diff < 3600:
        return f"{diff // 60}m ago"
    if diff < 86400:
        return f"{diff // 3600}h ago"
    return f"{diff // 86400}d ago"


def truncate(text: str | None, width: int = _MESSAGE_WIDTH) -> str:
    first_line = str(text or "").splitlines()[0] if text else ""
    if len(first_line) > width:
        return first_line[: width - 3] + "..."
    return first_line


def build_line(build: Build, icons: dict[str, str] | None = None, *, now_epoch_s: float | None = None) -> str:
    """One-line summary used for build lists."""
    when = relative_time(build.created_at, now_epoch_s=now_epoch_s)
    line = (
        f"{state_icon(build.state, icons)} #{build.number} {build.state} "
        f"{build.branch or ''} ({build.short_commit}) - {truncate(build.message) or 'No message'}"
    )
    return f"{line} ({when})" if when else line


def build_details(build: Build, icons: dict[str, str] | None = None) -> list[str]:
    return [
        f"Build #{build.number} - {state_icon(build.state, icons)} {build.state}",
        f"Branch: {build.branch or 'unknown'}",
        f"Commit: {build.short_commit}",
        f"Message: {build.message or 'No message'}",
        f"Author: {build.author_name}",
        f"Created: {build.created_at or 'unknown'}",
        f"URL: {build.web_url or '(none)'}",
    ]


def pipeline_line(pipeline: Pipeline) -> str:
    name = f" ({pipeline.name})" if pipeline.name and pipeline.name != pipeline.slug else ""
    return f"{pipeline.slug}{name}"
