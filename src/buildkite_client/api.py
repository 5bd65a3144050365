"""Buildkite REST API v2 client."""

from __future__ import annotations

import json
import logging
from contextlib import suppress
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from pydantic import ValidationError

from buildkite_client.credentials import get_token
from buildkite_client.schemas import Build, Pipeline
from buildkite_client.settings import ConfigStore

logger = logging.getLogger(__name__)

BASE_URL = "https://api.buildkite.com/v2"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_TRIGGER_MESSAGE = "Build triggered from buildkite-client"
_USER_AGENT = "buildkite-client"


class BuildkiteAPIError(RuntimeError):
    """An API call failed. ``status`` is 0 for network or configuration failures."""

    def __init__(self, status: int, message: str, body: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.message = message
        self.body = body

    @property
    def unauthorized(self) -> bool:
        return self.status == 401

    @property
    def not_found(self) -> bool:
        return self.status == 404


def _segment(value: str | int) -> str:
    return quote(str(value), safe="")


def _error_message(body: str) -> str:
    message = "Request failed"
    if body:
        with suppress(ValueError):
            parsed = json.loads(body)
            if isinstance(parsed, dict) and parsed.get("message"):
                message = str(parsed["message"])
    return message


def status_message(status: int) -> str:
    """Human-readable bucket for a token-validation status code."""
    if status == 200:
        return "Token is valid"
    if status == 401:
        return "Invalid token"
    if status == 404:
        return "Organization not found or no access"
    return f"Unexpected error: {status}"


class BuildkiteClient:
    """Synchronous client scoped to one organization."""

    def __init__(
        self,
        org_slug: str,
        token: str,
        *,
        base_url: str = BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.org_slug = org_slug
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def for_organization(
        cls,
        org_slug: str | None,
        *,
        store: ConfigStore | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> BuildkiteClient:
        """Build a client using the credential precedence chain."""
        if not org_slug:
            raise BuildkiteAPIError(0, "No organization configured")
        credential = get_token(org_slug, store=store)
        return cls(org_slug, credential.token, timeout=timeout)

    # -- transport -------------------------------------------------------------

    def _org_path(self, *parts: str | int) -> str:
        segments = ["organizations", _segment(self.org_slug), *(_segment(p) for p in parts)]
        return "/" + "/".join(segments)

    def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> Any:
        """Send a request and return the decoded JSON body (``None`` when empty)."""
        url = f"{self.base_url}{path}"
        query = {k: v for k, v in (params or {}).items() if v is not None}
        if query:
            url = f"{url}?{urlencode(query)}"
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/json",
            "User-Agent": _USER_AGENT,
        }
        data: bytes | None = None
        if payload is not None:
            headers["Content-Type"] = "application/json"
            data = json.dumps(payload).encode("utf-8")

        logger.debug("%s %s", method.upper(), url)
        request_obj = Request(url, headers=headers, data=data, method=method.upper())
        try:
            with urlopen(request_obj, timeout=self.timeout) as response:
                body_text = response.read().decode("utf-8", errors="replace")
        except HTTPError as exc:
            body = ""
            with suppress(Exception):
                body = exc.read().decode("utf-8", errors="replace")
            raise BuildkiteAPIError(exc.code, _error_message(body), body or None) from exc
        except URLError as exc:
            reason = str(getattr(exc, "reason", exc) or "").strip()
            message = f"Could not reach Buildkite API: {reason}" if reason else "Could not reach Buildkite API"
            raise BuildkiteAPIError(0, message) from exc
        except (OSError, ValueError) as exc:
            raise BuildkiteAPIError(0, f"Buildkite API request failed: {exc}") from exc

        if not body_text.strip():
            return None
        try:
            return json.loads(body_text)
        except json.JSONDecodeError:
            return body_text

    # -- resources -------------------------------------------------------------

    def get_organization(self) -> dict[str, Any]:
        body = self.request("GET", self._org_path())
        return body if isinstance(body, dict) else {}

    def list_pipelines(self, *, page: int = 1, per_page: int = 100) -> list[Pipeline]:
        body = self.request("GET", self._org_path("pipelines"), params={"page": page, "per_page": per_page})
        return [_parse(Pipeline, item) for item in _as_list(body)]

    def get_pipeline(self, pipeline_slug: str) -> Pipeline:
        body = self.request("GET", self._org_path("pipelines", pipeline_slug))
        return _parse(Pipeline, body)

    def list_builds(
        self,
        pipeline_slug: str,
        *,
        branch: str | None = None,
        state: str | None = None,
        per_page: int = 20,
    ) -> list[Build]:
        body = self.request(
            "GET",
            self._org_path("pipelines", pipeline_slug, "builds"),
            params={"branch": branch, "state": state, "per_page": per_page},
        )
        return [_parse(Build, item) for item in _as_list(body)]

    def get_build(self, pipeline_slug: str, number: int) -> Build:
        body = self.request("GET", self._org_path("pipelines", pipeline_slug, "builds", number))
        return _parse(Build, body)

    def latest_build_for_branch(self, pipeline_slug: str, branch: str) -> Build | None:
        builds = self.list_builds(pipeline_slug, branch=branch, per_page=1)
        return builds[0] if builds else None

    def trigger_build(
        self,
        pipeline_slug: str,
        *,
        branch: str,
        commit: str = "HEAD",
        message: str = DEFAULT_TRIGGER_MESSAGE,
        env: dict[str, str] | None = None,
    ) -> Build:
        payload: dict[str, Any] = {"commit": commit, "branch": branch, "message": message}
        if env:
            payload["env"] = dict(env)
        body = self.request("POST", self._org_path("pipelines", pipeline_slug, "builds"), payload=payload)
        build = _parse(Build, body)
        logger.info("Triggered %s/%s build #%s on %s", self.org_slug, pipeline_slug, build.number, branch)
        return build

    def rebuild(self, pipeline_slug: str, number: int) -> Build:
        body = self.request("PUT", self._org_path("pipelines", pipeline_slug, "builds", number, "rebuild"))
        build = _parse(Build, body)
        logger.info("Rebuilt %s/%s #%s as #%s", self.org_slug, pipeline_slug, number, build.number)
        return build


def _as_list(body: Any) -> list[Any]:
    if body is None:
        return []
    if not isinstance(body, list):
        raise BuildkiteAPIError(0, "Buildkite API returned an unexpected payload shape")
    return body


def _parse(model: type[Any], body: Any) -> Any:
    try:
        return model.model_validate(body)
    except ValidationError as exc:
        raise BuildkiteAPIError(0, f"Buildkite API returned an unexpected payload: {exc}") from exc


def validate_token(
    org_slug: str,
    token: str,
    *,
    base_url: str = BASE_URL,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> tuple[bool, str]:
    """Check *token* against ``GET /organizations/<slug>``; return ``(valid, message)``."""
    client = BuildkiteClient(org_slug, token, base_url=base_url, timeout=timeout)
    try:
        client.get_organization()
    except BuildkiteAPIError as exc:
        if exc.status == 0:
            return False, exc.message
        return False, status_message(exc.status)
    return True, status_message(200)
