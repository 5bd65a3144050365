"""Tests for prefixed, level-filtered user notifications."""

from __future__ import annotations

import io
import logging

import pytest

from buildkite_client.notifications import Notifier
from buildkite_client.schemas import NotificationSettings

pytestmark = pytest.mark.unit


def _notifier(**settings) -> tuple[Notifier, io.StringIO, io.StringIO]:
    out, err = io.StringIO(), io.StringIO()
    return Notifier(NotificationSettings(**settings), stdout=out, stderr=err), out, err


def test_info_goes_to_stdout_with_prefix() -> None:
    notifier, out, err = _notifier()

    assert notifier.info("Build #42 passed") is True
    assert out.getvalue() == "[Buildkite] Build #42 passed\n"
    assert err.getvalue() == ""


def test_warnings_and_errors_go_to_stderr() -> None:
    notifier, out, err = _notifier()

    notifier.warn("careful")
    notifier.error("broken")

    assert out.getvalue() == ""
    assert err.getvalue() == "[Buildkite] careful\n[Buildkite] broken\n"


def test_messages_below_level_are_dropped() -> None:
    notifier, out, _err = _notifier(level=logging.WARNING)

    assert notifier.info("hidden") is False
    assert notifier.debug("hidden") is False
    assert out.getvalue() == ""


def test_disabled_notifier_shows_nothing() -> None:
    notifier, out, err = _notifier(enabled=False)

    assert notifier.error("hidden") is False
    assert out.getvalue() == err.getvalue() == ""


def test_multiline_messages_are_indented() -> None:
    notifier, out, _err = _notifier()

    notifier.info("first\nsecond")

    assert out.getvalue() == "[Buildkite] first\n            second\n"
