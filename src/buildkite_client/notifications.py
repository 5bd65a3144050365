"""User-facing notifications with a ``[Buildkite]`` prefix and level filtering."""

from __future__ import annotations

import logging
import sys
from typing import TextIO

from buildkite_client.schemas import NotificationSettings

PREFIX = "[Buildkite] "


class Notifier:
    """Print messages at or above the configured level.

    Warnings and errors go to stderr, everything else to stdout.
    """

    def __init__(
        self,
        settings: NotificationSettings | None = None,
        *,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ) -> None:
        self.settings = settings or NotificationSettings()
        self._stdout = stdout
        self._stderr = stderr

    def notify(self, message: str, level: int = logging.INFO) -> bool:
        """Return True when the message was shown."""
        if not self.settings.enabled or level < self.settings.level:
            return False
        if level >= logging.WARNING:
            stream = self._stderr or sys.stderr
        else:
            stream = self._stdout or sys.stdout
        for index, line in enumerate(str(message).splitlines() or [""]):
            print(f"{PREFIX if index == 0 else ' ' * len(PREFIX)}{line}", file=stream)
        return True

    def debug(self, message: str) -> bool:
        return self.notify(message, logging.DEBUG)

    def info(self, message: str) -> bool:
        return self.notify(message, logging.INFO)

    def warn(self, message: str) -> bool:
        return self.notify(message, logging.WARNING)

    def error(self, message: str) -> bool:
        return self.notify(message, logging.ERROR)
