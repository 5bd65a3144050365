"""Atomic writes, resilient text reads and JSON persistence for the config files."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager, suppress
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_REPLACE_MAX_RETRIES = 8
_REPLACE_RETRY_SECONDS = 0.01

_PATH_LOCKS_GUARD = threading.Lock()
_PATH_LOCKS: dict[str, threading.RLock] = {}


def _path_lock(path: Path) -> threading.RLock:
    key = str(path.resolve())
    with _PATH_LOCKS_GUARD:
        lock = _PATH_LOCKS.get(key)
        if lock is None:
            lock = threading.RLock()
            _PATH_LOCKS[key] = lock
    return lock


@contextmanager
def locked_path(path: Path) -> Iterator[None]:
    """Serialize read-modify-write cycles on one config file within a process."""
    with _path_lock(path):
        yield


def _replace_with_retry(src: Path, dst: Path) -> None:
    last_error: OSError | None = None
    for attempt in range(_REPLACE_MAX_RETRIES):
        try:
            src.replace(dst)
            return
        except PermissionError as exc:
            last_error = exc
        if attempt < _REPLACE_MAX_RETRIES - 1:
            time.sleep(_REPLACE_RETRY_SECONDS * (attempt + 1))
    if last_error is not None:
        raise last_error


def atomic_write_text(path: Path, content: str, *, encoding: str = "utf-8") -> None:
    """Write text through a sibling temp file so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f"{path.name}.", suffix=".tmp", dir=str(path.parent))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding=encoding) as handle:
            handle.write(content)
        with locked_path(path):
            _replace_with_retry(tmp_path, path)
    finally:
        with suppress(OSError):
            tmp_path.unlink(missing_ok=True)


@dataclass(frozen=True, slots=True)
class ResilientTextRead:
    """Decoded file text plus how it was decoded."""

    text: str
    used_fallback: bool = False
    decoder: str = "utf-8"
    used_replacement: bool = False
    normalized_to_utf8: bool = False


def read_text_utf8_resilient(path: Path, *, normalize_to_utf8: bool = True) -> ResilientTextRead:
    """Read text as UTF-8, recovering from BOMs and common legacy encodings.

    With *normalize_to_utf8* a file that needed a fallback decoder is
    rewritten as UTF-8. Raises ``FileNotFoundError`` for a missing file.
    """
    try:
        return ResilientTextRead(text=path.read_text(encoding="utf-8"))
    except UnicodeDecodeError:
        raw = path.read_bytes()

    decoded: ResilientTextRead | None = None
    for decoder in ("utf-8-sig", "cp1252", "latin-1"):
        try:
            decoded = ResilientTextRead(text=raw.decode(decoder), used_fallback=True, decoder=decoder)
        except UnicodeDecodeError:
            continue
        break
    if decoded is None:
        decoded = ResilientTextRead(
            text=raw.decode("utf-8", errors="replace"),
            used_fallback=True,
            decoder="utf-8-replace",
            used_replacement=True,
        )
    logger.warning("%s is not valid UTF-8; decoded with %s", path, decoded.decoder)
    if not normalize_to_utf8:
        return decoded
    atomic_write_text(path, decoded.text)
    return replace(decoded, normalized_to_utf8=True)


def read_json(path: Path) -> dict[str, Any]:
    """Return the JSON object stored at *path*, or ``{}`` when missing or invalid."""
    try:
        raw = read_text_utf8_resilient(path).text.lstrip("\ufeff")
    except FileNotFoundError:
        return {}
    except OSError as exc:
        logger.warning("Could not read %s: %s", path, exc)
        return {}
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Ignoring malformed JSON in %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring %s: expected a JSON object, got %s", path, type(data).__name__)
        return {}
    return data


def write_json(path: Path, payload: Mapping[str, Any]) -> None:
    """Persist *payload* as indented JSON."""
    atomic_write_text(path, json.dumps(payload, indent=2, sort_keys=True) + "\n")
