"""Structural linter for Buildkite pipeline YAML.

The document is composed into PyYAML nodes (not constructed into Python
objects) so every diagnostic can point at a 0-based line/column.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path

import yaml
from yaml.nodes import MappingNode, Node, ScalarNode, SequenceNode

from buildkite_client.file_io import read_text_utf8_resilient

logger = logging.getLogger(__name__)

MAX_RETRY_LIMIT = 10

VALID_STEP_TYPES = frozenset(
    {"command", "commands", "block", "wait", "waiter", "trigger", "input", "group"}
)

STEP_REQUIREMENTS: dict[str, tuple[str, ...]] = {
    "trigger": ("trigger",),
    "block": ("block",),
    "input": ("input",),
    "group": ("group", "steps"),
}


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True, slots=True)
class Diagnostic:
    """One lint finding. ``row``/``col`` are 0-based."""

    row: int
    col: int
    message: str
    severity: Severity
    end_row: int | None = None
    end_col: int | None = None
    source: str = "buildkite"

    def to_dict(self) -> dict[str, object]:
        data = asdict(self)
        data["severity"] = self.severity.value
        return data

    def format(self, filename: str = "") -> str:
        prefix = f"{filename}:" if filename else ""
        return f"{prefix}{self.row + 1}:{self.col + 1}: {self.severity.value}: {self.message}"


def _at(node: Node, message: str, severity: Severity = Severity.ERROR) -> Diagnostic:
    return Diagnostic(
        row=node.start_mark.line,
        col=node.start_mark.column,
        end_row=node.end_mark.line,
        end_col=node.end_mark.column,
        message=message,
        severity=severity,
    )


def _mapping_fields(node: MappingNode) -> dict[str, Node]:
    """Return ``{key: value_node}`` for scalar keys, in document order."""
    fields: dict[str, Node] = {}
    for key_node, value_node in node.value:
        if isinstance(key_node, ScalarNode):
            fields.setdefault(str(key_node.value), value_node)
    return fields


def _step_type(fields: dict[str, Node]) -> str | None:
    for key in fields:
        if key in ("command", "commands"):
            return "command"
        if key in VALID_STEP_TYPES:
            return key
    return None


def _retry_limits(automatic: Node) -> Iterable[tuple[Node, int]]:
    """Yield ``(node, limit)`` for every integer ``limit`` under ``retry.automatic``."""
    rules: list[Node]
    if isinstance(automatic, MappingNode):
        rules = [automatic]
    elif isinstance(automatic, SequenceNode):
        rules = list(automatic.value)
    else:
        return
    for rule in rules:
        if not isinstance(rule, MappingNode):
            continue
        limit_node = _mapping_fields(rule).get("limit")
        if not isinstance(limit_node, ScalarNode):
            continue
        try:
            yield limit_node, int(str(limit_node.value).strip())
        except ValueError:
            continue


def _validate_retry(retry: Node) -> list[Diagnostic]:
    if not isinstance(retry, MappingNode):
        return []
    automatic = _mapping_fields(retry).get("automatic")
    if automatic is None:
        return []
    for _node, limit in _retry_limits(automatic):
        if limit > MAX_RETRY_LIMIT:
            return [_at(automatic, f"Retry limit cannot exceed {MAX_RETRY_LIMIT}")]
    return []


def _validate_step(node: Node) -> list[Diagnostic]:
    if isinstance(node, ScalarNode):
        # Bare strings such as "wait" or "block" are valid shorthand steps.
        return []
    if not isinstance(node, MappingNode):
        return []

    diagnostics: list[Diagnostic] = []
    fields = _mapping_fields(node)
    step_type = _step_type(fields)

    if step_type is None and "label" in fields:
        diagnostics.append(
            _at(
                node,
                "Step has label but no command, block, trigger, or other step type",
                Severity.WARNING,
            )
        )

    if "retry" in fields:
        diagnostics.extend(_validate_retry(fields["retry"]))

    for required in STEP_REQUIREMENTS.get(step_type or "", ()):
        if required not in fields:
            diagnostics.append(_at(node, f"'{step_type}' step requires '{required}' field"))

    if step_type == "group" and "steps" in fields:
        diagnostics.extend(_validate_steps(fields["steps"]))

    return diagnostics


def _validate_steps(steps: Node) -> list[Diagnostic]:
    if not isinstance(steps, SequenceNode):
        return [_at(steps, "'steps' must be an array")]
    if not steps.value:
        return [_at(steps, "'steps' array must not be empty")]
    diagnostics: list[Diagnostic] = []
    for item in steps.value:
        diagnostics.extend(_validate_step(item))
    return diagnostics


def lint_text(text: str) -> list[Diagnostic]:
    """Lint pipeline YAML source and return diagnostics in document order."""
    try:
        root = next(iter(yaml.compose_all(text, Loader=yaml.SafeLoader)), None)
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        problem = getattr(exc, "problem", None) or str(exc)
        return [
            Diagnostic(
                row=mark.line if mark is not None else 0,
                col=mark.column if mark is not None else 0,
                message=f"Invalid YAML: {problem}",
                severity=Severity.ERROR,
            )
        ]

    if not isinstance(root, MappingNode):
        return []

    top_level = _mapping_fields(root)
    if "steps" not in top_level:
        return [Diagnostic(0, 0, "Pipeline must have a 'steps' key", Severity.ERROR)]
    return _validate_steps(top_level["steps"])


def lint_file(path: str | Path) -> list[Diagnostic]:
    source = Path(path)
    logger.debug("Linting %s", source)
    return lint_text(read_text_utf8_resilient(source, normalize_to_utf8=False).text)


def summarize(diagnostics: Iterable[Diagnostic]) -> tuple[int, int]:
    """Return ``(error_count, warning_count)``."""
    errors = warnings = 0
    for diagnostic in diagnostics:
        if diagnostic.severity is Severity.ERROR:
            errors += 1
        else:
            warnings += 1
    return errors, warnings
