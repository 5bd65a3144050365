"""Tests for the pipeline YAML linter rules and positions."""

from __future__ import annotations

from pathlib import Path

import pytest

from buildkite_client.lint import Diagnostic, Severity, lint_file, lint_text, summarize

pytestmark = pytest.mark.unit

VALID_PIPELINE = """\
steps:
  - label: ":hammer: Build"
    commands:
      - make build
  - wait
  - block: "Deploy?"
  - trigger: deploy-pipeline
  - input: "Release info"
    fields: []
  - label: Retry ok
    command: make test
    retry:
      automatic:
        limit: 10
"""


def _messages(diagnostics: list[Diagnostic]) -> list[tuple[int, str, Severity]]:
    return [(d.row, d.message, d.severity) for d in diagnostics]


def test_valid_pipeline_has_no_diagnostics() -> None:
    assert lint_text(VALID_PIPELINE) == []


def test_missing_steps_key_is_reported_at_origin() -> None:
    diagnostics = lint_text("env:\n  CI: true\n")

    assert _messages(diagnostics) == [(0, "Pipeline must have a 'steps' key", Severity.ERROR)]
    assert diagnostics[0].col == 0


def test_steps_must_be_an_array() -> None:
    diagnostics = lint_text("env: {}\nsteps:\n  command: make\n")

    assert _messages(diagnostics) == [(2, "'steps' must be an array", Severity.ERROR)]


def test_steps_must_not_be_empty() -> None:
    diagnostics = lint_text("steps: []\n")

    assert _messages(diagnostics) == [(0, "'steps' array must not be empty", Severity.ERROR)]
    assert diagnostics[0].col == 7


def test_label_without_step_type_is_a_warning() -> None:
    text = "steps:\n  - label: Build\n    command: make\n  - label: Orphan\n    key: orphan\n"

    diagnostics = lint_text(text)

    assert _messages(diagnostics) == [
        (3, "Step has label but no command, block, trigger, or other step type", Severity.WARNING)
    ]
    assert diagnostics[0].col == 4


def test_retry_limit_above_maximum_in_mapping_form() -> None:
    text = "steps:\n  - command: make test\n    retry:\n      automatic:\n        limit: 11\n"

    diagnostics = lint_text(text)

    assert _messages(diagnostics) == [(4, "Retry limit cannot exceed 10", Severity.ERROR)]


def test_retry_limit_above_maximum_in_list_form() -> None:
    text = (
        "steps:\n"
        "  - command: make test\n"
        "    retry:\n"
        "      automatic:\n"
        "        - exit_status: -1\n"
        "          limit: 2\n"
        "        - exit_status: 255\n"
        "          limit: 12\n"
    )

    diagnostics = lint_text(text)

    assert _messages(diagnostics) == [(4, "Retry limit cannot exceed 10", Severity.ERROR)]


def test_group_requires_steps_and_nested_steps_are_checked() -> None:
    text = (
        "steps:\n"
        '  - group: "Tests"\n'
        "    steps:\n"
        '      - label: "Unit"\n'
        "        plugins: []\n"
        '  - group: "Empty"\n'
    )

    diagnostics = lint_text(text)

    assert _messages(diagnostics) == [
        (3, "Step has label but no command, block, trigger, or other step type", Severity.WARNING),
        (5, "'group' step requires 'steps' field", Severity.ERROR),
    ]
    assert diagnostics[0].col == 8


def test_scalar_steps_are_accepted() -> None:
    assert lint_text("steps:\n  - wait\n  - block\n") == []


def test_invalid_yaml_reports_parser_position() -> None:
    diagnostics = lint_text("steps:\n  - command: [make\n")

    assert len(diagnostics) == 1
    assert diagnostics[0].severity is Severity.ERROR
    assert diagnostics[0].message.startswith("Invalid YAML:")
    assert diagnostics[0].row >= 1


@pytest.mark.parametrize("text", ["", "just a string\n", "- a\n- b\n"])
def test_non_mapping_documents_are_ignored(text: str) -> None:
    assert lint_text(text) == []


def test_diagnostic_format_uses_one_based_positions() -> None:
    diagnostic = Diagnostic(row=3, col=4, message="boom", severity=Severity.WARNING)

    assert diagnostic.format("pipeline.yml") == "pipeline.yml:4:5: warning: boom"
    assert diagnostic.to_dict()["severity"] == "warning"


def test_lint_file_and_summarize(tmp_path: Path) -> None:
    path = tmp_path / "pipeline.yml"
    path.write_text(
        "steps:\n  - label: Orphan\n  - group: G\n  - command: x\n    retry:\n      automatic:\n        limit: 50\n",
        encoding="utf-8",
    )

    diagnostics = lint_file(path)

    assert summarize(diagnostics) == (2, 1)


def test_lint_file_tolerates_non_utf8_bytes(tmp_path: Path) -> None:
    path = tmp_path / "pipeline.yml"
    path.write_bytes(b"steps:\n  - label: \xff\n")

    diagnostics = lint_file(path)

    assert _messages(diagnostics) == [
        (1, "Step has label but no command, block, trigger, or other step type", Severity.WARNING)
    ]
    assert path.read_bytes() == b"steps:\n  - label: \xff\n"
