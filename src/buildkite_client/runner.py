"""Extract command steps from a pipeline file and run them locally."""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from yaml.nodes import MappingNode, Node, ScalarNode, SequenceNode

from buildkite_client.file_io import read_text_utf8_resilient

logger = logging.getLogger(__name__)

AGENT_BINARY = "buildkite-agent"


@dataclass(slots=True)
class Step:
    """A runnable command step. ``row``/``col`` are 0-based source positions."""

    row: int
    col: int
    label: str | None = None
    command: str | list[str] | None = None
    commands: list[str] | None = None
    env: dict[str, str] = field(default_factory=dict)
    has_plugins: bool = False

    @property
    def display_label(self) -> str:
        return self.label or "step"


@dataclass(frozen=True, slots=True)
class StepResult:
    label: str
    command: str
    exit_code: int
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.exit_code == 0


def has_agent() -> bool:
    return shutil.which(AGENT_BINARY) is not None


def _scalar_list(node: Node) -> list[str]:
    if isinstance(node, SequenceNode):
        return [str(item.value) for item in node.value if isinstance(item, ScalarNode)]
    if isinstance(node, ScalarNode):
        return [str(node.value)]
    return []


def _env_mapping(node: Node) -> dict[str, str]:
    env: dict[str, str] = {}
    if isinstance(node, MappingNode):
        for key_node, value_node in node.value:
            if isinstance(key_node, ScalarNode) and isinstance(value_node, ScalarNode):
                env[str(key_node.value)] = str(value_node.value)
    elif isinstance(node, SequenceNode):
        # Buildkite also accepts ["KEY=value", ...].
        for item in _scalar_list(node):
            key, sep, value = item.partition("=")
            if sep:
                env[key] = value
    return env


def _parse_step(node: MappingNode) -> Step:
    step = Step(row=node.start_mark.line, col=node.start_mark.column)
    for key_node, value_node in node.value:
        if not isinstance(key_node, ScalarNode):
            continue
        key = str(key_node.value)
        if key == "label" and isinstance(value_node, ScalarNode):
            step.label = str(value_node.value)
        elif key == "command":
            if isinstance(value_node, SequenceNode):
                step.command = _scalar_list(value_node)
            elif isinstance(value_node, ScalarNode):
                step.command = str(value_node.value)
        elif key == "commands":
            step.commands = _scalar_list(value_node)
        elif key == "env":
            step.env = _env_mapping(value_node)
        elif key == "plugins":
            step.has_plugins = True
    return step


def _collect(steps_node: Node, out: list[Step]) -> None:
    if not isinstance(steps_node, SequenceNode):
        return
    for item in steps_node.value:
        if not isinstance(item, MappingNode):
            continue
        keys = {str(k.value): v for k, v in item.value if isinstance(k, ScalarNode)}
        if "group" in keys and "steps" in keys:
            _collect(keys["steps"], out)
            continue
        step = _parse_step(item)
        if step.command or step.commands:
            out.append(step)


def parse_steps(text: str) -> list[Step]:
    """Return runnable steps (those with ``command``/``commands``) in document order."""
    try:
        root = next(iter(yaml.compose_all(text, Loader=yaml.SafeLoader)), None)
    except yaml.YAMLError as exc:
        logger.warning("Could not parse pipeline YAML: %s", exc)
        return []
    if not isinstance(root, MappingNode):
        return []
    steps: list[Step] = []
    for key_node, value_node in root.value:
        if isinstance(key_node, ScalarNode) and key_node.value == "steps":
            _collect(value_node, steps)
            break
    return steps


def parse_steps_file(path: str | Path) -> list[Step]:
    return parse_steps(read_text_utf8_resilient(Path(path), normalize_to_utf8=False).text)


def get_step_commands(step: Step) -> list[str]:
    if step.commands:
        return list(step.commands)
    if isinstance(step.command, list):
        return list(step.command)
    if step.command:
        return [step.command]
    return []


def step_at_line(steps: list[Step], row: int) -> Step | None:
    """Return the last step that starts at or before 0-based *row*."""
    best: Step | None = None
    for step in steps:
        if step.row <= row and (best is None or step.row > best.row):
            best = step
    return best


def build_shell_command(step: Step) -> str:
    """Join env exports and commands with ``&&`` into one shell line."""
    commands = get_step_commands(step)
    if not commands:
        raise ValueError("Step has no commands to run")
    parts = [f"export {key}={shlex.quote(value)}" for key, value in step.env.items()]
    parts.extend(commands)
    return " && ".join(parts)


def run_step(step: Step, *, cwd: str | Path | None = None) -> StepResult:
    """Run *step* in a shell, inheriting the terminal for output."""
    command = build_shell_command(step)
    if step.has_plugins:
        logger.warning(
            "Step '%s' has plugins which will be skipped in local execution",
            step.display_label,
        )
    workdir = Path(cwd or Path.cwd())
    logger.info("Running step '%s' in %s", step.display_label, workdir)
    started = time.monotonic()
    completed = subprocess.run(command, shell=True, cwd=workdir, check=False)
    elapsed = time.monotonic() - started
    result = StepResult(
        label=step.display_label,
        command=command,
        exit_code=int(completed.returncode),
        duration_seconds=round(elapsed, 3),
    )
    if result.success:
        logger.info("Step '%s' completed successfully", result.label)
    else:
        logger.info("Step '%s' failed with exit code %d", result.label, result.exit_code)
    return result
