"""Runtime configuration for the orchestrator.

Settings come from ``.config/bead-oven.toml`` in the working directory, then
``BEAD_OVEN_*`` environment variables override individual values.
"""

from __future__ import annotations

import os
import shlex
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

CONFIG_RELATIVE_PATH = Path(".config") / "bead-oven.toml"
SUPPORTED_VCS_COMMANDS = ("jj", "git")
DEFAULT_COMMIT_FORMAT = "{id}: {title}"

PROJECT_TYPE_GATES: dict[str, tuple[str, ...]] = {
    "python": ("ruff format --check .", "ruff check .", "pytest -q"),
    "deno": ("deno fmt --check", "deno lint", "deno test -A"),
    "rust": ("cargo fmt --check", "cargo clippy -- -D warnings", "cargo test"),
    "node": ("npm test", "npx tsc --noEmit", "npx prettier --check ."),
    "other": (),
}


@dataclass(slots=True)
class LoopSettings:
    """Orchestrator loop pacing and retry settings."""

    max_iterations: int | None = None
    poll_interval_seconds: float = 1.0
    max_retries: int = 3
    retry_base_seconds: float = 1.0
    retry_max_seconds: float = 30.0
    shutdown_grace_seconds: float = 5.0
    fix_output_max_chars: int = 2_000


@dataclass(slots=True)
class AgentSettings:
    """Coding agent CLI settings."""

    command: tuple[str, ...] = ("claude",)
    model: str | None = None
    max_turns: int | None = None
    stream_output: bool = True


@dataclass(slots=True)
class TrackerSettings:
    """Issue tracker CLI settings."""

    command: tuple[str, ...] = ("bd",)


@dataclass(slots=True)
class VcsSettings:
    """Version control settings; commits are off unless a [vcs] table exists."""

    enabled: bool = False
    command: str = "jj"
    commit_format: str = DEFAULT_COMMIT_FORMAT


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    working_directory: Path = field(default_factory=Path.cwd)
    gates: tuple[str, ...] = ()
    reviews: tuple[str, ...] = ()
    loop: LoopSettings = field(default_factory=LoopSettings)
    agent: AgentSettings = field(default_factory=AgentSettings)
    tracker: TrackerSettings = field(default_factory=TrackerSettings)
    vcs: VcsSettings = field(default_factory=VcsSettings)
    config_path: Path | None = None

    @classmethod
    def load(cls, working_directory: Path | None = None) -> Settings:
        """Load the TOML config (if any) and apply environment overrides."""

        root = (working_directory or Path.cwd()).resolve()
        path = root / CONFIG_RELATIVE_PATH
        raw = load_config_file(path)
        settings = cls.from_mapping(raw or {}, working_directory=root)
        settings.config_path = path if raw is not None else None
        _apply_env_overrides(settings)
        return settings

    @classmethod
    def from_mapping(cls, raw: dict[str, Any], *, working_directory: Path) -> Settings:
        """Build settings from a parsed config mapping."""

        gates = _string_list(raw.get("gates", []), key="gates")
        reviews = _review_prompts(raw.get("reviews", []))

        loop_raw = _table(raw, "orchestrator")
        loop = LoopSettings(
            max_iterations=_optional_int(loop_raw.get("max_iterations")),
            poll_interval_seconds=float(loop_raw.get("poll_interval_seconds", 1.0)),
            max_retries=int(loop_raw.get("max_retries", 3)),
            retry_base_seconds=float(loop_raw.get("retry_base_seconds", 1.0)),
            retry_max_seconds=float(loop_raw.get("retry_max_seconds", 30.0)),
            shutdown_grace_seconds=float(loop_raw.get("shutdown_grace_seconds", 5.0)),
            fix_output_max_chars=int(loop_raw.get("fix_output_max_chars", 2_000)),
        )

        agent_raw = _table(raw, "agent")
        agent = AgentSettings(
            command=tuple(parse_command(str(agent_raw.get("command", "claude")))),
            model=agent_raw.get("model"),
            max_turns=_optional_int(agent_raw.get("max_turns")),
            stream_output=bool(agent_raw.get("stream_output", True)),
        )

        tracker_raw = _table(raw, "tracker")
        tracker = TrackerSettings(
            command=tuple(parse_command(str(tracker_raw.get("command", "bd")))),
        )

        # A [vcs] table turns commits on unless it says enabled = false.
        vcs_raw = raw.get("vcs")
        if vcs_raw is None:
            vcs = VcsSettings()
        else:
            if not isinstance(vcs_raw, dict):
                raise ValueError("[vcs] must be a table.")
            vcs = VcsSettings(
                enabled=bool(vcs_raw.get("enabled", True)),
                command=str(vcs_raw.get("command", "jj")),
                commit_format=str(vcs_raw.get("commit_format", DEFAULT_COMMIT_FORMAT)),
            )

        return cls(
            working_directory=working_directory,
            gates=gates,
            reviews=reviews,
            loop=loop,
            agent=agent,
            tracker=tracker,
            vcs=vcs,
        )

    def validate(self) -> None:
        """Raise configuration error for values the loop cannot run with."""

        if self.loop.max_iterations is not None and self.loop.max_iterations <= 0:
            raise ValueError("max_iterations must be > 0.")
        if self.loop.poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be > 0.")
        if self.loop.max_retries <= 0:
            raise ValueError("max_retries must be > 0.")
        if self.loop.retry_base_seconds < 0 or self.loop.retry_max_seconds < 0:
            raise ValueError("Retry delays must be >= 0.")
        if self.loop.shutdown_grace_seconds < 0:
            raise ValueError("shutdown_grace_seconds must be >= 0.")
        if self.loop.fix_output_max_chars <= 0:
            raise ValueError("fix_output_max_chars must be > 0.")
        if self.agent.max_turns is not None and self.agent.max_turns <= 0:
            raise ValueError("max_turns must be > 0.")
        if not self.agent.command:
            raise ValueError("Agent command must not be empty.")
        if not self.tracker.command:
            raise ValueError("Tracker command must not be empty.")
        if self.vcs.command not in SUPPORTED_VCS_COMMANDS:
            raise ValueError(
                f"Unsupported VCS command: {self.vcs.command!r}. "
                f"Expected one of: {', '.join(SUPPORTED_VCS_COMMANDS)}.",
            )
        for gate in self.gates:
            if not parse_command(gate):
                raise ValueError(f"Gate command is empty: {gate!r}")
        for review in self.reviews:
            if not isinstance(review, str) or not review.strip():
                raise ValueError(f"Review prompt must be a non-empty string: {review!r}")


def load_config_file(path: Path) -> dict[str, Any] | None:
    """Parse the TOML config file, or return None when it does not exist."""

    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except FileNotFoundError:
        return None
    except tomllib.TOMLDecodeError as error:
        raise ValueError(f"Invalid config file {path}: {error}") from error


def parse_command(command: str) -> list[str]:
    """Split a command string into argv, honoring single and double quotes.

    Quotes are stripped; there is no escape, glob or variable processing.
    """

    lexer = shlex.shlex(command, posix=True)
    lexer.whitespace_split = True
    lexer.escape = ""
    lexer.commenters = ""
    try:
        return list(lexer)
    except ValueError as error:
        raise ValueError(f"Unbalanced quotes in command: {command!r}") from error


def render_config_toml(
    *,
    gates: list[str] | tuple[str, ...],
    use_vcs: bool,
    reviews: list[str] | tuple[str, ...] = (),
) -> str:
    """Render the config file written by ``bead-oven init``."""

    lines = ["gates = ["]
    lines.extend(f"  {_toml_string(gate)}," for gate in gates)
    lines.append("]")

    if use_vcs:
        lines.extend(["", "[vcs]", 'command = "jj"'])

    for review in reviews:
        lines.extend(["", "[[reviews]]", f"prompt = {_toml_string(review)}"])

    return "\n".join(lines) + "\n"


def _toml_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _table(raw: dict[str, Any], key: str) -> dict[str, Any]:
    value = raw.get(key, {})
    if not isinstance(value, dict):
        raise ValueError(f"[{key}] must be a table.")
    return value


def _string_list(value: object, *, key: str) -> tuple[str, ...]:
    if not isinstance(value, list):
        raise ValueError(f"{key} must be a list of strings.")
    items: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError(f"{key} entries must be strings: {item!r}")
        if item.strip():
            items.append(item.strip())
    return tuple(items)


def _review_prompts(value: object) -> tuple[str, ...]:
    if not isinstance(value, list):
        raise ValueError("reviews must be an array of tables.")
    prompts: list[str] = []
    for entry in value:
        if not isinstance(entry, dict) or not isinstance(entry.get("prompt"), str):
            raise ValueError(f"reviews entries need a string prompt, got: {entry!r}")
        # Blank prompts are skipped, like blank gate commands.
        if entry["prompt"].strip():
            prompts.append(entry["prompt"])
    return tuple(prompts)


def _optional_int(value: object) -> int | None:
    if value is None:
        return None
    return int(value)  # type: ignore[arg-type]


def _apply_env_overrides(settings: Settings) -> None:
    model = os.getenv("BEAD_OVEN_MODEL")
    if model:
        settings.agent.model = model
    max_turns = os.getenv("BEAD_OVEN_MAX_TURNS")
    if max_turns:
        settings.agent.max_turns = int(max_turns)
    agent_command = os.getenv("BEAD_OVEN_AGENT_COMMAND")
    if agent_command:
        settings.agent.command = tuple(parse_command(agent_command))
    tracker_command = os.getenv("BEAD_OVEN_TRACKER_COMMAND")
    if tracker_command:
        settings.tracker.command = tuple(parse_command(tracker_command))
    poll_interval = os.getenv("BEAD_OVEN_POLL_INTERVAL_SECONDS")
    if poll_interval:
        settings.loop.poll_interval_seconds = float(poll_interval)
    max_retries = os.getenv("BEAD_OVEN_MAX_RETRIES")
    if max_retries:
        settings.loop.max_retries = int(max_retries)
    settings.vcs.enabled = _env_bool("BEAD_OVEN_VCS_ENABLED", default=settings.vcs.enabled)
    settings.agent.stream_output = _env_bool(
        "BEAD_OVEN_STREAM_AGENT_OUTPUT",
        default=settings.agent.stream_output,
    )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
