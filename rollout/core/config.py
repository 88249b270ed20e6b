"""Typed configuration loading and access.

`rollout.toml` is optional; every section falls back to defaults that match
the layout of the release-management docs folder.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .result import Err, Ok, Result
from .structured import StrDict, as_obj_list, as_str_dict, get_int, get_list, get_str, get_table

__all__ = [
    "CiConfig",
    "CiTaskConfig",
    "Config",
    "ConfigError",
    "NotesConfig",
    "StateConfig",
    "load_config",
    "DEFAULT_CONFIG_FILE",
    "DEFAULT_STATE_PATH",
    "DEFAULT_CI_REPORT_PATH",
    "DEFAULT_NOTES_DIR",
]

# -----------------------------------------------------------------------------
# Defaults
# -----------------------------------------------------------------------------

DEFAULT_CONFIG_FILE = "rollout.toml"

DEFAULT_STATE_PATH = "update_docs/release-management/active-release.json"
DEFAULT_CI_REPORT_PATH = "update_docs/release-management/ci-report.json"
DEFAULT_NOTES_DIR = "update_docs/release-notes"

DEFAULT_PIPELINE_KEY = "ci"
DEFAULT_SIGNOFF_ITEM = "ci-signed-off"
DEFAULT_NOTES_INDEX_LIMIT = 20
DEFAULT_NOTES_COMMIT_LIMIT = 200
DEFAULT_NOTES_EVENT_LIMIT = 10


@dataclass(frozen=True, slots=True)
class ConfigError:
    """Error when config cannot be loaded or parsed."""

    message: str
    path: Path | None = None


@dataclass(frozen=True, slots=True)
class StateConfig:
    """Location of the persisted release state document."""

    path: str = DEFAULT_STATE_PATH


@dataclass(frozen=True, slots=True)
class CiTaskConfig:
    """A single CI stage: a monitor named `ci-<name>` is sampled per run."""

    name: str
    title: str
    command: tuple[str, ...]
    timeout_seconds: float | None = None


def _default_ci_tasks() -> tuple[CiTaskConfig, ...]:
    return (
        CiTaskConfig(name="lint", title="Lint", command=("npm", "run", "lint")),
        CiTaskConfig(name="test", title="Unit tests", command=("npm", "test")),
        CiTaskConfig(name="build", title="Build", command=("npm", "run", "build")),
    )


@dataclass(frozen=True, slots=True)
class CiConfig:
    pipeline: str = DEFAULT_PIPELINE_KEY
    checklist_item: str = DEFAULT_SIGNOFF_ITEM
    report_path: str = DEFAULT_CI_REPORT_PATH
    tasks: tuple[CiTaskConfig, ...] = field(default_factory=_default_ci_tasks)


@dataclass(frozen=True, slots=True)
class NotesConfig:
    dir: str = DEFAULT_NOTES_DIR
    index_limit: int = DEFAULT_NOTES_INDEX_LIMIT
    commit_limit: int = DEFAULT_NOTES_COMMIT_LIMIT
    event_limit: int = DEFAULT_NOTES_EVENT_LIMIT


@dataclass(frozen=True, slots=True)
class Config:
    """Main configuration container."""

    state: StateConfig = field(default_factory=StateConfig)
    ci: CiConfig = field(default_factory=CiConfig)
    notes: NotesConfig = field(default_factory=NotesConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Config:
        """Create Config from a mapping (parsed TOML)."""
        state: StrDict = get_table(data, "state") or {}
        ci: StrDict = get_table(data, "ci") or {}
        notes: StrDict = get_table(data, "notes") or {}

        tasks = _parse_tasks(get_list(ci, "tasks"))

        return cls(
            state=StateConfig(path=get_str(state, "path") or DEFAULT_STATE_PATH),
            ci=CiConfig(
                pipeline=get_str(ci, "pipeline") or DEFAULT_PIPELINE_KEY,
                checklist_item=get_str(ci, "checklist_item") or DEFAULT_SIGNOFF_ITEM,
                report_path=get_str(ci, "report_path") or DEFAULT_CI_REPORT_PATH,
                tasks=tasks if tasks else _default_ci_tasks(),
            ),
            notes=NotesConfig(
                dir=get_str(notes, "dir") or DEFAULT_NOTES_DIR,
                index_limit=get_int(notes, "index_limit") or DEFAULT_NOTES_INDEX_LIMIT,
                commit_limit=get_int(notes, "commit_limit") or DEFAULT_NOTES_COMMIT_LIMIT,
                event_limit=get_int(notes, "event_limit") or DEFAULT_NOTES_EVENT_LIMIT,
            ),
        )


def _parse_tasks(raw: list[object] | None) -> tuple[CiTaskConfig, ...]:
    if raw is None:
        return ()

    tasks: list[CiTaskConfig] = []
    for item in raw:
        table = as_str_dict(item)
        if table is None:
            raise ValueError("ci.tasks entries must be tables")
        name = get_str(table, "name")
        if name is None:
            raise ValueError("ci.tasks entry is missing 'name'")
        command_obj = as_obj_list(table.get("command"))
        if not command_obj or not all(isinstance(part, str) for part in command_obj):
            raise ValueError(f"ci task '{name}' needs a non-empty string list 'command'")

        timeout = table.get("timeout_seconds")
        tasks.append(
            CiTaskConfig(
                name=name,
                title=get_str(table, "title") or name,
                command=tuple(str(part) for part in command_obj),
                timeout_seconds=float(timeout) if isinstance(timeout, (int, float)) else None,
            )
        )
    return tuple(tasks)


def _parse_toml(path: Path) -> Result[StrDict, ConfigError]:
    """Parse a TOML file, handling import and parse errors."""
    import tomllib

    try:
        content = path.read_bytes()
        data_obj: object = tomllib.loads(content.decode("utf-8"))
        data = as_str_dict(data_obj)
        if data is None:
            return Err(ConfigError("Config root must be a TOML table", path=path))
        return Ok(data)
    except FileNotFoundError:
        return Err(ConfigError(f"Config file not found: {path}", path=path))
    except PermissionError:
        return Err(ConfigError(f"Permission denied reading: {path}", path=path))
    except tomllib.TOMLDecodeError as e:
        return Err(ConfigError(f"Invalid TOML syntax: {e}", path=path))
    except UnicodeDecodeError as e:
        return Err(ConfigError(f"Error reading config: {e}", path=path))


def load_config(path: Path) -> Result[Config, ConfigError]:
    """Load and parse configuration from a TOML file.

    Args:
        path: Path to rollout.toml

    Returns:
        Ok(Config) on success, Err(ConfigError) on failure
    """
    result = _parse_toml(path)
    if isinstance(result, Err):
        return result

    try:
        return Ok(Config.from_dict(result.value))
    except (KeyError, TypeError, ValueError) as e:
        return Err(ConfigError(f"Invalid config structure: {e}", path=path))

