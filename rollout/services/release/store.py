"""Persistence of the release state document.

The whole state (active release, monitors, events, pipeline runs) lives in a
single JSON file. `ReleaseStateStore` is the only reader/writer of that file:
it caches the last loaded or persisted state per resolved path and owns the
lock that serializes read-modify-write cycles within the process.
"""

from __future__ import annotations

import copy
import json
import os
import threading
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path

import structlog

from rollout.core.config import DEFAULT_STATE_PATH
from rollout.core.result import Err, Ok, Result
from rollout.core.structured import StrDict, as_obj_list, as_str_dict, get_str
from rollout.platform.files import write_json
from rollout.services.release.errors import ReleaseError
from rollout.services.release.model import Event, Monitor, PipelineRun, Release, ReleaseState
from rollout.services.release.normalize import (
    format_timestamp,
    normalize_event,
    normalize_monitor,
    normalize_pipeline_run,
    normalize_release,
    parse_timestamp,
)

__all__ = [
    "STATE_PATH_ENV",
    "Clock",
    "ReleaseStateStore",
    "parse_state",
    "resolve_state_path",
    "utc_now",
]

STATE_PATH_ENV = "RELEASE_STATE_PATH"

Clock = Callable[[], datetime]

logger = structlog.get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(UTC)


def resolve_state_path(
    *,
    env: Mapping[str, str] | None = None,
    cwd: Path | None = None,
    configured: str | None = None,
) -> Path:
    """Compute the state file location without touching the filesystem.

    Precedence: `RELEASE_STATE_PATH`, then the configured path, then the
    default `update_docs/release-management/active-release.json`. Relative
    paths are anchored at `cwd` (the process working directory by default).
    """
    environ = os.environ if env is None else env
    raw = (environ.get(STATE_PATH_ENV) or "").strip() or configured or DEFAULT_STATE_PATH
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = (cwd if cwd is not None else Path.cwd()) / path
    return Path(os.path.normpath(path))


def parse_state(data: Mapping[str, object]) -> Result[ReleaseState, ReleaseError]:
    """Rebuild a ReleaseState from the decoded JSON document."""
    release: Release | None = None
    release_obj = data.get("activeRelease")
    if release_obj is not None:
        normalized = normalize_release(release_obj)
        if isinstance(normalized, Err):
            return Err(
                ReleaseError(
                    kind="invalid_state",
                    message=f"invalid activeRelease in state file: {normalized.error.message}",
                )
            )
        release = normalized.value

    monitors: dict[str, Monitor] = {}
    for monitor_id, record in (as_str_dict(data.get("monitors")) or {}).items():
        table = as_str_dict(record)
        if table is None:
            continue
        monitors[monitor_id] = normalize_monitor(table, monitor_id)

    events: list[Event] = []
    for item in as_obj_list(data.get("events")) or []:
        table = as_str_dict(item)
        event = normalize_event(table) if table is not None else None
        if event is not None:
            events.append(event)

    runs: list[PipelineRun] = []
    for item in as_obj_list(data.get("pipelineRuns")) or []:
        table = as_str_dict(item)
        run = normalize_pipeline_run(table) if table is not None else None
        if run is not None:
            runs.append(run)

    return Ok(
        ReleaseState(
            active_release=release,
            monitors=monitors,
            events=tuple(events),
            pipeline_runs=tuple(runs),
            updated_at=parse_timestamp(get_str(data, "updatedAt")),
        )
    )


class ReleaseStateStore:
    """Single owner of the persisted release state.

    Args:
        path: Fixed state file location. When None the path is resolved on
            every access (env override, then `configured_path`, then default),
            so changing `RELEASE_STATE_PATH` mid-process never serves a stale
            cache entry.
        configured_path: Path from `rollout.toml` (`[state].path`).
        clock: Source of "now" for `updatedAt` and mutation timestamps.
    """

    def __init__(
        self,
        path: Path | None = None,
        *,
        configured_path: str | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._path = path
        self._configured_path = configured_path
        self._clock = clock
        self._lock = threading.RLock()
        self._cache: tuple[Path, ReleaseState] | None = None

    def resolve_path(self) -> Path:
        if self._path is not None:
            return self._path
        return resolve_state_path(configured=self._configured_path)

    def now(self) -> str:
        return format_timestamp(self._clock())

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Hold the store lock across a load-mutate-persist cycle."""
        with self._lock:
            yield

    def reset_cache(self) -> None:
        """Drop the cached state; the next load reads the file again."""
        with self._lock:
            self._cache = None

    def load(self) -> Result[ReleaseState, ReleaseError]:
        """Return the current state (a private copy).

        A missing file yields an empty state. Any other read or decode
        failure is returned as an error.
        """
        with self._lock:
            path = self.resolve_path()
            if self._cache is not None and self._cache[0] == path:
                return Ok(copy.deepcopy(self._cache[1]))

            result = self._read(path)
            if isinstance(result, Ok):
                self._cache = (path, result.value)
                return Ok(copy.deepcopy(result.value))
            logger.error("release_state_load_failed", path=str(path), error=result.error.message)
            return result

    def persist(self, state: ReleaseState) -> Result[ReleaseState, ReleaseError]:
        """Write the full document and refresh the cache.

        Returns the persisted state (with its new `updatedAt`).
        """
        with self._lock:
            path = self.resolve_path()
            stamped = replace(state, updated_at=self.now())
            try:
                write_json(path, stamped.to_dict())
            except OSError as e:
                logger.error("release_state_persist_failed", path=str(path), error=str(e))
                return Err(
                    ReleaseError(
                        kind="io_error",
                        message=f"failed to write release state: {e}",
                        hint=str(path),
                    )
                )
            self._cache = (path, copy.deepcopy(stamped))
            logger.debug("release_state_persisted", path=str(path), events=len(stamped.events))
            return Ok(copy.deepcopy(stamped))

    def _read(self, path: Path) -> Result[ReleaseState, ReleaseError]:
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return Ok(ReleaseState())
        except (OSError, UnicodeDecodeError) as e:
            return Err(
                ReleaseError(
                    kind="io_error",
                    message=f"failed to read release state: {e}",
                    hint=str(path),
                )
            )

        try:
            obj: object = json.loads(text)
        except json.JSONDecodeError as e:
            return Err(
                ReleaseError(
                    kind="invalid_state",
                    message=f"invalid JSON in release state: {e}",
                    hint=str(path),
                )
            )

        data: StrDict | None = as_str_dict(obj)
        if data is None:
            return Err(
                ReleaseError(
                    kind="invalid_state",
                    message="release state root must be a JSON object",
                    hint=str(path),
                )
            )
        return parse_state(data)
