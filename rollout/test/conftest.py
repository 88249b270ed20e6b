from __future__ import annotations

import os
from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import structlog

from rollout.cli.context import CONFIG_PATH_ENV
from rollout.services.release.service import ReleaseService
from rollout.services.release.store import STATE_PATH_ENV, ReleaseStateStore


class FakeClock:
    """Deterministic clock: returns the same instant until advanced."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 3, 1, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float = 1.0) -> None:
        self.current = self.current + timedelta(seconds=seconds)


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Keep env overrides and structlog config from leaking between tests."""
    monkeypatch.delenv(STATE_PATH_ENV, raising=False)
    monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)
    yield
    os.environ.pop(CONFIG_PATH_ENV, None)
    structlog.reset_defaults()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def state_path(tmp_path: Path) -> Path:
    return tmp_path / "release-management" / "active-release.json"


@pytest.fixture
def store(state_path: Path, clock: FakeClock) -> ReleaseStateStore:
    return ReleaseStateStore(state_path, clock=clock)


@pytest.fixture
def service(store: ReleaseStateStore) -> ReleaseService:
    return ReleaseService(store)


@pytest.fixture
def release_payload() -> dict[str, object]:
    return {
        "id": "2026.03-web",
        "name": "Web platform",
        "version": "2026.03",
        "owner": "release-team",
        "startedAt": "2026-02-27T08:00:00Z",
        "targetCompletion": "2026-03-15T17:00:00Z",
        "releaseNotesRef": "update_docs/release-notes/2026.03.md",
        "phases": [
            {"key": "canary", "name": "Canary", "status": "in_progress", "coverage": 5},
            {"key": "beta", "name": "Beta"},
            {"key": "ga", "name": "General availability"},
        ],
        "segments": [
            {"key": "internal", "name": "Internal staff", "status": "Active", "coverage": 100},
            {"key": "eu", "name": "EU customers", "coverage": 20},
        ],
        "checklist": [
            {"key": "ci-signed-off", "name": "CI signed off"},
            {"key": "docs", "name": "Docs published", "owner": "docs-team"},
        ],
    }
