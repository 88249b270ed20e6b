from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Protocol

from rollout.core.result import Err, Ok
from rollout.services.release.model import (
    ChecklistStatus,
    EventType,
    MonitorStatus,
    PhaseStatus,
    PipelineRunStatus,
    ReleaseStatus,
)
from rollout.services.release.service import MONITOR_ACTOR, PIPELINE_ACTOR, ReleaseService

T0 = "2026-03-01T09:00:00.000Z"
T1 = "2026-03-01T09:00:01.000Z"
T2 = "2026-03-01T09:00:02.000Z"


class Clock(Protocol):
    def advance(self, seconds: float = 1.0) -> None: ...


def _upsert(service: ReleaseService, payload: dict[str, object]) -> None:
    result = service.upsert_active_release(payload)
    assert isinstance(result, Ok), result


class TestUpsert:
    def test_roundtrip(self, service: ReleaseService, release_payload: dict[str, object]) -> None:
        result = service.upsert_active_release(release_payload)
        assert isinstance(result, Ok)
        release = result.value
        assert release.id == "2026.03-web"
        assert release.status == ReleaseStatus.IN_PROGRESS
        assert release.phase == "canary"
        assert release.started_at == "2026-02-27T08:00:00.000Z"

        state = service.get_release_state()
        assert isinstance(state, Ok)
        assert state.value.active_release == release
        assert state.value.events == ()
        assert state.value.updated_at == T0

    def test_duplicate_keys_collapse(self, service: ReleaseService) -> None:
        result = service.upsert_active_release(
            {
                "id": "r1",
                "phases": [
                    {"key": "plan", "name": "Plan A"},
                    {"key": "Plan", "name": "Plan B"},
                    {"key": "ship"},
                ],
                "segments": [{"key": "eu", "coverage": 10}, {"key": "EU", "coverage": 30}],
                "checklist": [{"key": "docs", "name": "Docs"}, {"key": "docs", "name": "Docs v2"}],
            }
        )
        assert isinstance(result, Ok)
        release = result.value
        assert [(p.key, p.name, p.order) for p in release.phases] == [
            ("plan", "Plan B", 0),
            ("ship", "ship", 1),
        ]
        assert [(s.key, s.coverage) for s in release.segments] == [("eu", 30.0)]
        assert [i.name for i in release.checklist] == ["Docs v2"]

        phase = service.mark_release_phase_status("plan", "in_progress")
        assert isinstance(phase, Ok)
        assert phase.value.name == "Plan B"

        state = service.get_release_state()
        assert isinstance(state, Ok)
        assert state.value.active_release is not None
        assert [(p.key, p.name, p.status) for p in state.value.active_release.phases] == [
            ("plan", "Plan B", PhaseStatus.IN_PROGRESS),
            ("ship", "ship", PhaseStatus.PENDING),
        ]

    def test_invalid_payload(self, service: ReleaseService, state_path: Path) -> None:
        result = service.upsert_active_release({"id": "r", "phases": {"key": "x"}})
        assert isinstance(result, Err)
        assert result.error.kind == "invalid_input"
        assert not state_path.exists()

    def test_stamps_completed_checklist_items(self, service: ReleaseService) -> None:
        result = service.upsert_active_release(
            {
                "id": "r1",
                "checklist": [
                    {"key": "a", "status": "complete"},
                    {"key": "b", "status": "complete", "completedAt": "2026-02-01T00:00:00Z"},
                    {"key": "c"},
                ],
            }
        )
        assert isinstance(result, Ok)
        completed = {c.key: c.completed_at for c in result.value.checklist}
        assert completed == {"a": T0, "b": "2026-02-01T00:00:00.000Z", "c": None}

    def test_preserves_monitors_events_and_omitted_lists(
        self, service: ReleaseService, release_payload: dict[str, object]
    ) -> None:
        _upsert(service, release_payload)
        service.record_monitor_sample("api", status="passing")
        service.mark_release_phase_status("canary", "complete")

        _upsert(service, {"id": "2026.03-web", "summary": "Second wave", "status": "paused"})

        state = service.get_release_state()
        assert isinstance(state, Ok)
        release = state.value.active_release
        assert release is not None
        assert release.summary == "Second wave"
        assert release.status == ReleaseStatus.PAUSED
        assert [p.key for p in release.phases] == ["canary", "beta", "ga"]
        assert release.phases[0].status == PhaseStatus.COMPLETE
        assert release.phase == "beta"
        assert list(state.value.monitors) == ["api"]
        assert len(state.value.events) == 2

    def test_explicit_phase_is_stored(
        self, service: ReleaseService, release_payload: dict[str, object]
    ) -> None:
        result = service.upsert_active_release({**release_payload, "phase": "ga"})
        assert isinstance(result, Ok)
        assert result.value.phase == "ga"


class TestPhaseStatus:
    def test_lifecycle(
        self, service: ReleaseService, release_payload: dict[str, object], clock: Clock
    ) -> None:
        _upsert(service, release_payload)

        done = service.mark_release_phase_status(
            "canary", "complete", actor="alice", summary="Canary healthy"
        )
        assert isinstance(done, Ok)
        assert done.value.status == PhaseStatus.COMPLETE
        assert done.value.completed_at == T0
        assert done.value.coverage == 100.0
        assert done.value.summary == "Canary healthy"

        clock.advance()
        started = service.mark_release_phase_status("Beta", "in_progress")
        assert isinstance(started, Ok)
        assert started.value.started_at == T1
        assert started.value.completed_at is None

        clock.advance()
        service.mark_release_phase_status("beta", "attention")
        again = service.mark_release_phase_status("beta", "in_progress")
        assert isinstance(again, Ok)
        assert again.value.started_at == T1

        snapshot = service.get_release_rollout_snapshot()
        assert isinstance(snapshot, Ok)
        assert snapshot.value.release is not None
        assert snapshot.value.release.phase == "beta"

        events = service.list_recent_release_events(limit=10)
        assert isinstance(events, Ok)
        assert [(e.key, e.status) for e in events.value] == [
            ("beta", "in_progress"),
            ("beta", "attention"),
            ("beta", "in_progress"),
            ("canary", "complete"),
        ]
        first = events.value[-1]
        assert first.id == f"phase_status:canary:{T0}"
        assert first.type == EventType.PHASE_STATUS
        assert first.actor == "alice"
        assert first.release_id == "2026.03-web"
        assert first.payload == {"coverage": 100.0}

    def test_complete_with_coverage_keeps_it(
        self, service: ReleaseService, release_payload: dict[str, object]
    ) -> None:
        _upsert(service, release_payload)
        result = service.mark_release_phase_status("canary", "complete", coverage=150)
        assert isinstance(result, Ok)
        assert result.value.coverage == 100.0

        partial = service.mark_release_phase_status("beta", "complete", coverage="35.5")
        assert isinstance(partial, Ok)
        assert partial.value.coverage == 35.5

    def test_recomplete_keeps_completed_at(
        self, service: ReleaseService, release_payload: dict[str, object], clock: Clock
    ) -> None:
        _upsert(service, release_payload)
        service.mark_release_phase_status("canary", "complete")
        clock.advance()
        result = service.mark_release_phase_status("canary", "complete")
        assert isinstance(result, Ok)
        assert result.value.completed_at == T0

    def test_all_complete_points_at_last(
        self, service: ReleaseService, release_payload: dict[str, object]
    ) -> None:
        _upsert(service, release_payload)
        for key in ("canary", "beta", "ga"):
            service.mark_release_phase_status(key, "complete")
        snapshot = service.get_release_rollout_snapshot()
        assert isinstance(snapshot, Ok)
        assert snapshot.value.release is not None
        assert snapshot.value.release.phase == "ga"

    def test_not_found(self, service: ReleaseService, release_payload: dict[str, object]) -> None:
        missing_release = service.mark_release_phase_status("canary", "complete")
        assert isinstance(missing_release, Err)
        assert missing_release.error.kind == "not_found"

        _upsert(service, release_payload)
        unknown = service.mark_release_phase_status("rollback", "complete")
        assert isinstance(unknown, Err)
        assert unknown.error.kind == "not_found"
        assert "rollback" in unknown.error.message

        events = service.list_recent_release_events()
        assert isinstance(events, Ok)
        assert events.value == []

    def test_empty_key(self, service: ReleaseService) -> None:
        result = service.mark_release_phase_status("  ", "complete")
        assert isinstance(result, Err)
        assert result.error.kind == "invalid_input"


class TestChecklist:
    def test_complete_is_idempotent(
        self, service: ReleaseService, release_payload: dict[str, object], clock: Clock
    ) -> None:
        _upsert(service, release_payload)

        first = service.mark_checklist_item_status("docs", "complete", actor="bob")
        assert isinstance(first, Ok)
        assert first.value.status == ChecklistStatus.COMPLETE
        assert first.value.completed_at == T0
        assert first.value.owner == "docs-team"

        clock.advance()
        second = service.mark_checklist_item_status("docs", "complete")
        assert isinstance(second, Ok)
        assert second.value.completed_at == T0

        snapshot = service.get_release_rollout_snapshot()
        assert isinstance(snapshot, Ok)
        assert snapshot.value.checklist.completed == 1
        assert snapshot.value.checklist.total == 2

        events = service.list_recent_release_events()
        assert isinstance(events, Ok)
        assert [e.type for e in events.value] == [
            EventType.CHECKLIST_STATUS,
            EventType.CHECKLIST_STATUS,
        ]

    def test_blocked_keeps_summary_when_omitted(
        self, service: ReleaseService, release_payload: dict[str, object]
    ) -> None:
        _upsert(service, release_payload)
        service.mark_checklist_item_status("docs", "blocked", summary="Waiting on review")
        result = service.mark_checklist_item_status("docs", "in_progress")
        assert isinstance(result, Ok)
        assert result.value.summary == "Waiting on review"
        assert result.value.completed_at is None

    def test_unknown_item(self, service: ReleaseService, release_payload: dict[str, object]) -> None:
        _upsert(service, release_payload)
        result = service.mark_checklist_item_status("legal", "complete")
        assert isinstance(result, Err)
        assert result.error.kind == "not_found"

    def test_no_release(self, service: ReleaseService) -> None:
        result = service.mark_checklist_item_status("docs", "complete")
        assert isinstance(result, Err)
        assert result.error.kind == "not_found"


class TestMonitorSamples:
    def test_works_without_release(self, service: ReleaseService) -> None:
        result = service.record_monitor_sample(
            "api-latency", name="API latency", status="passing", metrics={"p95": 120}
        )
        assert isinstance(result, Ok)
        assert result.value.environment == "production"
        assert result.value.status == MonitorStatus.PASSING
        assert result.value.last_sample_at == T0

        assert service.list_recent_release_events() == Ok([])
        state = service.get_release_state()
        assert isinstance(state, Ok)
        (event,) = state.value.events
        assert event.type == EventType.MONITOR_SAMPLE
        assert event.actor == MONITOR_ACTOR
        assert event.release_id is None
        assert event.payload == {"metrics": {"p95": 120}, "coverage": None}

    def test_metrics_merge(self, service: ReleaseService, clock: Clock) -> None:
        service.record_monitor_sample("api", status="passing", metrics={"p95": 120}, coverage=40)
        clock.advance()
        result = service.record_monitor_sample("api", status="warning", metrics={"errors": 3})
        assert isinstance(result, Ok)
        assert result.value.metrics == {"p95": 120, "errors": 3}
        assert result.value.coverage == 40.0
        assert result.value.last_sample_at == T1

        state = service.get_release_state()
        assert isinstance(state, Ok)
        assert state.value.events[-1].payload == {
            "metrics": {"p95": 120, "errors": 3},
            "coverage": 40.0,
        }

    def test_missing_id(self, service: ReleaseService, state_path: Path) -> None:
        result = service.record_monitor_sample("", status="passing")
        assert isinstance(result, Err)
        assert result.error.kind == "invalid_input"
        assert not state_path.exists()

    def test_bad_metrics(self, service: ReleaseService) -> None:
        result = service.record_monitor_sample("api", metrics=["p95"])  # type: ignore[arg-type]
        assert isinstance(result, Err)
        assert result.error.kind == "invalid_input"

    def test_survives_release_replacement(
        self, service: ReleaseService, release_payload: dict[str, object]
    ) -> None:
        service.record_monitor_sample("api", status="passing")
        _upsert(service, release_payload)
        _upsert(service, {"id": "2026.04-web"})
        state = service.get_release_state()
        assert isinstance(state, Ok)
        assert list(state.value.monitors) == ["api"]

    def test_results_are_copies(self, service: ReleaseService) -> None:
        result = service.record_monitor_sample("api", metrics={"a": 1})
        assert isinstance(result, Ok)
        result.value.metrics["a"] = 999

        state = service.get_release_state()
        assert isinstance(state, Ok)
        assert state.value.monitors["api"].metrics == {"a": 1}

    def test_concurrent_samples_are_not_lost(self, service: ReleaseService) -> None:
        def sample(i: int) -> None:
            service.record_monitor_sample("api", status="passing", metrics={f"m{i}": i})

        threads = [threading.Thread(target=sample, args=(i,)) for i in range(12)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        state = service.get_release_state()
        assert isinstance(state, Ok)
        assert state.value.monitors["api"].metrics == {f"m{i}": i for i in range(12)}
        assert len(state.value.events) == 12


class TestPipelineRuns:
    def test_record_and_history(
        self, service: ReleaseService, release_payload: dict[str, object]
    ) -> None:
        _upsert(service, release_payload)
        first = service.record_pipeline_run_result(
            "ci",
            status="passed",
            started_at="2026-03-01T08:00:00Z",
            completed_at="2026-03-01T08:05:00Z",
            duration=300000,
            tasks=[{"name": "lint", "status": "passed"}],
        )
        assert isinstance(first, Ok)
        assert first.value.id == "ci:2026-03-01T08:00:00.000Z"
        assert first.value.release_id == "2026.03-web"

        service.record_pipeline_run_result(
            "ci", status="bogus", started_at="2026-03-01T10:00:00Z", metadata={"triggeredBy": "nightly"}
        )
        service.record_pipeline_run_result("deploy", status="running", started_at="2026-03-01T09:30:00Z")

        history = service.get_pipeline_run_history()
        assert isinstance(history, Ok)
        assert [(r.pipeline_key, r.status) for r in history.value] == [
            ("ci", PipelineRunStatus.FAILED),
            ("deploy", PipelineRunStatus.RUNNING),
            ("ci", PipelineRunStatus.PASSED),
        ]

        ci_only = service.get_pipeline_run_history(pipeline_key="ci", limit=1)
        assert isinstance(ci_only, Ok)
        assert [r.started_at for r in ci_only.value] == ["2026-03-01T10:00:00.000Z"]

        events = service.list_recent_release_events()
        assert isinstance(events, Ok)
        assert [e.actor for e in events.value] == [PIPELINE_ACTOR, "nightly", PIPELINE_ACTOR]
        assert events.value[-1].payload == {
            "durationMs": 300000,
            "tasks": [{"name": "lint", "status": "passed"}],
        }

    def test_started_defaults_to_now(self, service: ReleaseService) -> None:
        result = service.record_pipeline_run_result("ci", status="passed")
        assert isinstance(result, Ok)
        assert result.value.started_at == T0
        assert result.value.release_id is None

    def test_missing_key(self, service: ReleaseService) -> None:
        result = service.record_pipeline_run_result(" ", status="passed")
        assert isinstance(result, Err)
        assert result.error.kind == "invalid_input"


class TestEventsAndCache:
    def test_recent_events_limit(
        self, service: ReleaseService, release_payload: dict[str, object], clock: Clock
    ) -> None:
        _upsert(service, release_payload)
        for i in range(5):
            service.record_monitor_sample(f"m{i}")
            clock.advance()
        events = service.list_recent_release_events(limit=2)
        assert isinstance(events, Ok)
        assert [e.key for e in events.value] == ["m4", "m3"]

    def test_events_are_scoped_to_active_release(
        self, service: ReleaseService, clock: Clock
    ) -> None:
        service.record_monitor_sample("api", status="passing")
        _upsert(service, {"id": "r1", "phases": [{"key": "canary"}]})
        service.mark_release_phase_status("canary", "in_progress")
        clock.advance()
        _upsert(service, {"id": "r2", "phases": [{"key": "beta"}]})
        service.mark_release_phase_status("beta", "complete")

        events = service.list_recent_release_events()
        assert isinstance(events, Ok)
        assert [(e.key, e.release_id) for e in events.value] == [("beta", "r2")]

        state = service.get_release_state()
        assert isinstance(state, Ok)
        assert len(state.value.events) == 3

    def test_reset_cache_picks_up_external_edits(
        self, service: ReleaseService, release_payload: dict[str, object], state_path: Path
    ) -> None:
        _upsert(service, release_payload)
        data = json.loads(state_path.read_text(encoding="utf-8"))
        data["activeRelease"]["name"] = "Edited by hand"
        state_path.write_text(json.dumps(data), encoding="utf-8")

        stale = service.get_release_state()
        assert isinstance(stale, Ok)
        assert stale.value.active_release is not None
        assert stale.value.active_release.name == "Web platform"

        service.reset_release_state_cache()
        fresh = service.get_release_state()
        assert isinstance(fresh, Ok)
        assert fresh.value.active_release is not None
        assert fresh.value.active_release.name == "Edited by hand"

    def test_corrupt_state_blocks_mutations(
        self, service: ReleaseService, state_path: Path
    ) -> None:
        state_path.parent.mkdir(parents=True)
        state_path.write_text("{", encoding="utf-8")
        result = service.record_monitor_sample("api")
        assert isinstance(result, Err)
        assert result.error.kind == "invalid_state"
        assert state_path.read_text(encoding="utf-8") == "{"

    def test_state_document_uses_camel_case(
        self, service: ReleaseService, release_payload: dict[str, object], state_path: Path
    ) -> None:
        _upsert(service, release_payload)
        service.mark_checklist_item_status("docs", "complete")
        data = json.loads(state_path.read_text(encoding="utf-8"))
        release = data["activeRelease"]
        assert release["targetCompletion"] == "2026-03-15T17:00:00.000Z"
        assert release["releaseNotesRef"] == "update_docs/release-notes/2026.03.md"
        assert release["checklist"][1]["completedAt"] == T0
        assert data["events"][0]["occurredAt"] == T0
        assert data["pipelineRuns"] == []
