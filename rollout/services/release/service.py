"""Release rollout service: reads and mutations of the release state.

Every mutation runs inside `store.transaction()` and follows the same cycle:
load, normalize input, mutate, append an event, persist. Callers always get
copies; nothing they hold aliases the cached state.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping, Sequence
from dataclasses import replace

import structlog

from rollout.core.result import Err, Ok, Result
from rollout.core.structured import as_str_dict
from rollout.services.release.derive import (
    RolloutSnapshot,
    build_rollout_snapshot,
    derive_active_phase_key,
)
from rollout.services.release.errors import ReleaseError, invalid_input, not_found
from rollout.services.release.events import append_event, make_event, recent_events
from rollout.services.release.model import (
    ChecklistItem,
    ChecklistStatus,
    Event,
    EventType,
    Monitor,
    Phase,
    PhaseStatus,
    PipelineRun,
    PipelineRunStatus,
    Release,
    ReleaseState,
)
from rollout.services.release.normalize import (
    checklist_status,
    clamp_coverage,
    duration_ms,
    merge_monitor_sample,
    normalize_key,
    normalize_release,
    parse_timestamp,
    phase_status,
    pipeline_run_status,
)
from rollout.services.release.store import ReleaseStateStore

logger = structlog.get_logger(__name__)

MONITOR_ACTOR = "MonitorCollector"
PIPELINE_ACTOR = "CI Orchestrator"

_PIPELINE_SUMMARIES: dict[PipelineRunStatus, str] = {
    PipelineRunStatus.PASSED: "Pipeline run completed successfully.",
    PipelineRunStatus.RUNNING: "Pipeline run started.",
    PipelineRunStatus.FAILED: "Pipeline run completed with failures.",
}


class ReleaseService:
    def __init__(self, store: ReleaseStateStore) -> None:
        self._store = store
        self._log = logger.bind(component="release_service")

    @property
    def store(self) -> ReleaseStateStore:
        return self._store

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_release_state(self) -> Result[ReleaseState, ReleaseError]:
        return self._store.load()

    def get_release_rollout_snapshot(self) -> Result[RolloutSnapshot, ReleaseError]:
        loaded = self._store.load()
        if isinstance(loaded, Err):
            return loaded
        return Ok(build_rollout_snapshot(loaded.value))

    def get_pipeline_run_history(
        self, *, pipeline_key: str | None = None, limit: int = 5
    ) -> Result[list[PipelineRun], ReleaseError]:
        """Pipeline runs, most recently started first."""
        loaded = self._store.load()
        if isinstance(loaded, Err):
            return loaded
        runs = [
            (index, run)
            for index, run in enumerate(loaded.value.pipeline_runs)
            if pipeline_key is None or run.pipeline_key == pipeline_key
        ]
        runs.sort(key=lambda pair: (pair[1].started_at, pair[0]), reverse=True)
        return Ok([run for _, run in runs[: max(limit, 0)]])

    def list_recent_release_events(self, *, limit: int = 20) -> Result[list[Event], ReleaseError]:
        """Events of the active release, newest first; empty without one."""
        loaded = self._store.load()
        if isinstance(loaded, Err):
            return loaded
        release = loaded.value.active_release
        if release is None:
            return Ok([])
        events = [e for e in loaded.value.events if e.release_id == release.id]
        return Ok(recent_events(events, limit=limit))

    def reset_release_state_cache(self) -> None:
        self._store.reset_cache()

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def upsert_active_release(self, payload: object) -> Result[Release, ReleaseError]:
        """Replace the active release metadata and any supplied lists.

        Supplied `phases`/`segments`/`checklist` replace the stored list
        wholesale; omitted ones are kept when the release id is unchanged.
        Monitors, events and pipeline runs are not touched.
        """
        with self._store.transaction():
            loaded = self._store.load()
            if isinstance(loaded, Err):
                return loaded
            state = loaded.value

            normalized = normalize_release(payload, previous=state.active_release)
            if isinstance(normalized, Err):
                return self._fail("release_upsert_failed", normalized.error)

            now = self._store.now()
            release = normalized.value
            release = replace(
                release,
                phase=release.phase or derive_active_phase_key(release.phases),
                checklist=tuple(_stamp_completion(item, now) for item in release.checklist),
            )

            persisted = self._store.persist(replace(state, active_release=release))
            if isinstance(persisted, Err):
                return self._fail("release_upsert_failed", persisted.error, release_id=release.id)

        self._log.info(
            "release_upserted",
            release_id=release.id,
            phases=len(release.phases),
            segments=len(release.segments),
            checklist=len(release.checklist),
        )
        return Ok(copy.deepcopy(release))

    def mark_release_phase_status(
        self,
        phase_key: str,
        status: str,
        *,
        actor: str | None = None,
        summary: str | None = None,
        coverage: object = None,
    ) -> Result[Phase, ReleaseError]:
        """Transition a phase and recompute the release's active phase.

        Entering `in_progress` sets `startedAt` once. Entering `complete` sets
        `completedAt` and, unless `coverage` is given, coverage 100.
        Re-marking a complete phase complete keeps its `completedAt`.
        """
        key = normalize_key(phase_key)
        if not key:
            return self._fail("release_phase_update_failed", invalid_input("phase key is required"))
        next_status = phase_status(status)

        with self._store.transaction():
            loaded = self._store.load()
            if isinstance(loaded, Err):
                return loaded
            state = loaded.value

            release = state.active_release
            if release is None:
                return self._fail(
                    "release_phase_update_failed",
                    not_found("No active release configured."),
                    phase_key=key,
                )
            phase = release.find_phase(key)
            if phase is None:
                return self._fail(
                    "release_phase_update_failed",
                    not_found(f"Unknown release phase: {key}"),
                    phase_key=key,
                )

            now = self._store.now()
            updated = _transition_phase(
                phase, next_status, now=now, summary=summary, coverage=coverage
            )
            phases = tuple(updated if p.key == key else p for p in release.phases)
            release = replace(release, phases=phases, phase=derive_active_phase_key(phases))

            event = make_event(
                EventType.PHASE_STATUS,
                key,
                next_status.value,
                occurred_at=now,
                actor=actor,
                summary=summary,
                release_id=release.id,
                payload={"coverage": updated.coverage},
            )
            state = append_event(replace(state, active_release=release), event)

            persisted = self._store.persist(state)
            if isinstance(persisted, Err):
                return self._fail("release_phase_update_failed", persisted.error, phase_key=key)

        self._log.info(
            "release_phase_updated",
            phase_key=key,
            status=next_status.value,
            active_phase=release.phase,
        )
        return Ok(updated)

    def mark_checklist_item_status(
        self,
        checklist_key: str,
        status: str,
        *,
        actor: str | None = None,
        summary: str | None = None,
    ) -> Result[ChecklistItem, ReleaseError]:
        """Transition a checklist item; `completedAt` is set on entering `complete`."""
        key = normalize_key(checklist_key)
        if not key:
            return self._fail(
                "checklist_update_failed", invalid_input("checklist key is required")
            )
        next_status = checklist_status(status)

        with self._store.transaction():
            loaded = self._store.load()
            if isinstance(loaded, Err):
                return loaded
            state = loaded.value

            release = state.active_release
            if release is None:
                return self._fail(
                    "checklist_update_failed",
                    not_found("No active release configured."),
                    checklist_key=key,
                )
            item = release.find_checklist_item(key)
            if item is None:
                return self._fail(
                    "checklist_update_failed",
                    not_found(f"Unknown checklist item: {key}"),
                    checklist_key=key,
                )

            now = self._store.now()
            completed_at = item.completed_at
            if next_status == ChecklistStatus.COMPLETE and (
                item.status != ChecklistStatus.COMPLETE or completed_at is None
            ):
                completed_at = now
            updated = replace(
                item,
                status=next_status,
                summary=summary or item.summary,
                completed_at=completed_at,
            )
            checklist = tuple(updated if c.key == key else c for c in release.checklist)
            release = replace(release, checklist=checklist)

            event = make_event(
                EventType.CHECKLIST_STATUS,
                key,
                next_status.value,
                occurred_at=now,
                actor=actor,
                summary=summary,
                release_id=release.id,
            )
            state = append_event(replace(state, active_release=release), event)

            persisted = self._store.persist(state)
            if isinstance(persisted, Err):
                return self._fail("checklist_update_failed", persisted.error, checklist_key=key)

        self._log.info("checklist_item_updated", checklist_key=key, status=next_status.value)
        return Ok(updated)

    def record_monitor_sample(
        self,
        monitor_id: str,
        *,
        name: str | None = None,
        status: str = "unknown",
        environment: str | None = "production",
        metrics: Mapping[str, object] | None = None,
        coverage: object = None,
        trend: str | None = None,
        description: str | None = None,
        metadata: Mapping[str, object] | None = None,
    ) -> Result[Monitor, ReleaseError]:
        """Create or update a monitor from one sample.

        Works without an active release. Metrics merge into the previous ones.
        """
        monitor_key = (monitor_id or "").strip()
        if not monitor_key:
            return self._fail("monitor_sample_failed", invalid_input("monitor id is required"))
        if metrics is not None and (
            not isinstance(metrics, Mapping) or as_str_dict(dict(metrics)) is None
        ):
            return self._fail(
                "monitor_sample_failed",
                invalid_input("metrics must map names to values"),
                monitor_id=monitor_key,
            )

        with self._store.transaction():
            loaded = self._store.load()
            if isinstance(loaded, Err):
                return loaded
            state = loaded.value

            now = self._store.now()
            monitor = merge_monitor_sample(
                state.monitors.get(monitor_key),
                monitor_key,
                sampled_at=now,
                name=name,
                status=status,
                environment=environment,
                metrics=metrics,
                coverage=coverage,
                trend=trend,
                description=description,
                metadata=metadata,
            )
            monitors = {**state.monitors, monitor_key: monitor}

            release = state.active_release
            event = make_event(
                EventType.MONITOR_SAMPLE,
                monitor_key,
                monitor.status.value,
                occurred_at=now,
                actor=MONITOR_ACTOR,
                summary=description,
                release_id=release.id if release else None,
                payload={"metrics": dict(monitor.metrics), "coverage": monitor.coverage},
            )
            state = append_event(replace(state, monitors=monitors), event)

            persisted = self._store.persist(state)
            if isinstance(persisted, Err):
                return self._fail("monitor_sample_failed", persisted.error, monitor_id=monitor_key)

        self._log.info(
            "monitor_sample_recorded", monitor_id=monitor_key, status=monitor.status.value
        )
        return Ok(copy.deepcopy(monitor))

    def record_pipeline_run_result(
        self,
        pipeline_key: str,
        *,
        status: str,
        started_at: object = None,
        completed_at: object = None,
        duration: object = None,
        tasks: Sequence[Mapping[str, object]] = (),
        metadata: Mapping[str, object] | None = None,
    ) -> Result[PipelineRun, ReleaseError]:
        """Append a pipeline run to the history (unknown status counts as failed)."""
        key = (pipeline_key or "").strip()
        if not key:
            return self._fail("pipeline_run_failed", invalid_input("pipeline key is required"))
        next_status = pipeline_run_status(status)
        run_metadata = dict(metadata or {})

        with self._store.transaction():
            loaded = self._store.load()
            if isinstance(loaded, Err):
                return loaded
            state = loaded.value

            now = self._store.now()
            started = parse_timestamp(started_at) or now
            release = state.active_release
            run = PipelineRun(
                id=f"{key}:{started}",
                pipeline_key=key,
                status=next_status,
                started_at=started,
                completed_at=parse_timestamp(completed_at),
                duration_ms=duration_ms(duration),
                tasks=tuple(dict(t) for t in tasks),
                metadata=run_metadata,
                release_id=release.id if release else None,
            )

            triggered_by = run_metadata.get("triggeredBy")
            event = make_event(
                EventType.PIPELINE_RUN,
                key,
                next_status.value,
                occurred_at=now,
                actor=triggered_by if isinstance(triggered_by, str) else PIPELINE_ACTOR,
                summary=_PIPELINE_SUMMARIES[next_status],
                release_id=run.release_id,
                payload={"durationMs": run.duration_ms, "tasks": [dict(t) for t in run.tasks]},
            )
            state = append_event(
                replace(state, pipeline_runs=(*state.pipeline_runs, run)), event
            )

            persisted = self._store.persist(state)
            if isinstance(persisted, Err):
                return self._fail("pipeline_run_failed", persisted.error, pipeline_key=key)

        self._log.info("pipeline_run_recorded", pipeline_key=key, status=next_status.value)
        return Ok(copy.deepcopy(run))

    def _fail(self, event: str, error: ReleaseError, **fields: object) -> Err[ReleaseError]:
        self._log.error(event, kind=error.kind, error=error.message, **fields)
        return Err(error)


def _stamp_completion(item: ChecklistItem, now: str) -> ChecklistItem:
    if item.status == ChecklistStatus.COMPLETE and item.completed_at is None:
        return replace(item, completed_at=now)
    return item


def _transition_phase(
    phase: Phase,
    next_status: PhaseStatus,
    *,
    now: str,
    summary: str | None,
    coverage: object,
) -> Phase:
    next_coverage = phase.coverage
    if coverage is not None:
        next_coverage = clamp_coverage(coverage, fallback=phase.coverage) or 0.0

    started_at = phase.started_at
    if next_status == PhaseStatus.IN_PROGRESS and started_at is None:
        started_at = now

    completed_at = phase.completed_at
    if next_status == PhaseStatus.COMPLETE:
        if phase.status != PhaseStatus.COMPLETE or completed_at is None:
            completed_at = now
        if coverage is None:
            next_coverage = 100.0

    return replace(
        phase,
        status=next_status,
        summary=summary or phase.summary,
        started_at=started_at,
        completed_at=completed_at,
        coverage=next_coverage,
    )
