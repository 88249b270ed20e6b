from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from rollout.core.structured import StrDict


class PhaseStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    PAUSED = "paused"
    BLOCKED = "blocked"
    ATTENTION = "attention"


class ChecklistStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    BLOCKED = "blocked"
    ATTENTION = "attention"


class MonitorStatus(StrEnum):
    PASSING = "passing"
    WARNING = "warning"
    INFO = "info"
    ATTENTION = "attention"
    FAILING = "failing"
    UNKNOWN = "unknown"


class ReleaseStatus(StrEnum):
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    BLOCKED = "blocked"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


class PipelineRunStatus(StrEnum):
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"


class EventType(StrEnum):
    PHASE_STATUS = "phase_status"
    CHECKLIST_STATUS = "checklist_status"
    MONITOR_SAMPLE = "monitor_sample"
    PIPELINE_RUN = "pipeline_run"


def _empty_dict() -> dict[str, object]:
    return {}


@dataclass(frozen=True, slots=True)
class Phase:
    """An ordered stage of a rollout."""

    key: str
    name: str
    status: PhaseStatus = PhaseStatus.PENDING
    order: int = 0
    owner: str | None = None
    summary: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    coverage: float = 0.0

    def to_dict(self) -> StrDict:
        return {
            "key": self.key,
            "name": self.name,
            "status": self.status.value,
            "order": self.order,
            "owner": self.owner,
            "summary": self.summary,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "coverage": self.coverage,
        }


@dataclass(frozen=True, slots=True)
class Segment:
    """An audience cohort; status is free-form and carries no transitions."""

    key: str
    name: str
    status: str = "pending"
    coverage: float = 0.0
    owner: str | None = None
    summary: str | None = None

    def to_dict(self) -> StrDict:
        return {
            "key": self.key,
            "name": self.name,
            "status": self.status,
            "coverage": self.coverage,
            "owner": self.owner,
            "summary": self.summary,
        }


@dataclass(frozen=True, slots=True)
class ChecklistItem:
    key: str
    name: str
    status: ChecklistStatus = ChecklistStatus.PENDING
    owner: str | None = None
    summary: str | None = None
    due_at: str | None = None
    completed_at: str | None = None

    def to_dict(self) -> StrDict:
        return {
            "key": self.key,
            "name": self.name,
            "status": self.status.value,
            "owner": self.owner,
            "summary": self.summary,
            "dueAt": self.due_at,
            "completedAt": self.completed_at,
        }


@dataclass(frozen=True, slots=True)
class Monitor:
    """A health probe sampled over time, independent of any release.

    `coverage` is None when the probe does not measure coverage at all.
    """

    id: str
    name: str
    environment: str = "production"
    status: MonitorStatus = MonitorStatus.UNKNOWN
    description: str | None = None
    last_sample_at: str | None = None
    metrics: dict[str, object] = field(default_factory=_empty_dict)
    coverage: float | None = None
    trend: str | None = None
    metadata: dict[str, object] = field(default_factory=_empty_dict)

    def to_dict(self) -> StrDict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "environment": self.environment,
            "status": self.status.value,
            "lastSampleAt": self.last_sample_at,
            "metrics": dict(self.metrics),
            "coverage": self.coverage,
            "trend": self.trend,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True, slots=True)
class Event:
    """Immutable audit record appended by every mutation."""

    id: str
    type: EventType
    key: str
    status: str
    occurred_at: str
    actor: str | None = None
    summary: str | None = None
    release_id: str | None = None
    payload: dict[str, object] = field(default_factory=_empty_dict)

    def to_dict(self) -> StrDict:
        return {
            "id": self.id,
            "type": self.type.value,
            "key": self.key,
            "status": self.status,
            "actor": self.actor,
            "summary": self.summary,
            "releaseId": self.release_id,
            "payload": dict(self.payload),
            "occurredAt": self.occurred_at,
        }


@dataclass(frozen=True, slots=True)
class PipelineRun:
    id: str
    pipeline_key: str
    status: PipelineRunStatus
    started_at: str
    completed_at: str | None = None
    duration_ms: int | None = None
    tasks: tuple[StrDict, ...] = ()
    metadata: dict[str, object] = field(default_factory=_empty_dict)
    release_id: str | None = None

    def to_dict(self) -> StrDict:
        return {
            "id": self.id,
            "pipelineKey": self.pipeline_key,
            "status": self.status.value,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "durationMs": self.duration_ms,
            "tasks": [dict(t) for t in self.tasks],
            "metadata": dict(self.metadata),
            "releaseId": self.release_id,
        }


@dataclass(frozen=True, slots=True)
class Release:
    """The single active release.

    `phases`, `segments` and `checklist` are replaced wholesale by upserts;
    `metadata` is merged.
    """

    id: str
    name: str
    status: ReleaseStatus = ReleaseStatus.IN_PROGRESS
    version: str | None = None
    owner: str | None = None
    owner_email: str | None = None
    summary: str | None = None
    phase: str | None = None
    started_at: str | None = None
    target_completion: str | None = None
    released_at: str | None = None
    release_notes_ref: str | None = None
    release_notes_url: str | None = None
    metadata: dict[str, object] = field(default_factory=_empty_dict)
    phases: tuple[Phase, ...] = ()
    segments: tuple[Segment, ...] = ()
    checklist: tuple[ChecklistItem, ...] = ()

    def find_phase(self, key: str) -> Phase | None:
        return next((p for p in self.phases if p.key == key), None)

    def find_checklist_item(self, key: str) -> ChecklistItem | None:
        return next((c for c in self.checklist if c.key == key), None)

    def to_dict(self) -> StrDict:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "version": self.version,
            "owner": self.owner,
            "ownerEmail": self.owner_email,
            "summary": self.summary,
            "phase": self.phase,
            "startedAt": self.started_at,
            "targetCompletion": self.target_completion,
            "releasedAt": self.released_at,
            "releaseNotesRef": self.release_notes_ref,
            "releaseNotesUrl": self.release_notes_url,
            "metadata": dict(self.metadata),
            "phases": [p.to_dict() for p in self.phases],
            "segments": [s.to_dict() for s in self.segments],
            "checklist": [c.to_dict() for c in self.checklist],
        }


def _empty_monitors() -> dict[str, Monitor]:
    return {}


@dataclass(frozen=True, slots=True)
class ReleaseState:
    """The whole persisted document."""

    active_release: Release | None = None
    monitors: dict[str, Monitor] = field(default_factory=_empty_monitors)
    events: tuple[Event, ...] = ()
    pipeline_runs: tuple[PipelineRun, ...] = ()
    updated_at: str | None = None

    def to_dict(self) -> StrDict:
        return {
            "activeRelease": self.active_release.to_dict() if self.active_release else None,
            "monitors": {key: m.to_dict() for key, m in self.monitors.items()},
            "events": [e.to_dict() for e in self.events],
            "pipelineRuns": [r.to_dict() for r in self.pipeline_runs],
            "updatedAt": self.updated_at,
        }
