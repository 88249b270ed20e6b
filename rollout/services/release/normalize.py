"""Coerce loosely-typed records into canonical release records.

These functions are the boundary between untyped JSON (upsert payloads, the
persisted state file, CLI input) and the typed model. They never raise on bad
values: unknown statuses fall back to a default, coverage is clamped, and
unparseable timestamps become None. Only structurally malformed payloads
(`normalize_release`) are reported as errors.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import replace
from datetime import UTC, datetime

from rollout.core.result import Err, Ok, Result
from rollout.core.structured import StrDict, as_obj_list, as_str_dict, get_str, to_float
from rollout.services.release.errors import ReleaseError, invalid_input
from rollout.services.release.model import (
    ChecklistItem,
    ChecklistStatus,
    Event,
    EventType,
    Monitor,
    MonitorStatus,
    Phase,
    PhaseStatus,
    PipelineRun,
    PipelineRunStatus,
    Release,
    ReleaseStatus,
    Segment,
)

_KEY_INVALID = re.compile(r"[^a-z0-9._-]+")
_KEY_MAX_LEN = 120


# -----------------------------------------------------------------------------
# Scalars
# -----------------------------------------------------------------------------


def normalize_key(value: object, *, fallback_prefix: str | None = None, index: int = 0) -> str:
    """Slugify a key; synthesize `<prefix>-<index+1>` when value is empty."""
    raw = "" if value is None or isinstance(value, bool) else str(value)
    key = _KEY_INVALID.sub("-", raw.strip().lower()).strip("-")[:_KEY_MAX_LEN]
    if key:
        return key
    if fallback_prefix:
        return f"{fallback_prefix}-{index + 1}"
    return ""


def clamp_coverage(value: object, *, fallback: float | None = None) -> float | None:
    """Clamp a percentage into [0, 100], rounded to two decimals."""
    numeric = to_float(value)
    if numeric is None:
        return fallback
    return round(min(max(numeric, 0.0), 100.0), 2)


def format_timestamp(moment: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a `Z` suffix."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: object) -> str | None:
    if isinstance(value, datetime):
        return format_timestamp(value)
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return format_timestamp(datetime.fromisoformat(value.strip()))
    except ValueError:
        return None


def _status_text(value: object) -> str:
    return value.strip().lower() if isinstance(value, str) else ""


def phase_status(value: object) -> PhaseStatus:
    try:
        return PhaseStatus(_status_text(value))
    except ValueError:
        return PhaseStatus.PENDING


def checklist_status(value: object) -> ChecklistStatus:
    try:
        return ChecklistStatus(_status_text(value))
    except ValueError:
        return ChecklistStatus.PENDING


def monitor_status(value: object) -> MonitorStatus:
    try:
        return MonitorStatus(_status_text(value))
    except ValueError:
        return MonitorStatus.UNKNOWN


def release_status(
    value: object, *, fallback: ReleaseStatus = ReleaseStatus.IN_PROGRESS
) -> ReleaseStatus:
    try:
        return ReleaseStatus(_status_text(value))
    except ValueError:
        return fallback


def pipeline_run_status(value: object) -> PipelineRunStatus:
    try:
        return PipelineRunStatus(_status_text(value))
    except ValueError:
        return PipelineRunStatus.FAILED


def _first_str(record: Mapping[str, object], *keys: str) -> str | None:
    for key in keys:
        value = get_str(record, key)
        if value is not None:
            return value
    return None


def _first_value(record: Mapping[str, object], *keys: str) -> object:
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return None


def _mapping(value: object) -> dict[str, object]:
    d = as_str_dict(value)
    return dict(d) if d is not None else {}


# -----------------------------------------------------------------------------
# Records
# -----------------------------------------------------------------------------


def _record_key(record: Mapping[str, object], *, prefix: str, index: int) -> str:
    raw = _first_value(record, "key", "id", "name")
    return normalize_key(raw, fallback_prefix=prefix, index=index)


def normalize_phase(record: Mapping[str, object], index: int) -> Phase:
    key = _record_key(record, prefix="phase", index=index)
    return Phase(
        key=key,
        name=get_str(record, "name") or key,
        status=phase_status(record.get("status")),
        order=index,
        owner=_first_str(record, "owner", "ownerName"),
        summary=get_str(record, "summary"),
        started_at=parse_timestamp(record.get("startedAt")),
        completed_at=parse_timestamp(record.get("completedAt")),
        coverage=clamp_coverage(_first_value(record, "coverage", "coveragePercent"), fallback=0.0)
        or 0.0,
    )


def normalize_segment(record: Mapping[str, object], index: int) -> Segment:
    key = _record_key(record, prefix="segment", index=index)
    status = get_str(record, "status")
    return Segment(
        key=key,
        name=get_str(record, "name") or key,
        status=status.lower() if status else "pending",
        coverage=clamp_coverage(_first_value(record, "coverage", "coveragePercent"), fallback=0.0)
        or 0.0,
        owner=_first_str(record, "owner", "ownerName"),
        summary=get_str(record, "summary"),
    )


def normalize_checklist_item(record: Mapping[str, object], index: int) -> ChecklistItem:
    key = _record_key(record, prefix="item", index=index)
    return ChecklistItem(
        key=key,
        name=get_str(record, "name") or key,
        status=checklist_status(record.get("status")),
        owner=_first_str(record, "owner", "ownerName"),
        summary=_first_str(record, "summary", "description"),
        due_at=parse_timestamp(_first_value(record, "dueAt", "due_at")),
        completed_at=parse_timestamp(_first_value(record, "completedAt", "completed_at")),
    )


def normalize_monitor(record: Mapping[str, object], monitor_id: str) -> Monitor:
    return Monitor(
        id=monitor_id,
        name=get_str(record, "name") or monitor_id,
        environment=get_str(record, "environment") or "production",
        status=monitor_status(record.get("status")),
        description=get_str(record, "description"),
        last_sample_at=parse_timestamp(_first_value(record, "lastSampleAt", "lastSampledAt")),
        metrics=_mapping(record.get("metrics")),
        coverage=clamp_coverage(_first_value(record, "coverage", "coveragePercent")),
        trend=get_str(record, "trend"),
        metadata=_mapping(record.get("metadata")),
    )


def merge_monitor_sample(
    existing: Monitor | None,
    monitor_id: str,
    *,
    sampled_at: str,
    name: str | None = None,
    status: object = None,
    environment: str | None = None,
    metrics: Mapping[str, object] | None = None,
    coverage: object = None,
    trend: str | None = None,
    description: str | None = None,
    metadata: Mapping[str, object] | None = None,
) -> Monitor:
    """Apply one sample to a monitor, creating it on first sample.

    `metrics` and `metadata` are merged shallowly into the previous values so
    a sampler reporting `{durationMs}` keeps an earlier `{exitCode}`. Omitted
    name/description/coverage/trend keep their previous values.
    """
    next_environment = (environment or "").strip() or "production"
    if existing is None:
        return Monitor(
            id=monitor_id,
            name=name or monitor_id,
            environment=next_environment,
            status=monitor_status(status),
            description=description,
            last_sample_at=sampled_at,
            metrics=dict(metrics or {}),
            coverage=clamp_coverage(coverage),
            trend=trend,
            metadata=dict(metadata or {}),
        )

    return Monitor(
        id=monitor_id,
        name=name or existing.name or monitor_id,
        environment=next_environment,
        status=monitor_status(status),
        description=description if description is not None else existing.description,
        last_sample_at=sampled_at,
        metrics={**existing.metrics, **(metrics or {})},
        coverage=existing.coverage
        if coverage is None
        else clamp_coverage(coverage, fallback=existing.coverage),
        trend=trend if trend is not None else existing.trend,
        metadata={**existing.metadata, **(metadata or {})},
    )


def normalize_event(record: Mapping[str, object]) -> Event | None:
    """Rebuild a persisted event; returns None for records that cannot be typed."""
    try:
        event_type = EventType(_status_text(record.get("type")))
    except ValueError:
        return None
    key = get_str(record, "key")
    occurred_at = parse_timestamp(record.get("occurredAt"))
    if key is None or occurred_at is None:
        return None
    return Event(
        id=get_str(record, "id") or event_id(event_type, key, occurred_at),
        type=event_type,
        key=key,
        status=get_str(record, "status") or "",
        occurred_at=occurred_at,
        actor=get_str(record, "actor"),
        summary=get_str(record, "summary"),
        release_id=get_str(record, "releaseId"),
        payload=_mapping(record.get("payload")),
    )


def event_id(event_type: EventType, key: str, occurred_at: str) -> str:
    return f"{event_type.value}:{key}:{occurred_at}"


def normalize_pipeline_run(record: Mapping[str, object]) -> PipelineRun | None:
    pipeline_key = get_str(record, "pipelineKey")
    started_at = parse_timestamp(record.get("startedAt"))
    if pipeline_key is None or started_at is None:
        return None
    tasks_obj = as_obj_list(record.get("tasks")) or []
    return PipelineRun(
        id=get_str(record, "id") or f"{pipeline_key}:{started_at}",
        pipeline_key=pipeline_key,
        status=pipeline_run_status(record.get("status")),
        started_at=started_at,
        completed_at=parse_timestamp(record.get("completedAt")),
        duration_ms=duration_ms(record.get("durationMs")),
        tasks=tuple(dict(t) for t in (as_str_dict(item) for item in tasks_obj) if t is not None),
        metadata=_mapping(record.get("metadata")),
        release_id=get_str(record, "releaseId"),
    )


def duration_ms(value: object) -> int | None:
    numeric = to_float(value)
    if numeric is None:
        return None
    return max(int(round(numeric)), 0)


# -----------------------------------------------------------------------------
# Release payloads
# -----------------------------------------------------------------------------


def _record_list(
    payload: Mapping[str, object], key: str
) -> Result[list[StrDict] | None, ReleaseError]:
    """Return the payload list under `key`, None when absent."""
    raw = payload.get(key)
    if raw is None:
        return Ok(None)
    items = as_obj_list(raw)
    if items is None:
        return Err(invalid_input(f"'{key}' must be a list", hint=type(raw).__name__))
    records: list[StrDict] = []
    for index, item in enumerate(items):
        record = as_str_dict(item)
        if record is None:
            return Err(invalid_input(f"'{key}[{index}]' must be an object"))
        records.append(record)
    return Ok(records)


def unique_by_key[R: (Phase, Segment, ChecklistItem)](records: Iterable[R]) -> tuple[R, ...]:
    """Keep one record per key; the last one wins and takes the last position."""
    by_key: dict[str, R] = {}
    for record in records:
        by_key.pop(record.key, None)
        by_key[record.key] = record
    return tuple(by_key.values())


def normalize_release(
    payload: object, *, previous: Release | None = None
) -> Result[Release, ReleaseError]:
    """Normalize an upsert payload into a Release.

    When `previous` has the same id, omitted scalar fields and omitted
    `phases`/`segments`/`checklist` lists are carried over and `metadata` is
    merged. Supplied lists always replace the previous list wholesale; within a
    list each key appears once (the last record wins) and phases are renumbered.
    The `phase` field is only set when the payload names one explicitly.
    """
    data = as_str_dict(payload)
    if data is None:
        return Err(invalid_input("release payload must be an object"))

    release_id = normalize_key(
        _first_value(data, "id", "key", "version", "name"), fallback_prefix="release"
    )
    prior = previous if previous is not None and previous.id == release_id else None

    lists: dict[str, list[StrDict] | None] = {}
    for key in ("phases", "segments", "checklist"):
        parsed = _record_list(data, key)
        if isinstance(parsed, Err):
            return parsed
        lists[key] = parsed.value

    metadata_obj = data.get("metadata")
    if metadata_obj is not None and as_str_dict(metadata_obj) is None:
        return Err(invalid_input("'metadata' must be an object"))

    phase_records = lists["phases"]
    segment_records = lists["segments"]
    checklist_records = lists["checklist"]

    if phase_records is not None:
        unique = unique_by_key(normalize_phase(r, i) for i, r in enumerate(phase_records))
        phases = tuple(replace(p, order=i) for i, p in enumerate(unique))
    else:
        phases = prior.phases if prior else ()

    if segment_records is not None:
        segments = unique_by_key(normalize_segment(r, i) for i, r in enumerate(segment_records))
    else:
        segments = prior.segments if prior else ()

    if checklist_records is not None:
        checklist = unique_by_key(
            normalize_checklist_item(r, i) for i, r in enumerate(checklist_records)
        )
    else:
        checklist = prior.checklist if prior else ()

    explicit_phase = _first_value(data, "phase", "currentPhase")
    phase_key = normalize_key(explicit_phase) or None

    def carried(value: str | None, attr: str) -> str | None:
        if value is not None:
            return value
        return getattr(prior, attr) if prior else None

    raw_status = data.get("status")
    if raw_status is None and prior is not None:
        status = prior.status
    else:
        status = release_status(raw_status)

    return Ok(
        Release(
            id=release_id,
            name=get_str(data, "name") or (prior.name if prior else release_id),
            status=status,
            version=carried(get_str(data, "version"), "version"),
            owner=carried(_first_str(data, "owner", "ownerName"), "owner"),
            owner_email=carried(get_str(data, "ownerEmail"), "owner_email"),
            summary=carried(get_str(data, "summary"), "summary"),
            phase=phase_key,
            started_at=carried(parse_timestamp(data.get("startedAt")), "started_at"),
            target_completion=carried(
                parse_timestamp(_first_value(data, "targetCompletion", "targetReleaseAt")),
                "target_completion",
            ),
            released_at=carried(parse_timestamp(data.get("releasedAt")), "released_at"),
            release_notes_ref=carried(get_str(data, "releaseNotesRef"), "release_notes_ref"),
            release_notes_url=carried(get_str(data, "releaseNotesUrl"), "release_notes_url"),
            metadata={**(prior.metadata if prior else {}), **_mapping(metadata_obj)},
            phases=phases,
            segments=segments,
            checklist=checklist,
        )
    )
