"""Read-only views computed from the release state."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace

from rollout.core.structured import StrDict
from rollout.services.release.model import (
    ChecklistItem,
    ChecklistStatus,
    Monitor,
    Phase,
    PhaseStatus,
    Release,
    ReleaseState,
    Segment,
)

# Precedence used to pick the "current" phase: what is active or needs
# attention comes before what is merely waiting.
_ACTIVE_PHASE_PRECEDENCE: tuple[PhaseStatus, ...] = (
    PhaseStatus.IN_PROGRESS,
    PhaseStatus.ATTENTION,
    PhaseStatus.PENDING,
)


def derive_active_phase(phases: Sequence[Phase]) -> Phase | None:
    """Return the phase considered current, or None for an empty list.

    First `in_progress`, else first `attention`, else first `pending`, else the
    last phase (every earlier phase is done).
    """
    if not phases:
        return None
    for status in _ACTIVE_PHASE_PRECEDENCE:
        match = next((p for p in phases if p.status == status), None)
        if match is not None:
            return match
    return phases[-1]


def derive_active_phase_key(phases: Sequence[Phase]) -> str | None:
    phase = derive_active_phase(phases)
    return phase.key if phase is not None else None


@dataclass(frozen=True, slots=True)
class ChecklistSummary:
    total: int = 0
    completed: int = 0
    items: tuple[ChecklistItem, ...] = ()

    def to_dict(self) -> StrDict:
        return {
            "total": self.total,
            "completed": self.completed,
            "items": [item.to_dict() for item in self.items],
        }


def compute_checklist_summary(items: Iterable[ChecklistItem]) -> ChecklistSummary:
    items = tuple(items)
    completed = sum(1 for item in items if item.status == ChecklistStatus.COMPLETE)
    return ChecklistSummary(total=len(items), completed=completed, items=items)


def compute_monitor_snapshots(monitors: Mapping[str, Monitor]) -> tuple[Monitor, ...]:
    """All monitors in insertion order; no filtering or sorting."""
    return tuple(monitors.values())


@dataclass(frozen=True, slots=True)
class SegmentSummary:
    total: int
    average_coverage: float | None


def summarize_segments(segments: Sequence[Segment]) -> SegmentSummary:
    if not segments:
        return SegmentSummary(total=0, average_coverage=None)
    average = sum(s.coverage for s in segments) / len(segments)
    return SegmentSummary(total=len(segments), average_coverage=round(average, 2))


def _empty_checklist() -> ChecklistSummary:
    return ChecklistSummary()


@dataclass(frozen=True, slots=True)
class RolloutSnapshot:
    """The composed read view most consumers use."""

    active: bool = False
    release: Release | None = None
    monitors: tuple[Monitor, ...] = ()
    checklist: ChecklistSummary = field(default_factory=_empty_checklist)

    def to_dict(self) -> StrDict:
        release: StrDict | None = None
        if self.release is not None:
            release = self.release.to_dict()
            release.pop("checklist", None)
        return {
            "active": self.active,
            "release": release,
            "monitors": [m.to_dict() for m in self.monitors],
            "checklist": self.checklist.to_dict(),
        }


def build_rollout_snapshot(state: ReleaseState) -> RolloutSnapshot:
    release = state.active_release
    if release is None:
        return RolloutSnapshot()

    phase = release.phase or derive_active_phase_key(release.phases)
    if phase != release.phase:
        release = replace(release, phase=phase)

    return RolloutSnapshot(
        active=True,
        release=release,
        monitors=compute_monitor_snapshots(state.monitors),
        checklist=compute_checklist_summary(release.checklist),
    )
