"""Active release state: normalization, persistence, derivation and mutations."""

from rollout.services.release.derive import RolloutSnapshot, build_rollout_snapshot
from rollout.services.release.errors import ReleaseError
from rollout.services.release.model import (
    ChecklistItem,
    Event,
    Monitor,
    Phase,
    PipelineRun,
    Release,
    ReleaseState,
    Segment,
)
from rollout.services.release.service import ReleaseService
from rollout.services.release.store import ReleaseStateStore

__all__ = [
    "ChecklistItem",
    "Event",
    "Monitor",
    "Phase",
    "PipelineRun",
    "Release",
    "ReleaseError",
    "ReleaseService",
    "ReleaseState",
    "ReleaseStateStore",
    "RolloutSnapshot",
    "Segment",
    "build_rollout_snapshot",
]
