"""Append-only audit trail of release mutations."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import replace

from rollout.services.release.model import Event, EventType, ReleaseState
from rollout.services.release.normalize import event_id


def make_event(
    event_type: EventType,
    key: str,
    status: str,
    *,
    occurred_at: str,
    actor: str | None = None,
    summary: str | None = None,
    release_id: str | None = None,
    payload: Mapping[str, object] | None = None,
) -> Event:
    return Event(
        id=event_id(event_type, key, occurred_at),
        type=event_type,
        key=key,
        status=status,
        occurred_at=occurred_at,
        actor=actor,
        summary=summary,
        release_id=release_id,
        payload=dict(payload or {}),
    )


def append_event(state: ReleaseState, event: Event) -> ReleaseState:
    """Return a new state with `event` appended; existing events are untouched."""
    return replace(state, events=(*state.events, event))


def recent_events(events: Sequence[Event], *, limit: int) -> list[Event]:
    """Newest first."""
    if limit <= 0:
        return []
    return list(reversed(events[-limit:]))
