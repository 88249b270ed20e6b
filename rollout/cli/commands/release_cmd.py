from __future__ import annotations

import json
import sys
from pathlib import Path

import typer

from rollout.cli.commands._helpers import parse_key_values, unwrap_or_exit, usage_error
from rollout.cli.context import build_context
from rollout.core.structured import StrDict
from rollout.output.console import ConsoleProtocol, Style, style_for_status
from rollout.services.release.derive import RolloutSnapshot


release_app = typer.Typer(add_completion=False, no_args_is_help=True)


def _echo_json(payload: object) -> None:
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


def _read_payload(source: str) -> object:
    try:
        if source == "-":
            text = sys.stdin.read()
        else:
            text = Path(source).read_text(encoding="utf-8")
    except OSError as e:
        usage_error(f"failed to read {source}: {e}")
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        usage_error(f"invalid JSON in {source}: {e}")


def _print_snapshot(snapshot: RolloutSnapshot, console: ConsoleProtocol) -> None:
    release = snapshot.release
    if release is None:
        console.warning("no active release")
    else:
        title = f"{release.name} {release.version}" if release.version else release.name
        console.header(f"{title} ({release.status})")
        console.print(f"id: {release.id}", Style.DIM)
        if release.owner:
            console.print(f"owner: {release.owner}", Style.DIM)
        if release.target_completion:
            console.print(f"target: {release.target_completion}", Style.DIM)

        if release.phases:
            console.header("Phases")
            for p in release.phases:
                marker = ">" if p.key == release.phase else " "
                console.print(
                    f"{marker} {p.key:<20} {p.status:<12} {p.coverage:g}%",
                    style_for_status(p.status),
                )

        if release.segments:
            console.header("Segments")
            for s in release.segments:
                console.print(f"  {s.key:<20} {s.status:<12} {s.coverage:g}%")

        checklist = snapshot.checklist
        if checklist.total:
            console.header(f"Checklist ({checklist.completed}/{checklist.total})")
            for item in checklist.items:
                console.print(f"  {item.key:<20} {item.status}", style_for_status(item.status))

    if snapshot.monitors:
        console.header("Monitors")
        for m in snapshot.monitors:
            coverage = f" {m.coverage:g}%" if m.coverage is not None else ""
            console.print(
                f"  {m.id:<20} {m.status:<8} {m.environment}{coverage}",
                style_for_status(m.status),
            )


@release_app.command("show")
def show_cmd(
    json_output: bool = typer.Option(False, "--json", help="Print the snapshot as JSON"),
) -> None:
    """Show the rollout snapshot (release, derived phase, checklist, monitors)."""
    ctx = build_context()
    snapshot = unwrap_or_exit(ctx.service.get_release_rollout_snapshot(), ctx)
    if json_output:
        _echo_json(snapshot.to_dict())
        return
    _print_snapshot(snapshot, ctx.console)


@release_app.command("state")
def state_cmd() -> None:
    """Print the raw persisted state document as JSON."""
    ctx = build_context()
    state = unwrap_or_exit(ctx.service.get_release_state(), ctx)
    _echo_json(state.to_dict())


@release_app.command("upsert")
def upsert_cmd(
    source: str = typer.Argument(..., help="Release JSON file, or - for stdin"),
) -> None:
    """Create or replace the active release from a JSON payload."""
    ctx = build_context()
    payload = _read_payload(source)
    release = unwrap_or_exit(ctx.service.upsert_active_release(payload), ctx)
    ctx.console.success(
        f"release {release.id} saved "
        f"({len(release.phases)} phases, {len(release.segments)} segments, "
        f"{len(release.checklist)} checklist items)"
    )


@release_app.command("phase")
def phase_cmd(
    key: str = typer.Argument(..., help="Phase key"),
    status: str = typer.Argument(..., help="pending/in_progress/complete/paused/blocked/attention"),
    actor: str | None = typer.Option(None, "--actor", help="Who made the change"),
    summary: str | None = typer.Option(None, "--summary", help="Short note"),
    coverage: float | None = typer.Option(None, "--coverage", help="Coverage percent (0-100)"),
) -> None:
    """Transition a release phase."""
    ctx = build_context()
    phase = unwrap_or_exit(
        ctx.service.mark_release_phase_status(
            key, status, actor=actor, summary=summary, coverage=coverage
        ),
        ctx,
    )
    ctx.console.success(f"phase {phase.key}: {phase.status} ({phase.coverage:g}%)")


@release_app.command("checklist")
def checklist_cmd(
    key: str = typer.Argument(..., help="Checklist item key"),
    status: str = typer.Argument(..., help="pending/in_progress/complete/blocked/attention"),
    actor: str | None = typer.Option(None, "--actor", help="Who made the change"),
    summary: str | None = typer.Option(None, "--summary", help="Short note"),
) -> None:
    """Transition a checklist item."""
    ctx = build_context()
    item = unwrap_or_exit(
        ctx.service.mark_checklist_item_status(key, status, actor=actor, summary=summary),
        ctx,
    )
    ctx.console.success(f"checklist {item.key}: {item.status}")


@release_app.command("monitor")
def monitor_cmd(
    monitor_id: str = typer.Argument(..., help="Monitor id"),
    status: str = typer.Option(
        "unknown", "--status", help="passing/warning/info/attention/failing"
    ),
    name: str | None = typer.Option(None, "--name", help="Display name"),
    environment: str = typer.Option("production", "--environment", help="Environment"),
    metric: list[str] = typer.Option([], "--metric", help="Metric sample (name=value)"),
    coverage: float | None = typer.Option(None, "--coverage", help="Coverage percent (0-100)"),
    trend: str | None = typer.Option(None, "--trend", help="Trend label"),
    description: str | None = typer.Option(None, "--description", help="Description"),
) -> None:
    """Record one monitor sample (no active release required)."""
    ctx = build_context()
    metrics = parse_key_values(metric, flag="--metric")
    monitor = unwrap_or_exit(
        ctx.service.record_monitor_sample(
            monitor_id,
            name=name,
            status=status,
            environment=environment,
            metrics=metrics or None,
            coverage=coverage,
            trend=trend,
            description=description,
        ),
        ctx,
    )
    ctx.console.success(f"monitor {monitor.id}: {monitor.status}")


@release_app.command("events")
def events_cmd(
    limit: int = typer.Option(20, "--limit", min=1, help="Number of events"),
    json_output: bool = typer.Option(False, "--json", help="Print as JSON"),
) -> None:
    """List the most recent release events, newest first."""
    ctx = build_context()
    events = unwrap_or_exit(ctx.service.list_recent_release_events(limit=limit), ctx)
    if json_output:
        _echo_json([e.to_dict() for e in events])
        return
    if not events:
        ctx.console.print("no events", Style.DIM)
        return
    for e in events:
        actor = f" by {e.actor}" if e.actor else ""
        ctx.console.print(
            f"{e.occurred_at} {e.type:<16} {e.key:<20} {e.status}{actor}",
            style_for_status(e.status),
        )


@release_app.command("runs")
def runs_cmd(
    pipeline: str | None = typer.Option(None, "--pipeline", help="Only this pipeline key"),
    limit: int = typer.Option(5, "--limit", min=1, help="Number of runs"),
    json_output: bool = typer.Option(False, "--json", help="Print as JSON"),
) -> None:
    """Show pipeline run history, most recent first."""
    ctx = build_context()
    runs = unwrap_or_exit(
        ctx.service.get_pipeline_run_history(pipeline_key=pipeline, limit=limit), ctx
    )
    if json_output:
        payload: list[StrDict] = [r.to_dict() for r in runs]
        _echo_json(payload)
        return
    if not runs:
        ctx.console.print("no pipeline runs", Style.DIM)
        return
    for r in runs:
        duration = f" {r.duration_ms} ms" if r.duration_ms is not None else ""
        ctx.console.print(
            f"{r.started_at} {r.pipeline_key:<12} {r.status}{duration}",
            style_for_status(r.status),
        )
