"""Release notes generation.

Notes are a read-only rendering of the rollout: nothing here mutates the
release state. Each run writes `<notes dir>/<date>-<slug>.md` and records it
in `index.json` (newest first, one entry per file).
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

import structlog

from rollout.core.config import CiConfig, NotesConfig
from rollout.core.result import Err, Ok, Result
from rollout.core.structured import StrDict, as_obj_list, as_str_dict, get_str
from rollout.git.repository import GitCommit, Repository
from rollout.output.console import ConsoleProtocol
from rollout.platform.files import atomic_write_text, write_json
from rollout.services.release.ci import PipelineReport, read_ci_report
from rollout.services.release.commits import group_commits
from rollout.services.release.derive import RolloutSnapshot, summarize_segments
from rollout.services.release.errors import ReleaseError
from rollout.services.release.model import Event, PipelineRun
from rollout.services.release.normalize import normalize_key
from rollout.services.release.service import ReleaseService

logger = structlog.get_logger(__name__)

INDEX_FILE = "index.json"


@dataclass(frozen=True, slots=True)
class WrittenNotes:
    rel_path: str
    abs_path: Path
    title: str
    commits: int


@dataclass(frozen=True, slots=True)
class NotesInput:
    """Everything the renderer needs, gathered up front."""

    generated_at: str
    snapshot: RolloutSnapshot
    pipeline_run: PipelineRun | None = None
    ci_report: PipelineReport | None = None
    commits: tuple[GitCommit, ...] = ()
    events: tuple[Event, ...] = ()


def notes_title(snapshot: RolloutSnapshot) -> str:
    release = snapshot.release
    if release is None:
        return "Release snapshot"
    if release.version and release.version not in release.name:
        return f"{release.name} {release.version}"
    return release.name


def notes_file_name(snapshot: RolloutSnapshot, generated_at: str) -> str:
    release = snapshot.release
    slug = ""
    if release is not None:
        slug = normalize_key(release.version) or normalize_key(release.id)
    return f"{generated_at[:10]}-{slug or 'snapshot'}.md"


def _fmt(value: object) -> str:
    if value is None or value == "":
        return "-"
    if isinstance(value, float):
        return f"{value:g}"
    return str(value)


def _percent(value: float | None) -> str:
    return "-" if value is None else f"{value:g}%"


def _render_rollout(lines: list[str], snapshot: RolloutSnapshot) -> None:
    lines.append("## Rollout")
    release = snapshot.release
    if release is None:
        lines.append("No active release is configured.")
        return

    lines.append(f"- Release: {release.name} (`{release.id}`)")
    lines.append(f"- Version: {_fmt(release.version)}")
    lines.append(f"- Status: {release.status}")
    lines.append(f"- Active phase: {_fmt(release.phase)}")
    lines.append(f"- Owner: {_fmt(release.owner)}")
    lines.append(f"- Started: {_fmt(release.started_at)}")
    lines.append(f"- Target completion: {_fmt(release.target_completion)}")
    if release.release_notes_ref:
        lines.append(f"- Notes ref: {release.release_notes_ref}")
    if release.summary:
        lines.append("")
        lines.append(release.summary)

    if release.phases:
        lines.append("")
        lines.append("## Phases")
        lines.append("| Phase | Status | Coverage | Owner |")
        lines.append("|-------|--------|----------|-------|")
        for p in release.phases:
            lines.append(f"| {p.name} | {p.status} | {_percent(p.coverage)} | {_fmt(p.owner)} |")

    if release.segments:
        summary = summarize_segments(release.segments)
        lines.append("")
        lines.append("## Segments")
        lines.append(
            f"{summary.total} segments, average coverage {_percent(summary.average_coverage)}."
        )
        lines.append("")
        lines.append("| Segment | Status | Coverage | Owner |")
        lines.append("|---------|--------|----------|-------|")
        for s in release.segments:
            lines.append(f"| {s.name} | {s.status} | {_percent(s.coverage)} | {_fmt(s.owner)} |")

    checklist = snapshot.checklist
    if checklist.total:
        lines.append("")
        lines.append("## Checklist")
        lines.append(f"{checklist.completed} of {checklist.total} items complete.")
        lines.append("")
        for item in checklist.items:
            mark = "x" if item.status == "complete" else " "
            suffix = f" ({item.status})" if item.status != "complete" else ""
            lines.append(f"- [{mark}] {item.name}{suffix}")


def _render_monitors(lines: list[str], snapshot: RolloutSnapshot) -> None:
    if not snapshot.monitors:
        return
    lines.append("")
    lines.append("## Monitors")
    lines.append("| Monitor | Environment | Status | Coverage | Trend |")
    lines.append("|---------|-------------|--------|----------|-------|")
    for m in snapshot.monitors:
        lines.append(
            f"| {m.name} | {m.environment} | {m.status} "
            f"| {_percent(m.coverage)} | {_fmt(m.trend)} |"
        )


def _render_pipeline(lines: list[str], data: NotesInput) -> None:
    run = data.pipeline_run
    if run is not None:
        lines.append("")
        lines.append("## Pipeline")
        duration = f"{run.duration_ms} ms" if run.duration_ms is not None else "-"
        lines.append(
            f"Latest `{run.pipeline_key}` run {run.status} at {run.started_at} ({duration})."
        )
        tasks = [t for t in run.tasks if get_str(t, "name")]
        if tasks:
            lines.append("")
            for t in tasks:
                label = get_str(t, "title") or get_str(t, "name")
                lines.append(f"- {label}: {_fmt(t.get('status'))}")
        return

    report = data.ci_report
    if report is None:
        return
    lines.append("")
    lines.append("## Pipeline")
    lines.append(f"CI report from {_fmt(report.generated_at)}: {report.status}.")
    if report.tasks:
        lines.append("")
        for t in report.tasks:
            lines.append(f"- {t.title}: {t.status} ({t.duration_ms} ms)")


def _render_activity(lines: list[str], events: Sequence[Event]) -> None:
    if not events:
        return
    lines.append("")
    lines.append("## Recent activity")
    for e in events:
        actor = f" by {e.actor}" if e.actor else ""
        summary = f": {e.summary}" if e.summary else ""
        lines.append(f"- {e.occurred_at} {e.type} `{e.key}` {e.status}{actor}{summary}")


def _render_changes(lines: list[str], commits: Sequence[GitCommit]) -> None:
    lines.append("")
    lines.append("## Changes")
    if not commits:
        lines.append("No commits recorded.")
        return
    for heading, group in group_commits(commits):
        lines.append("")
        lines.append(f"### {heading}")
        for c in group:
            scope = f"**{c.scope}**: " if c.scope else ""
            breaking = " (breaking)" if c.breaking else ""
            lines.append(f"- {scope}{c.subject}{breaking} (`{c.short_sha}`)")


def render_release_notes(data: NotesInput) -> str:
    lines: list[str] = []
    lines.append(f"# {notes_title(data.snapshot)}")
    lines.append("")
    lines.append(f"Generated: {data.generated_at}")
    lines.append("")
    _render_rollout(lines, data.snapshot)
    _render_monitors(lines, data.snapshot)
    _render_pipeline(lines, data)
    _render_activity(lines, data.events)
    _render_changes(lines, data.commits)
    return "\n".join(lines).rstrip() + "\n"


def _read_index(path: Path) -> list[StrDict]:
    try:
        obj: object = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return []
    except (OSError, UnicodeDecodeError, json.JSONDecodeError):
        # Corrupted index, start fresh
        logger.warning("notes_index_unreadable", path=str(path))
        return []
    entries = as_obj_list(obj) or []
    return [d for d in (as_str_dict(e) for e in entries) if d is not None]


def update_notes_index(
    index_path: Path, entry: StrDict, *, limit: int
) -> Result[list[StrDict], ReleaseError]:
    """Prepend `entry`, dropping older entries for the same file, and cap the list."""
    existing = [e for e in _read_index(index_path) if e.get("file") != entry.get("file")]
    entries = [entry, *existing][: max(limit, 1)]
    try:
        write_json(index_path, entries)
    except OSError as e:
        return Err(
            ReleaseError(
                kind="io_error",
                message=f"failed to write release notes index: {e}",
                hint=str(index_path),
            )
        )
    return Ok(entries)


def _collect_commits(
    repo: Repository | None,
    *,
    limit: int,
    rev_range: str | None,
    console: ConsoleProtocol,
) -> tuple[GitCommit, ...]:
    if repo is None:
        return ()
    if not repo.exists():
        console.warning(f"not a git repository: {repo.path}; notes will list no commits")
        return ()
    result = repo.log(limit=limit, rev_range=rev_range)
    if isinstance(result, Err):
        logger.warning("git_log_failed", error=result.error.message, rev_range=rev_range)
        console.warning(f"git log failed: {result.error.message}")
        return ()
    return tuple(result.value)


def generate_release_notes(
    service: ReleaseService,
    notes: NotesConfig,
    ci: CiConfig,
    *,
    root: Path,
    console: ConsoleProtocol,
    repo: Repository | None = None,
    rev_range: str | None = None,
) -> Result[WrittenNotes, ReleaseError]:
    """Render the current rollout to Markdown and record it in the notes index.

    The latest pipeline run comes from the history; the CI report artifact is
    used only when no run was recorded. The active release's recent events
    become the "Recent activity" section. A failing `git log` is reported and the
    notes are written without a change list.
    """
    snapshot = service.get_release_rollout_snapshot()
    if isinstance(snapshot, Err):
        return snapshot

    history = service.get_pipeline_run_history(pipeline_key=ci.pipeline, limit=1)
    if isinstance(history, Err):
        return history
    pipeline_run = history.value[0] if history.value else None

    events = service.list_recent_release_events(limit=notes.event_limit)
    if isinstance(events, Err):
        return events

    ci_report: PipelineReport | None = None
    if pipeline_run is None:
        report = read_ci_report(root / ci.report_path)
        if isinstance(report, Err):
            console.warning(f"ignoring CI report: {report.error.message}")
        else:
            ci_report = report.value

    commits = _collect_commits(
        repo, limit=notes.commit_limit, rev_range=rev_range, console=console
    )

    generated_at = service.store.now()
    data = NotesInput(
        generated_at=generated_at,
        snapshot=snapshot.value,
        pipeline_run=pipeline_run,
        ci_report=ci_report,
        commits=commits,
        events=tuple(events.value),
    )

    notes_dir = root / notes.dir
    file_name = notes_file_name(snapshot.value, generated_at)
    path = notes_dir / file_name
    try:
        atomic_write_text(path, render_release_notes(data))
    except OSError as e:
        return Err(
            ReleaseError(
                kind="io_error",
                message=f"failed to write release notes: {e}",
                hint=str(path),
            )
        )

    release = snapshot.value.release
    title = notes_title(snapshot.value)
    entry: StrDict = {
        "file": file_name,
        "title": title,
        "releaseId": release.id if release else None,
        "version": release.version if release else None,
        "generatedAt": generated_at,
        "commits": len(commits),
    }
    indexed = update_notes_index(notes_dir / INDEX_FILE, entry, limit=notes.index_limit)
    if isinstance(indexed, Err):
        return indexed

    logger.info("release_notes_written", file=file_name, commits=len(commits))
    return Ok(
        WrittenNotes(
            rel_path=f"{notes.dir}/{file_name}",
            abs_path=path,
            title=title,
            commits=len(commits),
        )
    )
