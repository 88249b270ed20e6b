from __future__ import annotations

import json
from pathlib import Path
from typing import Protocol

from rollout.core.config import CiConfig, NotesConfig
from rollout.core.result import Err, Ok, Result
from rollout.git.repository import GitCommit, GitError
from rollout.output.console import MockConsole
from rollout.services.release.ci import PipelineReport, TaskResult, write_ci_report
from rollout.services.release.derive import RolloutSnapshot
from rollout.services.release.notes import (
    NotesInput,
    generate_release_notes,
    notes_file_name,
    render_release_notes,
    update_notes_index,
)
from rollout.services.release.service import ReleaseService


class Clock(Protocol):
    def advance(self, seconds: float = 1.0) -> None: ...


class FakeRepo:
    def __init__(self, commits: list[GitCommit] | None = None, *, fail: bool = False) -> None:
        self.path = Path("/repo")
        self.commits = commits or []
        self.fail = fail
        self.seen: dict[str, object] = {}

    def exists(self) -> bool:
        return True

    def log(self, *, limit: int, rev_range: str | None = None) -> Result[list[GitCommit], GitError]:
        self.seen = {"limit": limit, "rev_range": rev_range}
        if self.fail:
            return Err(GitError(command="log", message="fatal: bad revision", returncode=128))
        return Ok(self.commits)


def _commit(sha: str, subject: str) -> GitCommit:
    return GitCommit(sha=sha, subject=subject, author="Dev", date_utc=None)


NOTES = NotesConfig(dir="notes", index_limit=3, commit_limit=50)
CI = CiConfig(report_path="reports/ci-report.json")


def test_generate_full_notes(
    tmp_path: Path, service: ReleaseService, release_payload: dict[str, object]
) -> None:
    assert isinstance(service.upsert_active_release(release_payload), Ok)
    service.mark_checklist_item_status("ci-signed-off", "complete")
    service.record_monitor_sample("api", name="API latency", status="passing", coverage=80)
    service.record_pipeline_run_result(
        "ci",
        status="passed",
        started_at="2026-03-01T08:00:00Z",
        duration=1200,
        tasks=[{"name": "lint", "title": "Lint", "status": "passed"}],
    )
    repo = FakeRepo(
        [
            _commit("a" * 40, "feat(rollout): add EU segment"),
            _commit("b" * 40, "fix: clamp coverage"),
            _commit("c" * 40, "update readme"),
        ]
    )

    result = generate_release_notes(
        service,
        NOTES,
        CI,
        root=tmp_path,
        console=MockConsole(),
        repo=repo,  # type: ignore[arg-type]
        rev_range="v2026.02..HEAD",
    )
    assert isinstance(result, Ok)
    written = result.value
    assert written.rel_path == "notes/2026-03-01-2026.03.md"
    assert written.title == "Web platform 2026.03"
    assert written.commits == 3
    assert repo.seen == {"limit": 50, "rev_range": "v2026.02..HEAD"}

    text = written.abs_path.read_text(encoding="utf-8")
    assert text.startswith("# Web platform 2026.03\n")
    assert "- Active phase: canary" in text
    assert "| Canary | in_progress | 5% | - |" in text
    assert "2 segments, average coverage 60%." in text
    assert "1 of 2 items complete." in text
    assert "- [x] CI signed off" in text
    assert "- [ ] Docs published (pending)" in text
    assert "| API latency | production | passing | 80% | - |" in text
    assert "Latest `ci` run passed at 2026-03-01T08:00:00.000Z (1200 ms)." in text
    assert "### Features\n- **rollout**: add EU segment (`aaaaaaaa`)" in text
    assert "### Fixes\n- clamp coverage (`bbbbbbbb`)" in text
    assert "### Other changes\n- update readme (`cccccccc`)" in text

    index = json.loads((tmp_path / "notes" / "index.json").read_text(encoding="utf-8"))
    assert index == [
        {
            "file": "2026-03-01-2026.03.md",
            "title": "Web platform 2026.03",
            "releaseId": "2026.03-web",
            "version": "2026.03",
            "generatedAt": "2026-03-01T09:00:00.000Z",
            "commits": 3,
        }
    ]


def test_git_failure_is_a_warning(tmp_path: Path, service: ReleaseService) -> None:
    console = MockConsole()
    result = generate_release_notes(
        service, NOTES, CI, root=tmp_path, console=console, repo=FakeRepo(fail=True)  # type: ignore[arg-type]
    )
    assert isinstance(result, Ok)
    assert result.value.commits == 0
    assert console.find("git log failed: fatal: bad revision")
    text = result.value.abs_path.read_text(encoding="utf-8")
    assert "No active release is configured." in text
    assert "No commits recorded." in text
    assert result.value.rel_path == "notes/2026-03-01-snapshot.md"


def test_falls_back_to_ci_report(tmp_path: Path, service: ReleaseService) -> None:
    report = PipelineReport(
        generated_at="2026-03-01T07:00:00.000Z",
        status="failed",
        tasks=(TaskResult(name="build", title="Build", status="failed", exit_code=1, duration_ms=42),),
    )
    assert isinstance(write_ci_report(tmp_path / CI.report_path, report), Ok)

    result = generate_release_notes(service, NOTES, CI, root=tmp_path, console=MockConsole())
    assert isinstance(result, Ok)
    text = result.value.abs_path.read_text(encoding="utf-8")
    assert "CI report from 2026-03-01T07:00:00.000Z: failed." in text
    assert "- Build: failed (42 ms)" in text


def test_notes_do_not_mutate_state(
    tmp_path: Path, service: ReleaseService, release_payload: dict[str, object], state_path: Path
) -> None:
    assert isinstance(service.upsert_active_release(release_payload), Ok)
    before = state_path.read_text(encoding="utf-8")
    result = generate_release_notes(service, NOTES, CI, root=tmp_path, console=MockConsole())
    assert isinstance(result, Ok)
    assert state_path.read_text(encoding="utf-8") == before


def test_index_is_deduplicated_and_capped(tmp_path: Path) -> None:
    index_path = tmp_path / "index.json"
    for name in ("a.md", "b.md", "c.md", "b.md", "d.md"):
        result = update_notes_index(index_path, {"file": name}, limit=3)
        assert isinstance(result, Ok)

    entries = json.loads(index_path.read_text(encoding="utf-8"))
    assert [e["file"] for e in entries] == ["d.md", "b.md", "c.md"]


def test_corrupt_index_starts_fresh(tmp_path: Path) -> None:
    index_path = tmp_path / "index.json"
    index_path.write_text("{broken", encoding="utf-8")
    result = update_notes_index(index_path, {"file": "a.md"}, limit=20)
    assert isinstance(result, Ok)
    assert result.value == [{"file": "a.md"}]


def test_file_name_and_render_without_release() -> None:
    snapshot = RolloutSnapshot()
    assert notes_file_name(snapshot, "2026-03-01T09:00:00.000Z") == "2026-03-01-snapshot.md"
    text = render_release_notes(NotesInput(generated_at="2026-03-01T09:00:00.000Z", snapshot=snapshot))
    assert text.startswith("# Release snapshot\n\nGenerated: 2026-03-01T09:00:00.000Z\n")
    assert text.endswith("No commits recorded.\n")


def test_recent_activity_lists_release_events(
    tmp_path: Path,
    service: ReleaseService,
    release_payload: dict[str, object],
    clock: Clock,
) -> None:
    assert isinstance(service.upsert_active_release(release_payload), Ok)
    service.mark_release_phase_status("canary", "complete", actor="alice")
    clock.advance()
    service.mark_checklist_item_status("docs", "blocked", summary="Waiting on review")
    clock.advance()
    service.record_monitor_sample("api", status="warning")

    result = generate_release_notes(service, NOTES, CI, root=tmp_path, console=MockConsole())
    assert isinstance(result, Ok)
    text = result.value.abs_path.read_text(encoding="utf-8")
    assert (
        "## Recent activity\n"
        "- 2026-03-01T09:00:02.000Z monitor_sample `api` warning by MonitorCollector\n"
        "- 2026-03-01T09:00:01.000Z checklist_status `docs` blocked: Waiting on review\n"
        "- 2026-03-01T09:00:00.000Z phase_status `canary` complete by alice\n"
    ) in text

    short = NotesConfig(dir="notes", event_limit=1)
    result = generate_release_notes(service, short, CI, root=tmp_path, console=MockConsole())
    assert isinstance(result, Ok)
    text = result.value.abs_path.read_text(encoding="utf-8")
    assert "`api` warning" in text
    assert "`canary` complete" not in text
