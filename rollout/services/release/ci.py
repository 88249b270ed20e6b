"""CI orchestration: run the configured stages and report them to the store.

For every task a monitor `ci-<name>` is sampled (environment `ci`, metrics
`durationMs` and `exitCode`). After all tasks ran, the CI report artifact is
written, the sign-off checklist item is marked `complete` or `blocked`, and
the run is appended to the pipeline history. Any store error aborts the run.
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import structlog

from rollout.core.config import CiConfig, CiTaskConfig
from rollout.core.result import Err, Ok, Result
from rollout.core.structured import as_obj_list, as_str_dict, get_int, get_str
from rollout.output.console import ConsoleProtocol, Style
from rollout.platform.files import write_json
from rollout.platform.process import ProcessError
from rollout.platform.process import run as run_process
from rollout.services.release.errors import ReleaseError
from rollout.services.release.service import PIPELINE_ACTOR, ReleaseService

logger = structlog.get_logger(__name__)

TaskOutcome = Literal["passed", "failed"]


Runner = Callable[..., Result[str, ProcessError]]
Timer = Callable[[], float]


@dataclass(frozen=True, slots=True)
class TaskResult:
    name: str
    title: str
    status: TaskOutcome
    exit_code: int
    duration_ms: int

    @property
    def monitor_id(self) -> str:
        return f"ci-{self.name}"

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "title": self.title,
            "status": self.status,
            "exitCode": self.exit_code,
            "durationMs": self.duration_ms,
        }


@dataclass(frozen=True, slots=True)
class PipelineReport:
    generated_at: str
    status: TaskOutcome
    tasks: tuple[TaskResult, ...]

    @property
    def passed(self) -> bool:
        return self.status == "passed"

    @property
    def failed_tasks(self) -> tuple[TaskResult, ...]:
        return tuple(t for t in self.tasks if t.status == "failed")

    def to_dict(self) -> dict[str, object]:
        return {
            "generatedAt": self.generated_at,
            "status": self.status,
            "tasks": [t.to_dict() for t in self.tasks],
        }


def run_task(
    task: CiTaskConfig,
    *,
    cwd: Path,
    runner: Runner = run_process,
    timer: Timer = time.monotonic,
) -> TaskResult:
    started = timer()
    result = runner(list(task.command), cwd, timeout=task.timeout_seconds)
    elapsed_ms = max(int(round((timer() - started) * 1000)), 0)

    exit_code = 0 if isinstance(result, Ok) else result.error.returncode
    return TaskResult(
        name=task.name,
        title=task.title,
        status="passed" if exit_code == 0 else "failed",
        exit_code=exit_code,
        duration_ms=elapsed_ms,
    )


def write_ci_report(path: Path, report: PipelineReport) -> Result[None, ReleaseError]:
    try:
        write_json(path, report.to_dict())
    except OSError as e:
        return Err(
            ReleaseError(
                kind="io_error",
                message=f"failed to write CI report: {e}",
                hint=str(path),
            )
        )
    return Ok(None)


def read_ci_report(path: Path) -> Result[PipelineReport | None, ReleaseError]:
    """Read a CI report artifact; Ok(None) when none was written yet."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return Ok(None)
    except OSError as e:
        return Err(
            ReleaseError(kind="io_error", message=f"failed to read CI report: {e}", hint=str(path))
        )

    try:
        obj: object = json.loads(text)
    except json.JSONDecodeError as e:
        return Err(
            ReleaseError(
                kind="invalid_input",
                message=f"invalid JSON in CI report: {e}",
                hint=str(path),
            )
        )

    data = as_str_dict(obj)
    if data is None:
        return Err(
            ReleaseError(
                kind="invalid_input",
                message="CI report root must be a JSON object",
                hint=str(path),
            )
        )

    tasks: list[TaskResult] = []
    for item in as_obj_list(data.get("tasks")) or []:
        d = as_str_dict(item)
        if d is None:
            continue
        name = get_str(d, "name")
        if name is None:
            continue
        exit_code = get_int(d, "exitCode") or 0
        tasks.append(
            TaskResult(
                name=name,
                title=get_str(d, "title") or name,
                status="passed" if get_str(d, "status") == "passed" else "failed",
                exit_code=exit_code,
                duration_ms=get_int(d, "durationMs") or 0,
            )
        )

    return Ok(
        PipelineReport(
            generated_at=get_str(data, "generatedAt") or "",
            status="passed" if get_str(data, "status") == "passed" else "failed",
            tasks=tuple(tasks),
        )
    )


def run_pipeline(
    service: ReleaseService,
    ci: CiConfig,
    *,
    cwd: Path,
    console: ConsoleProtocol,
    tasks: Sequence[CiTaskConfig] | None = None,
    runner: Runner = run_process,
    timer: Timer = time.monotonic,
) -> Result[PipelineReport, ReleaseError]:
    """Run CI tasks in order and report each one to the release store.

    Task failures do not stop the pipeline; every task runs so the report and
    monitors describe the whole build. Store failures do stop it. A run with no
    tasks is reported as failed.
    """
    log = logger.bind(component="ci_orchestrator", pipeline=ci.pipeline)
    selected = tuple(tasks) if tasks is not None else ci.tasks
    store = service.store

    started_at = store.now()
    pipeline_started = timer()

    results: list[TaskResult] = []
    for task in selected:
        console.print(f"{task.title}: {' '.join(task.command)}", Style.DIM)
        result = run_task(task, cwd=cwd, runner=runner, timer=timer)
        results.append(result)

        if result.status == "passed":
            console.success(f"{task.title} ({result.duration_ms} ms)")
        else:
            console.error(f"{task.title} failed (exit {result.exit_code})")
        log.info(
            "ci_task_finished",
            task=task.name,
            status=result.status,
            exit_code=result.exit_code,
            duration_ms=result.duration_ms,
        )

        sampled = service.record_monitor_sample(
            result.monitor_id,
            name=task.title,
            status="passing" if result.status == "passed" else "failing",
            environment="ci",
            metrics={"durationMs": result.duration_ms, "exitCode": result.exit_code},
            description=f"{task.title} stage of the {ci.pipeline} pipeline",
        )
        if isinstance(sampled, Err):
            return sampled

    passed = bool(results) and all(r.status == "passed" for r in results)
    status: TaskOutcome = "passed" if passed else "failed"
    report = PipelineReport(generated_at=store.now(), status=status, tasks=tuple(results))

    written = write_ci_report(cwd / ci.report_path, report)
    if isinstance(written, Err):
        return written

    if not results:
        summary = "No CI tasks ran."
    elif report.passed:
        summary = f"All {len(results)} CI tasks passed."
    else:
        summary = "Failed tasks: " + ", ".join(t.name for t in report.failed_tasks)

    signed = service.mark_checklist_item_status(
        ci.checklist_item,
        "complete" if report.passed else "blocked",
        actor=PIPELINE_ACTOR,
        summary=summary,
    )
    if isinstance(signed, Err):
        return signed

    recorded = service.record_pipeline_run_result(
        ci.pipeline,
        status=status,
        started_at=started_at,
        completed_at=store.now(),
        duration=int(round((timer() - pipeline_started) * 1000)),
        tasks=[r.to_dict() for r in results],
        metadata={"triggeredBy": PIPELINE_ACTOR},
    )
    if isinstance(recorded, Err):
        return recorded

    log.info("ci_pipeline_finished", status=status, tasks=len(results))
    return Ok(report)
