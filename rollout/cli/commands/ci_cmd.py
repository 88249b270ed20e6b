from __future__ import annotations

import typer

from rollout.cli.commands._helpers import exit_with_code, unwrap_or_exit, usage_error
from rollout.cli.context import build_context
from rollout.core.errors import ErrorCode
from rollout.services.release.ci import run_pipeline


ci_app = typer.Typer(add_completion=False, no_args_is_help=True)


@ci_app.command("run")
def run_cmd(
    task: list[str] = typer.Option([], "--task", help="Run only this task (repeatable)"),
) -> None:
    """Run the CI stages and report them to the release state."""
    ctx = build_context()

    tasks = ctx.config.ci.tasks
    if task:
        known = {t.name: t for t in tasks}
        unknown = [name for name in task if name not in known]
        if unknown:
            usage_error(f"unknown CI task(s): {', '.join(unknown)} (known: {', '.join(known)})")
        tasks = tuple(known[name] for name in task)

    ctx.console.header(f"Pipeline: {ctx.config.ci.pipeline}")
    report = unwrap_or_exit(
        run_pipeline(
            ctx.service,
            ctx.config.ci,
            cwd=ctx.root,
            console=ctx.console,
            tasks=tasks,
        ),
        ctx,
    )

    if not report.passed:
        failed = ", ".join(t.name for t in report.failed_tasks) or "no tasks ran"
        ctx.console.error(f"pipeline failed: {failed}")
        exit_with_code(int(ErrorCode.BUILD_ERROR))
    ctx.console.success(f"pipeline passed ({len(report.tasks)} tasks)")
