from __future__ import annotations

import typer

from rollout.cli.commands._helpers import unwrap_or_exit
from rollout.cli.context import build_context
from rollout.git.repository import Repository
from rollout.services.release.notes import generate_release_notes


notes_app = typer.Typer(add_completion=False, no_args_is_help=True)


@notes_app.command("generate")
def generate_cmd(
    rev_range: str | None = typer.Option(
        None, "--range", help="Commit range for the change list (e.g. v1.2.0..HEAD)"
    ),
    no_git: bool = typer.Option(False, "--no-git", help="Skip the commit list"),
) -> None:
    """Write release notes for the current rollout and update the notes index."""
    ctx = build_context()
    written = unwrap_or_exit(
        generate_release_notes(
            ctx.service,
            ctx.config.notes,
            ctx.config.ci,
            root=ctx.root,
            console=ctx.console,
            repo=None if no_git else Repository(ctx.root),
            rev_range=rev_range,
        ),
        ctx,
    )
    ctx.console.success(f"{written.title}: {written.rel_path} ({written.commits} commits)")
