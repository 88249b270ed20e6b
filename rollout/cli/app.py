from __future__ import annotations

import os
from pathlib import Path

import typer

from rollout import __version__
from rollout.cli.commands.ci_cmd import ci_app
from rollout.cli.commands.notes_cmd import notes_app
from rollout.cli.commands.release_cmd import release_app
from rollout.cli.context import CONFIG_PATH_ENV
from rollout.core.logging import configure_logging


app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    invoke_without_command=True,
    rich_markup_mode="rich",
)


# Sub-apps
app.add_typer(release_app, name="release", help="Inspect and update the active release.")
app.add_typer(ci_app, name="ci", help="Run the CI pipeline against the release state.")
app.add_typer(notes_app, name="notes", help="Generate release notes.")


@app.callback()
def _main(  # pyright: ignore[reportUnusedFunction]
    version: bool = typer.Option(False, "--version", help="Show version and exit."),
    config: Path | None = typer.Option(
        None,
        "--config",
        help="Path to rollout.toml (defaults to ./rollout.toml)",
    ),
    log_level: str = typer.Option("WARNING", "--log-level", help="DEBUG/INFO/WARNING/ERROR"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit logs as JSON lines"),
) -> None:
    if version:
        typer.echo(__version__)
        raise typer.Exit(code=0)

    configure_logging(log_level=log_level, json_output=json_logs)

    if config is not None:
        os.environ[CONFIG_PATH_ENV] = str(config.expanduser())


def main() -> None:
    app()
