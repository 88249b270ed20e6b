from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import typer

from rollout.core.config import DEFAULT_CONFIG_FILE, Config, load_config
from rollout.core.errors import ErrorCode
from rollout.core.result import Err
from rollout.output.console import ConsoleProtocol, RichConsole
from rollout.services.release.service import ReleaseService
from rollout.services.release.store import ReleaseStateStore

CONFIG_PATH_ENV = "ROLLOUT_CONFIG"


@dataclass(frozen=True, slots=True)
class CLIContext:
    root: Path
    config: Config
    console: ConsoleProtocol
    service: ReleaseService


def build_context() -> CLIContext:
    root = Path.cwd()

    explicit = os.environ.get(CONFIG_PATH_ENV)
    config_path = Path(explicit) if explicit else root / DEFAULT_CONFIG_FILE

    config = Config()
    if config_path.exists():
        config_result = load_config(config_path)
        if isinstance(config_result, Err):
            typer.echo(f"error: {config_result.error.message}", err=True)
            raise typer.Exit(code=int(ErrorCode.ENV_ERROR))
        config = config_result.value
    elif explicit:
        typer.echo(f"error: config file not found: {config_path}", err=True)
        raise typer.Exit(code=int(ErrorCode.ENV_ERROR))

    store = ReleaseStateStore(configured_path=config.state.path)
    return CLIContext(
        root=root,
        config=config,
        console=RichConsole(),
        service=ReleaseService(store),
    )
