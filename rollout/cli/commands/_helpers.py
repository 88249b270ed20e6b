"""Shared helpers for CLI commands."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, NoReturn

import typer

from rollout.core.errors import ErrorCode
from rollout.core.result import Err, Result
from rollout.output.errors import print_release_error, release_error_exit_code
from rollout.services.release.errors import ReleaseError

if TYPE_CHECKING:
    from rollout.cli.context import CLIContext


def unwrap_or_exit[T](result: Result[T, ReleaseError], ctx: CLIContext) -> T:
    """Return the Ok value, or print the error and exit with its mapped code.

    Replaces the common pattern:
        match result:
            case Err(e):
                print_release_error(e, ctx.console)
                raise typer.Exit(code=release_error_exit_code(e))
            case Ok(value):
                ...
    """
    if isinstance(result, Err):
        print_release_error(result.error, ctx.console)
        raise typer.Exit(code=release_error_exit_code(result.error))
    return result.value


def exit_with_code(code: int) -> NoReturn:
    """Exit with given code. Explicit helper for clarity."""
    raise typer.Exit(code=code)


def usage_error(message: str) -> NoReturn:
    typer.echo(f"error: {message}", err=True)
    raise typer.Exit(code=int(ErrorCode.USER_ERROR))


def parse_metric_value(raw: str) -> object:
    """Numbers stay numbers (`42`, `0.5`); anything else is kept as text."""
    text = raw.strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return text
    return number if math.isfinite(number) else text


def parse_key_values(items: list[str], *, flag: str) -> dict[str, object]:
    out: dict[str, object] = {}
    for item in items:
        if "=" not in item:
            usage_error(f"invalid {flag} (expected name=value): {item}")
        k, v = item.split("=", 1)
        k = k.strip()
        if not k or not v.strip():
            usage_error(f"invalid {flag} (expected name=value): {item}")
        out[k] = parse_metric_value(v)
    return out
