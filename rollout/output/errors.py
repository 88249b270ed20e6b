"""Error presentation utilities.

Centralized error formatting and exit code mapping for consistent UX.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rollout.core.errors import ErrorCode
from rollout.output.console import Style
from rollout.services.release.errors import ReleaseError

if TYPE_CHECKING:
    from rollout.output.console import ConsoleProtocol

__all__ = ["print_release_error", "release_error_exit_code"]


def print_release_error(error: ReleaseError, console: ConsoleProtocol) -> None:
    match error.kind:
        case "not_found":
            console.error(error.message)
            console.print("hint: check the keys with `rollout release show`", Style.DIM)
        case "invalid_state":
            console.error(f"release state is unreadable: {error.message}")
        case _:
            console.error(error.message)
    if error.hint:
        console.print(f"hint: {error.hint}", Style.DIM)


def release_error_exit_code(error: ReleaseError) -> int:
    match error.kind:
        case "not_found" | "invalid_input":
            return int(ErrorCode.USER_ERROR)
        case "io_error" | "invalid_state":
            return int(ErrorCode.IO_ERROR)
        case "git_failed":
            return int(ErrorCode.ENV_ERROR)
    return int(ErrorCode.USER_ERROR)
