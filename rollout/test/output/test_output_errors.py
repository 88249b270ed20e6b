from __future__ import annotations

import pytest

from rollout.core.errors import ErrorCode
from rollout.output.console import MockConsole
from rollout.output.errors import print_release_error, release_error_exit_code
from rollout.services.release.errors import ReleaseError, ReleaseErrorKind


@pytest.mark.parametrize(
    ("kind", "code"),
    [
        ("not_found", ErrorCode.USER_ERROR),
        ("invalid_input", ErrorCode.USER_ERROR),
        ("io_error", ErrorCode.IO_ERROR),
        ("invalid_state", ErrorCode.IO_ERROR),
        ("git_failed", ErrorCode.ENV_ERROR),
    ],
)
def test_exit_codes(kind: ReleaseErrorKind, code: ErrorCode) -> None:
    assert release_error_exit_code(ReleaseError(kind=kind, message="x")) == int(code)


def test_print_not_found_adds_show_hint() -> None:
    console = MockConsole()
    print_release_error(ReleaseError(kind="not_found", message="Unknown release phase: x"), console)
    assert console.messages[0] == "error: Unknown release phase: x"
    assert console.find("rollout release show")


def test_print_invalid_state_with_hint() -> None:
    console = MockConsole()
    print_release_error(
        ReleaseError(kind="invalid_state", message="bad JSON", hint="/tmp/state.json"), console
    )
    assert console.messages == [
        "error: release state is unreadable: bad JSON",
        "hint: /tmp/state.json",
    ]


def test_pretty() -> None:
    assert ReleaseError(kind="io_error", message="disk full").pretty() == "disk full"
    assert (
        ReleaseError(kind="io_error", message="disk full", hint="/x").pretty()
        == "disk full (hint: /x)"
    )
