from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

ReleaseErrorKind = Literal[
    "not_found",
    "invalid_input",
    "io_error",
    "invalid_state",
    "git_failed",
]


@dataclass(frozen=True, slots=True)
class ReleaseError:
    kind: ReleaseErrorKind
    message: str
    hint: str | None = None

    def pretty(self) -> str:
        if self.hint:
            return f"{self.message} (hint: {self.hint})"
        return self.message


def not_found(message: str, *, hint: str | None = None) -> ReleaseError:
    return ReleaseError(kind="not_found", message=message, hint=hint)


def invalid_input(message: str, *, hint: str | None = None) -> ReleaseError:
    return ReleaseError(kind="invalid_input", message=message, hint=hint)
