"""Exit codes for CLI commands.

Every command maps its failure to one of these codes so CI jobs calling
`rollout` can tell a bad invocation from a broken state file or a red
pipeline.
"""

from enum import IntEnum

__all__ = ["ErrorCode"]


class ErrorCode(IntEnum):
    """Process exit codes.

    - 0: Success
    - 1: User error (unknown phase/checklist key, malformed payload)
    - 2: Environment error (missing tool, unreadable config)
    - 3: Build error (a CI pipeline task failed)
    - 5: I/O error (state file unreadable or unwritable)
    """

    OK = 0
    USER_ERROR = 1
    ENV_ERROR = 2
    BUILD_ERROR = 3
    IO_ERROR = 5

    def __str__(self) -> str:
        return self.name.lower().replace("_", " ")

    @property
    def is_success(self) -> bool:
        return self == ErrorCode.OK
