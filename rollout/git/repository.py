"""Git repository access for release notes.

Only read operations are needed: the notes generator lists the commits that
went into a release and groups them by conventional-commit type.

Usage:
    repo = Repository(Path("."))
    match repo.log(limit=50):
        case Ok(commits):
            for c in commits:
                print(c.short_sha, c.subject)
        case Err(e):
            print(f"git failed: {e.message}")
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from rollout.core.result import Err, Ok, Result
from rollout.platform.process import ProcessError
from rollout.platform.process import run as run_process

_GIT_TIMEOUT_SECONDS = 30.0

# Unit/record separators keep subjects containing '|' or tabs intact.
_FIELD_SEP = "\x1f"
_RECORD_SEP = "\x1e"

__all__ = ["GitCommit", "GitError", "Repository"]


@dataclass(frozen=True, slots=True)
class GitError:
    """Error from a git operation.

    Attributes:
        command: The git command that failed
        message: Error message
        returncode: Process return code
    """

    command: str
    message: str
    returncode: int = 1


@dataclass(frozen=True, slots=True)
class GitCommit:
    sha: str
    subject: str
    author: str
    date_utc: str | None

    @property
    def short_sha(self) -> str:
        return self.sha[:8]


class Repository:
    """Git repository rooted at `path`."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def exists(self) -> bool:
        """Check if this is a valid git repository (`.git` dir or worktree file)."""
        return (self.path / ".git").exists()

    def log(self, *, limit: int, rev_range: str | None = None) -> Result[list[GitCommit], GitError]:
        """List commits, newest first.

        Args:
            limit: Maximum number of commits.
            rev_range: Optional range such as `v1.2.0..HEAD`.

        Returns:
            Ok(list of GitCommit) on success, Err(GitError) on failure
        """
        fmt = _FIELD_SEP.join(("%H", "%s", "%an", "%cI")) + _RECORD_SEP
        args = ["log", f"--max-count={limit}", f"--pretty=format:{fmt}"]
        if rev_range:
            args.append(rev_range)

        result = self._run(args)
        match result:
            case Err(e):
                return Err(
                    GitError(
                        command="log",
                        message=e.stderr.strip() or "git log failed",
                        returncode=e.returncode,
                    )
                )
            case Ok(stdout):
                return Ok(parse_log_output(stdout))

    def _run(self, args: list[str]) -> Result[str, ProcessError]:
        return run_process(
            ["git", "-C", str(self.path), *args], cwd=self.path, timeout=_GIT_TIMEOUT_SECONDS
        )


def parse_log_output(output: str) -> list[GitCommit]:
    """Parse the record/field separated output of `Repository.log`."""
    commits: list[GitCommit] = []
    for record in output.split(_RECORD_SEP):
        record = record.strip("\r\n")
        if not record:
            continue
        parts = record.split(_FIELD_SEP)
        if len(parts) < 2:
            continue
        sha = parts[0].strip()
        if not sha:
            continue
        commits.append(
            GitCommit(
                sha=sha,
                subject=parts[1].strip(),
                author=parts[2].strip() if len(parts) > 2 else "",
                date_utc=(parts[3].strip() or None) if len(parts) > 3 else None,
            )
        )
    return commits
