"""Conventional-commit parsing for release notes."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from rollout.git.repository import GitCommit

_CONVENTIONAL = re.compile(
    r"^(?P<type>[A-Za-z]+)(?:\((?P<scope>[^)]*)\))?(?P<breaking>!)?:\s*(?P<subject>\S.*)$"
)

# Rendering order; several prefixes share a heading.
COMMIT_GROUPS: tuple[tuple[str, str], ...] = (
    ("feat", "Features"),
    ("fix", "Fixes"),
    ("perf", "Performance"),
    ("refactor", "Refactoring"),
    ("docs", "Documentation"),
    ("test", "Tests"),
    ("build", "Build & CI"),
    ("ci", "Build & CI"),
    ("chore", "Chores"),
)
OTHER_GROUP = "Other changes"


@dataclass(frozen=True, slots=True)
class ConventionalCommit:
    sha: str
    type: str | None
    scope: str | None
    subject: str
    breaking: bool = False

    @property
    def short_sha(self) -> str:
        return self.sha[:8]


def parse_commit(commit: GitCommit) -> ConventionalCommit:
    m = _CONVENTIONAL.match(commit.subject.strip())
    if m is None:
        return ConventionalCommit(sha=commit.sha, type=None, scope=None, subject=commit.subject)
    return ConventionalCommit(
        sha=commit.sha,
        type=m.group("type").lower(),
        scope=(m.group("scope") or "").strip() or None,
        subject=m.group("subject").strip(),
        breaking=m.group("breaking") is not None,
    )


def group_commits(commits: Iterable[GitCommit]) -> list[tuple[str, list[ConventionalCommit]]]:
    """Group commits under their heading, in COMMIT_GROUPS order, dropping empty groups.

    Commits keep their input order within a group.
    """
    headings = {prefix: heading for prefix, heading in COMMIT_GROUPS}
    grouped: dict[str, list[ConventionalCommit]] = {}
    for commit in commits:
        parsed = parse_commit(commit)
        heading = headings.get(parsed.type or "", OTHER_GROUP)
        grouped.setdefault(heading, []).append(parsed)

    order: list[str] = []
    for _, heading in COMMIT_GROUPS:
        if heading not in order:
            order.append(heading)
    order.append(OTHER_GROUP)

    return [(heading, grouped[heading]) for heading in order if heading in grouped]
