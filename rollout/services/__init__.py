"""Application services for the rollout CLI.

Services implement the release-tracking logic, coordinating between the
domain layer (core/) and infrastructure (platform/, git/).
"""

from rollout.services.release import ReleaseService, ReleaseStateStore

__all__ = [
    "ReleaseService",
    "ReleaseStateStore",
]
