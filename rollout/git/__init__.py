"""Git operations."""

from .repository import GitCommit, GitError, Repository

__all__ = ["GitCommit", "GitError", "Repository"]
