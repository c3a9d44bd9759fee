"""
Abstract repository capability consumed by the git-tailor engine.

The analysis engine, the planner and the executor never talk to git
directly. They work through this interface so that the git CLI adapter
(git_adapter.GitRepository) can be swapped for the deterministic
in-memory fake (memory_repo.InMemoryRepository) in tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from .domain import Commit, CommitDiff, HunkRef, PickResult


class RepositoryCapability(ABC):
    """
    Abstract interface for reading history and writing new objects.

    Content conflicts are returned as PickResult values. Infrastructure
    failures (unreadable objects, failed git invocations) raise GitError,
    and a ref that cannot be moved raises RefUpdateError.
    """

    @abstractmethod
    def merge_base(self, a: str, b: str) -> str:
        """Return the best common ancestor of two commit-ishes."""

    @abstractmethod
    def list_commits(self, from_: str, to: str) -> List[Commit]:
        """
        Return the commits reachable from `from_` but not from `to`,
        oldest first. `to` itself is excluded.
        """

    @abstractmethod
    def read_commit(self, commit_id: str) -> Commit:
        """Return metadata for a single commit."""

    @abstractmethod
    def commit_diff(self, commit_id: str) -> CommitDiff:
        """
        Return the diff of a commit against its first parent, or against
        the empty tree for a root commit.
        """

    @abstractmethod
    def cherry_pick(self, commit_id: str, onto: str) -> PickResult:
        """
        Replay the change-set of `commit_id` onto `onto`, producing a new
        commit with the original message and authorship whose only parent
        is `onto`. Nothing but new objects is written.
        """

    @abstractmethod
    def apply_hunks(
        self,
        commit_id: str,
        keep: Sequence[HunkRef],
        applied: Sequence[HunkRef],
        onto: str,
        message: str,
    ) -> PickResult:
        """
        Create a commit on top of `onto` containing only the `keep` hunks
        of `commit_id`. `onto` is expected to already contain the
        `applied` hunks of the same commit.
        """

    @abstractmethod
    def create_commit(
        self,
        tree: str,
        parents: Sequence[str],
        message: str,
        author: Optional[Commit] = None,
    ) -> str:
        """
        Write a commit object and return its id. When `author` is given
        its identity and author date are reused.
        """

    @abstractmethod
    def update_ref(self, name: str, target: str, expected_old: Optional[str] = None) -> None:
        """
        Point `name` at `target`. When `expected_old` is given the update
        only happens if the ref still points there.
        """

    def current_branch(self) -> Optional[str]:
        """Return the branch HEAD points at, or None when detached."""

        return None
