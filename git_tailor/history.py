"""
Loading the branch history git-tailor works on.

The history is every commit reachable from HEAD but not from the
reference point, which is the merge-base of HEAD with the reference
(typically the branch the feature branch will be merged into). The
reference point itself is never listed or rewritten.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .domain import Commit, CommitDiff
from .errors import GitTailorError
from .git_adapter import GitRepository
from .preflight import validate_history_support
from .repository import RepositoryCapability

LOG = logging.getLogger(__name__)

DEFAULT_REFERENCE = "@{upstream}"


@dataclass(frozen=True)
class History:
    """
    The commits between the reference point and the branch tip.

    commits and diffs are oldest first and index-aligned.
    """

    reference_point: str
    head: str
    branch: Optional[str]
    commits: Tuple[Commit, ...]
    diffs: Tuple[CommitDiff, ...]

    def find(self, rev: str) -> Commit:
        """Find a listed commit by full id or unique id prefix."""

        matches = [c for c in self.commits if c.id.startswith(rev)]
        if len(matches) != 1:
            detail = "is ambiguous" if matches else "is not between the reference point and HEAD"
            raise GitTailorError(f"commit {rev!r} {detail}")
        return matches[0]

    def diff_for(self, commit_id: str) -> CommitDiff:
        for diff in self.diffs:
            if diff.commit.id == commit_id:
                return diff
        raise KeyError(commit_id)


def load_history(
    repo: RepositoryCapability,
    reference: Optional[str] = None,
    head: str = "HEAD",
    check_support: bool = True,
) -> History:
    """
    Resolve the reference point and load the commits and diffs after it.

    With check_support the range is validated for rewriting: merges and
    root commits are rejected.
    """

    reference = reference or DEFAULT_REFERENCE
    reference_point = repo.merge_base(reference, head)
    commits = repo.list_commits(head, reference_point)
    if check_support:
        validate_history_support(commits)

    diffs = tuple(repo.commit_diff(c.id) for c in commits)
    tip = commits[-1].id if commits else reference_point
    branch = repo.current_branch() if head == "HEAD" else None

    LOG.info(
        "Loaded %d commits between %s and %s",
        len(commits),
        reference_point[:8],
        tip[:8],
    )
    return History(
        reference_point=reference_point,
        head=tip,
        branch=branch,
        commits=tuple(commits),
        diffs=diffs,
    )


def worktree_diffs(repo: GitRepository) -> List[CommitDiff]:
    """
    Return the staged and unstaged changes as synthetic rows, skipping
    whichever is empty.
    """

    rows = []
    for diff in (repo.staged_diff(), repo.unstaged_diff()):
        if diff.files:
            rows.append(diff)
    LOG.debug("Loaded %d working tree rows", len(rows))
    return rows
