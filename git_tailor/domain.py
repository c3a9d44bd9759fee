"""
Core domain models for git-tailor.

These dataclasses describe commits, diffs, spans, clusters, rebase plans
and mutation outcomes. They intentionally avoid any direct git
dependency so they can be shared by the analysis engine, the planner,
the executor and every repository implementation.

All values are immutable snapshots: rewriting history never changes a
Commit in place, it produces new commits with new ids.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional, Tuple, Union

from .errors import InvalidSpan

EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


@dataclass(frozen=True)
class Commit:
    """
    Commit metadata as read from a repository.

    tree_id is optional because synthetic commits (staged or unstaged
    changes) have no tree of their own.
    """

    id: str
    summary: str
    full_message: str
    author: str
    author_email: str = ""
    author_date: datetime = EPOCH
    commit_date: datetime = EPOCH
    parent_ids: Tuple[str, ...] = ()
    tree_id: Optional[str] = None

    @property
    def short_id(self) -> str:
        return self.id[:8]


class LineKind(str, Enum):
    ADDED = "+"
    REMOVED = "-"
    CONTEXT = " "


@dataclass(frozen=True)
class DiffLine:
    """
    A single line within a diff hunk.

    Line numbers are optional and populated by the diff parser: Added
    lines carry new_lineno, Removed lines carry old_lineno and Context
    lines carry both. no_eol marks the last line of a file that lacks
    a trailing newline.
    """

    kind: LineKind
    content: str
    old_lineno: Optional[int] = None
    new_lineno: Optional[int] = None
    no_eol: bool = False


@dataclass(frozen=True)
class Hunk:
    """
    A contiguous block of changes in a single file.

    The ranges mirror the `@@ -old_start,old_count +new_start,new_count @@`
    header of unified diff output.
    """

    old_start: int
    old_count: int
    new_start: int
    new_count: int
    lines: Tuple[DiffLine, ...] = ()
    section: str = ""

    @property
    def old_range(self) -> Tuple[int, int]:
        return (self.old_start, self.old_count)

    @property
    def new_range(self) -> Tuple[int, int]:
        return (self.new_start, self.new_count)

    @property
    def is_pure_deletion(self) -> bool:
        return self.new_count == 0

    @property
    def line_delta(self) -> int:
        return self.new_count - self.old_count

    def header(self) -> str:
        text = f"@@ -{self.old_start},{self.old_count} +{self.new_start},{self.new_count} @@"
        if self.section:
            text = f"{text} {self.section}"
        return text


@dataclass(frozen=True)
class FileDiff:
    """
    All hunks associated with a single file in a commit.

    old_path is None when the file was added, new_path is None when the
    file was deleted.
    """

    old_path: Optional[str]
    new_path: Optional[str]
    hunks: Tuple[Hunk, ...] = ()
    is_binary: bool = False

    @property
    def path(self) -> str:
        return self.new_path or self.old_path or ""

    @property
    def change_type(self) -> str:
        if self.old_path is None:
            return "add"
        if self.new_path is None:
            return "delete"
        if self.old_path != self.new_path:
            return "rename"
        return "modify"


@dataclass(frozen=True)
class CommitDiff:
    """
    A commit together with every file it changed, relative to its first
    parent (or the empty tree for a root commit).
    """

    commit: Commit
    files: Tuple[FileDiff, ...] = ()

    def hunk_count(self) -> int:
        return sum(len(f.hunks) for f in self.files)


@dataclass(frozen=True)
class FileSpan:
    """
    A range of lines in one file touched by one hunk of one commit.

    start_line and end_line are 1-indexed and inclusive. The indices
    trace the span back to the hunk it came from.
    """

    path: str
    start_line: int
    end_line: int
    commit_index: int = 0
    file_index: int = 0
    hunk_index: int = 0

    def __post_init__(self) -> None:
        if self.start_line < 1 or self.end_line < self.start_line:
            raise InvalidSpan(
                f"invalid span {self.path}:{self.start_line}-{self.end_line}"
            )

    def touches(self, other: "FileSpan") -> bool:
        """Return True if the spans overlap or are adjacent in the same file."""

        return (
            self.path == other.path
            and self.start_line <= other.end_line + 1
            and other.start_line <= self.end_line + 1
        )


@dataclass(frozen=True)
class SpanCluster:
    """
    A maximal group of overlapping or adjacent spans from one file.

    The cluster owns no commits; commit_ids only references them, in
    commit (row) order.
    """

    path: str
    start_line: int
    end_line: int
    spans: Tuple[FileSpan, ...]
    commit_ids: Tuple[str, ...]


class TouchKind(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    NONE = "none"


@dataclass(frozen=True)
class FragMap:
    """
    The commit x cluster matrix.

    Rows are commits (oldest first), columns are span clusters, and
    touch[row][col] records how the commit touches the cluster. A cell
    is not TouchKind.NONE exactly when the commit contributed a span to
    the cluster. The diffs the map was built from are kept so that
    relationships can be classified from line content.
    """

    commits: Tuple[Commit, ...]
    clusters: Tuple[SpanCluster, ...]
    touch: Tuple[Tuple[TouchKind, ...], ...]
    diffs: Tuple[CommitDiff, ...] = field(default=(), compare=False, repr=False)

    @property
    def commit_ids(self) -> Tuple[str, ...]:
        return tuple(c.id for c in self.commits)

    def row_of(self, commit_id: str) -> int:
        for row, commit in enumerate(self.commits):
            if commit.id == commit_id:
                return row
        raise KeyError(commit_id)

    def touches(self, row: int, col: int) -> bool:
        return self.touch[row][col] is not TouchKind.NONE

    def columns_of(self, row: int) -> Tuple[int, ...]:
        return tuple(col for col in range(len(self.clusters)) if self.touches(row, col))

    def shared_columns(self, a: int, b: int) -> Tuple[int, ...]:
        if a == b:
            return ()
        return tuple(
            col
            for col in range(len(self.clusters))
            if self.touches(a, col) and self.touches(b, col)
        )

    def relates(self, a: int, b: int) -> bool:
        """Return True if both commits touch at least one common cluster."""

        return bool(self.shared_columns(a, b))


class RelationshipKind(str, Enum):
    """
    Predicted relationship between two commits sharing a cluster.

    The classification is a heuristic; only executing a cherry-pick
    tells whether a rewrite really conflicts.
    """

    SQUASHABLE = "squashable"
    CONFLICTING = "conflicting"
    UNRELATED = "unrelated"


class SplitStrategy(str, Enum):
    PER_FILE = "per-file"
    PER_HUNK = "per-hunk"
    PER_CLUSTER = "per-cluster"


@dataclass(frozen=True)
class HunkRef:
    """
    Identifies one hunk of a commit diff by file path and hunk index.
    """

    path: str
    hunk_index: int


@dataclass(frozen=True)
class CherryPick:
    """
    Replay `commit` onto `onto` (None means the previous step's result).

    When fold is True the picked change-set is merged into the commit
    produced by the previous step instead of becoming a new commit.
    """

    commit: str
    onto: Optional[str] = None
    fold: bool = False


@dataclass(frozen=True)
class Reword:
    new_message: str


@dataclass(frozen=True)
class DropLines:
    """
    Produce one piece of a split commit.

    Only the `keep` hunks of `commit` are applied, on top of a parent
    that already contains the `applied` hunks from earlier pieces.
    """

    commit: str
    keep: Tuple[HunkRef, ...]
    applied: Tuple[HunkRef, ...] = ()
    message: str = ""
    onto: Optional[str] = None
    expected_tree: Optional[str] = None

    @property
    def files(self) -> Tuple[str, ...]:
        seen: Dict[str, None] = {}
        for ref in self.keep:
            seen.setdefault(ref.path, None)
        return tuple(seen)


@dataclass(frozen=True)
class UpdateRef:
    """
    Move a named ref. target None means the last produced commit.
    """

    name: str
    target: Optional[str] = None
    expected_old: Optional[str] = None


PlanStep = Union[CherryPick, Reword, DropLines, UpdateRef]


@dataclass(frozen=True)
class RebasePlan:
    """
    An ordered, purely descriptive list of tree operations.

    A plan owns no repository handles and can be inspected, compared
    and executed any number of times.
    """

    base: str
    steps: Tuple[PlanStep, ...] = ()
    description: str = ""

    @property
    def update_ref(self) -> Optional[UpdateRef]:
        if self.steps and isinstance(self.steps[-1], UpdateRef):
            return self.steps[-1]
        return None

    def commits_produced(self) -> int:
        return sum(
            1
            for step in self.steps
            if isinstance(step, DropLines)
            or (isinstance(step, CherryPick) and not step.fold)
        )


@dataclass(frozen=True)
class ConflictReport:
    """
    Details of a failed cherry-pick or hunk application.

    sides maps each failing path to the side(s) that changed it:
    "onto" for the base being picked onto, "commit" for the commit
    being picked.
    """

    paths: Tuple[str, ...]
    sides: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    message: str = ""


@dataclass(frozen=True)
class PickResult:
    """
    Result of a cherry-pick style capability call: either a new commit
    id or a conflict report.
    """

    commit_id: Optional[str] = None
    conflict: Optional[ConflictReport] = None

    @property
    def ok(self) -> bool:
        return self.conflict is None and self.commit_id is not None


@dataclass(frozen=True)
class Applied:
    new_branch_tip: str
    rewritten: Dict[str, str] = field(default_factory=dict)
    ref_updated: bool = False


@dataclass(frozen=True)
class Conflict:
    failed_step: int
    conflicting_paths: Tuple[str, ...]
    partial_new_tip: Optional[str]
    report: Optional[ConflictReport] = None


@dataclass(frozen=True)
class Aborted:
    reason: str
    failed_step: Optional[int] = None


MutationOutcome = Union[Applied, Conflict, Aborted]
