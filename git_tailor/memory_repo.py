"""
A deterministic in-memory repository.

InMemoryRepository implements RepositoryCapability without git so the
planner and executor can be tested quickly and exhaustively. Files are
lists of text lines, trees map paths to files, and both trees and
commits are content-addressed, so replaying the same operations always
yields the same ids.

Cherry-picks use a line-based 3-way merge. Two changes conflict when
they overlap or touch in the base file, unless they are identical,
which matches how git treats adjacent edits.
"""

from __future__ import annotations

import difflib
import hashlib
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .diff_parser import apply_hunks_to_lines, parse_unified_diff, select_hunks
from .domain import Commit, CommitDiff, ConflictReport, HunkRef, PickResult
from .errors import GitError, RefUpdateError
from .repository import RepositoryCapability

LOG = logging.getLogger(__name__)

Tree = Dict[str, Tuple[str, ...]]

DEFAULT_AUTHOR = "Test Author"
DEFAULT_EMAIL = "author@example.com"
_CLOCK_START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _digest(*parts: str) -> str:
    sha = hashlib.sha1()
    for part in parts:
        sha.update(part.encode("utf-8"))
        sha.update(b"\x00")
    return sha.hexdigest()


def _changes(base: Sequence[str], other: Sequence[str]) -> List[Tuple[int, int, Tuple[str, ...]]]:
    matcher = difflib.SequenceMatcher(None, base, other, autojunk=False)
    return [
        (i1, i2, tuple(other[j1:j2]))
        for tag, i1, i2, j1, j2 in matcher.get_opcodes()
        if tag != "equal"
    ]


def merge_lines(
    base: Sequence[str],
    ours: Sequence[str],
    theirs: Sequence[str],
) -> Optional[List[str]]:
    """
    3-way merge of line lists. Returns None on conflict.
    """

    ours_changes = _changes(base, ours)
    theirs_changes = _changes(base, theirs)

    combined = list(ours_changes)
    for change in theirs_changes:
        if change in ours_changes:
            continue
        start, end, _ = change
        for other_start, other_end, _ in ours_changes:
            if start <= other_end and other_start <= end:
                return None
        combined.append(change)

    merged: List[str] = []
    cursor = 0
    for start, end, replacement in sorted(combined, key=lambda c: (c[0], c[1])):
        merged.extend(base[cursor:start])
        merged.extend(replacement)
        cursor = end
    merged.extend(base[cursor:])
    return merged


class InMemoryRepository(RepositoryCapability):
    """
    Repository capability backed by plain dictionaries.

    `branch` names the branch HEAD points at. Use `commit_files` to build
    history in tests.
    """

    def __init__(self, branch: str = "main", context_lines: int = 0) -> None:
        self.branch = branch
        self.context_lines = context_lines
        self.refs: Dict[str, str] = {}
        self._trees: Dict[str, Tree] = {}
        self._commits: Dict[str, Commit] = {}
        self.empty_tree = self._store_tree({})

    # Object storage

    def _store_tree(self, tree: Mapping[str, Sequence[str]]) -> str:
        frozen = {path: tuple(lines) for path, lines in tree.items()}
        tree_id = _digest(*(f"{path}\n" + "\n".join(frozen[path]) for path in sorted(frozen)))
        self._trees.setdefault(tree_id, frozen)
        return tree_id

    def tree(self, tree_id: str) -> Tree:
        try:
            return dict(self._trees[tree_id])
        except KeyError:
            raise GitError(f"unknown tree {tree_id}") from None

    def files(self, rev: str) -> Dict[str, str]:
        """Return the files of a commit as path -> text."""

        tree = self.tree(self.read_commit(rev).tree_id or self.empty_tree)
        return {path: "".join(f"{line}\n" for line in lines) for path, lines in tree.items()}

    def _tick(self) -> datetime:
        return _CLOCK_START + timedelta(minutes=len(self._commits))

    # Building history

    def commit_files(
        self,
        changes: Mapping[str, Optional[str]],
        message: str,
        branch: Optional[str] = None,
    ) -> str:
        """
        Commit `changes` (path -> text, None deletes) on top of `branch`
        and advance it. The first commit of a branch is a root commit.
        """

        branch = branch or self.branch
        parent = self.refs.get(branch)
        tree = self.tree(self.read_commit(parent).tree_id or self.empty_tree) if parent else {}
        for path, text in changes.items():
            if text is None:
                tree.pop(path, None)
            else:
                tree[path] = tuple(text.splitlines())

        if not message.endswith("\n"):
            message += "\n"
        commit_id = self.create_commit(
            self._store_tree(tree),
            [parent] if parent else [],
            message,
        )
        self.refs[branch] = commit_id
        return commit_id

    # Reading

    def resolve(self, rev: str) -> str:
        if rev == "HEAD":
            rev = self.branch
        if rev.startswith("refs/heads/"):
            rev = rev[len("refs/heads/") :]
        if rev in self.refs:
            return self.refs[rev]
        if rev in self._commits:
            return rev
        matches = [oid for oid in self._commits if oid.startswith(rev)] if len(rev) >= 4 else []
        if len(matches) == 1:
            return matches[0]
        raise GitError(f"unknown revision {rev!r}")

    def head_oid(self) -> str:
        return self.resolve("HEAD")

    def current_branch(self) -> Optional[str]:
        return self.branch

    def dirty_paths(self) -> List[str]:
        return []

    def _ancestors(self, commit_id: str) -> List[str]:
        order: List[str] = []
        seen = set()
        queue = [commit_id]
        while queue:
            oid = queue.pop(0)
            if oid in seen:
                continue
            seen.add(oid)
            order.append(oid)
            queue.extend(self._commits[oid].parent_ids)
        return order

    def merge_base(self, a: str, b: str) -> str:
        ancestors_a = set(self._ancestors(self.resolve(a)))
        for oid in self._ancestors(self.resolve(b)):
            if oid in ancestors_a:
                return oid
        raise GitError(f"{a} and {b} have no common ancestor")

    def list_commits(self, from_: str, to: str) -> List[Commit]:
        excluded = set(self._ancestors(self.resolve(to)))
        commits: List[Commit] = []
        oid: Optional[str] = self.resolve(from_)
        while oid is not None and oid not in excluded:
            commit = self._commits[oid]
            commits.append(commit)
            oid = commit.parent_ids[0] if commit.parent_ids else None
        commits.reverse()
        return commits

    def read_commit(self, commit_id: str) -> Commit:
        return self._commits[self.resolve(commit_id)]

    def commit_diff(self, commit_id: str) -> CommitDiff:
        commit = self.read_commit(commit_id)
        old = self.tree(self._commits[commit.parent_ids[0]].tree_id) if commit.parent_ids else {}
        new = self.tree(commit.tree_id or self.empty_tree)
        raw = self._render_diff(old, new)
        return CommitDiff(commit=commit, files=parse_unified_diff(raw))

    def _render_diff(self, old: Tree, new: Tree) -> str:
        output: List[str] = []
        for path in sorted(set(old) | set(new)):
            before, after = old.get(path), new.get(path)
            if before == after:
                continue
            output.append(f"diff --git a/{path} b/{path}")
            if before is None:
                output.append("new file mode 100644")
            elif after is None:
                output.append("deleted file mode 100644")
            body = list(
                difflib.unified_diff(
                    list(before or ()),
                    list(after or ()),
                    fromfile="/dev/null" if before is None else f"a/{path}",
                    tofile="/dev/null" if after is None else f"b/{path}",
                    n=self.context_lines,
                    lineterm="",
                )
            )
            output.extend(body)
        return "\n".join(output) + "\n" if output else ""

    # Writing

    def create_commit(
        self,
        tree: str,
        parents: Sequence[str],
        message: str,
        author: Optional[Commit] = None,
    ) -> str:
        if tree not in self._trees:
            raise GitError(f"unknown tree {tree}")
        for parent in parents:
            if parent not in self._commits:
                raise GitError(f"unknown parent commit {parent}")

        name = author.author if author is not None else DEFAULT_AUTHOR
        email = author.author_email if author is not None else DEFAULT_EMAIL
        author_date = author.author_date if author is not None else self._tick()

        commit_id = _digest(tree, *parents, message, name, email, author_date.isoformat())
        if commit_id not in self._commits:
            self._commits[commit_id] = Commit(
                id=commit_id,
                summary=message.split("\n", 1)[0],
                full_message=message,
                author=name,
                author_email=email,
                author_date=author_date,
                commit_date=author.commit_date if author is not None else author_date,
                parent_ids=tuple(parents),
                tree_id=tree,
            )
        return commit_id

    def _merge_trees(self, base: Tree, ours: Tree, theirs: Tree) -> Tuple[Optional[str], ConflictReport]:
        merged: Dict[str, Tuple[str, ...]] = {}
        conflicts: List[str] = []
        sides: Dict[str, Tuple[str, ...]] = {}

        for path in sorted(set(base) | set(ours) | set(theirs)):
            b, o, t = base.get(path), ours.get(path), theirs.get(path)
            if o == t or b == t:
                result = o
            elif b == o:
                result = t
            elif b is not None and o is not None and t is not None:
                lines = merge_lines(b, o, t)
                if lines is None:
                    conflicts.append(path)
                    sides[path] = ("onto", "commit")
                    continue
                result = tuple(lines)
            else:
                conflicts.append(path)
                sides[path] = ("onto", "commit")
                continue
            if result is not None:
                merged[path] = result

        report = ConflictReport(paths=tuple(conflicts), sides=sides)
        if conflicts:
            return None, report
        return self._store_tree(merged), report

    def cherry_pick(self, commit_id: str, onto: str) -> PickResult:
        commit = self.read_commit(commit_id)
        if not commit.parent_ids:
            raise GitError(f"cannot cherry-pick root commit {commit.short_id}")
        parent = commit.parent_ids[0]
        if parent == onto:
            return PickResult(commit_id=commit.id)

        tree, report = self._merge_trees(
            base=self.tree(self._commits[parent].tree_id or self.empty_tree),
            ours=self.tree(self.read_commit(onto).tree_id or self.empty_tree),
            theirs=self.tree(commit.tree_id or self.empty_tree),
        )
        if tree is None:
            LOG.debug("Cherry-pick of %s onto %s conflicts in %s", commit.short_id, onto, report.paths)
            return PickResult(
                conflict=ConflictReport(
                    paths=report.paths,
                    sides=report.sides,
                    message=f"could not apply {commit.short_id} {commit.summary}",
                )
            )
        return PickResult(commit_id=self.create_commit(tree, [onto], commit.full_message, author=commit))

    def apply_hunks(
        self,
        commit_id: str,
        keep: Sequence[HunkRef],
        applied: Sequence[HunkRef],
        onto: str,
        message: str,
    ) -> PickResult:
        diff = self.commit_diff(commit_id)
        commit = diff.commit
        if not commit.parent_ids:
            raise GitError(f"cannot split root commit {commit.short_id}")
        select_hunks(diff.files, keep, applied)

        parent_tree = self.tree(self._commits[commit.parent_ids[0]].tree_id or self.empty_tree)
        before = self._with_hunks(parent_tree, diff, set(applied))
        after = self._with_hunks(parent_tree, diff, set(applied) | set(keep))

        tree, report = self._merge_trees(
            base=before,
            ours=self.tree(self.read_commit(onto).tree_id or self.empty_tree),
            theirs=after,
        )
        if tree is None:
            return PickResult(conflict=report)
        return PickResult(commit_id=self.create_commit(tree, [onto], message, author=commit))

    @staticmethod
    def _with_hunks(tree: Tree, diff: CommitDiff, refs: set) -> Tree:
        result = dict(tree)
        for file in diff.files:
            chosen = [h for i, h in enumerate(file.hunks) if HunkRef(file.path, i) in refs]
            if not chosen:
                continue
            lines = apply_hunks_to_lines(list(tree.get(file.path, ())), chosen)
            if file.change_type == "delete" and len(chosen) == len(file.hunks):
                result.pop(file.path, None)
            else:
                result[file.path] = tuple(lines)
        return result

    def update_ref(self, name: str, target: str, expected_old: Optional[str] = None) -> None:
        if name.startswith("refs/heads/"):
            name = name[len("refs/heads/") :]
        if target not in self._commits:
            raise RefUpdateError(f"cannot move {name} to unknown commit {target}")
        current = self.refs.get(name)
        if expected_old is not None and current != expected_old:
            raise RefUpdateError(
                f"{name} points at {current or 'nothing'}, expected {expected_old}"
            )
        self.refs[name] = target
        LOG.debug("Moved %s to %s", name, target)
