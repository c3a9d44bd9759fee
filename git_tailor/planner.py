"""
Rebase planning for git-tailor.

The planner turns a requested transformation (reorder, squash, split)
and the current commit sequence into a RebasePlan: an ordered list of
elementary tree operations. Planning is pure. It never reads or writes a
repository, so the same request always yields the same plan and a plan
can be previewed, validated and discarded freely.

A freshly built plan never moves a branch. Only `confirm` appends the
final UpdateRef step, once the user has agreed to the rewrite.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, Hashable, List, Optional, Sequence, Tuple

from .analysis.clustering import cluster
from .analysis.relations import predict_squash, relationship
from .domain import (
    CherryPick,
    Commit,
    CommitDiff,
    DropLines,
    FragMap,
    HunkRef,
    PlanStep,
    RebasePlan,
    RelationshipKind,
    Reword,
    SplitStrategy,
    UpdateRef,
)
from .errors import EmptySplit, InvalidOrder, PlanValidationError
from .preflight import validate_split_support

LOG = logging.getLogger(__name__)


def plan_reorder(
    commits: Sequence[Commit],
    new_order: Sequence[str],
    base: Optional[str] = None,
) -> RebasePlan:
    """
    Plan replaying `commits` (oldest first) in `new_order`.

    Every commit gets a CherryPick step, including commits whose relative
    position does not change, so execution stays uniform.
    """

    if not commits:
        raise InvalidOrder("there are no commits to reorder")
    ids = [c.id for c in commits]
    if sorted(new_order) != sorted(ids) or len(set(new_order)) != len(new_order):
        raise InvalidOrder("new order must be a permutation of the commits being reordered")

    start = base or _reference_point(commits)
    steps = _replay(new_order, start)

    LOG.debug("Planned reorder of %d commits onto %s", len(steps), start)
    return RebasePlan(base=start, steps=tuple(steps), description="reorder")


def plan_squash(source: str, target: str, commits: Sequence[Commit]) -> RebasePlan:
    """
    Plan folding commit `source` into the earlier commit `target`.

    The commits up to and including the target are replayed, the source
    change-set is folded into the target with a combined message, and
    every other commit after the target is replayed on top in its
    original order.
    """

    by_id = {c.id: c for c in commits}
    if source not in by_id or target not in by_id:
        missing = source if source not in by_id else target
        raise InvalidOrder(f"commit {missing[:8]} is not in the commit range")

    ids = [c.id for c in commits]
    source_index = ids.index(source)
    target_index = ids.index(target)
    if source_index <= target_index:
        raise InvalidOrder(
            f"cannot squash {source[:8]} into {target[:8]}: "
            "the squashed commit must come after the commit it is folded into"
        )

    start = _reference_point(commits)
    steps: List[PlanStep] = _replay(ids[: target_index + 1], start)
    steps.append(CherryPick(commit=source, fold=True))
    steps.append(Reword(new_message=squash_message(by_id[target], by_id[source])))
    remaining = [cid for cid in ids[target_index + 1 :] if cid != source]
    steps.extend(CherryPick(commit=cid) for cid in remaining)

    LOG.debug("Planned squash of %s into %s (%d steps)", source[:8], target[:8], len(steps))
    return RebasePlan(
        base=start,
        steps=tuple(steps),
        description=f"squash {source[:8]} into {target[:8]}",
    )


def plan_split(
    commit: str,
    strategy: SplitStrategy,
    diff: CommitDiff,
    commits: Sequence[Commit] = (),
    fragmap: Optional[FragMap] = None,
) -> RebasePlan:
    """
    Plan splitting `commit` into one commit per group of hunks.

    Groups are formed per file, per hunk or per fragmap cluster. Each
    piece's subject is tagged "(k/N)". When `commits` is given, every
    commit after the split commit is replayed on top of the last piece.
    """

    if diff.commit.id != commit:
        raise PlanValidationError(
            f"diff belongs to {diff.commit.id[:8]}, not to {commit[:8]}"
        )
    validate_split_support(diff)

    groups = group_hunks(diff, strategy, fragmap)
    if not groups:
        raise EmptySplit(
            f"splitting {commit[:8]} {strategy.value} would produce no commits"
        )

    total = len(groups)
    steps: List[PlanStep] = []
    applied: Tuple[HunkRef, ...] = ()
    start = diff.commit.parent_ids[0]

    for number, keep in enumerate(groups, start=1):
        steps.append(
            DropLines(
                commit=commit,
                keep=tuple(keep),
                applied=applied,
                message=numbered_message(diff.commit.full_message, number, total),
                onto=start if number == 1 else None,
                expected_tree=diff.commit.tree_id if number == total else None,
            )
        )
        applied = applied + tuple(keep)

    if commits:
        ids = [c.id for c in commits]
        if commit not in ids:
            raise InvalidOrder(f"commit {commit[:8]} is not in the commit range")
        steps.extend(CherryPick(commit=cid) for cid in ids[ids.index(commit) + 1 :])

    LOG.debug("Planned split of %s into %d commits (%s)", commit[:8], total, strategy.value)
    return RebasePlan(
        base=start,
        steps=tuple(steps),
        description=f"split {commit[:8]} {strategy.value}",
    )


def group_hunks(
    diff: CommitDiff,
    strategy: SplitStrategy,
    fragmap: Optional[FragMap] = None,
) -> List[List[HunkRef]]:
    """
    Partition a commit's hunks into split pieces.

    Groups are emitted in the order their first hunk appears in the diff
    and hunks keep diff order within a group.
    """

    column_of: Dict[Tuple[int, int], int] = {}
    if strategy is SplitStrategy.PER_CLUSTER:
        column_of = _hunk_columns(diff, fragmap)

    groups: Dict[Hashable, List[HunkRef]] = {}
    for file_index, file in enumerate(diff.files):
        for hunk_index in range(len(file.hunks)):
            if strategy is SplitStrategy.PER_FILE:
                key: Hashable = ("file", file_index)
            elif strategy is SplitStrategy.PER_HUNK:
                key = ("hunk", file_index, hunk_index)
            else:
                col = column_of.get((file_index, hunk_index))
                key = ("cluster", col) if col is not None else ("hunk", file_index, hunk_index)
            groups.setdefault(key, []).append(HunkRef(file.path, hunk_index))

    return list(groups.values())


def _hunk_columns(diff: CommitDiff, fragmap: Optional[FragMap]) -> Dict[Tuple[int, int], int]:
    if fragmap is None or diff.commit.id not in fragmap.commit_ids:
        fragmap = cluster([diff])
    row = fragmap.row_of(diff.commit.id)

    columns: Dict[Tuple[int, int], int] = {}
    for col, span_cluster in enumerate(fragmap.clusters):
        for span in span_cluster.spans:
            if span.commit_index == row:
                columns.setdefault((span.file_index, span.hunk_index), col)
    return columns


def confirm(plan: RebasePlan, branch: str, expected_old: Optional[str] = None) -> RebasePlan:
    """
    Return a copy of `plan` that moves `branch` to the rewritten tip.
    """

    if plan.update_ref is not None:
        raise PlanValidationError("plan already ends with a ref update")
    return replace(
        plan,
        steps=plan.steps + (UpdateRef(name=branch, target=None, expected_old=expected_old),),
    )


def validate_plan(plan: RebasePlan) -> None:
    """
    Validate structural invariants of a plan.

    Invariants:
      - the plan produces at least one commit;
      - the first step is a pick or split piece applied onto an explicit
        commit, never a fold or a reword;
      - an UpdateRef step, if present, is the single last step.
    """

    if not plan.steps or isinstance(plan.steps[0], UpdateRef):
        raise PlanValidationError("plan contains no commit-producing steps")

    first = plan.steps[0]
    if isinstance(first, Reword) or (isinstance(first, CherryPick) and first.fold):
        raise PlanValidationError("plan cannot start by rewriting a previous result")
    if isinstance(first, (CherryPick, DropLines)) and first.onto is None:
        raise PlanValidationError("the first step must name the commit it applies onto")

    for index, step in enumerate(plan.steps[:-1]):
        if isinstance(step, UpdateRef):
            raise PlanValidationError(
                f"ref update at step {index} must be the last step of the plan"
            )


def predict_conflicts(plan: RebasePlan, fragmap: FragMap) -> List[str]:
    """
    Return human-readable warnings for rewrites predicted to conflict.

    Only commits that appear in `fragmap` are considered. The warnings
    are advisory: the executor is what detects real conflicts.
    """

    rows = {cid: row for row, cid in enumerate(fragmap.commit_ids)}
    warnings: List[str] = []

    picked: List[str] = []
    for index, step in enumerate(plan.steps):
        if not isinstance(step, CherryPick) or step.commit not in rows:
            continue
        if step.fold:
            target = _fold_target(plan.steps, index)
            if target in rows:
                kind = predict_squash(fragmap, rows[step.commit], rows[target])
                if kind is RelationshipKind.CONFLICTING:
                    warnings.append(
                        f"folding {step.commit[:8]} into {target[:8]} is predicted to conflict"
                    )
            continue
        picked.append(step.commit)

    for position, first in enumerate(picked):
        for second in picked[position + 1 :]:
            if rows[first] < rows[second]:
                continue
            kind = relationship(fragmap, rows[first], rows[second])
            if kind is not RelationshipKind.UNRELATED:
                warnings.append(
                    f"moving {first[:8]} before {second[:8]} reorders commits touching "
                    f"the same code (predicted {kind.value})"
                )

    return warnings


def _fold_target(steps: Sequence[PlanStep], fold_index: int) -> Optional[str]:
    for step in reversed(steps[:fold_index]):
        if isinstance(step, CherryPick) and not step.fold:
            return step.commit
    return None


def _replay(commit_ids: Sequence[str], start: str) -> List[PlanStep]:
    return [
        CherryPick(commit=cid, onto=start if index == 0 else None)
        for index, cid in enumerate(commit_ids)
    ]


def _reference_point(commits: Sequence[Commit]) -> str:
    first = commits[0]
    if not first.parent_ids:
        raise PlanValidationError(
            f"commit {first.short_id} has no parent to replay the history onto"
        )
    return first.parent_ids[0]


def squash_message(target: Commit, source: Commit) -> str:
    """Combine two messages: target first, a blank line, then the source."""

    return f"{target.full_message.rstrip()}\n\n{source.full_message.rstrip()}\n"


def numbered_message(message: str, number: int, total: int) -> str:
    """Tag the subject line of `message` with a "(k/N)" suffix."""

    subject, _, body = message.partition("\n")
    subject = f"{subject.rstrip()} ({number}/{total})"
    if body.strip():
        return f"{subject}\n{body.rstrip()}\n"
    return f"{subject}\n"
