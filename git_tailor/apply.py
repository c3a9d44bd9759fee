"""
Execution of a git-tailor rebase plan against a repository.

The executor walks a plan step by step through a RepositoryCapability.
Every intermediate commit is a new, unreferenced object. The named
branch is moved only by the trailing UpdateRef step, and only after
every other step succeeded, so a branch is either fully rewritten or
left exactly where it was.

Outcomes:
  - Applied: all steps succeeded (and the ref moved, if requested);
  - Conflict: a cherry-pick hit overlapping changes; the partially
    rewritten line is reported but no ref is touched;
  - Aborted: an infrastructure failure or a cancellation; no ref is
    touched and the same plan can simply be executed again.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional

from .domain import (
    Aborted,
    Applied,
    CherryPick,
    Conflict,
    DropLines,
    MutationOutcome,
    PickResult,
    RebasePlan,
    Reword,
    UpdateRef,
)
from .errors import GitError, RefUpdateError
from .planner import validate_plan
from .repository import RepositoryCapability

LOG = logging.getLogger(__name__)

CancelCheck = Callable[[], bool]


class _Run:
    """
    Mutable state of one plan execution.

    tip is the last commit produced; rewritten maps each original commit
    id to the commit that now carries its change-set.
    """

    def __init__(self, base: str) -> None:
        self.tip = base
        self.rewritten: Dict[str, str] = {}

    def produced(self, original: str, new_id: str) -> None:
        self.tip = new_id
        self.rewritten[original] = new_id

    def replaced_tip(self, new_id: str) -> None:
        # Folds and rewords replace the current tip; keep the table
        # pointing at live commits.
        old_tip = self.tip
        for old, new in list(self.rewritten.items()):
            if new == old_tip:
                self.rewritten[old] = new_id
        self.tip = new_id


def execute(
    plan: RebasePlan,
    capability: RepositoryCapability,
    should_cancel: Optional[CancelCheck] = None,
) -> MutationOutcome:
    """
    Execute `plan` and return its outcome.

    `should_cancel` is consulted between steps only; a step that has
    started always runs to completion first.
    """

    validate_plan(plan)
    run = _Run(plan.base)
    ref_step = plan.update_ref
    steps = plan.steps[:-1] if ref_step is not None else plan.steps

    LOG.info("Executing plan %r with %d steps", plan.description or "rewrite", len(plan.steps))

    for index, step in enumerate(steps):
        if index and should_cancel is not None and should_cancel():
            LOG.warning("Plan cancelled before step %d; no ref was updated", index)
            return Aborted(reason=f"cancelled before step {index}", failed_step=index)

        try:
            result = _run_step(step, run, capability)
        except (GitError, RefUpdateError, OSError) as exc:
            LOG.warning("Step %d failed: %s; no ref was updated", index, exc)
            return Aborted(reason=str(exc), failed_step=index)

        if result is not None and result.conflict is not None:
            LOG.warning(
                "Step %d conflicted in %s; partial result left at %s",
                index,
                ", ".join(result.conflict.paths) or "unknown paths",
                run.tip,
            )
            return Conflict(
                failed_step=index,
                conflicting_paths=result.conflict.paths,
                partial_new_tip=run.tip,
                report=result.conflict,
            )

        if isinstance(step, DropLines) and step.expected_tree is not None:
            produced_tree = capability.read_commit(run.tip).tree_id
            if produced_tree != step.expected_tree:
                LOG.warning(
                    "Split of %s produced tree %s, expected %s",
                    step.commit[:8],
                    produced_tree,
                    step.expected_tree,
                )
                return Aborted(
                    reason=(
                        f"split pieces of {step.commit[:8]} do not reproduce its tree; "
                        "this indicates a bug in patch generation"
                    ),
                    failed_step=index,
                )

    ref_updated = False
    if ref_step is not None:
        if should_cancel is not None and should_cancel():
            LOG.warning("Plan cancelled before the ref update; no ref was updated")
            return Aborted(reason="cancelled before the ref update", failed_step=len(steps))
        target = ref_step.target or run.tip
        try:
            capability.update_ref(ref_step.name, target, ref_step.expected_old)
        except (GitError, RefUpdateError, OSError) as exc:
            LOG.warning("Could not move %s to %s: %s", ref_step.name, target, exc)
            return Aborted(reason=str(exc), failed_step=len(steps))
        LOG.info("Moved %s to %s", ref_step.name, target)
        ref_updated = True

    return Applied(new_branch_tip=run.tip, rewritten=dict(run.rewritten), ref_updated=ref_updated)


def _run_step(step, run: _Run, capability: RepositoryCapability) -> Optional[PickResult]:
    if isinstance(step, CherryPick):
        onto = step.onto or run.tip
        LOG.info("Picking %s onto %s%s", step.commit[:8], onto[:8], " (fold)" if step.fold else "")
        result = capability.cherry_pick(step.commit, onto)
        if result.conflict is not None:
            return result
        new_id = _new_commit(result, step.commit)
        if step.fold:
            folded = _fold(capability, new_id, run.tip)
            run.replaced_tip(folded)
            run.rewritten[step.commit] = folded
        else:
            run.produced(step.commit, new_id)
        return result

    if isinstance(step, DropLines):
        onto = step.onto or run.tip
        LOG.info(
            "Creating split piece of %s with %d hunks onto %s",
            step.commit[:8],
            len(step.keep),
            onto[:8],
        )
        result = capability.apply_hunks(step.commit, step.keep, step.applied, onto, step.message)
        if result.conflict is None:
            run.produced(step.commit, _new_commit(result, step.commit))
        return result

    if isinstance(step, Reword):
        current = capability.read_commit(run.tip)
        LOG.info("Rewording %s", run.tip[:8])
        new_id = capability.create_commit(
            current.tree_id or "",
            current.parent_ids,
            step.new_message,
            author=current,
        )
        run.replaced_tip(new_id)
        return None

    if isinstance(step, UpdateRef):
        # validate_plan only allows a trailing UpdateRef, which execute
        # handles after all other steps.
        raise GitError("ref updates cannot run in the middle of a plan")

    raise GitError(f"unknown plan step {step!r}")


def _new_commit(result: PickResult, commit: str) -> str:
    if result.commit_id is None:
        raise GitError(f"rewriting {commit[:8]} produced neither a commit nor a conflict")
    return result.commit_id


def _fold(capability: RepositoryCapability, picked: str, into: str) -> str:
    """
    Replace commit `into` by one with the tree of `picked`, which was
    cherry-picked directly on top of it.
    """

    target = capability.read_commit(into)
    picked_commit = capability.read_commit(picked)
    return capability.create_commit(
        picked_commit.tree_id or "",
        target.parent_ids,
        target.full_message,
        author=target,
    )
