"""
User-facing review of a git-tailor plan.

A plan is printed step by step together with any predicted conflicts,
and the user is asked whether the branch should be rewritten. Only a
confirmed plan carries the UpdateRef step that moves the branch.
"""

from __future__ import annotations

import logging
import sys
from typing import List, Mapping, Optional, Sequence, TextIO

from .domain import CherryPick, Commit, DropLines, RebasePlan, Reword, UpdateRef
from .planner import confirm

LOG = logging.getLogger(__name__)


def describe_step(step, commits: Mapping[str, Commit]) -> str:
    if isinstance(step, CherryPick):
        commit = commits.get(step.commit)
        summary = commit.summary if commit is not None else ""
        verb = "fold" if step.fold else "pick"
        return f"{verb} {step.commit[:8]} {summary}".rstrip()
    if isinstance(step, DropLines):
        subject = step.message.split("\n", 1)[0]
        return f"split {step.commit[:8]} -> {subject} ({len(step.keep)} hunks in {', '.join(step.files)})"
    if isinstance(step, Reword):
        subject = step.new_message.split("\n", 1)[0]
        return f"reword -> {subject}"
    if isinstance(step, UpdateRef):
        return f"move {step.name}"
    return repr(step)


def describe_plan(plan: RebasePlan, commits: Mapping[str, Commit]) -> List[str]:
    lines = [f"Plan: {plan.description or 'rewrite'} onto {plan.base[:8]}"]
    for index, step in enumerate(plan.steps, start=1):
        lines.append(f"  [{index}] {describe_step(step, commits)}")
    return lines


def review_plan(
    plan: RebasePlan,
    branch: str,
    expected_old: Optional[str],
    commits: Sequence[Commit],
    warnings: Sequence[str] = (),
    assume_yes: bool = False,
    out: TextIO = sys.stdout,
) -> Optional[RebasePlan]:
    """
    Present the plan and return it confirmed for `branch`, or None if the
    user declined.

    Without a terminal on stdin the plan is only confirmed when
    assume_yes is set.
    """

    by_id = {c.id: c for c in commits}
    for line in describe_plan(plan, by_id):
        print(line, file=out)
    for warning in warnings:
        print(f"warning: {warning}", file=out)

    if not assume_yes:
        if not sys.stdin.isatty():
            LOG.warning("Not rewriting %s: no terminal to confirm on; pass --yes", branch)
            return None
        try:
            answer = input(f"Rewrite {branch}? [y/N] ").strip().lower()
        except EOFError:
            return None
        if answer not in {"y", "yes"}:
            return None

    LOG.info("Plan confirmed for %s", branch)
    return confirm(plan, branch, expected_old)
