"""
Command-line interface for git-tailor.

This module is responsible for argument parsing and for wiring the
history loader, the analysis engine, the planner and the executor
together. It prints plain text only.
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from typing import List, Optional

from .analysis import cluster, compact, relationship_table
from .apply import execute
from .config import Config
from .domain import Applied, Conflict, FragMap, RebasePlan, SplitStrategy, TouchKind
from .errors import GitTailorError, UnsupportedOperationError
from .git_adapter import GitRepository
from .history import History, load_history, worktree_diffs
from .logging_utils import configure_logging
from .planner import plan_reorder, plan_split, plan_squash, predict_conflicts
from .preflight import check_dirty_overlap, touched_paths
from .review import describe_plan, review_plan

LOG = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFLICT = 2
EXIT_INTERRUPTED = 130

_TOUCH_CHARS = {
    TouchKind.ADDED: "+",
    TouchKind.MODIFIED: "#",
    TouchKind.DELETED: "-",
    TouchKind.NONE: ".",
}


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="git-tailor",
        description=(
            "Inspect the commits of a feature branch, see which of them touch "
            "the same code, and reorder, squash or split them."
        ),
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (can be specified multiple times).",
    )
    parser.add_argument(
        "--reference",
        help=(
            "Commit-ish whose merge-base with HEAD is the reference point "
            "(default: $GIT_TAILOR_REFERENCE, then the upstream branch)."
        ),
    )
    parser.add_argument("--repo", dest="repo_path", help="Path to the repository (default: cwd).")
    parser.add_argument(
        "-U",
        "--context",
        dest="context_lines",
        type=int,
        default=0,
        help="Lines of diff context used for clustering and splitting (default: 0).",
    )

    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.required = True

    commands.add_parser("log", help="List the commits after the reference point.")

    fragmap = commands.add_parser("fragmap", help="Show which commits touch the same code.")
    fragmap.add_argument(
        "--propagate",
        action="store_true",
        help="Compare spans in the coordinates of the final file versions.",
    )
    fragmap.add_argument(
        "--full",
        action="store_true",
        help="Show every cluster instead of merging columns touched by the same commits.",
    )
    fragmap.add_argument(
        "--worktree",
        action="store_true",
        help="Add staged and unstaged changes as extra rows.",
    )

    reorder = commands.add_parser("reorder", help="Replay the commits in a new order.")
    reorder.add_argument("order", nargs="+", metavar="ID", help="Every commit, in the new order.")
    _add_mutation_flags(reorder)

    squash = commands.add_parser("squash", help="Fold a commit into an earlier one.")
    squash.add_argument("source", help="Commit to fold.")
    squash.add_argument("target", help="Earlier commit that absorbs it.")
    _add_mutation_flags(squash)

    split = commands.add_parser("split", help="Split a commit into smaller commits.")
    split.add_argument("commit", help="Commit to split.")
    split.add_argument(
        "--strategy",
        choices=[s.value for s in SplitStrategy],
        default=SplitStrategy.PER_FILE.value,
        help="How hunks are grouped into the new commits (default: per-file).",
    )
    _add_mutation_flags(split)

    return parser


def _add_mutation_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the plan without writing any commits.",
    )
    parser.add_argument(
        "-y",
        "--yes",
        dest="assume_yes",
        action="store_true",
        help="Rewrite the branch without asking for confirmation.",
    )


def format_fragmap(fragmap: FragMap) -> List[str]:
    """
    Render the fragmap as one text row per commit.

    '#' marks a modified cluster, '+' an added file, '-' a deleted file
    and '.' an untouched cluster.
    """

    lines = []
    for row, commit in enumerate(fragmap.commits):
        cells = "".join(_TOUCH_CHARS[kind] for kind in fragmap.touch[row])
        lines.append(f"{commit.id[:8]:<8} {cells} {commit.summary}".rstrip())
    return lines


def _cmd_log(config: Config, repo: GitRepository) -> int:
    history = load_history(repo, config.resolved_reference(), check_support=False)
    for commit in history.commits:
        print(
            f"{commit.short_id} {commit.author_date:%Y-%m-%d} "
            f"{commit.author:<20.20} {commit.summary}"
        )
    print(f"{history.reference_point[:8]} (reference point)")
    return EXIT_OK


def _cmd_fragmap(config: Config, repo: GitRepository) -> int:
    history = load_history(repo, config.resolved_reference(), check_support=False)
    diffs = list(history.diffs)
    if config.include_worktree:
        diffs.extend(worktree_diffs(repo))

    full = cluster(diffs, propagate=config.propagate)
    fragmap = full if config.full_fragmap else compact(full)

    for line in format_fragmap(fragmap):
        print(line)

    for (a, b), kind in sorted(relationship_table(full).items()):
        print(f"{fragmap.commits[a].short_id} ~ {fragmap.commits[b].short_id}: {kind.value}")
    return EXIT_OK


def _find(history: History, repo: GitRepository, rev: str):
    return history.find(repo.resolve(rev))


def _cmd_reorder(config: Config, repo: GitRepository, args: argparse.Namespace) -> int:
    history = load_history(repo, config.resolved_reference())
    order = [_find(history, repo, rev).id for rev in args.order]
    plan = plan_reorder(history.commits, order, base=history.reference_point)
    return _mutate(config, repo, history, plan)


def _cmd_squash(config: Config, repo: GitRepository, args: argparse.Namespace) -> int:
    history = load_history(repo, config.resolved_reference())
    source = _find(history, repo, args.source)
    target = _find(history, repo, args.target)
    plan = plan_squash(source.id, target.id, history.commits)
    return _mutate(config, repo, history, plan)


def _cmd_split(config: Config, repo: GitRepository, args: argparse.Namespace) -> int:
    history = load_history(repo, config.resolved_reference())
    commit = _find(history, repo, args.commit)
    plan = plan_split(
        commit.id,
        SplitStrategy(args.strategy),
        history.diff_for(commit.id),
        commits=history.commits,
        fragmap=cluster(history.diffs),
    )
    return _mutate(config, repo, history, plan)


class _Interrupts:
    """
    Turns Ctrl+C during plan execution into a cancellation request that
    the executor honours between steps.
    """

    def __init__(self) -> None:
        self.requested = False
        self._previous = None

    def __call__(self) -> bool:
        return self.requested

    def _handle(self, signum, frame) -> None:
        LOG.warning("Interrupt received; stopping after the current step")
        self.requested = True

    def __enter__(self) -> "_Interrupts":
        self._previous = signal.signal(signal.SIGINT, self._handle)
        return self

    def __exit__(self, *exc_info) -> None:
        signal.signal(signal.SIGINT, self._previous)


def _mutate(config: Config, repo: GitRepository, history: History, plan: RebasePlan) -> int:
    warnings = predict_conflicts(plan, cluster(history.diffs))
    by_id = {c.id: c for c in history.commits}

    if config.dry_run:
        for line in describe_plan(plan, by_id):
            print(line)
        for warning in warnings:
            print(f"warning: {warning}")
        return EXIT_OK

    if history.branch is None:
        raise UnsupportedOperationError("HEAD is detached; check out the branch to rewrite")
    check_dirty_overlap(touched_paths(history.diffs), repo.dirty_paths())

    confirmed = review_plan(
        plan,
        history.branch,
        history.head,
        history.commits,
        warnings=warnings,
        assume_yes=config.assume_yes,
    )
    if confirmed is None:
        print(f"Left {history.branch} unchanged.")
        return EXIT_ERROR

    with _Interrupts() as interrupts:
        outcome = execute(confirmed, repo, should_cancel=interrupts)

    if isinstance(outcome, Applied):
        print(f"Rewrote {history.branch}: {history.head[:8]} -> {outcome.new_branch_tip[:8]}")
        return EXIT_OK
    if isinstance(outcome, Conflict):
        print(
            f"git-tailor: conflict at step {outcome.failed_step + 1} in "
            f"{', '.join(outcome.conflicting_paths)}; {history.branch} was left unchanged",
            file=sys.stderr,
        )
        return EXIT_CONFLICT

    print(f"git-tailor: aborted: {outcome.reason}", file=sys.stderr)
    return EXIT_INTERRUPTED if interrupts.requested else EXIT_ERROR


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    config = Config(
        reference=args.reference,
        repo_path=args.repo_path,
        dry_run=getattr(args, "dry_run", False),
        assume_yes=getattr(args, "assume_yes", False),
        propagate=getattr(args, "propagate", False),
        full_fragmap=getattr(args, "full", False),
        include_worktree=getattr(args, "worktree", False),
        context_lines=args.context_lines,
        verbosity=args.verbose,
    )

    configure_logging(verbosity=config.verbosity)
    LOG.debug("Starting git-tailor with config: %s", config)

    repo = GitRepository(config.repo_path, context_lines=config.context_lines)
    try:
        if args.command == "log":
            return _cmd_log(config, repo)
        if args.command == "fragmap":
            return _cmd_fragmap(config, repo)
        if args.command == "reorder":
            return _cmd_reorder(config, repo, args)
        if args.command == "squash":
            return _cmd_squash(config, repo, args)
        return _cmd_split(config, repo, args)
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    except GitTailorError as exc:
        print(f"git-tailor: error: {exc}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":  # pragma: no cover - manual invocation
    raise SystemExit(main())
