"""
Runtime compatibility checks for git-tailor workflows.

These checks run before a plan is built or executed so that requests the
engine cannot carry out faithfully fail fast with actionable errors,
instead of surfacing later as a half-finished rewrite.
"""

from __future__ import annotations

from typing import Iterable, List, Sequence

from .domain import Commit, CommitDiff, FileDiff
from .errors import UnsupportedOperationError


def validate_history_support(commits: Sequence[Commit]) -> None:
    """
    Reject commit ranges that cannot be replayed as a linear sequence.
    """

    merges = [c.short_id for c in commits if len(c.parent_ids) > 1]
    if merges:
        raise UnsupportedOperationError(
            "rewriting history that contains merge commits is not supported "
            f"(merge commits: {', '.join(merges)})"
        )

    roots = [c.short_id for c in commits if not c.parent_ids]
    if roots:
        raise UnsupportedOperationError(
            "rewriting root commits is not supported; choose a reference point "
            f"below {', '.join(roots)}"
        )


def validate_split_support(diff: CommitDiff) -> None:
    """
    Validate that a commit can be split hunk by hunk.

    Binary files, rename-only and mode-only changes have no hunks to
    distribute across the pieces, so splitting would silently lose them.
    """

    if not diff.commit.parent_ids:
        raise UnsupportedOperationError("splitting root commits is not supported")

    binary_paths = _binary_file_paths(diff)
    rename_only_paths = _rename_only_paths(diff)
    mode_only_paths = _mode_only_paths(diff)
    empty_file_paths = _empty_file_paths(diff)

    if not (binary_paths or rename_only_paths or mode_only_paths or empty_file_paths):
        return

    details: List[str] = []
    if binary_paths:
        details.append(f"binary files: {', '.join(binary_paths)}")
    if rename_only_paths:
        details.append(f"rename-only changes: {', '.join(rename_only_paths)}")
    if mode_only_paths:
        details.append(f"mode-only changes: {', '.join(mode_only_paths)}")
    if empty_file_paths:
        details.append(f"empty files: {', '.join(empty_file_paths)}")

    raise UnsupportedOperationError(
        f"commit {diff.commit.short_id} contains changes that cannot be split "
        f"({'; '.join(details)})"
    )


def check_dirty_overlap(touched_paths: Iterable[str], dirty_paths: Iterable[str]) -> None:
    """
    Refuse to rewrite history under local changes to the same files.

    Moving the checked-out branch would otherwise have to merge the local
    changes with rewritten content.
    """

    overlap = sorted(set(touched_paths) & set(dirty_paths))
    if overlap:
        raise UnsupportedOperationError(
            "local changes overlap with the commits being rewritten: "
            f"{', '.join(overlap)}; commit or stash them first"
        )


def touched_paths(diffs: Iterable[CommitDiff]) -> List[str]:
    paths = set()
    for diff in diffs:
        for file in diff.files:
            if file.old_path:
                paths.add(file.old_path)
            if file.new_path:
                paths.add(file.new_path)
    return sorted(paths)


def _display_path(file: FileDiff) -> str:
    if file.change_type == "rename":
        return f"{file.old_path} -> {file.new_path}"
    return file.path


def _binary_file_paths(diff: CommitDiff) -> List[str]:
    return [_display_path(file) for file in diff.files if file.is_binary]


def _rename_only_paths(diff: CommitDiff) -> List[str]:
    return [
        _display_path(file)
        for file in diff.files
        if file.change_type == "rename" and not file.hunks and not file.is_binary
    ]


def _mode_only_paths(diff: CommitDiff) -> List[str]:
    return [
        _display_path(file)
        for file in diff.files
        if file.change_type == "modify" and not file.is_binary and not file.hunks
    ]


def _empty_file_paths(diff: CommitDiff) -> List[str]:
    return [
        _display_path(file)
        for file in diff.files
        if file.change_type in ("add", "delete") and not file.is_binary and not file.hunks
    ]
