"""
Span extraction for the fragmap.

Every hunk of every commit becomes one FileSpan. By default a span uses
the hunk's post-image range (or the pre-image range for a pure
deletion). With propagation enabled, spans are instead carried forward
through every later commit that touches the same file, so that all
spans are expressed in the coordinates of the last version of the file
and can be compared directly.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from ..domain import CommitDiff, FileSpan, Hunk


def span_for_hunk(
    path: str,
    hunk: Hunk,
    commit_index: int = 0,
    file_index: int = 0,
    hunk_index: int = 0,
) -> FileSpan:
    """
    Return the span a single hunk covers.

    A pure deletion has no post-image lines, so its span is taken from
    the pre-image range instead.
    """

    if hunk.is_pure_deletion:
        start, count = hunk.old_start, hunk.old_count
    else:
        start, count = hunk.new_start, hunk.new_count
    return FileSpan(
        path=path,
        start_line=start,
        end_line=start + count - 1,
        commit_index=commit_index,
        file_index=file_index,
        hunk_index=hunk_index,
    )


def extract_spans(diff: CommitDiff, commit_index: int = 0) -> List[FileSpan]:
    """
    Return one span per hunk of a single commit, in diff order.
    """

    spans: List[FileSpan] = []
    for file_index, file in enumerate(diff.files):
        for hunk_index, hunk in enumerate(file.hunks):
            spans.append(
                span_for_hunk(file.path, hunk, commit_index, file_index, hunk_index)
            )
    return spans


@dataclass(frozen=True)
class _OldRange:
    """
    A later hunk's pre-image range in half-open form, plus its delta.

    Pure insertions have an empty range located before line old_start + 1.
    """

    start: int
    end: int
    delta: int

    @classmethod
    def from_hunk(cls, hunk: Hunk) -> "_OldRange":
        if hunk.old_count == 0:
            point = hunk.old_start + 1
            return cls(point, point, hunk.new_count)
        return cls(hunk.old_start, hunk.old_start + hunk.old_count, hunk.line_delta)


def _split_around(start: int, end: int, ranges: Sequence[_OldRange]) -> List[Tuple[int, int]]:
    # Drop the parts of [start, end) that a later hunk rewrote, and cut
    # the span at insertion points so inserted lines are not absorbed.
    pieces = [(start, end)]
    for old in ranges:
        next_pieces: List[Tuple[int, int]] = []
        for s, e in pieces:
            if old.start == old.end:
                if s < old.start < e:
                    next_pieces.extend([(s, old.start), (old.start, e)])
                else:
                    next_pieces.append((s, e))
            elif e <= old.start or s >= old.end:
                next_pieces.append((s, e))
            else:
                if s < old.start:
                    next_pieces.append((s, old.start))
                if e > old.end:
                    next_pieces.append((old.end, e))
        pieces = next_pieces
    return [(s, e) for s, e in pieces if e > s]


def _map_start(line: int, ranges: Sequence[_OldRange]) -> int:
    return line + sum(old.delta for old in ranges if old.end <= line)


def _map_end(line: int, ranges: Sequence[_OldRange]) -> int:
    return line + sum(
        old.delta for old in ranges if old.end < line or (old.end == line and old.start < old.end)
    )


def propagate_span(start: int, end: int, later: Sequence[Sequence[Hunk]]) -> List[Tuple[int, int]]:
    """
    Carry the half-open range [start, end) through later commits' hunks.

    Returns zero or more half-open ranges in the coordinates of the file
    after the last of those commits.
    """

    pieces = [(start, end)]
    for hunks in later:
        ranges = sorted((_OldRange.from_hunk(h) for h in hunks), key=lambda r: (r.start, r.end))
        moved: List[Tuple[int, int]] = []
        for s, e in pieces:
            for part_start, part_end in _split_around(s, e, ranges):
                new_start = _map_start(part_start, ranges)
                new_end = _map_end(part_end, ranges)
                if new_end > new_start:
                    moved.append((new_start, new_end))
        pieces = moved
    return pieces


def extract_spans_propagated(diffs: Sequence[CommitDiff]) -> List[FileSpan]:
    """
    Return spans for all commits expressed in final-version coordinates.

    Files are followed by their post-image path. Pure deletions and
    deleted files contribute no span, since nothing of them survives in
    the final version.
    """

    by_path: Dict[str, List[Tuple[int, int, Sequence[Hunk]]]] = {}
    for commit_index, diff in enumerate(diffs):
        for file_index, file in enumerate(diff.files):
            if file.new_path is None or not file.hunks:
                continue
            by_path.setdefault(file.new_path, []).append((commit_index, file_index, file.hunks))

    spans: List[FileSpan] = []
    for path, touches in by_path.items():
        for position, (commit_index, file_index, hunks) in enumerate(touches):
            later = [entry[2] for entry in touches[position + 1 :]]
            for hunk_index, hunk in enumerate(hunks):
                if hunk.is_pure_deletion:
                    continue
                for start, end in propagate_span(hunk.new_start, hunk.new_start + hunk.new_count, later):
                    spans.append(
                        FileSpan(
                            path=path,
                            start_line=start,
                            end_line=end - 1,
                            commit_index=commit_index,
                            file_index=file_index,
                            hunk_index=hunk_index,
                        )
                    )

    spans.sort(key=lambda s: (s.commit_index, s.file_index, s.hunk_index, s.start_line))
    return spans
