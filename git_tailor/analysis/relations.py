"""
Relationship prediction between commits that share code regions.

Everything in this module is a prediction made from diff content alone.
Whether a rewrite really conflicts is only known once the executor has
run the corresponding cherry-pick; callers should present these results
as hints, never as guarantees.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from ..diff_parser import changed_lines
from ..domain import FragMap, RelationshipKind
from .spans import span_for_hunk

_LineKey = Tuple[str, int]


def _hunk_ranges(fragmap: FragMap, col: int) -> Dict[str, List[Tuple[int, int]]]:
    """
    Return, per path, the line ranges the column's hunks cover in their
    own diff coordinates.

    For a plain fragmap the ranges of one path join up into the cluster's
    range. Compacted columns hold several clusters and propagated spans
    are in final-version coordinates, so the ranges are rebuilt from the
    hunks instead of read from the cluster.
    """

    ranges: Dict[str, List[Tuple[int, int]]] = {}
    for span in fragmap.clusters[col].spans:
        file = fragmap.diffs[span.commit_index].files[span.file_index]
        native = span_for_hunk(file.path, file.hunks[span.hunk_index])
        ranges.setdefault(file.path, []).append((native.start_line, native.end_line))
    return ranges


def _changed_in_cluster(
    fragmap: FragMap,
    row: int,
    col: int,
    ranges: Dict[str, List[Tuple[int, int]]],
) -> Dict[_LineKey, Optional[str]]:
    """
    Collect the lines a commit changes inside one cluster, keyed by path
    and line index and restricted to the ranges shared in the cluster.
    """

    diff = fragmap.diffs[row]
    result: Dict[_LineKey, Optional[str]] = {}
    seen = set()
    for span in fragmap.clusters[col].spans:
        if span.commit_index != row:
            continue
        key = (span.file_index, span.hunk_index)
        if key in seen:
            continue
        seen.add(key)
        file = diff.files[span.file_index]
        covered = ranges.get(file.path, ())
        for index, text in changed_lines(file.hunks[span.hunk_index]).items():
            if any(start <= index <= end for start, end in covered):
                result[(file.path, index)] = text
    return result


def column_relationship(fragmap: FragMap, a: int, b: int, col: int) -> RelationshipKind:
    """
    Classify two commits within a single cluster.
    """

    if not (fragmap.touches(a, col) and fragmap.touches(b, col)) or a == b:
        return RelationshipKind.UNRELATED
    if not fragmap.diffs:
        # Without line content, sharing a region is all we know.
        return RelationshipKind.SQUASHABLE

    ranges = _hunk_ranges(fragmap, col)
    lines_a = _changed_in_cluster(fragmap, a, col, ranges)
    lines_b = _changed_in_cluster(fragmap, b, col, ranges)
    for key in lines_a.keys() & lines_b.keys():
        if lines_a[key] != lines_b[key]:
            return RelationshipKind.CONFLICTING
    return RelationshipKind.SQUASHABLE


def relationship(fragmap: FragMap, a: int, b: int) -> RelationshipKind:
    """
    Predict how two commits (row indices) relate.

    Unrelated when they share no cluster; Conflicting when in some
    shared cluster both change the same line index to different text;
    Squashable otherwise. The result does not depend on argument order.
    """

    low, high = min(a, b), max(a, b)
    shared = fragmap.shared_columns(low, high)
    if not shared:
        return RelationshipKind.UNRELATED
    for col in shared:
        if column_relationship(fragmap, low, high, col) is RelationshipKind.CONFLICTING:
            return RelationshipKind.CONFLICTING
    return RelationshipKind.SQUASHABLE


def relationship_table(fragmap: FragMap) -> Dict[Tuple[int, int], RelationshipKind]:
    """
    Return the predicted relationship of every related pair (low, high).
    """

    table: Dict[Tuple[int, int], RelationshipKind] = {}
    for a in range(len(fragmap.commits)):
        for b in range(a + 1, len(fragmap.commits)):
            kind = relationship(fragmap, a, b)
            if kind is not RelationshipKind.UNRELATED:
                table[(a, b)] = kind
    return table


def collides_between(fragmap: FragMap, earlier: int, later: int, col: int) -> bool:
    """
    Return True if a commit strictly between the two rows also touches
    the cluster, so moving `later` next to `earlier` would cross it.
    """

    return any(fragmap.touches(row, col) for row in range(earlier + 1, later))


def predict_squash(fragmap: FragMap, source: int, target: int) -> RelationshipKind:
    """
    Predict whether folding row `source` into the earlier row `target`
    replays cleanly.

    Folding moves the source change-set back to just after the target.
    That is predicted to conflict when the two commits conflict in a
    shared cluster, or when a commit in between touches a cluster the
    source also touches. Otherwise the fold is predicted Squashable,
    including for commits that share no cluster at all.
    """

    if target >= source:
        return RelationshipKind.UNRELATED
    if relationship(fragmap, source, target) is RelationshipKind.CONFLICTING:
        return RelationshipKind.CONFLICTING
    for col in fragmap.columns_of(source):
        if collides_between(fragmap, target, source, col):
            return RelationshipKind.CONFLICTING
    return RelationshipKind.SQUASHABLE


def squash_target(fragmap: FragMap, row: int) -> Optional[int]:
    """
    Find the single earlier commit `row` can be folded into, if any.

    Every cluster the commit touches must have been touched by the same
    earlier commit, with nothing in between touching that cluster, and
    the pair must not be predicted to conflict.
    """

    target: Optional[int] = None
    for col in fragmap.columns_of(row):
        earlier = next((r for r in range(row) if fragmap.touches(r, col)), None)
        if earlier is None or collides_between(fragmap, earlier, row, col):
            return None
        if target is None:
            target = earlier
        elif target != earlier:
            return None
    if target is not None and relationship(fragmap, target, row) is RelationshipKind.CONFLICTING:
        return None
    return target
