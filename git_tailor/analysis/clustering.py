"""
Span clustering: building the fragmap.

Spans from all commits are grouped per file, sorted by start line
(ties keep commit order) and swept once: a span joins the running
cluster when it overlaps or is adjacent to it, otherwise the cluster is
closed. The result is the unique coarsest partition in which no two
clusters of the same file overlap or touch.

Columns are ordered by path, then by cluster start line. Building the
map is a pure function of its input; running it twice yields an
identical FragMap.
"""

from __future__ import annotations

import logging
from itertools import groupby
from typing import Dict, List, Sequence, Tuple

from ..domain import CommitDiff, FileDiff, FileSpan, FragMap, SpanCluster, TouchKind
from .spans import extract_spans, extract_spans_propagated

LOG = logging.getLogger(__name__)


def cluster(diffs: Sequence[CommitDiff], propagate: bool = False) -> FragMap:
    """
    Cluster the hunks of `diffs` (oldest first) into a fragmap.
    """

    if propagate:
        spans = extract_spans_propagated(diffs)
    else:
        spans = [span for index, diff in enumerate(diffs) for span in extract_spans(diff, index)]

    clusters = _sweep(spans, [d.commit.id for d in diffs])
    touch = _build_matrix(diffs, clusters)

    LOG.debug(
        "Clustered %d spans from %d commits into %d clusters",
        len(spans),
        len(diffs),
        len(clusters),
    )
    return FragMap(
        commits=tuple(d.commit for d in diffs),
        clusters=tuple(clusters),
        touch=touch,
        diffs=tuple(diffs),
    )


def _sweep(spans: Sequence[FileSpan], commit_ids: Sequence[str]) -> List[SpanCluster]:
    # sorted() is stable and the spans arrive in commit order, so equal
    # start lines keep commit order.
    ordered = sorted(spans, key=lambda s: (s.path, s.start_line))
    clusters: List[SpanCluster] = []

    for path, group in groupby(ordered, key=lambda s: s.path):
        current: List[FileSpan] = []
        end = 0
        for span in group:
            if current and span.start_line <= end + 1:
                current.append(span)
                end = max(end, span.end_line)
                continue
            if current:
                clusters.append(_make_cluster(path, current, commit_ids))
            current = [span]
            end = span.end_line
        if current:
            clusters.append(_make_cluster(path, current, commit_ids))

    return clusters


def _make_cluster(path: str, spans: Sequence[FileSpan], commit_ids: Sequence[str]) -> SpanCluster:
    rows = sorted({s.commit_index for s in spans})
    return SpanCluster(
        path=path,
        start_line=min(s.start_line for s in spans),
        end_line=max(s.end_line for s in spans),
        spans=tuple(spans),
        commit_ids=tuple(commit_ids[row] for row in rows),
    )


def touch_kind(file: FileDiff) -> TouchKind:
    if file.old_path is None:
        return TouchKind.ADDED
    if file.new_path is None:
        return TouchKind.DELETED
    return TouchKind.MODIFIED


def _build_matrix(
    diffs: Sequence[CommitDiff],
    clusters: Sequence[SpanCluster],
) -> Tuple[Tuple[TouchKind, ...], ...]:
    rows: List[List[TouchKind]] = [[TouchKind.NONE] * len(clusters) for _ in diffs]

    for col, span_cluster in enumerate(clusters):
        for span in span_cluster.spans:
            if rows[span.commit_index][col] is not TouchKind.NONE:
                continue
            file = diffs[span.commit_index].files[span.file_index]
            rows[span.commit_index][col] = touch_kind(file)

    return tuple(tuple(row) for row in rows)


def compact(fragmap: FragMap) -> FragMap:
    """
    Merge columns touched by exactly the same set of commits.

    The first column of each pattern survives and absorbs the spans of
    the later ones, so every non-None cell still corresponds to a
    contributed span.
    """

    patterns: Dict[Tuple[int, ...], int] = {}
    merged: List[List[FileSpan]] = []
    first_columns: List[int] = []

    for col, span_cluster in enumerate(fragmap.clusters):
        pattern = tuple(row for row in range(len(fragmap.commits)) if fragmap.touches(row, col))
        if pattern in patterns:
            merged[patterns[pattern]].extend(span_cluster.spans)
            continue
        patterns[pattern] = len(first_columns)
        first_columns.append(col)
        merged.append(list(span_cluster.spans))

    clusters = []
    for col, spans in zip(first_columns, merged):
        first = fragmap.clusters[col]
        clusters.append(
            SpanCluster(
                path=first.path,
                start_line=first.start_line,
                end_line=first.end_line,
                spans=tuple(spans),
                commit_ids=first.commit_ids,
            )
        )

    touch = tuple(
        tuple(fragmap.touch[row][col] for col in first_columns)
        for row in range(len(fragmap.commits))
    )
    return FragMap(
        commits=fragmap.commits,
        clusters=tuple(clusters),
        touch=touch,
        diffs=fragmap.diffs,
    )


def maximality_violations(clusters: Sequence[SpanCluster]) -> List[Tuple[int, int]]:
    """
    Return pairs of column indices that overlap or touch on the same path.

    An empty list means no two clusters could be merged further.
    """

    violations: List[Tuple[int, int]] = []
    for i, left in enumerate(clusters):
        for j in range(i + 1, len(clusters)):
            right = clusters[j]
            if left.path != right.path:
                continue
            if left.start_line <= right.end_line + 1 and right.start_line <= left.end_line + 1:
                violations.append((i, j))
    return violations
