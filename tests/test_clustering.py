from git_tailor.analysis import cluster, compact, maximality_violations
from git_tailor.analysis.relations import relationship
from git_tailor.analysis.spans import extract_spans, propagate_span
from git_tailor.diff_parser import parse_unified_diff
from git_tailor.domain import (
    Commit,
    CommitDiff,
    FileSpan,
    RelationshipKind,
    SpanCluster,
    TouchKind,
)
from git_tailor.errors import InvalidSpan


def _diff(commit_id: str, raw: str) -> CommitDiff:
    commit = Commit(
        id=commit_id,
        summary=commit_id,
        full_message=f"{commit_id}\n",
        author="Test Author",
        parent_ids=("parent",),
    )
    return CommitDiff(commit=commit, files=parse_unified_diff(raw))


def _modify(path: str, header: str, *lines: str) -> str:
    body = "\n".join(lines)
    return f"diff --git a/{path} b/{path}\n--- a/{path}\n+++ b/{path}\n{header}\n{body}\n"


C1_ADDS_FILE = """\
diff --git a/a.txt b/a.txt
new file mode 100644
--- /dev/null
+++ b/a.txt
@@ -0,0 +1,5 @@
+alpha
+beta
+gamma
+delta
+epsilon
"""


def test_added_file_and_later_edit_share_one_cluster():
    c1 = _diff("c1", C1_ADDS_FILE)
    c2 = _diff("c2", _modify("a.txt", "@@ -3,2 +3,2 @@", "-gamma", "-delta", "+GAMMA", "+DELTA"))

    fragmap = cluster([c1, c2])

    assert len(fragmap.clusters) == 1
    only = fragmap.clusters[0]
    assert (only.path, only.start_line, only.end_line) == ("a.txt", 1, 5)
    assert only.commit_ids == ("c1", "c2")
    assert fragmap.touch[0][0] is TouchKind.ADDED
    assert fragmap.touch[1][0] is TouchKind.MODIFIED
    assert fragmap.relates(0, 1)

    # c2 writes different text on lines c1 added.
    assert relationship(fragmap, 0, 1) is RelationshipKind.CONFLICTING
    assert relationship(fragmap, 1, 0) is RelationshipKind.CONFLICTING


def test_adjacent_edit_of_added_lines_is_squashable():
    c1 = _diff("c1", C1_ADDS_FILE)
    c2 = _diff("c2", _modify("a.txt", "@@ -5,0 +6,2 @@", "+zeta", "+eta"))

    fragmap = cluster([c1, c2])

    assert [(c.start_line, c.end_line) for c in fragmap.clusters] == [(1, 7)]
    assert relationship(fragmap, 0, 1) is RelationshipKind.SQUASHABLE


def test_disjoint_hunks_form_separate_clusters():
    c1 = _diff("c1", _modify("a.txt", "@@ -2 +2 @@", "-b", "+B"))
    c2 = _diff("c2", _modify("a.txt", "@@ -10 +10 @@", "-j", "+J"))

    fragmap = cluster([c1, c2])

    assert [(c.start_line, c.end_line) for c in fragmap.clusters] == [(2, 2), (10, 10)]
    assert not fragmap.relates(0, 1)
    assert relationship(fragmap, 0, 1) is RelationshipKind.UNRELATED


def test_adjacent_spans_are_merged():
    c1 = _diff("c1", _modify("a.txt", "@@ -1,2 +1,2 @@", "-a", "-b", "+A", "+B"))
    c2 = _diff("c2", _modify("a.txt", "@@ -3,2 +3,2 @@", "-c", "-d", "+C", "+D"))

    fragmap = cluster([c1, c2])

    assert len(fragmap.clusters) == 1
    assert (fragmap.clusters[0].start_line, fragmap.clusters[0].end_line) == (1, 4)


def test_pure_deletion_uses_pre_image_range():
    c1 = _diff("c1", _modify("a.txt", "@@ -3,2 +2,0 @@", "-c", "-d"))

    (span,) = extract_spans(c1)
    assert (span.start_line, span.end_line) == (3, 4)


def test_columns_are_ordered_by_path_then_line():
    c1 = _diff("c1", _modify("b.txt", "@@ -1 +1 @@", "-x", "+y"))
    c2 = _diff("c2", _modify("a.txt", "@@ -2 +2 @@", "-b", "+B", "@@ -9 +9 @@", "-i", "+I"))

    fragmap = cluster([c1, c2])

    assert [(c.path, c.start_line) for c in fragmap.clusters] == [
        ("a.txt", 2),
        ("a.txt", 9),
        ("b.txt", 1),
    ]
    assert fragmap.columns_of(0) == (2,)
    assert fragmap.columns_of(1) == (0, 1)


def test_clustering_is_maximal_and_deterministic():
    diffs = [
        _diff("c1", C1_ADDS_FILE),
        _diff("c2", _modify("a.txt", "@@ -3,2 +3,2 @@", "-gamma", "-delta", "+GAMMA", "+DELTA")),
        _diff("c3", _modify("a.txt", "@@ -5,0 +6,1 @@", "+zeta")),
        _diff("c4", _modify("b.txt", "@@ -1 +1 @@", "-x", "+y")),
        _diff("c5", _modify("a.txt", "@@ -20 +20 @@", "-t", "+T")),
    ]

    first = cluster(diffs)
    second = cluster(diffs)

    assert first == second
    assert maximality_violations(first.clusters) == []
    for row in range(len(diffs)):
        for col, span_cluster in enumerate(first.clusters):
            contributed = any(s.commit_index == row for s in span_cluster.spans)
            assert first.touches(row, col) == contributed


def test_maximality_violations_detects_touching_clusters():
    left = SpanCluster("a.txt", 1, 3, (FileSpan("a.txt", 1, 3),), ("c1",))
    right = SpanCluster("a.txt", 4, 6, (FileSpan("a.txt", 4, 6),), ("c2",))
    other = SpanCluster("b.txt", 1, 9, (FileSpan("b.txt", 1, 9),), ("c2",))

    assert maximality_violations([left, right, other]) == [(0, 1)]


def test_invalid_spans_are_rejected():
    for start, end in ((0, 2), (5, 4)):
        try:
            FileSpan("a.txt", start, end)
        except InvalidSpan as exc:
            assert isinstance(exc, ValueError)
            assert "a.txt" in str(exc)
        else:
            raise AssertionError("expected InvalidSpan to be raised")


def test_compact_merges_columns_with_identical_commits():
    c1 = _diff(
        "c1",
        _modify("a.txt", "@@ -2 +2 @@", "-b", "+B") + _modify("b.txt", "@@ -2 +2 @@", "-b", "+B"),
    )
    c2 = _diff("c2", _modify("a.txt", "@@ -20 +20 @@", "-t", "+T"))

    full = cluster([c1, c2])
    compacted = compact(full)

    assert len(full.clusters) == 3
    assert len(compacted.clusters) == 2
    assert compacted.touch == ((TouchKind.MODIFIED, TouchKind.NONE), (TouchKind.NONE, TouchKind.MODIFIED))
    assert {s.path for s in compacted.clusters[0].spans} == {"a.txt", "b.txt"}


def test_propagate_span_shifts_through_later_insertions():
    later = _diff("c2", _modify("a.txt", "@@ -0,0 +1,3 @@", "+n1", "+n2", "+n3"))

    assert propagate_span(10, 11, [later.files[0].hunks]) == [(13, 14)]


def test_propagated_fragmap_uses_final_coordinates():
    c1 = _diff("c1", _modify("a.txt", "@@ -10 +10 @@", "-j", "+J"))
    c2 = _diff("c2", _modify("a.txt", "@@ -0,0 +1,3 @@", "+n1", "+n2", "+n3"))

    fragmap = cluster([c1, c2], propagate=True)

    assert [(c.start_line, c.end_line, c.commit_ids) for c in fragmap.clusters] == [
        (1, 3, ("c2",)),
        (13, 13, ("c1",)),
    ]


def test_propagation_drops_lines_rewritten_later():
    c1 = _diff("c1", _modify("a.txt", "@@ -10 +10 @@", "-j", "+J"))
    c2 = _diff("c2", _modify("a.txt", "@@ -10 +9,0 @@", "-J"))

    fragmap = cluster([c1, c2], propagate=True)

    assert fragmap.clusters == ()
    assert fragmap.touch == ((), ())
