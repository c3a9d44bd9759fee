from git_tailor.analysis import (
    cluster,
    compact,
    predict_squash,
    relationship,
    relationship_table,
    squash_target,
)
from git_tailor.diff_parser import parse_unified_diff
from git_tailor.domain import Commit, CommitDiff, FragMap, RelationshipKind


def _diff(commit_id: str, path: str, header: str, *lines: str) -> CommitDiff:
    body = "\n".join(lines)
    raw = f"diff --git a/{path} b/{path}\n--- a/{path}\n+++ b/{path}\n{header}\n{body}\n"
    commit = Commit(id=commit_id, summary=commit_id, full_message=f"{commit_id}\n", author="A")
    return CommitDiff(commit=commit, files=parse_unified_diff(raw))


def _multi(commit_id: str, *files) -> CommitDiff:
    raw = ""
    for path, header, *lines in files:
        body = "\n".join(lines)
        raw += f"diff --git a/{path} b/{path}\n--- a/{path}\n+++ b/{path}\n{header}\n{body}\n"
    commit = Commit(id=commit_id, summary=commit_id, full_message=f"{commit_id}\n", author="A")
    return CommitDiff(commit=commit, files=parse_unified_diff(raw))


def _fragmap(*diffs: CommitDiff) -> FragMap:
    return cluster(list(diffs))


def test_relationship_is_symmetric():
    fragmap = _fragmap(
        _diff("c0", "a.txt", "@@ -5 +5 @@", "-e", "+E"),
        _diff("c1", "a.txt", "@@ -5 +5 @@", "-E", "+EE"),
        _diff("c2", "a.txt", "@@ -6 +6 @@", "-f", "+F"),
        _diff("c3", "b.txt", "@@ -1 +1 @@", "-x", "+y"),
    )

    for a in range(4):
        for b in range(4):
            assert relationship(fragmap, a, b) == relationship(fragmap, b, a)

    assert relationship(fragmap, 0, 1) is RelationshipKind.CONFLICTING
    assert relationship(fragmap, 0, 2) is RelationshipKind.SQUASHABLE
    assert relationship(fragmap, 0, 3) is RelationshipKind.UNRELATED
    assert relationship_table(fragmap) == {
        (0, 1): RelationshipKind.CONFLICTING,
        (0, 2): RelationshipKind.SQUASHABLE,
        (1, 2): RelationshipKind.SQUASHABLE,
    }


def test_identical_rewrites_of_a_line_are_squashable():
    fragmap = _fragmap(
        _diff("c0", "a.txt", "@@ -5 +5 @@", "-e", "+E"),
        _diff("c1", "a.txt", "@@ -4,2 +4,2 @@", "-d", "-E", "+D", "+E"),
    )

    assert relationship(fragmap, 0, 1) is RelationshipKind.SQUASHABLE


def test_relationship_without_diffs_only_uses_shared_clusters():
    full = _fragmap(
        _diff("c0", "a.txt", "@@ -5 +5 @@", "-e", "+E"),
        _diff("c1", "a.txt", "@@ -5 +5 @@", "-E", "+EE"),
    )
    bare = FragMap(commits=full.commits, clusters=full.clusters, touch=full.touch)

    assert relationship(bare, 0, 1) is RelationshipKind.SQUASHABLE


def test_squash_target_finds_single_earlier_commit():
    fragmap = _fragmap(
        _diff("c0", "a.txt", "@@ -5 +5 @@", "-e", "+E"),
        _diff("c1", "b.txt", "@@ -1 +1 @@", "-x", "+y"),
        _diff("c2", "a.txt", "@@ -6 +6 @@", "-f", "+F"),
    )

    assert squash_target(fragmap, 2) == 0
    assert squash_target(fragmap, 1) is None
    assert squash_target(fragmap, 0) is None


def test_squash_target_is_blocked_by_commit_in_between():
    fragmap = _fragmap(
        _diff("c0", "a.txt", "@@ -5 +5 @@", "-e", "+E"),
        _diff("c1", "a.txt", "@@ -7 +7 @@", "-g", "+G"),
        _diff("c2", "a.txt", "@@ -6 +6 @@", "-f", "+F"),
    )

    assert squash_target(fragmap, 2) is None
    assert predict_squash(fragmap, 2, 0) is RelationshipKind.CONFLICTING


def test_squash_target_rejects_conflicting_pair():
    fragmap = _fragmap(
        _diff("c0", "a.txt", "@@ -5 +5 @@", "-e", "+E"),
        _diff("c1", "a.txt", "@@ -5 +5 @@", "-E", "+EE"),
    )

    assert squash_target(fragmap, 1) is None
    assert predict_squash(fragmap, 1, 0) is RelationshipKind.CONFLICTING


def test_predict_squash_for_unrelated_commits():
    fragmap = _fragmap(
        _diff("c0", "a.txt", "@@ -5 +5 @@", "-e", "+E"),
        _diff("c1", "b.txt", "@@ -1 +1 @@", "-x", "+y"),
    )

    assert relationship(fragmap, 0, 1) is RelationshipKind.UNRELATED
    assert predict_squash(fragmap, 1, 0) is RelationshipKind.SQUASHABLE
    assert predict_squash(fragmap, 0, 1) is RelationshipKind.UNRELATED


def test_compacted_columns_keep_conflicts_from_every_file():
    full = _fragmap(
        _multi("c0", ("a.txt", "@@ -1 +1 @@", "-a", "+A"), ("b.txt", "@@ -20 +20 @@", "-t", "+T")),
        _multi("c1", ("a.txt", "@@ -2 +2 @@", "-b", "+B"), ("b.txt", "@@ -20 +20 @@", "-T", "+TT")),
    )
    compacted = compact(full)

    assert len(full.clusters) == 2
    assert len(compacted.clusters) == 1
    assert relationship(full, 0, 1) is RelationshipKind.CONFLICTING
    assert relationship(compacted, 0, 1) is RelationshipKind.CONFLICTING
    assert squash_target(compacted, 1) is None
    assert predict_squash(compacted, 1, 0) is RelationshipKind.CONFLICTING


def test_same_line_number_in_different_files_does_not_conflict():
    full = _fragmap(
        _multi("c0", ("a.txt", "@@ -5 +5 @@", "-e", "+E"), ("b.txt", "@@ -6 +6 @@", "-f", "+F")),
        _multi("c1", ("a.txt", "@@ -6 +6 @@", "-g", "+G"), ("b.txt", "@@ -5 +5 @@", "-h", "+H")),
    )
    compacted = compact(full)

    assert len(compacted.clusters) == 1
    assert relationship_table(compacted) == relationship_table(full)
    assert relationship(compacted, 0, 1) is RelationshipKind.SQUASHABLE


def test_propagated_columns_compare_lines_in_hunk_coordinates():
    diffs = [
        _diff("c0", "a.txt", "@@ -5 +5 @@", "-e", "+E"),
        _diff("c1", "a.txt", "@@ -0,0 +1,2 @@", "+x", "+y"),
        _diff("c2", "a.txt", "@@ -8 +8 @@", "-f", "+F"),
    ]

    propagated = cluster(diffs, propagate=True)

    assert relationship(cluster(diffs), 0, 2) is RelationshipKind.UNRELATED
    assert propagated.shared_columns(0, 2)
    assert relationship(propagated, 0, 2) is RelationshipKind.SQUASHABLE
