from git_tailor.diff_parser import (
    apply_hunks_to_lines,
    changed_lines,
    parse_unified_diff,
    render_partial_diff,
    select_hunks,
)
from git_tailor.domain import HunkRef, LineKind
from git_tailor.errors import DiffParseError


TWO_HUNKS = """\
diff --git a/foo.txt b/foo.txt
index 1111111..2222222 100644
--- a/foo.txt
+++ b/foo.txt
@@ -1,0 +2,2 @@
+x1
+x2
@@ -4 +6 @@
-d
+D
"""

FOO_LINES = ["a", "b", "c", "d", "e"]


def test_parse_simple_modify():
    raw = """\
diff --git a/foo.py b/foo.py
--- a/foo.py
+++ b/foo.py
@@ -1,2 +1,2 @@ def main():
-a = 1
+a = 2
 b = 3
"""
    files = parse_unified_diff(raw)
    assert len(files) == 1
    file = files[0]
    assert file.old_path == "foo.py"
    assert file.new_path == "foo.py"
    assert file.change_type == "modify"
    assert not file.is_binary
    assert len(file.hunks) == 1

    hunk = file.hunks[0]
    assert hunk.old_range == (1, 2)
    assert hunk.new_range == (1, 2)
    assert hunk.section == "def main():"
    assert [line.kind for line in hunk.lines] == [LineKind.REMOVED, LineKind.ADDED, LineKind.CONTEXT]
    assert hunk.lines[0].old_lineno == 1
    assert hunk.lines[1].new_lineno == 1
    assert (hunk.lines[2].old_lineno, hunk.lines[2].new_lineno) == (2, 2)


def test_parse_skips_commit_header_preamble():
    raw = "commit abc\nAuthor: someone\n\n    message\n\n" + TWO_HUNKS
    files = parse_unified_diff(raw)
    assert [f.path for f in files] == ["foo.txt"]
    assert len(files[0].hunks) == 2


def test_parse_add_and_delete_files():
    raw = """\
diff --git a/new.txt b/new.txt
new file mode 100644
--- /dev/null
+++ b/new.txt
@@ -0,0 +1,2 @@
+hello
+world
diff --git a/old.txt b/old.txt
deleted file mode 100644
--- a/old.txt
+++ /dev/null
@@ -1,2 +0,0 @@
-bye
-world
"""
    files = parse_unified_diff(raw)
    assert len(files) == 2
    add_file, del_file = files

    assert add_file.change_type == "add"
    assert add_file.old_path is None
    assert add_file.path == "new.txt"
    assert del_file.change_type == "delete"
    assert del_file.new_path is None
    assert del_file.path == "old.txt"
    assert del_file.hunks[0].is_pure_deletion


def test_parse_rename_and_binary():
    raw = """\
diff --git a/old.py b/new.py
similarity index 90%
rename from old.py
rename to new.py
--- a/old.py
+++ b/new.py
@@ -1 +1 @@
-x
+y
diff --git a/logo.png b/logo.png
index 1111111..2222222 100644
Binary files a/logo.png and b/logo.png differ
"""
    renamed, binary = parse_unified_diff(raw)
    assert renamed.change_type == "rename"
    assert (renamed.old_path, renamed.new_path) == ("old.py", "new.py")
    assert binary.is_binary
    assert binary.hunks == ()


def test_parse_empty_new_file_has_no_hunks():
    raw = """\
diff --git a/empty.txt b/empty.txt
new file mode 100644
index 0000000..e69de29
diff --git a/other.txt b/other.txt
--- a/other.txt
+++ b/other.txt
@@ -1 +1 @@
-1
+2
"""
    empty, other = parse_unified_diff(raw)
    assert empty.change_type == "add"
    assert empty.hunks == ()
    assert len(other.hunks) == 1


def test_no_newline_marker_is_kept_on_the_line():
    raw = """\
diff --git a/a.txt b/a.txt
--- a/a.txt
+++ b/a.txt
@@ -1 +1 @@
-old
\\ No newline at end of file
+new
\\ No newline at end of file
"""
    (file,) = parse_unified_diff(raw)
    removed, added = file.hunks[0].lines
    assert removed.no_eol
    assert added.no_eol

    rendered = render_partial_diff([file], [HunkRef("a.txt", 0)])
    assert rendered.count("\\ No newline at end of file") == 2


def test_removed_line_that_looks_like_a_file_header():
    raw = """\
diff --git a/doc.md b/doc.md
--- a/doc.md
+++ b/doc.md
@@ -1,2 +1 @@
---- heading
 keep
"""
    (file,) = parse_unified_diff(raw)
    removed, context = file.hunks[0].lines
    assert removed.kind is LineKind.REMOVED
    assert removed.content == "--- heading"
    assert context.content == "keep"


def test_truncated_hunk_raises():
    raw = """\
diff --git a/a.txt b/a.txt
--- a/a.txt
+++ b/a.txt
@@ -1,3 +1,3 @@
-a
+b
"""
    try:
        parse_unified_diff(raw)
    except DiffParseError as exc:
        assert "truncated hunk" in str(exc)
    else:
        raise AssertionError("expected DiffParseError to be raised")


def test_render_partial_diff_recomputes_headers():
    files = parse_unified_diff(TWO_HUNKS)

    first_only = render_partial_diff(files, [HunkRef("foo.txt", 0)])
    assert "@@ -1,0 +2,2 @@" in first_only
    assert "-d" not in first_only

    second_alone = render_partial_diff(files, [HunkRef("foo.txt", 1)])
    assert "@@ -4,1 +4,1 @@" in second_alone

    # On top of the first hunk the second one moves down by two lines.
    second_after_first = render_partial_diff(
        files, [HunkRef("foo.txt", 1)], applied=[HunkRef("foo.txt", 0)]
    )
    assert "@@ -6,1 +6,1 @@" in second_after_first
    assert second_after_first.startswith("diff --git a/foo.txt b/foo.txt\n--- a/foo.txt\n")


def test_render_partial_diff_for_new_file_only_creates_it_once():
    raw = """\
diff --git a/new.txt b/new.txt
new file mode 100644
--- /dev/null
+++ b/new.txt
@@ -0,0 +1,2 @@
+one
+two
"""
    files = parse_unified_diff(raw)
    rendered = render_partial_diff(files, [HunkRef("new.txt", 0)])
    assert "new file mode 100644" in rendered
    assert "--- /dev/null" in rendered
    assert parse_unified_diff(rendered)[0].change_type == "add"


def test_select_hunks_rejects_unknown_references():
    files = parse_unified_diff(TWO_HUNKS)
    try:
        select_hunks(files, [HunkRef("foo.txt", 7)])
    except DiffParseError as exc:
        assert "foo.txt#7" in str(exc)
    else:
        raise AssertionError("expected DiffParseError to be raised")


def test_apply_hunks_to_lines():
    (file,) = parse_unified_diff(TWO_HUNKS)

    assert apply_hunks_to_lines(FOO_LINES, file.hunks) == ["a", "x1", "x2", "b", "c", "D", "e"]
    assert apply_hunks_to_lines(FOO_LINES, file.hunks[1:]) == ["a", "b", "c", "D", "e"]

    try:
        apply_hunks_to_lines(["a", "b", "c", "changed", "e"], file.hunks[1:])
    except DiffParseError as exc:
        assert "does not match" in str(exc)
    else:
        raise AssertionError("expected DiffParseError to be raised")


def test_changed_lines_keys_by_line_index():
    raw = """\
diff --git a/a.txt b/a.txt
--- a/a.txt
+++ b/a.txt
@@ -2 +2 @@
-b
+B
@@ -5,2 +4,0 @@
-e
-f
"""
    (file,) = parse_unified_diff(raw)
    assert changed_lines(file.hunks[0]) == {2: "B"}
    assert changed_lines(file.hunks[1]) == {5: None, 6: None}
