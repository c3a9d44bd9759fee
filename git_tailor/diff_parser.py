"""
Unified diff parsing for git-tailor.

The parser converts a raw unified diff string into the FileDiff/Hunk
objects defined in git_tailor.domain, and renders selected hunks back
into a patch that `git apply` accepts.

The implementation is intentionally conservative: it focuses on the
unified diff format produced by git (`git diff`, `git show`) and ignores
metadata that is not needed for clustering or splitting (modes, index
lines, similarity scores). File paths, hunk ranges and line contents are
captured faithfully so that partial patches reproduce the original
content byte for byte.
"""

from __future__ import annotations

import re
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .domain import DiffLine, FileDiff, Hunk, HunkRef, LineKind
from .errors import DiffParseError

_HUNK_HEADER_RE = re.compile(
    r"^@@ -(?P<old_start>\d+)(?:,(?P<old_count>\d+))?"
    r" \+(?P<new_start>\d+)(?:,(?P<new_count>\d+))?"
    r" @@ ?(?P<section>.*)$"
)

NO_NEWLINE_MARKER = "\\ No newline at end of file"


def parse_unified_diff(raw_diff: str) -> Tuple[FileDiff, ...]:
    """
    Parse a unified diff into a tuple of FileDiff objects.

    Any preamble before the first `diff --git` header (for example the
    commit header printed by `git show`) is skipped.
    """

    lines = raw_diff.splitlines()
    files: List[FileDiff] = []

    i = 0
    while i < len(lines) and not lines[i].startswith("diff --git "):
        i += 1

    while i < len(lines):
        if not lines[i].startswith("diff --git "):
            i += 1
            continue

        file_diff, i = _parse_single_file_diff(lines, i)
        if file_diff is not None:
            files.append(file_diff)

    return tuple(files)


def _unquote(path: str) -> str:
    if len(path) >= 2 and path.startswith('"') and path.endswith('"'):
        return path[1:-1].encode("latin-1", "backslashreplace").decode("unicode_escape")
    return path


def _strip_prefix(path: str, prefix: str) -> str:
    path = _unquote(path)
    if path.startswith(prefix):
        return path[len(prefix) :]
    return path


def _parse_single_file_diff(
    lines: Sequence[str],
    start_index: int,
) -> Tuple[Optional[FileDiff], int]:
    """
    Parse a single `diff --git` section starting at start_index.

    Returns a tuple of (FileDiff | None, next_index).
    """

    i = start_index
    header_line = lines[i]
    i += 1

    # Example: "diff --git a/path b/path"
    parts = header_line.split()
    if len(parts) < 4:
        while i < len(lines) and not lines[i].startswith("diff --git "):
            i += 1
        return None, i

    path_old: Optional[str] = _strip_prefix(parts[-2], "a/")
    path_new: Optional[str] = _strip_prefix(parts[-1], "b/")
    is_binary = False

    # Consume metadata lines until we hit file headers ("---"/"+++") or
    # another diff section.
    while i < len(lines):
        line = lines[i]

        if line.startswith("diff --git "):
            return FileDiff(old_path=path_old, new_path=path_new), i

        if line.startswith("new file mode "):
            path_old = None
        elif line.startswith("deleted file mode "):
            path_new = None
        elif line.startswith("rename from "):
            path_old = _unquote(line[len("rename from ") :].strip())
        elif line.startswith("rename to "):
            path_new = _unquote(line[len("rename to ") :].strip())
        elif line.startswith("Binary files ") and " differ" in line:
            is_binary = True
        elif line.startswith("GIT binary patch"):
            is_binary = True
        elif line.startswith("--- ") or line.startswith("@@"):
            break

        i += 1

    # Binary files are treated as opaque; any patch body is skipped.
    if is_binary:
        while i < len(lines) and not lines[i].startswith("diff --git "):
            i += 1
        return FileDiff(old_path=path_old, new_path=path_new, is_binary=True), i

    if i < len(lines) and lines[i].startswith("--- "):
        label = lines[i][4:].strip()
        path_old = None if label == "/dev/null" else _strip_prefix(label, "a/")
        i += 1
    if i < len(lines) and lines[i].startswith("+++ "):
        label = lines[i][4:].strip()
        path_new = None if label == "/dev/null" else _strip_prefix(label, "b/")
        i += 1

    hunks: List[Hunk] = []
    while i < len(lines) and not lines[i].startswith("diff --git "):
        if lines[i].startswith("@@"):
            hunk, i = _parse_hunk(lines, i)
            hunks.append(hunk)
        else:
            i += 1

    return FileDiff(old_path=path_old, new_path=path_new, hunks=tuple(hunks)), i


def _parse_hunk(lines: Sequence[str], start_index: int) -> Tuple[Hunk, int]:
    """
    Parse a single hunk starting at `start_index`.

    The hunk ends after exactly the number of old and new lines announced
    by its header, so a removed line that happens to start with "--" or
    "++" is never mistaken for a file header.
    """

    header = lines[start_index]
    match = _HUNK_HEADER_RE.match(header)
    if not match:
        raise DiffParseError(f"malformed hunk header: {header!r}")

    old_start = int(match.group("old_start"))
    old_count = int(match.group("old_count") or 1)
    new_start = int(match.group("new_start"))
    new_count = int(match.group("new_count") or 1)
    section = match.group("section").strip()

    old_lineno = old_start if old_count else old_start + 1
    new_lineno = new_start if new_count else new_start + 1
    old_remaining = old_count
    new_remaining = new_count

    diff_lines: List[DiffLine] = []
    i = start_index + 1

    while i < len(lines) and (old_remaining > 0 or new_remaining > 0):
        line = lines[i]

        if line.startswith(NO_NEWLINE_MARKER):
            if diff_lines:
                diff_lines[-1] = replace(diff_lines[-1], no_eol=True)
            i += 1
            continue

        if not line:
            # git strips the trailing space of empty context lines in
            # some configurations.
            first_char, content = " ", ""
        else:
            first_char, content = line[0], line[1:]

        if first_char == "+":
            diff_lines.append(DiffLine(LineKind.ADDED, content, new_lineno=new_lineno))
            new_lineno += 1
            new_remaining -= 1
        elif first_char == "-":
            diff_lines.append(DiffLine(LineKind.REMOVED, content, old_lineno=old_lineno))
            old_lineno += 1
            old_remaining -= 1
        elif first_char == " ":
            diff_lines.append(
                DiffLine(LineKind.CONTEXT, content, old_lineno=old_lineno, new_lineno=new_lineno)
            )
            old_lineno += 1
            new_lineno += 1
            old_remaining -= 1
            new_remaining -= 1
        else:
            raise DiffParseError(f"unexpected line in hunk {header!r}: {line!r}")

        i += 1

    if old_remaining != 0 or new_remaining != 0:
        raise DiffParseError(f"truncated hunk {header!r}")

    # A trailing marker belongs to the last line of the hunk.
    if i < len(lines) and lines[i].startswith(NO_NEWLINE_MARKER):
        if diff_lines:
            diff_lines[-1] = replace(diff_lines[-1], no_eol=True)
        i += 1

    return (
        Hunk(
            old_start=old_start,
            old_count=old_count,
            new_start=new_start,
            new_count=new_count,
            lines=tuple(diff_lines),
            section=section,
        ),
        i,
    )


def _position_before(start: int, count: int) -> int:
    # Unified diff convention: an empty range names the line before it.
    return start - 1 if count else start


def _start_from_position(position: int, count: int) -> int:
    return position + 1 if count else position


def rebase_hunk(hunk: Hunk, old_shift: int, new_shift: int) -> Hunk:
    """
    Return a copy of `hunk` with its header moved so that it applies to a
    file where earlier hunks of the same diff were (old_shift) or will be
    (new_shift) applied.
    """

    position = _position_before(hunk.old_start, hunk.old_count) + old_shift
    new_position = position + new_shift
    return replace(
        hunk,
        old_start=_start_from_position(position, hunk.old_count),
        new_start=_start_from_position(new_position, hunk.new_count),
    )


def select_hunks(
    files: Sequence[FileDiff],
    keep: Iterable[HunkRef],
    applied: Iterable[HunkRef] = (),
) -> List[Tuple[FileDiff, List[Hunk], bool]]:
    """
    Resolve hunk references into per-file hunk lists with rebased headers.

    Each entry is (file, hunks, first_touch) where first_touch is True if
    none of the file's hunks were applied before, meaning the patch must
    also carry the file's creation, deletion or rename.
    """

    keep_set: Set[HunkRef] = set(keep)
    applied_set: Set[HunkRef] = set(applied)
    known: Set[HunkRef] = set()
    result: List[Tuple[FileDiff, List[Hunk], bool]] = []

    for file in files:
        old_shift = 0
        new_shift = 0
        selected: List[Hunk] = []
        first_touch = True
        for index, hunk in enumerate(file.hunks):
            ref = HunkRef(file.path, index)
            known.add(ref)
            if ref in applied_set:
                first_touch = False
                old_shift += hunk.line_delta
            elif ref in keep_set:
                selected.append(rebase_hunk(hunk, old_shift, new_shift))
                new_shift += hunk.line_delta
        if selected:
            result.append((file, selected, first_touch))

    unknown = (keep_set | applied_set) - known
    if unknown:
        names = ", ".join(f"{r.path}#{r.hunk_index}" for r in sorted(unknown, key=_ref_key))
        raise DiffParseError(f"unknown hunk references: {names}")

    return result


def _ref_key(ref: HunkRef) -> Tuple[str, int]:
    return (ref.path, ref.hunk_index)


def render_partial_diff(
    files: Sequence[FileDiff],
    keep: Iterable[HunkRef],
    applied: Iterable[HunkRef] = (),
) -> str:
    """
    Render a unified diff containing only the `keep` hunks.

    The patch targets a tree that already contains the `applied` hunks,
    so hunk headers are recomputed to exact positions instead of relying
    on `git apply` to search for shifted context. This is what lets
    zero-context hunks be applied with `--unidiff-zero`.
    """

    output: List[str] = []

    for file, hunks, first_touch in select_hunks(files, keep, applied):
        path_old = file.old_path or file.new_path or "unknown"
        path_new = file.new_path or file.old_path or "unknown"

        if not first_touch:
            # Earlier pieces already created or renamed the file.
            path_old = path_new if file.new_path else path_old
            old_label, new_label = f"a/{path_old}", f"b/{path_new}"
            output.append(f"diff --git a/{path_old} b/{path_new}")
        elif file.change_type == "add":
            output.append(f"diff --git a/{path_new} b/{path_new}")
            output.append("new file mode 100644")
            old_label, new_label = "/dev/null", f"b/{path_new}"
        elif file.change_type == "delete":
            output.append(f"diff --git a/{path_old} b/{path_old}")
            output.append("deleted file mode 100644")
            old_label, new_label = f"a/{path_old}", "/dev/null"
        elif file.change_type == "rename":
            output.append(f"diff --git a/{path_old} b/{path_new}")
            output.append(f"rename from {path_old}")
            output.append(f"rename to {path_new}")
            old_label, new_label = f"a/{path_old}", f"b/{path_new}"
        else:
            output.append(f"diff --git a/{path_old} b/{path_new}")
            old_label, new_label = f"a/{path_old}", f"b/{path_new}"

        output.append(f"--- {old_label}")
        output.append(f"+++ {new_label}")

        for hunk in hunks:
            output.append(hunk.header())
            for line in hunk.lines:
                output.append(f"{line.kind.value}{line.content}")
                if line.no_eol:
                    output.append(NO_NEWLINE_MARKER)

    if not output:
        return ""

    # Ensure diff ends with a newline, as expected by most tools.
    return "\n".join(output) + "\n"


def apply_hunks_to_lines(
    lines: Sequence[str],
    hunks: Sequence[Hunk],
) -> List[str]:
    """
    Apply hunks (all relative to `lines`) and return the resulting lines.

    Hunks must come from one FileDiff and keep their original headers;
    unselected hunks are simply left out. Context and removed lines are
    checked against `lines` and a mismatch raises DiffParseError.
    """

    result: List[str] = []
    cursor = 0
    for hunk in sorted(hunks, key=lambda h: h.old_start):
        position = _position_before(hunk.old_start, hunk.old_count)
        if position < cursor or position > len(lines):
            raise DiffParseError(f"hunk {hunk.header()} does not fit the file")
        result.extend(lines[cursor:position])
        cursor = position
        for line in hunk.lines:
            if line.kind is LineKind.ADDED:
                result.append(line.content)
                continue
            if cursor >= len(lines) or lines[cursor] != line.content:
                raise DiffParseError(f"hunk {hunk.header()} does not match the file")
            if line.kind is LineKind.CONTEXT:
                result.append(line.content)
            cursor += 1
    result.extend(lines[cursor:])
    return result


def changed_lines(hunk: Hunk) -> Dict[int, Optional[str]]:
    """
    Map each line index a hunk changes to its resulting text.

    Added lines are keyed by their post-image line number. Removed lines
    are keyed by their pre-image line number and map to None unless an
    added line lands on the same index.
    """

    result: Dict[int, Optional[str]] = {}
    for line in hunk.lines:
        if line.kind is LineKind.REMOVED and line.old_lineno is not None:
            result.setdefault(line.old_lineno, None)
    for line in hunk.lines:
        if line.kind is LineKind.ADDED and line.new_lineno is not None:
            result[line.new_lineno] = line.content
    return result
