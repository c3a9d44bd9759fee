"""
Git integration for git-tailor.

GitRepository implements RepositoryCapability on top of the git CLI.
Every invocation goes through `_run_git` so that error handling and
logging are centralized.

No operation here touches the working tree or the real index except the
final move of a checked-out branch:

  - cherry-picks are computed with `git merge-tree --write-tree` and
    recorded with `git commit-tree`;
  - split pieces are built in a temporary index (GIT_INDEX_FILE) with
    `git apply --cached`;
  - the checked-out branch is moved with `git reset --keep`, which keeps
    local changes or refuses the move.

`git merge-tree --merge-base` requires git 2.40 or newer.
"""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .diff_parser import _unquote, parse_unified_diff, render_partial_diff
from .domain import Commit, CommitDiff, ConflictReport, HunkRef, PickResult
from .errors import GitError, RefUpdateError
from .repository import RepositoryCapability

LOG = logging.getLogger(__name__)

STAGED_ID = "staged"
UNSTAGED_ID = "unstaged"

# Fields of one commit record, separated by NUL; records end with RS.
_LOG_FORMAT = "%H%x00%T%x00%P%x00%an%x00%ae%x00%aI%x00%cI%x00%B%x1e"


def _run_git(
    args: List[str],
    cwd: Optional[str] = None,
    input_text: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    ok_codes: Tuple[int, ...] = (0,),
) -> subprocess.CompletedProcess[str]:
    """
    Run a git command and return the completed process.

    Exit codes outside `ok_codes` raise GitError carrying the command
    line and git's stderr.
    """

    cmd = ["git", *args]
    LOG.debug("Running git command: %s", " ".join(cmd))
    try:
        completed = subprocess.run(
            cmd,
            cwd=cwd,
            check=False,
            text=True,
            capture_output=True,
            input=input_text,
            env=dict(env) if env is not None else None,
        )
    except OSError as exc:
        raise GitError(f"failed to execute git: {exc}") from exc

    if completed.returncode not in ok_codes:
        stderr = (completed.stderr or "").strip()
        LOG.debug("git stderr: %s", stderr)
        message = f"git command failed: {' '.join(cmd)}"
        if stderr:
            message = f"{message}: {stderr}"
        raise GitError(message)

    return completed


def _parse_commit_record(record: str) -> Commit:
    fields = record.split("\x00")
    if len(fields) != 8:
        raise GitError(f"unexpected git log record: {record[:80]!r}")
    oid, tree, parents, name, email, author_date, commit_date, message = fields
    message = message.rstrip("\n") + "\n" if message.strip() else ""
    return Commit(
        id=oid,
        summary=message.split("\n", 1)[0],
        full_message=message,
        author=name,
        author_email=email,
        author_date=datetime.fromisoformat(author_date),
        commit_date=datetime.fromisoformat(commit_date),
        parent_ids=tuple(parents.split()),
        tree_id=tree,
    )


def _parse_log(output: str) -> List[Commit]:
    commits = []
    for record in output.split("\x1e"):
        record = record.lstrip("\n")
        if record:
            commits.append(_parse_commit_record(record))
    return commits


def _git_date(moment: datetime) -> str:
    # git's internal date format: seconds since the epoch and a +hhmm offset.
    return f"{int(moment.timestamp())} {moment.strftime('%z') or '+0000'}"


def _lines(text: str) -> List[str]:
    return [line for line in text.splitlines() if line]


class GitRepository(RepositoryCapability):
    """
    Repository capability backed by the git command line.

    context_lines controls the context of the diffs this repository
    produces; split pieces are applied with `--unidiff-zero` when it is 0.
    """

    def __init__(self, path: Optional[str] = None, context_lines: int = 0) -> None:
        self.path = path
        self.context_lines = context_lines
        self._empty_tree: Optional[str] = None

    def _git(
        self,
        args: List[str],
        input_text: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        ok_codes: Tuple[int, ...] = (0,),
    ) -> subprocess.CompletedProcess[str]:
        return _run_git(args, cwd=self.path, input_text=input_text, env=env, ok_codes=ok_codes)

    def _diff_args(self) -> List[str]:
        return [
            "diff",
            "--no-color",
            "--no-ext-diff",
            "--find-renames",
            f"-U{self.context_lines}",
            "--src-prefix=a/",
            "--dst-prefix=b/",
        ]

    # Reading

    def resolve(self, rev: str) -> str:
        return self._git(["rev-parse", "--verify", "--quiet", f"{rev}^{{commit}}"]).stdout.strip()

    def head_oid(self) -> str:
        return self.resolve("HEAD")

    def current_branch(self) -> Optional[str]:
        """Return the checked-out branch name, or None on a detached HEAD."""

        completed = self._git(["symbolic-ref", "--quiet", "--short", "HEAD"], ok_codes=(0, 1))
        name = completed.stdout.strip()
        return name or None

    def empty_tree(self) -> str:
        if self._empty_tree is None:
            self._empty_tree = self._git(
                ["hash-object", "-t", "tree", "-w", "--stdin"], input_text=""
            ).stdout.strip()
        return self._empty_tree

    def merge_base(self, a: str, b: str) -> str:
        return self._git(["merge-base", a, b]).stdout.strip()

    def list_commits(self, from_: str, to: str) -> List[Commit]:
        output = self._git(
            ["log", "--reverse", "--topo-order", f"--format={_LOG_FORMAT}", f"{to}..{from_}", "--"]
        ).stdout
        commits = _parse_log(output)
        LOG.debug("Listed %d commits in %s..%s", len(commits), to, from_)
        return commits

    def read_commit(self, commit_id: str) -> Commit:
        output = self._git(["log", "-1", f"--format={_LOG_FORMAT}", commit_id, "--"]).stdout
        commits = _parse_log(output)
        if not commits:
            raise GitError(f"commit {commit_id} not found")
        return commits[0]

    def commit_diff(self, commit_id: str) -> CommitDiff:
        commit = self.read_commit(commit_id)
        base = commit.parent_ids[0] if commit.parent_ids else self.empty_tree()
        raw = self._git([*self._diff_args(), base, commit.id, "--"]).stdout
        return CommitDiff(commit=commit, files=parse_unified_diff(raw))

    def staged_diff(self) -> CommitDiff:
        """Return the changes in the index as a synthetic commit diff."""

        raw = self._git([*self._diff_args(), "--cached", "--"]).stdout
        return CommitDiff(commit=self._synthetic(STAGED_ID, "Staged changes"), files=parse_unified_diff(raw))

    def unstaged_diff(self) -> CommitDiff:
        """Return the working tree changes relative to the index."""

        raw = self._git([*self._diff_args(), "--"]).stdout
        return CommitDiff(commit=self._synthetic(UNSTAGED_ID, "Unstaged changes"), files=parse_unified_diff(raw))

    def _synthetic(self, oid: str, summary: str) -> Commit:
        return Commit(
            id=oid,
            summary=summary,
            full_message=f"{summary}\n",
            author="",
            parent_ids=(self.head_oid(),),
        )

    def dirty_paths(self) -> List[str]:
        """Return tracked paths with staged or unstaged changes."""

        output = self._git(["status", "--porcelain", "-z", "--untracked-files=no"]).stdout
        entries = output.split("\x00")
        paths: Set[str] = set()
        i = 0
        while i < len(entries):
            entry = entries[i]
            i += 1
            if len(entry) < 4:
                continue
            status, path = entry[:2], entry[3:]
            paths.add(path)
            if status[0] in "RC" and i < len(entries):
                # Renames and copies are followed by their source path.
                paths.add(entries[i])
                i += 1
        return sorted(paths)

    def trees_equal(self, a: str, b: str) -> bool:
        """
        Return True if the trees for commits a and b are identical.
        """

        completed = self._git(["diff", "--quiet", a, b, "--"], ok_codes=(0, 1))
        return completed.returncode == 0

    def _changed_paths(self, a: str, b: str, paths: Iterable[str]) -> Set[str]:
        args = ["diff", "--name-only", "--no-renames", a, b, "--", *paths]
        return set(_lines(self._git(args).stdout))

    # Writing

    def cherry_pick(self, commit_id: str, onto: str) -> PickResult:
        commit = self.read_commit(commit_id)
        if not commit.parent_ids:
            raise GitError(f"cannot cherry-pick root commit {commit.short_id}")
        parent = commit.parent_ids[0]
        if parent == onto:
            # Picking a commit onto its own parent reproduces it.
            return PickResult(commit_id=commit.id)

        completed = self._git(
            [
                "merge-tree",
                "--write-tree",
                "--name-only",
                "--no-messages",
                f"--merge-base={parent}",
                onto,
                commit.id,
            ],
            ok_codes=(0, 1),
        )
        lines = completed.stdout.splitlines()
        if not lines:
            raise GitError(f"git merge-tree printed no tree for {commit.short_id}")
        tree = lines[0].strip()

        if completed.returncode == 1:
            paths: List[str] = []
            for line in lines[1:]:
                if not line:
                    break
                path = _unquote(line)
                if path not in paths:
                    paths.append(path)
            report = ConflictReport(
                paths=tuple(paths),
                sides=self._conflict_sides(parent, onto, commit.id, paths),
                message=f"could not apply {commit.short_id} {commit.summary}",
            )
            LOG.debug("Cherry-pick of %s onto %s conflicts in %s", commit.short_id, onto, paths)
            return PickResult(conflict=report)

        new_id = self.create_commit(tree, [onto], commit.full_message, author=commit)
        return PickResult(commit_id=new_id)

    def _conflict_sides(
        self, parent: str, onto: str, commit: str, paths: Sequence[str]
    ) -> Dict[str, Tuple[str, ...]]:
        if not paths:
            return {}
        onto_changed = self._changed_paths(parent, onto, paths)
        commit_changed = self._changed_paths(parent, commit, paths)
        sides: Dict[str, Tuple[str, ...]] = {}
        for path in paths:
            sides[path] = tuple(
                side
                for side, changed in (("onto", onto_changed), ("commit", commit_changed))
                if path in changed
            )
        return sides

    def apply_hunks(
        self,
        commit_id: str,
        keep: Sequence[HunkRef],
        applied: Sequence[HunkRef],
        onto: str,
        message: str,
    ) -> PickResult:
        diff = self.commit_diff(commit_id)
        patch = render_partial_diff(diff.files, keep, applied)
        if not patch:
            raise GitError(f"no hunks of {diff.commit.short_id} selected")

        apply_args = ["apply", "--cached", "--whitespace=nowarn"]
        if self.context_lines == 0:
            apply_args.append("--unidiff-zero")

        with tempfile.TemporaryDirectory(prefix="git-tailor-") as tmp:
            env = dict(os.environ)
            env["GIT_INDEX_FILE"] = os.path.join(tmp, "index")
            self._git(["read-tree", onto], env=env)
            completed = self._git(apply_args, input_text=patch, env=env, ok_codes=(0, 1))
            if completed.returncode == 1:
                paths = tuple(dict.fromkeys(ref.path for ref in keep))
                LOG.debug("Patch for %s did not apply: %s", diff.commit.short_id, completed.stderr)
                return PickResult(
                    conflict=ConflictReport(
                        paths=paths,
                        sides={path: ("onto", "commit") for path in paths},
                        message=completed.stderr.strip(),
                    )
                )
            tree = self._git(["write-tree"], env=env).stdout.strip()

        new_id = self.create_commit(tree, [onto], message, author=diff.commit)
        return PickResult(commit_id=new_id)

    def create_commit(
        self,
        tree: str,
        parents: Sequence[str],
        message: str,
        author: Optional[Commit] = None,
    ) -> str:
        args = ["commit-tree", tree]
        for parent in parents:
            args.extend(["-p", parent])
        args.extend(["-F", "-"])

        env = None
        if author is not None:
            env = dict(os.environ)
            env["GIT_AUTHOR_NAME"] = author.author
            env["GIT_AUTHOR_EMAIL"] = author.author_email
            env["GIT_AUTHOR_DATE"] = _git_date(author.author_date)
            # Same tree, parents, message and source commit give the same id.
            env["GIT_COMMITTER_DATE"] = _git_date(author.commit_date)

        return self._git(args, input_text=message, env=env).stdout.strip()

    def update_ref(self, name: str, target: str, expected_old: Optional[str] = None) -> None:
        full_name = name if name.startswith("refs/") else f"refs/heads/{name}"
        checked_out = self.current_branch()

        if checked_out is not None and f"refs/heads/{checked_out}" == full_name:
            current = self.head_oid()
            if expected_old is not None and current != expected_old:
                raise RefUpdateError(
                    f"{name} moved from {expected_old[:8]} to {current[:8]} during the rewrite"
                )
            try:
                self._git(["reset", "--keep", target])
            except GitError as exc:
                raise RefUpdateError(f"could not move checked-out branch {name}: {exc}") from exc
            return

        args = ["update-ref", "-m", "git-tailor: rewrite", full_name, target]
        if expected_old is not None:
            args.append(expected_old)
        try:
            self._git(args)
        except GitError as exc:
            raise RefUpdateError(f"could not move {name}: {exc}") from exc
