"""Shared helpers for tests that drive a real git repository."""

from __future__ import annotations

import re
import subprocess
from pathlib import Path
from typing import Dict, Optional

import pytest


def _run_git(args, cwd: Path) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        ["git", *args],
        cwd=str(cwd),
        text=True,
        capture_output=True,
        check=True,
    )


def _git_version() -> tuple:
    try:
        output = subprocess.run(
            ["git", "--version"], text=True, capture_output=True, check=True
        ).stdout
    except (OSError, subprocess.CalledProcessError):
        return (0,)
    match = re.search(r"(\d+)\.(\d+)", output)
    return (int(match.group(1)), int(match.group(2))) if match else (0,)


# `git merge-tree --write-tree --merge-base` appeared in git 2.40.
requires_merge_tree = pytest.mark.skipif(
    _git_version() < (2, 40),
    reason="git 2.40 or newer is required for merge-tree based cherry-picks",
)


class GitRepo:
    """A throwaway repository with a `commit` helper."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def git(self, *args: str) -> str:
        return _run_git(list(args), cwd=self.path).stdout

    def rev(self, rev: str = "HEAD") -> str:
        return self.git("rev-parse", rev).strip()

    def commit(self, files: Dict[str, Optional[str]], message: str) -> str:
        for name, text in files.items():
            target = self.path / name
            if text is None:
                self.git("rm", "-q", name)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(text)
            self.git("add", name)
        self.git("commit", "-q", "-m", message)
        return self.rev()

    def read(self, name: str, rev: str = "HEAD") -> str:
        return self.git("show", f"{rev}:{name}")


@pytest.fixture
def git_repo(tmp_path) -> GitRepo:
    repo = tmp_path / "repo"
    repo.mkdir()
    _run_git(["init", "-q"], cwd=repo)
    _run_git(["symbolic-ref", "HEAD", "refs/heads/main"], cwd=repo)
    _run_git(["config", "user.name", "git-tailor"], cwd=repo)
    _run_git(["config", "user.email", "git-tailor@example.com"], cwd=repo)
    _run_git(["config", "commit.gpgsign", "false"], cwd=repo)
    return GitRepo(repo)
