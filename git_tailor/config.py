"""
Configuration model for git-tailor.

The CLI constructs a Config instance and passes it down into the core
orchestration logic so behavior can be adjusted without relying on
global state.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

REFERENCE_ENV_VAR = "GIT_TAILOR_REFERENCE"


@dataclass
class Config:
    """
    Top-level configuration for a git-tailor run.

    reference is the commit-ish whose merge-base with HEAD bounds the
    commits being inspected or rewritten.
    """

    reference: Optional[str] = None
    repo_path: Optional[str] = None
    dry_run: bool = False
    assume_yes: bool = False
    propagate: bool = False
    full_fragmap: bool = False
    include_worktree: bool = False
    context_lines: int = 0
    verbosity: int = 0

    def resolved_reference(self) -> Optional[str]:
        return self.reference or os.environ.get(REFERENCE_ENV_VAR) or None
