"""
Custom exception types used across git-tailor.

Defining explicit error classes makes it easier for the CLI and higher
layers to distinguish between user-facing failures, infrastructure
faults worth retrying and programming errors.

Content conflicts are not exceptions: they are reported as
ConflictReport values in domain.py.
"""

from __future__ import annotations


class GitTailorError(Exception):
    """Base class for all git-tailor specific errors."""


class GitError(GitTailorError):
    """Raised when git operations fail."""


class DiffParseError(GitTailorError):
    """Raised when parsing a diff fails."""


class InvalidSpan(GitTailorError, ValueError):
    """Raised when a span is constructed with a malformed line range."""


class InvalidOrder(GitTailorError):
    """Raised when a reorder or squash request is not satisfiable."""


class EmptySplit(GitTailorError):
    """Raised when a split strategy would produce no commits."""


class PlanValidationError(GitTailorError):
    """Raised when a plan violates core invariants."""


class RefUpdateError(GitTailorError):
    """Raised when a branch ref cannot be moved to its new target."""


class UnsupportedOperationError(GitTailorError):
    """Raised when a requested workflow is not supported safely."""
