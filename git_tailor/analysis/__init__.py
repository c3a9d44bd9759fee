"""
Analysis package for git-tailor.

This package turns per-commit diffs into location spans, clusters
overlapping spans across commits into a fragmap, and predicts how
commits that share code regions relate to each other. Everything here
is pure: no git access and no mutation of the inputs.
"""

from .clustering import cluster, compact, maximality_violations
from .relations import predict_squash, relationship, relationship_table, squash_target

__all__ = [
    "cluster",
    "compact",
    "maximality_violations",
    "predict_squash",
    "relationship",
    "relationship_table",
    "squash_target",
]
