"""
Logging helpers for git-tailor.

Every module logs through its own `logging.getLogger(__name__)`; this
module only configures levels and format once, from the CLI.
"""

from __future__ import annotations

import logging

GIT_LOGGER = "git_tailor.git_adapter"


def configure_logging(verbosity: int) -> None:
    """
    Configure the root logger based on a verbosity count.

    verbosity == 0 -> WARNING
    verbosity == 1 -> INFO
    verbosity == 2 -> DEBUG, except individual git invocations
    verbosity >= 3 -> DEBUG, including every git command line
    """

    if verbosity <= 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(levelname)s %(name)s: %(message)s",
    )

    git_level = logging.DEBUG if verbosity >= 3 else max(level, logging.INFO)
    logging.getLogger(GIT_LOGGER).setLevel(git_level)
