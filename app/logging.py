"""Logging setup for transcribe-runner processes."""

from __future__ import annotations

import logging
from typing import Optional, TextIO


def configure_logging(
    verbose: bool = False,
    stream: Optional[TextIO] = None,
    level: Optional[int] = None,
) -> None:
    """Configure application logging.

    Args:
        verbose: When True, sets the log level to DEBUG. Otherwise `level` or WARNING.
        stream: Destination stream (defaults to stderr). The batch executor logs
            to stdout so its lines reach the controller's log channel.
        level: Base level used when not verbose.
    """

    if verbose:
        level = logging.DEBUG
    elif level is None:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
        stream=stream,
        force=True,
    )
