"""Logging configuration for the wasm-release CLI."""

import logging
import sys
from typing import TextIO

from rich.console import Console
from rich.logging import RichHandler


def resolve_level(
    verbosity: int = 0,
    quiet: bool = False,
    default: str = "INFO",
) -> int:
    """Resolve the effective log level.

    Flag precedence: quiet > verbosity > default (settings log_level).
    """
    if quiet:
        return logging.WARNING
    if verbosity >= 1:
        return logging.DEBUG
    return logging.getLevelName(default.upper())


def configure_logging(
    verbosity: int = 0,
    quiet: bool = False,
    default_level: str = "INFO",
    no_color: bool = False,
    stream: TextIO = sys.stderr,
) -> Console:
    """Configure logging based on CLI options.

    Log records go to stderr through Rich so that stdout stays clean for
    ``--json`` output.

    Args:
        verbosity: Number of -v flags.
        quiet: Only show warnings and errors.
        default_level: Level used without -v/-q (from settings).
        no_color: Disable colored output.
        stream: Output stream for logs.

    Returns:
        Configured Rich console for log output.
    """
    level = resolve_level(verbosity, quiet, default_level)

    console = Console(
        file=stream,
        no_color=no_color,
    )

    handler = RichHandler(
        console=console,
        show_time=verbosity >= 1,
        show_path=verbosity >= 2,
    )

    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[handler],
        force=True,
    )

    return console


__all__ = ["configure_logging", "resolve_level"]
