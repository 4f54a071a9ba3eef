"""Logging configuration for the Assetflow CLI."""

from __future__ import annotations

import logging
import sys


class _ConsoleNoiseFilter(logging.Filter):
    """
    Keep the console readable:
    - allow every assetflow log at the configured level
    - suppress chatty third-party libraries (watchdog, websockets, PIL) unless WARNING+
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name == "assetflow" or record.name.startswith("assetflow."):
            return True
        return record.levelno >= logging.WARNING


def setup_logging(verbose: bool = False) -> None:
    """
    Configure a single stderr handler for the process.

    Call this once, before the first task runs. Calling it again replaces our
    handler instead of adding a duplicate; handlers installed by others stay.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)

    for h in list(root.handlers):
        if getattr(h, "_assetflow", False):
            root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    ch = logging.StreamHandler(sys.stderr)
    ch.setFormatter(fmt)
    ch.addFilter(_ConsoleNoiseFilter())
    ch._assetflow = True  # type: ignore[attr-defined]
    root.addHandler(ch)

    logging.captureWarnings(True)
