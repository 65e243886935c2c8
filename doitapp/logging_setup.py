"""Logging configuration for the command line."""

from __future__ import annotations

import logging

from rich.logging import RichHandler

from doitapp.display import console


class _QuietThirdParty(logging.Filter):
    """Keep doitapp logs; let other libraries through only at WARNING and up."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith("doitapp"):
            return True
        return record.levelno >= logging.WARNING


def setup_logging(verbose: bool = False) -> None:
    """Send log records through the shared Rich console; call once per process."""
    level = logging.DEBUG if verbose else logging.WARNING
    handler = RichHandler(console=console, show_path=False, rich_tracebacks=verbose)
    handler.addFilter(_QuietThirdParty())

    root = logging.getLogger()
    for existing in list(root.handlers):
        if isinstance(existing, RichHandler):
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)
