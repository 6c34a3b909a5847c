"""Logging setup for the crossdeploy CLI."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: str = "INFO", console: Console | None = None) -> None:
    """Configure root logging for a CLI session.

    Tool output (docker, cargo, ssh) is streamed to the terminal directly and
    does not pass through here; this only covers crossdeploy's own messages.
    """
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        show_time=False,
        markup=False,
    )
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        handlers=[handler],
        force=True,
    )
    logging.getLogger(__name__).debug("Logging configured with level %s", level)


__all__ = ["configure_logging"]
