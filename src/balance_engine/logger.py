"""Logging configuration for the balance engine."""

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.traceback import install as install_rich_traceback

NOISY_LOGGERS = ("httpx", "httpcore")


def setup_logging(level: str | None = None, console: Console | None = None, debug: bool = False) -> None:
    """
    Configure logging for the application.

    Output goes through a rich console handler. With ``debug`` the
    level is forced to DEBUG and rich tracebacks are installed.

    Parameters
    ----------
    level : str | None
        Level name, e.g. ``"DEBUG"``, INFO when None
    console : Console | None
        Console to log to, stderr by default
    debug : bool
        Enable debug output

    """
    log_level = "DEBUG" if debug else (level or "INFO").upper()
    numeric_level = getattr(logging, log_level, logging.INFO)

    handler = RichHandler(
        console=console or Console(stderr=True),
        rich_tracebacks=debug,
        show_path=debug,
        log_time_format="[%Y-%m-%d %H:%M:%S]",
    )
    logging.basicConfig(level=numeric_level, format="%(message)s", handlers=[handler], force=True)

    # httpx logs every request at INFO
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if debug:
        install_rich_traceback(show_locals=False)
