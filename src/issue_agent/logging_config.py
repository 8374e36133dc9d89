from __future__ import annotations

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


LOG_FORMAT = "%(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(verbose: bool = False, logger_name: Optional[str] = None) -> logging.Logger:
    """
    Configure process-wide logging and return a scoped logger.

    Output goes to stderr through Rich so stdout stays free for command results.
    """
    level = logging.DEBUG if verbose else logging.INFO
    handler = RichHandler(
        console=Console(stderr=True),
        show_time=True,
        show_path=False,
        log_time_format=DATE_FORMAT,
    )
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=[handler], force=True)
    # httpx logs every request at INFO, which drowns out stage progress.
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger = logging.getLogger(logger_name or "issue_agent")
    logger.debug("Logging configured with level %s", logging.getLevelName(level))
    return logger
