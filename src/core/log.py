"""Logging setup.

One call from the CLI callback configures the root logger: Rich on stderr for
humans, an optional plain file handler with the historical
`[YYYY-mm-dd HH:MM:SS] [LEVEL] message` format for audit trails.

Stdout stays reserved for machine-readable output (monitor JSON/CSV, dry-run
listings).
"""

from __future__ import annotations

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

_FILE_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def success(logger: logging.Logger, message: str, *args: object) -> None:
    """Log at the SUCCESS level."""

    logger.log(SUCCESS, message, *args)


def configure_logging(*, verbose: bool = False, log_file: Path | None = None, console: Console | None = None) -> None:
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    root.setLevel(logging.DEBUG if verbose else logging.INFO)

    rich_handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        show_time=verbose,
        rich_tracebacks=verbose,
        markup=False,
    )
    rich_handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(rich_handler)

    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
        except OSError as exc:
            root.warning("Cannot open log file %s (%s); logging to console only", log_file, exc)
        else:
            file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_DATE_FORMAT))
            root.addHandler(file_handler)

    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
