import os
import logging
from typing import Iterable, Optional

from rich.logging import RichHandler

QUIET_LOGGERS = ("uvicorn.access", "httpx")


def setup_logging(level: Optional[str] = None, quiet: Iterable[str] = QUIET_LOGGERS) -> RichHandler:
    """
    Route Vigil* component loggers through a single RichHandler.

    Calling it again swaps the previous RichHandler instead of stacking a
    second one; handlers installed by other code are left in place.
    """
    level = (level or os.getenv("VIGIL_LOG_LEVEL", "INFO")).upper()

    root = logging.getLogger()
    for existing in [h for h in root.handlers if isinstance(h, RichHandler)]:
        root.removeHandler(existing)
    root.setLevel(level)

    handler = RichHandler(
        rich_tracebacks=True,
        show_time=True,
        show_level=True,
        show_path=False,
    )
    handler.setLevel(level)

    # RichHandler renders time and level itself
    handler.setFormatter(logging.Formatter("[%(name)s] %(message)s"))
    root.addHandler(handler)

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)

    return handler
