from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import Settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"

_HANDLER_NAME = "svcdash-file"


def setup_logging(settings: Settings) -> Path | None:
    """Send svcdash diagnostics to a rotating file.

    The terminal belongs to the dashboard, so nothing is written to stderr once
    the UI is up. Returns the log path, or None when the file could not be
    opened (logging is then disabled rather than failing start-up).
    """
    root = logging.getLogger("svcdash")
    root.setLevel(getattr(logging, settings.log_level, logging.INFO))
    root.propagate = False

    # Idempotent: replace a handler installed by an earlier call
    for h in list(root.handlers):
        if h.get_name() == _HANDLER_NAME:
            root.removeHandler(h)
            h.close()

    path = settings.log_file
    if path is None:
        root.addHandler(logging.NullHandler())
        return None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(path, maxBytes=1_000_000, backupCount=2, encoding="utf-8")
    except OSError:
        root.addHandler(logging.NullHandler())
        return None
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    root.addHandler(handler)
    return path
