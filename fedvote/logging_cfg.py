"""fedvote.logging_cfg - one-liner helper to enable consistent logging settings.

The library itself only creates named loggers (``fedvote.*``); applications
and scripts call ``setup_logging`` to see their output.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path


def setup_logging(level: str | int = "INFO", log_dir: str | None = None) -> Path | None:
    """Configure the root logger to log to console and an optional file.

    Returns the path to the log file if written, else None.
    """
    level_num = (
        getattr(logging, str(level).upper(), logging.INFO)
        if isinstance(level, str)
        else level
    )

    for h in logging.root.handlers[:]:
        logging.root.removeHandler(h)

    fmt = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    datefmt = "%H:%M:%S"
    logging.basicConfig(level=level_num, format=fmt, datefmt=datefmt)

    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_path = Path(log_dir) / f"fedvote_{ts}.log"
        fh = logging.FileHandler(log_path)
        fh.setFormatter(logging.Formatter(fmt, datefmt))
        logging.getLogger().addHandler(fh)
        return log_path
    return None
