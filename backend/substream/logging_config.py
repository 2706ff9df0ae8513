"""
Logging setup for the service process.

Console output plus a daily rotated file under log_dir (7 days kept).
Modules log through logging.getLogger(__name__) and never configure handlers.
"""

import logging
import logging.handlers
from pathlib import Path
from typing import Optional

LOG_FORMAT = "[%(asctime)s] %(levelname)s: %(message)s"
LOG_FILENAME = "app.log"
LOG_BACKUP_DAYS = 7


def configure_logging(level: str = "INFO", log_dir: Optional[str] = None) -> logging.Logger:
    """
    Configure the root logger.

    Safe to call more than once: handlers installed by a previous call are replaced.

    Args:
        level: Log level name (DEBUG, INFO, ...)
        log_dir: Directory for the rotating log file, None for console only

    Returns:
        The configured root logger
    """
    root = logging.getLogger()
    root.setLevel(level)

    for handler in list(root.handlers):
        if getattr(handler, "_substream", False):
            root.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    console._substream = True
    root.addHandler(console)

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.TimedRotatingFileHandler(
            path / LOG_FILENAME,
            when="midnight",
            backupCount=LOG_BACKUP_DAYS,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        file_handler._substream = True
        root.addHandler(file_handler)

    return root
