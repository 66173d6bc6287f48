"""
Logging configuration for vehiclelink

Two rotating files under the log directory:

- ``vehiclelink.log``: everything at the requested level, per-frame DEBUG included
- ``vehiclelink_faults.log``: WARNING and above only, i.e. link faults,
  dropped frames, decode errors and reconnects

The console never shows more than INFO so a DEBUG session stays readable.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional


DEFAULT_LOG_DIR = Path.home() / ".vehiclelink" / "logs"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

MAIN_LOG = "vehiclelink.log"
FAULT_LOG = "vehiclelink_faults.log"

# file name, level (None follows log_level), max size in MB, backups
_FILE_HANDLERS = (
    (MAIN_LOG, None, 10, 5),
    (FAULT_LOG, logging.WARNING, 5, 3),
)

# Chatty below WARNING and of no use when debugging the link
_QUIET_LOGGERS = ("asyncio", "serial", "serial_asyncio")

_installed: List[logging.Handler] = []


def setup_logger(
    log_level=logging.INFO,
    log_dir: Optional[Path] = None,
    console: bool = True,
) -> Path:
    """
    Install file and console handlers on the root logger.

    Calling it again replaces the handlers from the previous call and
    leaves any others alone.

    Args:
        log_level: Level for the main log file (default: INFO)
        log_dir: Directory for log files (default: ~/.vehiclelink/logs)
        console: Also log to stdout

    Returns:
        Path of the main log file
    """
    log_dir = Path(log_dir) if log_dir is not None else DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    for handler in _installed:
        root_logger.removeHandler(handler)
        handler.close()
    _installed.clear()

    formatter = logging.Formatter(LOG_FORMAT)
    for name, level, max_size_mb, backups in _FILE_HANDLERS:
        handler = RotatingFileHandler(
            log_dir / name,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backups,
            encoding="utf-8",
        )
        handler.setLevel(log_level if level is None else level)
        _installed.append(handler)

    if console:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(max(log_level, logging.INFO))
        _installed.append(handler)

    for handler in _installed:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    log_file = log_dir / MAIN_LOG
    logging.getLogger(__name__).info(f"Logging to {log_file} at {logging.getLevelName(log_level)}")
    return log_file
