from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Optional

LOG_ENV_VAR = "PORTCALC_LOG_DIR"
LOG_LEVEL_ENV_VAR = "PORTCALC_LOG_LEVEL"
LOG_FILE_PREFIX = "portcalc"
LOG_TIME_FORMAT = "%Y%m%d-%H%M%S%f"
DEFAULT_LOG_LEVEL = logging.DEBUG

_current_log_file: Optional[Path] = None


def resolve_log_directory() -> Path:
    """Resolve the directory where log files and port traces are written."""
    override = os.getenv(LOG_ENV_VAR)
    if override:
        log_dir = Path(override).expanduser()
    else:
        log_dir = Path(__file__).resolve().parent.parent / "logs"

    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir.resolve()


def resolve_log_level() -> int:
    """Read ``PORTCALC_LOG_LEVEL`` (a level name or number); defaults to DEBUG."""
    raw = os.getenv(LOG_LEVEL_ENV_VAR, "").strip()
    if not raw:
        return DEFAULT_LOG_LEVEL
    if raw.isdigit():
        return int(raw)
    level = logging.getLevelName(raw.upper())
    if isinstance(level, int):
        return level
    return DEFAULT_LOG_LEVEL


def setup_logging() -> Path:
    """Point the ``portcalc`` logger at a fresh timestamped file for this run."""
    global _current_log_file

    log_dir = resolve_log_directory()
    timestamp = datetime.now().strftime(LOG_TIME_FORMAT)
    log_path = log_dir / f"{LOG_FILE_PREFIX}-{timestamp}.log"
    level = resolve_log_level()

    logger = logging.getLogger("portcalc")
    logger.setLevel(level)
    logger.propagate = False

    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    )
    logger.addHandler(file_handler)

    _current_log_file = log_path
    logger.info(
        "Initialized logging at level %s; writing to %s",
        logging.getLevelName(level),
        log_path,
    )
    return log_path


def get_current_log_file() -> Optional[Path]:
    """Return the log file initialized for the current run, if any."""
    return _current_log_file
