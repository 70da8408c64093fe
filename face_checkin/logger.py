import logging
from logging.handlers import RotatingFileHandler

from .config import LOG_BACKUP_COUNT, LOG_DIR, LOG_FILE, LOG_LEVEL, LOG_MAX_BYTES

ROOT_LOGGER_NAME = "face_checkin"


def _configure_root() -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if root.handlers:
        return root

    LOG_DIR.mkdir(parents=True, exist_ok=True)
    level = logging.getLevelName(LOG_LEVEL)
    root.setLevel(level if isinstance(level, int) else logging.INFO)
    root.propagate = False
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # One rotating file per process; every component logger writes through it.
    file_handler = RotatingFileHandler(
        LOG_FILE,
        maxBytes=LOG_MAX_BYTES,
        backupCount=LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)
    return root


def setup_logger(name: str) -> logging.Logger:
    """Component logger ``face_checkin.<name>`` sharing the package handlers."""
    _configure_root()
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
