# core/logger.py
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import List, Optional

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(threadName)s %(message)s"

# Loggers that are noisy at DEBUG while paging through a list.
QUIET_LOGGERS = ("urllib3", "charset_normalizer", "bs4")

_configured = False


def env_flag(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").strip().lower() in ("1", "true", "yes", "on")


def level_from_env(default: str = "INFO") -> int:
    name = os.getenv("LOG_LEVEL", default).strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _rotating_handler(path: str, level: int, formatter: logging.Formatter) -> Optional[logging.Handler]:
    try:
        dirname = os.path.dirname(path)
        if dirname:
            os.makedirs(dirname, exist_ok=True)
        handler = RotatingFileHandler(
            path,
            maxBytes=int(os.getenv("LOG_MAX_BYTES", str(2 * 1024 * 1024))),
            backupCount=int(os.getenv("LOG_BACKUPS", "3")),
            encoding="utf-8",
        )
    except (OSError, ValueError) as e:
        logging.getLogger(__name__).warning("Failed to initialize file logging at %s: %s", path, e)
        return None
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def build_handlers(level: int) -> List[logging.Handler]:
    """
    Handlers described by the LOG_* environment:
    stdout, the rotating main log and an optional errors-only log.
    """
    formatter = logging.Formatter(LOG_FORMAT)
    handlers: List[logging.Handler] = []

    if env_flag("LOG_TO_STDOUT", True):
        ch = logging.StreamHandler(sys.stdout)
        ch.setLevel(level)
        ch.setFormatter(formatter)
        handlers.append(ch)

    if env_flag("LOG_TO_FILE", True):
        fh = _rotating_handler(os.getenv("LOG_FILE", "/data/booth_wishlist_search.log"), level, formatter)
        if fh is not None:
            handlers.append(fh)

    error_file = os.getenv("LOG_ERROR_FILE", "").strip()
    if error_file:
        eh = _rotating_handler(error_file, logging.ERROR, formatter)
        if eh is not None:
            handlers.append(eh)

    return handlers


def quiet_third_party(level: int) -> None:
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.INFO))


def setup_logging():
    global _configured
    if _configured:
        return

    level = level_from_env()
    root = logging.getLogger()
    root.setLevel(level)

    # Leave handlers installed by a host (pytest, an embedding app) alone.
    if not root.handlers:
        for handler in build_handlers(level):
            root.addHandler(handler)

    quiet_third_party(level)
    _configured = True


def log_startup(logger: logging.Logger, **settings) -> None:
    """One line per setting so a daemon's log shows what it was started with."""
    logger.info("Starting with Python %s on %s", sys.version.split()[0], sys.platform)
    for key in sorted(settings):
        logger.info("  %s = %s", key, settings[key])


def get_logger(name: str | None = None) -> logging.Logger:
    setup_logging()
    return logging.getLogger(name)
