"""Job logging: stdout, plus logs/cron_<job>.log when CRON_LOG_DIR is writable."""

import logging
import os
from pathlib import Path

_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
LIBRARY_LOGGER = "apps.catalog"


def _handlers(file_name: str) -> list[logging.Handler]:
    fmt = logging.Formatter(_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    log_dir = Path(os.getenv("CRON_LOG_DIR", "logs"))
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_dir / file_name, encoding="utf-8"))
    except OSError as exc:
        logging.getLogger(__name__).warning("file logging disabled (%s): %s", log_dir, exc)
    for handler in handlers:
        handler.setFormatter(fmt)
    return handlers


def get_logger(job_name: str) -> logging.Logger:
    """
    Logger for one job. Catalog library loggers (apps.catalog.*) get their own handlers once
    per process, writing to cron_catalog.log, so several jobs in one process log each line once.
    """
    level = os.getenv("CRON_LOG_LEVEL", "INFO").upper()
    library = logging.getLogger(LIBRARY_LOGGER)
    if not library.handlers:
        library.setLevel(level)
        for handler in _handlers("cron_catalog.log"):
            library.addHandler(handler)

    logger = logging.getLogger(f"cron.{job_name}")
    if logger.handlers:
        return logger
    logger.setLevel(level)
    for handler in _handlers(f"cron_{job_name}.log"):
        logger.addHandler(handler)
    return logger
