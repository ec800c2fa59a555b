import logging
import logging.handlers
import os
from datetime import datetime
from pathlib import Path

import coloredlogs
import pytz

ROOT = "log_viewer"
CONSOLE_FMT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
FILE_FMT = "%(asctime)s [%(levelname)s] %(name)s %(funcName)s:%(lineno)d | %(message)s"
DATE_FMT = "%Y-%m-%d %H:%M:%S"

_tz = pytz.timezone("Asia/Shanghai")


def now_str() -> str:
    return datetime.now(_tz).strftime(DATE_FMT)


def get_logger(name: str) -> logging.Logger:
    if name == ROOT or name.startswith(ROOT + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT}.{name}")


def setup_logging(cfg) -> logging.Logger:
    """Configure the ``log_viewer`` logger tree from a ``LogConfig``.

    Console output goes through coloredlogs, the optional file handler rotates
    by size. Timestamps of both are rendered in ``cfg.timezone``.
    """
    global _tz
    _tz = pytz.timezone(cfg.timezone)
    logging.Formatter.converter = lambda *args: datetime.now(_tz).timetuple()

    logger = logging.getLogger(ROOT)
    level = getattr(logging, cfg.level, logging.INFO)
    logger.setLevel(level)
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()

    coloredlogs.install(level=level, logger=logger, fmt=CONSOLE_FMT, datefmt=DATE_FMT)

    if cfg.file_path:
        os.makedirs(Path(cfg.file_path).parent, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            cfg.file_path,
            maxBytes=cfg.max_bytes,
            backupCount=cfg.backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(FILE_FMT, datefmt=DATE_FMT))
        logger.addHandler(file_handler)
    # console handler is installed on our logger; keep records off the root
    logger.propagate = False
    return logger
