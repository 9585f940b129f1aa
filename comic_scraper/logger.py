"""Console + rotating-file logging for the comic_scraper logger tree."""

import logging
import os
from logging.handlers import RotatingFileHandler

LOGGER_NAME = "comic_scraper"
LOG_FILE = "comic_scraper.log"

# httpx/httpcore log every request at INFO, which drowns out crawl progress
NOISY_LOGGERS = ("httpx", "httpcore")


def setup_logger(log_dir: str = "logs", level: int = logging.INFO) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    if logger.handlers:
        # Called again (e.g. --verbose after config load): only adjust levels
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger

    os.makedirs(log_dir, exist_ok=True)
    fmt = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(fmt)
    logger.addHandler(console)

    # 10MB per file, keep 5
    rotating = RotatingFileHandler(
        os.path.join(log_dir, LOG_FILE),
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    rotating.setLevel(level)
    rotating.setFormatter(fmt)
    logger.addHandler(rotating)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    return logger
