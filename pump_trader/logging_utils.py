"""Rotating file logs for the trader process."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_DIR = Path("logs")
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers that are noisy at INFO or may echo request payloads
QUIET_LOGGERS = ("solders", "httpx", "telegram.ext", "aiohttp.access")


def _rotating_handler(path: Path, level: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=5_000_000, backupCount=7, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
    return handler


def configure_component_logger(
    namespace: str,
    prefix: str,
    level: int = logging.INFO,
    log_dir: Path = LOG_DIR,
) -> logging.Logger:
    """
    Write `<prefix>.log` at `level` and `<prefix>_errors.log` at ERROR for a
    logger namespace. Files that already have a handler are skipped.
    """
    logger = logging.getLogger(namespace)
    logger.setLevel(level)
    log_dir.mkdir(parents=True, exist_ok=True)

    existing = {
        Path(h.baseFilename).name
        for h in logger.handlers
        if isinstance(h, RotatingFileHandler)
    }
    for filename, file_level in ((f"{prefix}.log", level), (f"{prefix}_errors.log", logging.ERROR)):
        if filename not in existing:
            logger.addHandler(_rotating_handler(log_dir / filename, file_level))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logger
