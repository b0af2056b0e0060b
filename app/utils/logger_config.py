import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from app.config.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
MAX_LOG_BYTES = 1024 * 1024  # 1MB


def _file_handler(path: Path, level) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        path,
        maxBytes=MAX_LOG_BYTES,
        backupCount=5,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def setup_logger(name: str = "koligo"):
    """
    Logger shared by the sync core and the backend services.

    Console plus two rotating files under LOG_DIR: realtime.log for
    everything at LOG_LEVEL, errors.log for errors only.
    """
    logger = logging.getLogger(name)
    logger.setLevel(settings.LOG_LEVEL)

    # Handlers are attached once per logger name
    if logger.handlers:
        return logger

    log_dir = Path(settings.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(settings.LOG_LEVEL)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(console_handler)

    logger.addHandler(_file_handler(log_dir / "realtime.log", settings.LOG_LEVEL))
    logger.addHandler(_file_handler(log_dir / "errors.log", logging.ERROR))

    return logger
