import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from ..config.config import settings


def setup_logging(log_dir: str = None, level: int = logging.INFO):
    """
    Installs the central logging configuration for the whole application.

    Logs go both to the console (for development) and to a file that is
    rotated once it reaches a fixed size (for production). Gateway failures
    are logged with their store diagnostics, so the file doubles as the
    place to look when a row-level security policy is misconfigured.
    """
    # Time - module name - level - message
    log_format = "%(asctime)s - [%(name)s] - %(levelname)s - %(message)s"

    directory = Path(log_dir or settings.LOG_DIR)
    directory.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger()
    logger.setLevel(level)

    # Drop handlers installed by uvicorn and friends so our format wins.
    if logger.hasHandlers():
        logger.handlers.clear()

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(logging.Formatter(log_format))
    logger.addHandler(stdout_handler)

    # Past 5MB the file is moved to app.log.1, app.log.2 ...
    file_handler = RotatingFileHandler(
        directory / "app.log",
        maxBytes=5*1024*1024,  # 5 MB
        backupCount=5
    )
    file_handler.setFormatter(logging.Formatter(log_format))
    logger.addHandler(file_handler)

    # httpx logs every request at INFO; keep it quieter than our own logs.
    logging.getLogger("httpx").setLevel(logging.WARNING)
