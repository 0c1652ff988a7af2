"""
Logging setup: one rotating log file per day under LOG_DIR plus console output.
"""
import logging
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(app) -> logging.Logger:
    """Attach file and console handlers to the package and Flask loggers."""
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)

    log_dir = Path(app.config["LOG_DIR"])
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"retailpos_{datetime.now().strftime('%Y-%m-%d')}.log"

    # maxBytes=10MB, keep 5 backups
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    pkg_logger = logging.getLogger("retailpos")
    pkg_logger.setLevel(level)
    pkg_logger.handlers.clear()
    pkg_logger.addHandler(file_handler)
    pkg_logger.addHandler(console_handler)

    app.logger.handlers.clear()
    app.logger.setLevel(level)
    app.logger.addHandler(file_handler)
    app.logger.addHandler(console_handler)

    # SQL noise only at WARNING
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)

    pkg_logger.info("Logging configured. File: %s", log_file)
    return pkg_logger


def get_logger(name: str | None = None) -> logging.Logger:
    return logging.getLogger(name or "retailpos")
