# fixloop/services/log_service.py
import logging
import os
from datetime import datetime
from pathlib import Path
from dotenv import load_dotenv

project_root = Path(__file__).resolve().parents[2]
load_dotenv(project_root / '.env')


def setup_logger() -> logging.Logger:
    """Setup application logger with console + file handler."""

    logger = logging.getLogger("FixLoop")
    if logger.handlers:
        return logger

    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logger.setLevel(level)

    log_format = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(module)s:%(lineno)d | %(message)s",
        "%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(log_format)
    logger.addHandler(console_handler)

    # LOG_TO_FILE=0 keeps everything on the console (test runs, read-only installs)
    if os.getenv("LOG_TO_FILE", "1").lower() in ("0", "false", "no"):
        return logger

    if os.getcwd() == "/app" or os.getenv("DOCKER_ENV"):
        log_dir = os.getenv("LOG_DIR", "logs")
    else:
        log_dir = os.getenv("LOG_DIR", str(project_root / "logs"))
    os.makedirs(log_dir, exist_ok=True)

    log_file = os.path.join(log_dir, f"fixloop_{datetime.now().strftime('%m%d%H')}.log")
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(log_format)
    logger.addHandler(file_handler)

    return logger

logger = setup_logger()
