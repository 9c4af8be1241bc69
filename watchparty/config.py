"""
Configuration module for the Watch Party server.
"""

import logging
import os
from pathlib import Path
from typing import Optional

# Application settings
APP_NAME = "Watch Party Server"
VERSION = "1.0.0"
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 3002))
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

# Paths
BASE_DIR = Path(__file__).parent.parent

# Logging configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if DEBUG else "INFO").upper()
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILE = os.getenv("LOG_FILE") or None


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> logging.Logger:
    """Configure application logging."""
    level = getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO)
    log_file = log_file or LOG_FILE
    formatter = logging.Formatter(LOG_FORMAT)

    handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    logging.basicConfig(level=level, handlers=handlers, format=LOG_FORMAT, force=True)

    # Filter out noisy debug messages from the transport stack
    noisy_loggers = [
        'uvicorn.protocols.http',
        'engineio.server',
        'socketio.server',
        'redis',
    ]

    for logger_name in noisy_loggers:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    logger = logging.getLogger("watchparty")
    logger.info(f"{APP_NAME} v{VERSION} - Logging initialized")
    if log_file:
        logger.info(f"Log file: {log_file}")

    return logger


# Room settings
MAX_PARTICIPANTS = int(os.getenv("MAX_PARTICIPANTS", 10))
MESSAGE_HISTORY_LIMIT = 100
SNAPSHOT_MESSAGE_LIMIT = 50
ROOM_TIMEOUT = int(os.getenv("ROOM_TIMEOUT", 30 * 60))  # 30 minutes of inactivity
ROOM_CLEANUP_INTERVAL = int(os.getenv("ROOM_CLEANUP_INTERVAL", 5 * 60))  # 5 minutes

# Persistence: "none", "memory" or "redis"
PERSISTENCE = os.getenv("PERSISTENCE", "none").lower()
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")

# Socket.IO settings
CORS_ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:5173,http://localhost:4173").split(",")
    if origin.strip()
]
