import logging
import sys
from logging.handlers import RotatingFileHandler
import os
from datetime import datetime

from core.config import settings

def setup_logging(log_dir: str = None, level: str = None):
    """Setup structured logging"""
    log_dir = log_dir or settings.LOG_DIR
    level = level or settings.LOG_LEVEL

    # Create logs directory if it doesn't exist
    os.makedirs(log_dir, exist_ok=True)

    # Configure root logger
    logger = logging.getLogger()
    logger.setLevel(level)

    # setup_logging may run once per app instance
    for handler in list(logger.handlers):
        if getattr(handler, "_marketplace_handler", False):
            logger.removeHandler(handler)
            handler.close()

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_format = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    console_handler.setFormatter(console_format)

    # File handler (rotating)
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, f'app_{datetime.now().strftime("%Y%m")}.log'),
        maxBytes=10485760,  # 10MB
        backupCount=10
    )
    file_format = logging.Formatter(
        '{"timestamp": "%(asctime)s", "name": "%(name)s", "level": "%(levelname)s", '
        '"message": "%(message)s", "pathname": "%(pathname)s", "lineno": %(lineno)d}'
    )
    file_handler.setFormatter(file_format)

    # Add handlers
    for handler in (console_handler, file_handler):
        handler._marketplace_handler = True
        logger.addHandler(handler)

    # SQL echo is controlled by DB_ECHO, keep the engine logger quiet otherwise
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    return logger
