import os
import logging
from logging.handlers import RotatingFileHandler


__version__ = '1.0.0'


def configure_logging(cfg):
    """Configure application logging"""

    # Create logs directory if it doesn't exist
    log_dir = cfg.LOG_DIR
    os.makedirs(log_dir, exist_ok=True)

    # Set log level based on environment
    if getattr(cfg, 'DEBUG', False):
        log_level = logging.DEBUG
    else:
        log_level = logging.getLevelName(getattr(cfg, 'LOG_LEVEL', 'INFO'))
        if not isinstance(log_level, int):
            log_level = logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # File handler
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'davbackup.log'),
        maxBytes=10485760,  # 10MB
        backupCount=10
    )
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
    )
    file_handler.setFormatter(file_formatter)

    # Configure package logger
    logger = logging.getLogger('davbackup')
    logger.setLevel(log_level)
    logger.handlers = [console_handler, file_handler]

    logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")
    return logger
