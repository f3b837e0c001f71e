import logging
from logging.handlers import RotatingFileHandler


__version__ = '1.0.0'

logger = logging.getLogger('keepsafe')
logger.addHandler(logging.NullHandler())


def configure_logging(settings: dict):
    """Configure logging for one run of the tool"""

    # Operator-facing lines go through the Reporter. Handlers here only add
    # a debug console stream in development and an optional log file.
    log_level = logging.DEBUG if settings.get('DEBUG', False) else logging.INFO

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    # Console handler
    if settings.get('DEBUG', False):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
        )
        console_handler.setFormatter(console_formatter)
        logger.addHandler(console_handler)

    # File handler
    log_file = settings.get('LOG_FILE')
    if log_file:
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=settings.get('LOG_MAX_BYTES', 10485760),  # 10MB
            backupCount=settings.get('LOG_BACKUP_COUNT', 10),
            delay=True
        )
        file_handler.setLevel(log_level)
        file_formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        logger.addHandler(file_handler)

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    logger.setLevel(log_level)
    logger.propagate = False

    logger.debug(f"Logging configured (level: {logging.getLevelName(log_level)})")
