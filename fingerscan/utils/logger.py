import sys
from pathlib import Path

from loguru import logger

from fingerscan.config import settings

CONSOLE_FORMAT = (
    "<level>{level: <8}</level> | <green>{time:HH:mm:ss}</green> | "
    "<cyan>{extra[component]}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[component]} | "
    "{name}:{function}:{line} | {message}"
)


def setup_logger(component: str = "scanner", log_file: Path | str | None = None):
    """
    Route scanner logs to stderr and, optionally, one rotating file.

    Args:
        component: Tag shown on every record (e.g. 'cli')
        log_file: Path of a log file to append to; falls back to LOGGING__LOG_FILE
    """
    logger.remove()
    logger.configure(extra={"component": component})

    level = "DEBUG" if settings.DEBUG else settings.LOGGING.LOG_STD_LEVEL
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level, colorize=True)

    log_file = log_file or settings.LOGGING.LOG_FILE
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)

        # File keeps DEBUG records even when the console level is higher
        logger.add(
            path,
            format=FILE_FORMAT,
            level="DEBUG",
            rotation="10 MB",
            retention=5,
            backtrace=True,
            diagnose=settings.DEBUG,
        )
        logger.debug(f"Writing {component} log to {path}")

    return logger
