"""Process-wide logging for the server and the ingest command.

Every run writes to its own ``<prefix>_<timestamp>.log`` under the logs
directory and echoes to the console at ``console_level``.
"""

import logging
import os
from datetime import datetime
from logging.handlers import RotatingFileHandler

_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"
_DATE_FORMAT = "%H:%M:%S"

# Loggers that are chatty at DEBUG (urllib3 logs every streamed chunk)
_QUIET_LOGGERS = ("urllib3", "multipart", "asyncio")
_UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def _formatter() -> logging.Formatter:
    return logging.Formatter(_FORMAT, _DATE_FORMAT)


def _file_handler(log_path: str) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        log_path, maxBytes=5_000_000, backupCount=3, encoding="utf-8"
    )
    handler.setFormatter(_formatter())
    handler.setLevel(logging.DEBUG)
    handler.name = "docschat_file"
    return handler


def _console_handler(level: int) -> logging.StreamHandler:
    handler = logging.StreamHandler()
    handler.setFormatter(_formatter())
    handler.setLevel(level)
    handler.name = "docschat_console"
    return handler


def _route(logger: logging.Logger, handlers: list[logging.Handler]) -> None:
    logger.handlers = list(handlers)
    logger.propagate = False


def configure_logging(
    logs_dir: str, prefix: str = "server", console_level: int = logging.INFO
) -> str:
    """Route the root and uvicorn loggers to a rotating file plus the console.

    Returns the path of the new log file.
    """
    os.makedirs(logs_dir, exist_ok=True)
    stamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    log_path = os.path.join(logs_dir, f"{prefix}_{stamp}.log")

    handlers: list[logging.Handler] = [_file_handler(log_path), _console_handler(console_level)]

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    _route(root_logger, handlers)

    for name in _UVICORN_LOGGERS:
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.setLevel(logging.INFO)
        _route(uvicorn_logger, handlers)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.info("Logging initialized: %s", log_path)
    return log_path
