import logging
import os
import re
import uuid
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

LOG_FILE_MAX_BYTES = 5 * 1024 * 1024  # 5 MB max log file size
LOG_FILE_BACKUP_COUNT = 3
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
REQUEST_ID_KEY = "uploadhandler.request_id"

_CONTROL_CHAR_PATTERN = re.compile(r"[\x00-\x1f\x7f-\x9f\n\r]")


def sanitize_log_value(value: Any) -> Any:
    """Remove control characters from log values to prevent log injection."""

    if isinstance(value, str):
        escaped = value.replace("\n", "\\n").replace("\r", "\\r")
        return _CONTROL_CHAR_PATTERN.sub(
            lambda match: f"\\x{ord(match.group()):02x}", escaped
        )
    return value


def request_id(environ: dict) -> str:
    """Return the request identifier stored in *environ*, assigning one if needed."""

    existing = environ.get(REQUEST_ID_KEY)
    if existing:
        return existing
    value = environ.get("HTTP_X_REQUEST_ID") or uuid.uuid4().hex
    environ[REQUEST_ID_KEY] = value
    return value


class RequestAwareLogger:
    """Logger wrapper that injects request IDs into log messages."""

    def __init__(self, logger: logging.Logger, environ: Optional[dict] = None) -> None:
        self._logger = logger
        self._environ = environ

    def bind(self, environ: dict) -> "RequestAwareLogger":
        return RequestAwareLogger(self._logger, environ)

    def _with_request(self, message: str) -> str:
        if self._environ is not None:
            return f"request_id={sanitize_log_value(request_id(self._environ))} {message}"
        return message

    def debug(self, msg: str, *args, **kwargs) -> None:
        self._logger.debug(self._with_request(msg), *args, **kwargs)

    def info(self, msg: str, *args, **kwargs) -> None:
        self._logger.info(self._with_request(msg), *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs) -> None:
        self._logger.warning(self._with_request(msg), *args, **kwargs)

    def error(self, msg: str, *args, **kwargs) -> None:
        self._logger.error(self._with_request(msg), *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs) -> None:
        self._logger.exception(self._with_request(msg), *args, **kwargs)

    def __getattr__(self, name: str):  # pragma: no cover - passthrough
        return getattr(self._logger, name)


lifecycle_logger = RequestAwareLogger(logging.getLogger("uploadhandler.lifecycle"))


def configure_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> Optional[Path]:
    """Set the package log level and optionally attach a rotating file handler.

    *level* defaults to the ``LOG_LEVEL`` environment variable. Calling this
    twice with the same *log_file* does not add a second handler.
    """

    level_name = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    numeric_level = getattr(logging, level_name, logging.INFO)
    package_logger = logging.getLogger("uploadhandler")
    package_logger.setLevel(numeric_level)
    if not logging.getLogger().handlers:
        logging.basicConfig(level=numeric_level, format=LOG_FORMAT)

    if not log_file:
        return None

    log_path = Path(log_file).expanduser().resolve()
    formatter = logging.Formatter(LOG_FORMAT)
    for handler in package_logger.handlers:
        if isinstance(handler, RotatingFileHandler) and getattr(handler, "baseFilename", "") == str(log_path):
            handler.setLevel(numeric_level)
            handler.setFormatter(formatter)
            return log_path

    log_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setLevel(numeric_level)
    file_handler.setFormatter(formatter)
    package_logger.addHandler(file_handler)
    return log_path
