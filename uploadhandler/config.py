import logging
import os
from dataclasses import dataclass
from typing import Optional

from .pages import ErrorPager, NullErrorPager
from .paths import url_path

DEFAULT_MAX_SIZE = 8 * 1024 * 1024  # 8 MiB, used when the configured size is <= 0
DEMO_MAX_SIZE = 10 * 1024 * 1024

ENV_PREFIX = "UPLOADHANDLER_"


def safe_int_env(key: str, default: int) -> int:
    """Safely parse integer environment variable with error handling."""
    raw = os.environ.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        logger = logging.getLogger("uploadhandler.config")
        logger.warning(
            "Invalid value for %s: %s. Using default: %d",
            key, raw, default
        )
        return default


def _resolve_directory(value: str) -> str:
    try:
        return os.path.abspath(os.path.expanduser(value))
    except (OSError, ValueError):
        return value


@dataclass(frozen=True)
class UploadConfig:
    """Settings of one upload handler; never changed after construction."""

    dest_dir: str
    field_name: str
    upload_path: str
    next_url: str
    max_size: int = DEFAULT_MAX_SIZE
    pager: Optional[ErrorPager] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "dest_dir", _resolve_directory(self.dest_dir))
        object.__setattr__(self, "upload_path", url_path(self.upload_path))
        if self.max_size is None or self.max_size <= 0:
            object.__setattr__(self, "max_size", DEFAULT_MAX_SIZE)
        if self.pager is None:
            object.__setattr__(self, "pager", NullErrorPager())

    @classmethod
    def from_env(cls, pager: Optional[ErrorPager] = None) -> "UploadConfig":
        """Build a configuration from ``UPLOADHANDLER_*`` environment variables."""

        return cls(
            dest_dir=os.environ.get(f"{ENV_PREFIX}DEST_DIR", "./static"),
            field_name=os.environ.get(f"{ENV_PREFIX}FIELD_NAME", "uploadFile"),
            upload_path=os.environ.get(f"{ENV_PREFIX}UPLOAD_PATH", "up"),
            next_url=os.environ.get(f"{ENV_PREFIX}NEXT_URL", "/"),
            max_size=safe_int_env(f"{ENV_PREFIX}MAX_SIZE", DEMO_MAX_SIZE),
            pager=pager,
        )
