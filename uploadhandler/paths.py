import re
from typing import Pattern
from urllib.parse import unquote_plus

# Leading path segment, optionally surrounded by slashes.
LEADING_SEGMENT_PATTERN = r"^/?([\w._-]+)?/?"


class PathMatcher:
    """Reduce URL paths to their leading segment and compare them."""

    def __init__(self, upload_path: str = "") -> None:
        self._pattern: Pattern[str] = re.compile(LEADING_SEGMENT_PATTERN, re.ASCII)
        self.upload_path = self.normalize(upload_path)

    def normalize(self, raw_path: str) -> str:
        """Return the first segment of *raw_path* without leading/trailing slashes.

        ``"/path/to/file"`` and ``"/path"`` both give ``"path"``; an empty
        path or a bare slash gives ``""``.
        """

        try:
            decoded = unquote_plus(raw_path or "", errors="strict")
        except UnicodeDecodeError:
            decoded = raw_path or ""
        match = self._pattern.match(decoded)
        if match is None:  # pragma: no cover - every group in the pattern is optional
            return decoded
        return match.group(1) or ""

    def matches(self, raw_path: str) -> bool:
        return self.normalize(raw_path) == self.upload_path


_default_matcher = PathMatcher()


def url_path(raw_path: str) -> str:
    """Shortcut for :meth:`PathMatcher.normalize` on a shared matcher."""

    return _default_matcher.normalize(raw_path)
