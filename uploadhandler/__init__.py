"""WSGI middleware for HTTP file uploads."""

from .config import UploadConfig
from .errors import (
    DestinationOpenFailed,
    DestinationWriteFailed,
    FieldMissing,
    SizeExceeded,
    SniffFailed,
    UnsupportedMediaType,
    UploadError,
)
from .extensions import ExtensionPolicy, ExtensionResolver
from .middleware import UploadHandler, wrap
from .naming import FilenameSynthesizer
from .pages import ErrorPager, ErrorResponder, HtmlErrorPager, NullErrorPager
from .paths import PathMatcher, url_path
from .sniffing import sniff_content_type
from .storage import UploadFailure, UploadOutcome, UploadPersister, UploadSuccess

__all__ = [
    "DestinationOpenFailed",
    "DestinationWriteFailed",
    "ErrorPager",
    "ErrorResponder",
    "ExtensionPolicy",
    "ExtensionResolver",
    "FieldMissing",
    "FilenameSynthesizer",
    "HtmlErrorPager",
    "NullErrorPager",
    "PathMatcher",
    "SizeExceeded",
    "SniffFailed",
    "UnsupportedMediaType",
    "UploadConfig",
    "UploadError",
    "UploadFailure",
    "UploadHandler",
    "UploadOutcome",
    "UploadPersister",
    "UploadSuccess",
    "sniff_content_type",
    "url_path",
    "wrap",
]
