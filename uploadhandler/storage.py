import os
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO, Iterator, Optional, Tuple, Union

from werkzeug.datastructures import FileStorage, MultiDict
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge
from werkzeug.formparser import parse_form_data
from werkzeug.http import parse_options_header

from .config import UploadConfig
from .errors import (
    DestinationOpenFailed,
    DestinationWriteFailed,
    FieldMissing,
    SizeExceeded,
    UploadError,
)
from .extensions import ExtensionResolver
from .logs import RequestAwareLogger, lifecycle_logger, sanitize_log_value
from .naming import FilenameSynthesizer
from .sniffing import OCTET_STREAM, sniff_content_type

CHUNK_SIZE_BYTES = 1024 * 1024  # 1 MB chunks for streaming
DESTINATION_MODE = 0o640
MAX_NAME_ATTEMPTS = 5


@dataclass(frozen=True)
class UploadSuccess:
    stored_path: str


@dataclass(frozen=True)
class UploadFailure:
    message: str
    status: int


UploadOutcome = Union[UploadSuccess, UploadFailure]


def _close_stream_safely(stream: Any, context: str, log: RequestAwareLogger) -> None:
    """Close an upload/input stream while logging failures."""

    if stream is None or not hasattr(stream, "close"):
        return

    try:
        stream.close()
    except OSError as error:
        log.warning(
            "stream_close_failed context=%s error=%s",
            context,
            sanitize_log_value(str(error)),
        )


@contextmanager
def upload_streams(files: MultiDict, log: RequestAwareLogger) -> Iterator[MultiDict]:
    """Ensure every parsed file part is closed, whatever happens to the upload."""

    try:
        yield files
    finally:
        for field_name, file_storage in files.items(multi=True):
            _close_stream_safely(
                getattr(file_storage, "stream", None),
                f"upload_streams field={sanitize_log_value(field_name)}",
                log,
            )


class UploadPersister:
    """Parse one upload request and store its file in the destination directory."""

    def __init__(
        self,
        config: UploadConfig,
        resolver: Optional[ExtensionResolver] = None,
        synthesizer: Optional[FilenameSynthesizer] = None,
    ) -> None:
        self.config = config
        self.resolver = resolver or ExtensionResolver()
        self.synthesizer = synthesizer or FilenameSynthesizer(config.dest_dir)

    def process(self, environ: dict) -> UploadOutcome:
        log = lifecycle_logger.bind(environ)
        try:
            stored_path = self.store(environ, log)
        except UploadError as error:
            log.warning(
                "upload_failed reason=%s status=%d detail=%s",
                type(error).__name__,
                error.status,
                sanitize_log_value(error.detail),
            )
            return UploadFailure(error.message, error.status)

        log.info("upload_stored path=%s", sanitize_log_value(stored_path))
        return UploadSuccess(stored_path)

    def parse(self, environ: dict) -> MultiDict:
        """Parse the size-bounded multipart body and return its file parts."""

        content_type = environ.get("CONTENT_TYPE", "")
        mimetype, _ = parse_options_header(content_type)
        if mimetype != "multipart/form-data":
            raise SizeExceeded(f"not a multipart body: {content_type}")

        try:
            _, _, files = parse_form_data(
                environ,
                max_content_length=self.config.max_size,
                silent=False,
            )
        except RequestEntityTooLarge as error:
            raise SizeExceeded(f"body exceeds {self.config.max_size} bytes") from error
        except HTTPException as error:
            raise SizeExceeded(f"unreadable body: {error}") from error
        except ValueError as error:
            raise SizeExceeded(f"malformed multipart body: {error}") from error
        return files

    def store(self, environ: dict, log: RequestAwareLogger) -> str:
        with upload_streams(self.parse(environ), log) as files:
            upload = files.get(self.config.field_name)
            if not isinstance(upload, FileStorage) or not upload.filename:
                raise FieldMissing(f"no file in field {self.config.field_name}")

            content_type = sniff_content_type(upload.stream) or OCTET_STREAM
            extension = self.resolver.resolve(content_type, upload.filename)
            log.debug(
                "upload_classified filename=%s content_type=%s extension=%s",
                sanitize_log_value(upload.filename),
                content_type,
                extension or "-",
            )

            path, destination = self.open_destination(upload.filename, extension, log)
            self.copy(upload.stream, destination, path)
            return path

    def open_destination(
        self, original_filename: str, extension: str, log: RequestAwareLogger
    ) -> Tuple[str, BinaryIO]:
        """Create a fresh destination file, never reusing an existing name."""

        for attempt in range(1, MAX_NAME_ATTEMPTS + 1):
            path = self.synthesizer.synthesize(original_filename, extension)
            try:
                fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, DESTINATION_MODE)
            except FileExistsError:
                log.warning(
                    "upload_name_collision path=%s attempt=%d",
                    sanitize_log_value(path),
                    attempt,
                )
                continue
            except OSError as error:
                raise DestinationOpenFailed(str(error)) from error

            try:
                return path, os.fdopen(fd, "wb")
            except OSError as error:
                os.close(fd)
                raise DestinationOpenFailed(str(error)) from error

        raise DestinationOpenFailed(
            f"no free destination name after {MAX_NAME_ATTEMPTS} attempts"
        )

    def copy(self, source: BinaryIO, destination: BinaryIO, path: str) -> None:
        try:
            with destination:
                while True:
                    chunk = source.read(CHUNK_SIZE_BYTES)
                    if not chunk:
                        break
                    destination.write(chunk)
        except OSError as error:
            Path(path).unlink(missing_ok=True)
            raise DestinationWriteFailed(str(error)) from error
