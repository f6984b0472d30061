"""Failure taxonomy of the upload pipeline.

Every stage raises one of these; ``UploadPersister.process`` turns them into
an :class:`~uploadhandler.storage.UploadFailure` so none reaches the server.
"""


class UploadError(Exception):
    """Base class carrying the client-facing message and HTTP status."""

    message = "Upload failed"
    status = 500

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail or self.message)
        self.detail = detail


class SizeExceeded(UploadError):
    """Raised when the body exceeds the limit or cannot be read as multipart data."""

    message = "File too big"
    status = 400


class FieldMissing(UploadError):
    """Raised when the configured field carries no file."""

    message = "Error retrieving file"
    status = 422


class SniffFailed(UploadError):
    """Raised when the upload cannot be read or rewound for sniffing."""

    message = "Invalid file"
    status = 422


class UnsupportedMediaType(UploadError):
    """Raised when the sniffed content type cannot be mapped to an extension."""

    message = "Can't read file type"
    status = 415


class DestinationOpenFailed(UploadError):
    """Raised when no fresh destination file could be created."""

    message = "Can't open destination file"
    status = 500


class DestinationWriteFailed(UploadError):
    """Raised when copying into the destination file fails."""

    message = "Can't write destination file"
    status = 507
