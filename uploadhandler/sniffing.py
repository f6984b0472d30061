"""Content-type detection from the leading bytes of an upload.

Classification follows the signature families browsers use when sniffing
MIME types: byte-order marks, markup prefixes, document magic numbers, then
the binary signatures known to :mod:`filetype`, with a final text/binary
split.
"""

import io
import logging
from typing import BinaryIO, Tuple

import filetype

from .errors import SniffFailed

SNIFF_LENGTH = 512
MIN_SNIFF_BYTES = 64
OCTET_STREAM = "application/octet-stream"
PLAIN_TEXT = "text/plain; charset=utf-8"

logger = logging.getLogger("uploadhandler.sniffing")

_BOMS: Tuple[Tuple[bytes, str], ...] = (
    (b"\xfe\xff", "text/plain; charset=utf-16be"),
    (b"\xff\xfe", "text/plain; charset=utf-16le"),
    (b"\xef\xbb\xbf", "text/plain; charset=utf-8"),
)

_HTML_TAGS: Tuple[bytes, ...] = (
    b"<!DOCTYPE HTML",
    b"<HTML",
    b"<HEAD",
    b"<SCRIPT",
    b"<IFRAME",
    b"<H1",
    b"<DIV",
    b"<FONT",
    b"<TABLE",
    b"<A",
    b"<STYLE",
    b"<TITLE",
    b"<B",
    b"<BODY",
    b"<BR",
    b"<P",
    b"<!--",
)

_MAGIC_SIGNATURES: Tuple[Tuple[bytes, str], ...] = (
    (b"%PDF-", "application/pdf"),
    (b"%!PS-Adobe-", "application/postscript"),
)

_WHITESPACE = b"\t\n\x0c\r "
_TAG_TERMINATORS = (b" ", b">")
# Bytes that never occur in text content.
_BINARY_BYTES = frozenset(
    list(range(0x00, 0x09)) + [0x0B] + list(range(0x0E, 0x1B)) + list(range(0x1C, 0x20))
)


def _is_html(data: bytes) -> bool:
    upper = data.upper()
    for tag in _HTML_TAGS:
        if upper.startswith(tag) and data[len(tag):len(tag) + 1] in _TAG_TERMINATORS:
            return True
    return False


def detect_content_type(data: bytes) -> str:
    """Classify *data* and return a MIME type, possibly with parameters."""

    if not data:
        return PLAIN_TEXT

    for bom, content_type in _BOMS:
        if data.startswith(bom):
            return content_type

    stripped = data.lstrip(_WHITESPACE)
    if _is_html(stripped):
        return "text/html; charset=utf-8"

    if stripped.startswith(b"<?xml"):
        return "text/xml; charset=utf-8"

    for signature, content_type in _MAGIC_SIGNATURES:
        if data.startswith(signature):
            return content_type

    kind = filetype.guess(data)
    if kind is not None:
        return kind.mime

    if any(byte in _BINARY_BYTES for byte in data):
        return OCTET_STREAM
    return PLAIN_TEXT


def sniff_content_type(stream: BinaryIO) -> str:
    """Return the content type of *stream* and rewind it to the start.

    A read error is tolerated when at least ``MIN_SNIFF_BYTES`` were
    obtained; otherwise :class:`SniffFailed` is raised. The stream is
    repositioned at offset 0 in every case.
    """

    buffer = bytearray()
    try:
        while len(buffer) < SNIFF_LENGTH:
            try:
                chunk = stream.read(SNIFF_LENGTH - len(buffer))
            except (OSError, ValueError) as error:
                if len(buffer) < MIN_SNIFF_BYTES:
                    raise SniffFailed(str(error)) from error
                logger.debug("sniff_short_read bytes=%d error=%s", len(buffer), error)
                break
            if not chunk:
                break
            buffer.extend(chunk)
        return detect_content_type(bytes(buffer))
    finally:
        try:
            stream.seek(0, io.SEEK_SET)
        except (OSError, ValueError) as error:
            logger.warning("sniff_rewind_failed error=%s", error)
            raise SniffFailed(str(error)) from error
