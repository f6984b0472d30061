import mimetypes
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import FrozenSet, Mapping, Optional

import filetype
from werkzeug.http import parse_options_header

from .errors import UnsupportedMediaType
from .naming import client_basename

DEFAULT_EXTENSION = ".bin"

_MEDIA_TYPE_PATTERN = re.compile(r"^[\w!#$&^.+-]+/[\w!#$&^.+-]+$", re.ASCII)

# Only the interpreter's built-in table, so results don't depend on the host's mime.types.
_REGISTRY = mimetypes.MimeTypes()

DEFAULT_RENAMES: Mapping[str, str] = {
    ".asc": ".txt",
    ".jpg": ".jpeg",
    ".jpe": ".jpeg",
    ".mpg": ".mpeg",
    ".mpe": ".mpeg",
    ".m1v": ".mpeg",
    ".mpa": ".mpeg",
    ".htm": ".html",
    ".tif": ".tiff",
}

DEFAULT_PRESERVED: FrozenSet[str] = frozenset(
    {
        ".amr", ".avi", ".bak", ".bibtex", ".bz2",
        ".cfg", ".conf", ".css", ".csv",
        ".db", ".deb", ".dia", ".doc", ".docx",
        ".epub", ".exe", ".flv", ".gz", ".htm", ".html",
        ".ics", ".iso", ".jar", ".jpeg", ".json", ".log",
        ".md", ".mp3", ".mp4", ".mpeg",
        ".odf", ".odg", ".odp", ".ods", ".odt", ".otf", ".oxt",
        ".pas", ".php", ".pl", ".ppd", ".ppt", ".pptx", ".py",
        ".rip", ".rpm", ".rst",
        ".sh", ".spk", ".sql", ".svg", ".sxg", ".sxw",
        ".tar", ".ttf", ".txt",
        ".vbox", ".vcs", ".vmdk", ".wav",
        ".xhtml", ".xls", ".xlsx", ".xml", ".xpi", ".xsl",
        ".yaml", ".yml",
    }
)


def file_extension(filename: str) -> str:
    """Return the text from the final dot of the last path element, dot included."""

    base = client_basename(filename)
    dot = base.rfind(".")
    return base[dot:] if dot >= 0 else ""


@dataclass(frozen=True)
class ExtensionPolicy:
    renames: Mapping[str, str] = field(default_factory=lambda: MappingProxyType(dict(DEFAULT_RENAMES)))
    preserved: FrozenSet[str] = DEFAULT_PRESERVED


DEFAULT_POLICY = ExtensionPolicy()


def registered_extension(media_type: str) -> Optional[str]:
    """Return the preferred extension for *media_type*, or ``None`` if unknown."""

    extension = _REGISTRY.guess_extension(media_type, strict=False)
    if extension:
        return extension
    kind = filetype.get_type(mime=media_type)
    if kind is not None and kind.extension:
        return f".{kind.extension}"
    return None


class ExtensionResolver:
    """Pick the extension to append to an upload, if any.

    An empty result means the client's own extension is kept.
    """

    def __init__(self, policy: ExtensionPolicy = DEFAULT_POLICY) -> None:
        self.policy = policy

    def extension_for(self, content_type: str) -> str:
        media_type, _ = parse_options_header(content_type or "")
        media_type = media_type.strip().lower()
        if not _MEDIA_TYPE_PATTERN.match(media_type):
            raise UnsupportedMediaType(f"unparseable media type {content_type!r}")
        return registered_extension(media_type) or DEFAULT_EXTENSION

    def rename(self, extension: str) -> str:
        return self.policy.renames.get(extension, extension)

    def reconcile(self, extension: str, original_filename: str) -> str:
        original = file_extension(original_filename).lower()
        if original == extension or original in self.policy.preserved:
            return ""
        return extension

    def resolve(self, content_type: str, original_filename: str) -> str:
        # Renaming comes first: "profi.jpg" sniffed as .jpg still becomes .jpeg.
        extension = self.rename(self.extension_for(content_type))
        return self.reconcile(extension, original_filename)
