import os
import re
import time
from typing import Callable

DEFAULT_BASENAME = "upload"


def client_basename(filename: str) -> str:
    """Drop any directory part a client put into the upload filename."""

    base = re.split(r"[/\\]", filename or "")[-1]
    if base in {"", ".", ".."}:
        return DEFAULT_BASENAME
    return base


class FilenameSynthesizer:
    """Build destination paths of the form ``<hex ns>_<name>[<ext>]``."""

    def __init__(self, directory: str, clock: Callable[[], int] = time.time_ns) -> None:
        self.directory = directory
        self._clock = clock

    def filename(self, original_filename: str, extension: str = "") -> str:
        base = client_basename(original_filename)
        if extension:
            stem, dot, _ = base.rpartition(".")
            if dot and stem:
                base = stem
        base = base.replace(" ", "_")
        return f"{self._clock():x}_{base}{extension}"

    def synthesize(self, original_filename: str, extension: str = "") -> str:
        return os.path.join(self.directory, self.filename(original_filename, extension))
