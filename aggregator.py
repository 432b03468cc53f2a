import logging
import os
import sys
from pathlib import Path
from typing import NamedTuple

from tqdm import tqdm

from path_formatter import PathMode, format_header
from utils import ReadError, Reason


class SkippedPath(NamedTuple):
    path: Path
    reason: Reason
    detail: str | None = None

    @classmethod
    def from_error(cls, error):
        return cls(error.path, error.reason, error.detail)

    def describe(self):
        if self.detail:
            return f"{self.path}: {self.reason.value} ({self.detail})"
        return f"{self.path}: {self.reason.value}"


class Aggregation:
    """Result of one aggregation pass.

    ``files`` lists the paths whose content made it into ``buffer``;
    ``warnings`` lists every path that was skipped, with the reason.
    """

    def __init__(self, buffer=b"", files=None, warnings=None):
        self.buffer = buffer
        self.files = files or []
        self.warnings = warnings or []

    @property
    def file_count(self):
        return len(self.files)

    @property
    def size(self):
        return len(self.buffer)


def progress_enabled():
    """Return ``True`` when a progress bar should be displayed."""

    if logging.getLogger().getEffectiveLevel() <= logging.DEBUG:
        return False
    if os.getenv("CI"):
        return False
    return sys.stderr.isatty()


def read_file(path):
    """Return the raw bytes of ``path`` or raise :class:`ReadError`."""
    path = Path(path)
    try:
        return path.read_bytes()
    except OSError as exc:
        raise ReadError.from_os_error(path, exc) from exc


def aggregate(files, config, progress=False):
    """Concatenate ``files`` into one buffer, each announced by its header.

    With headers, every file is written as header, content and a trailing
    newline when the content lacks one, and files are separated by a blank
    line. Without headers only the newline boundary is kept. Files that
    cannot be read are skipped and recorded as warnings.
    """
    chunks = []
    included = []
    warnings = []
    with tqdm(
        files,
        desc="Reading",
        unit="file",
        disable=not progress,
        file=sys.stderr,
        leave=False,
    ) as bar:
        for path in bar:
            try:
                content = read_file(path)
            except ReadError as exc:
                logging.warning("Skipping %s", exc)
                warnings.append(SkippedPath.from_error(exc))
                continue

            logging.debug("Adding: %s", path)
            if included and config.mode is not PathMode.NONE:
                chunks.append(b"\n")
            header = format_header(path, config.mode, config.base)
            if header is not None:
                chunks.append(os.fsencode(header))
            chunks.append(content)
            if not content.endswith(b"\n"):
                chunks.append(b"\n")
            included.append(path)

    return Aggregation(b"".join(chunks), included, warnings)


def aggregate_selection(selection, config, progress=False):
    """Resolve ``selection`` and aggregate it, collecting traversal warnings too."""
    traversal_warnings = []

    def _on_error(error):
        logging.warning("Skipping %s", error)
        traversal_warnings.append(SkippedPath.from_error(error))

    files = selection.resolve(config, on_error=_on_error)
    logging.debug("Resolved %d file(s) from %d root(s)", len(files), len(selection))
    result = aggregate(files, config, progress=progress)
    result.warnings = traversal_warnings + result.warnings
    return result
