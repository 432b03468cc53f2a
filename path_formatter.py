"""Header lines that announce each file in the aggregated output."""

import enum
import os
from pathlib import Path


HEADER_TEMPLATE = "--- File: {path} ---\n"


class PathMode(enum.Enum):
    ABSOLUTE = 'absolute'
    RELATIVE = 'relative'
    NONE = 'none'

    @classmethod
    def from_flags(cls, relative=False, no_path=False):
        if no_path:
            return cls.NONE
        if relative:
            return cls.RELATIVE
        return cls.ABSOLUTE


def display_path(path, mode, base=None):
    """Return how ``path`` is shown in a header for ``mode``.

    Absolute mode uses the canonical path. Relative mode computes the path
    from ``base`` (the working directory captured at startup) and falls back
    to the canonical path when no relative form exists, e.g. a different
    drive on Windows.
    """
    path = Path(path)
    try:
        canonical = path.resolve()
    except OSError:
        canonical = path.absolute()

    if mode is PathMode.RELATIVE:
        if base is None:
            base = Path.cwd()
        try:
            return os.path.relpath(canonical, Path(base).resolve())
        except ValueError:
            return str(canonical)
    return str(canonical)


def format_header(path, mode, base=None):
    """Return the header to prepend to ``path``'s content, or ``None``."""
    if mode is PathMode.NONE:
        return None
    return HEADER_TEMPLATE.format(path=display_path(path, mode, base))
