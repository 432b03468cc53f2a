"""Deterministic, cycle-safe expansion of files and directories."""

from __future__ import annotations

from dataclasses import dataclass
import enum
import logging
import os
from pathlib import Path

from utils import Reason, TraversalError


class Kind(enum.Enum):
    FILE = 'file'
    DIRECTORY = 'directory'
    OTHER = 'other'


def canonical(path) -> Path:
    """Return the absolute, symlink-free form of ``path`` without requiring it to exist."""
    try:
        return Path(path).resolve()
    except OSError:
        return Path(os.path.abspath(path))


@dataclass(frozen=True)
class PathEntry:
    path: Path
    kind: Kind

    @property
    def is_dir(self) -> bool:
        return self.kind is Kind.DIRECTORY

    @classmethod
    def from_path(cls, path) -> PathEntry:
        """Build an entry for an existing ``path``.

        Raises :class:`TraversalError` when the path cannot be resolved or
        inspected.
        """
        try:
            resolved = Path(path).resolve(strict=True)
            if resolved.is_dir():
                kind = Kind.DIRECTORY
            elif resolved.is_file():
                kind = Kind.FILE
            else:
                kind = Kind.OTHER
        except OSError as exc:
            raise TraversalError.from_os_error(Path(path), exc) from exc
        return cls(resolved, kind)


class IgnoreSpec:
    """Canonical paths excluded from every expansion."""

    def __init__(self, paths=()):
        unique = []
        for path in paths:
            resolved = canonical(path)
            if resolved not in unique:
                unique.append(resolved)
        self.paths = tuple(unique)

    def __bool__(self):
        return bool(self.paths)

    def __iter__(self):
        return iter(self.paths)

    def __len__(self):
        return len(self.paths)

    def __eq__(self, other):
        if not isinstance(other, IgnoreSpec):
            return NotImplemented
        return set(self.paths) == set(other.paths)

    def __repr__(self):
        return f"IgnoreSpec({[str(p) for p in self.paths]!r})"

    def matches(self, path) -> bool:
        """``True`` when ``path`` is itself one of the ignored paths."""
        return canonical(path) in self.paths

    def covers(self, path) -> bool:
        """``True`` when ``path`` equals or lies beneath an ignored path."""
        path = Path(path)
        return any(path == p or p in path.parents for p in self.paths)

    def toggled(self, path) -> IgnoreSpec:
        """Return a copy with ``path`` added, or removed when already present."""
        resolved = canonical(path)
        if resolved in self.paths:
            return IgnoreSpec(p for p in self.paths if p != resolved)
        return IgnoreSpec(self.paths + (resolved,))


def is_hidden(name) -> bool:
    return name.startswith('.')


def _report(error, on_error):
    if on_error is None:
        raise error
    on_error(error)


def walk(root, hidden=False, ignore=None, on_error=None):
    """Yield the canonical path of every regular file under ``root``.

    ``root`` may be a :class:`PathEntry` or any path. A file root yields
    itself unless it is one of the ignored paths; a file explicitly named
    inside an ignored directory is still yielded. A root that is neither a
    regular file nor a directory, such as a FIFO, is reported as not
    readable. A directory root yields its files in lexicographic order of
    their full paths, skipping dot-entries unless ``hidden`` is set,
    skipping anything covered by ``ignore`` and never re-entering a
    directory already on the current descent.

    Errors are raised as :class:`TraversalError`. When ``on_error`` is given
    it receives each error instead and the walk continues with the next
    entry.
    """
    if ignore is None:
        ignore = IgnoreSpec()

    if isinstance(root, PathEntry):
        entry = root
    else:
        try:
            entry = PathEntry.from_path(root)
        except TraversalError as exc:
            _report(exc, on_error)
            return

    if not entry.is_dir:
        if ignore.matches(entry.path):
            logging.debug("Ignoring %s", entry.path)
        elif entry.kind is Kind.OTHER:
            _report(
                TraversalError(entry.path, Reason.NOT_READABLE, "not a regular file"),
                on_error,
            )
        else:
            yield entry.path
        return

    if ignore.covers(entry.path):
        logging.debug("Ignoring directory %s", entry.path)
        return

    yield from _walk_directory(entry.path, hidden, ignore, on_error, frozenset())


def _sort_key(dirent):
    # A directory sorts as "name/" so its subtree lands where its paths would.
    try:
        is_dir = dirent.is_dir()
    except OSError:
        is_dir = False
    return dirent.name + '/' if is_dir else dirent.name


def _walk_directory(directory, hidden, ignore, on_error, ancestors):
    ancestors = ancestors | {directory}
    try:
        with os.scandir(directory) as it:
            entries = sorted(it, key=_sort_key)
    except OSError as exc:
        _report(TraversalError.from_os_error(directory, exc), on_error)
        return

    for dirent in entries:
        if not hidden and is_hidden(dirent.name):
            continue

        path = Path(dirent.path)
        try:
            resolved = path.resolve(strict=True)
            is_dir = dirent.is_dir()
            is_file = dirent.is_file()
        except OSError as exc:
            _report(TraversalError.from_os_error(path, exc), on_error)
            continue

        if ignore.covers(path) or ignore.covers(resolved):
            logging.debug("Ignoring %s", path)
            continue

        if is_dir:
            if resolved in ancestors:
                logging.debug("Not following symlink loop at %s", path)
                continue
            yield from _walk_directory(resolved, hidden, ignore, on_error, ancestors)
        elif is_file:
            yield resolved
        else:
            logging.debug("Skipping non-regular file %s", path)
