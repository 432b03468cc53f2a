"""User-designated roots and their resolution to a flat file list."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import glob
import logging
import os
from pathlib import Path

from path_formatter import PathMode
from utils import InvalidConfigError, TraversalError
from walker import IgnoreSpec, PathEntry, canonical, walk


_GLOB_CHARS = frozenset('*?[')


@dataclass(frozen=True)
class SelectionRoot:
    entry: PathEntry
    selected: bool = True

    @property
    def path(self) -> Path:
        return self.entry.path


@dataclass(frozen=True)
class AggregationConfig:
    """How the selection is expanded and how each file is announced.

    ``base`` is the directory relative headers are computed from; it is
    captured once at startup instead of being read from the process state
    on every header.
    """

    mode: PathMode = PathMode.ABSOLUTE
    hidden: bool = False
    ignore: IgnoreSpec = field(default_factory=IgnoreSpec)
    base: Path | None = None

    @classmethod
    def from_flags(cls, relative=False, no_path=False, hidden=False, ignore=(), base=None):
        if relative and no_path:
            raise InvalidConfigError("Cannot use --relative and --no-path together")
        return cls(
            mode=PathMode.from_flags(relative=relative, no_path=no_path),
            hidden=hidden,
            ignore=IgnoreSpec(ignore),
            base=base,
        )

    def with_ignore(self, ignore) -> AggregationConfig:
        return replace(self, ignore=ignore)


class Selection:
    """Ordered set of selection roots keyed by canonical path.

    Roots keep the order in which they were added; toggling a root off and
    on again moves it to the end.
    """

    def __init__(self, roots=()):
        self._roots = {}
        for root in roots:
            self._roots[root.path] = root

    def __len__(self):
        return len(self._roots)

    def __bool__(self):
        return bool(self._roots)

    def __iter__(self):
        return iter(self._roots.values())

    def __contains__(self, path):
        return canonical(path) in self._roots

    def copy(self) -> Selection:
        return Selection(self._roots.values())

    def roots(self):
        return list(self._roots.values())

    def selected_roots(self):
        return [root for root in self._roots.values() if root.selected]

    def paths(self):
        return list(self._roots)

    def add(self, path, selected=True) -> SelectionRoot:
        """Add ``path`` as a root; a path added twice keeps its first position."""
        entry = path if isinstance(path, PathEntry) else PathEntry.from_path(path)
        root = SelectionRoot(entry, selected)
        self._roots[entry.path] = root
        return root

    def toggle(self, path) -> bool:
        """Flip membership of ``path``; return ``True`` if it is now a root."""
        entry = path if isinstance(path, PathEntry) else PathEntry.from_path(path)
        if entry.path in self._roots:
            del self._roots[entry.path]
            return False
        self._roots[entry.path] = SelectionRoot(entry)
        return True

    def set_selected(self, path, selected):
        key = canonical(path)
        self._roots[key] = replace(self._roots[key], selected=selected)

    def is_root(self, path) -> bool:
        root = self._roots.get(canonical(path))
        return root is not None and root.selected

    def is_selected(self, path, ignore=None) -> bool:
        """``True`` if ``path`` is a selected root or lies inside a selected directory root."""
        path = canonical(path)
        if ignore is not None and ignore.covers(path):
            root = self._roots.get(path)
            return (
                root is not None
                and root.selected
                and not root.entry.is_dir
                and not ignore.matches(path)
            )
        if self.is_root(path):
            return True
        return any(
            root.entry.is_dir and root.path in path.parents
            for root in self.selected_roots()
        )

    def resolve(self, config, on_error=None):
        """Return the de-duplicated, ordered list of files to aggregate."""
        seen = set()
        files = []
        for root in self.selected_roots():
            for path in walk(root.entry, config.hidden, config.ignore, on_error):
                if path in seen:
                    logging.debug("Already included: %s", path)
                    continue
                seen.add(path)
                files.append(path)
        return files


def _has_glob(argument):
    return any(ch in _GLOB_CHARS for ch in argument)


def expand_arguments(arguments):
    """Turn command-line path arguments into existing paths, in order.

    Arguments that exist are kept literally. Arguments that do not exist but
    contain glob characters are expanded (sorted, ``**`` allowed). Anything
    else is rejected before the pipeline starts.
    """
    paths = []
    unmatched = []
    for argument in arguments:
        if os.path.lexists(argument):
            paths.append(Path(argument))
            continue
        if _has_glob(argument):
            matches = sorted(glob.glob(argument, recursive=True))
            if not matches:
                logging.warning("No files found matching the pattern '%s'.", argument)
                unmatched.append(argument)
            paths.extend(Path(match) for match in matches)
            continue
        raise InvalidConfigError(f"Path does not exist: {argument}")

    if not paths and unmatched:
        raise InvalidConfigError("No files found matching the specified patterns")
    return paths


def selection_from_arguments(arguments):
    """Build a :class:`Selection` from command-line path arguments."""
    selection = Selection()
    for path in expand_arguments(arguments):
        try:
            selection.add(path)
        except TraversalError as exc:
            raise InvalidConfigError(f"Cannot access {path}: {exc.reason.value}") from exc
    return selection
