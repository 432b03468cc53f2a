"""Interactive picker state machine.

The picker browses one directory level at a time, or the results of a name
search below it. ``step`` and ``type_text`` are pure transitions that return
a new :class:`PickerState`; the terminal adapter in ``terminal.py`` only
decodes keys and renders the state it gets back.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import enum
import logging
import os
from pathlib import Path
from typing import NamedTuple

from path_formatter import PathMode
from selection import AggregationConfig, Selection
from utils import TraversalError
from walker import IgnoreSpec, Kind, PathEntry, canonical

NO_SELECTION_MESSAGE = "No files or directories selected!"


class Key(enum.Enum):
    UP = 'up'
    DOWN = 'down'
    LEFT = 'left'
    RIGHT = 'right'
    TOGGLE = 'toggle'
    EXCLUDE = 'exclude'
    RELATIVE = 'relative'
    NO_HEADER = 'no_header'
    CONFIRM = 'confirm'
    QUIT = 'quit'
    SEARCH = 'search'
    ESCAPE = 'escape'
    ERASE = 'erase'
    SUBMIT = 'submit'


class Outcome(enum.Enum):
    CONFIRMED = 'confirmed'
    ABORTED = 'aborted'


class PickerResult(NamedTuple):
    selection: Selection
    config: AggregationConfig


def list_directory(directory) -> tuple[PathEntry, ...]:
    """Return the immediate children of ``directory``, directories first, by name."""
    entries = []
    with os.scandir(directory) as it:
        for dirent in it:
            try:
                is_dir = dirent.is_dir()
            except OSError:
                is_dir = False
            kind = Kind.DIRECTORY if is_dir else Kind.FILE
            entries.append(PathEntry(Path(dirent.path), kind))
    entries.sort(key=lambda e: (not e.is_dir, e.path.name))
    return tuple(entries)


def search_tree(directory, query) -> tuple[PathEntry, ...]:
    """Find entries below ``directory`` whose name contains ``query``, ignoring case.

    Directories come first, then shorter paths relative to ``directory``,
    then alphabetical order. Symbolic links to directories are listed but
    not descended into, and unreadable subdirectories are passed over.
    """
    directory = Path(directory)
    needle = query.lower()
    matches = []
    for parent, dirnames, filenames in os.walk(directory):
        parent = Path(parent)
        for name in dirnames:
            if needle in name.lower():
                matches.append(PathEntry(parent / name, Kind.DIRECTORY))
        for name in filenames:
            if needle in name.lower():
                matches.append(PathEntry(parent / name, Kind.FILE))

    def order(entry):
        shown = str(entry.path.relative_to(directory))
        return (not entry.is_dir, len(shown), shown.lower())

    matches.sort(key=order)
    return tuple(matches)


def _clamp(cursor, entries):
    if not entries:
        return 0
    return max(0, min(cursor, len(entries) - 1))


@dataclass(frozen=True)
class PickerState:
    directory: Path
    entries: tuple[PathEntry, ...] = ()
    cursor: int = 0
    selection: Selection = field(default_factory=Selection)
    ignore: IgnoreSpec = field(default_factory=IgnoreSpec)
    relative: bool = False
    no_header: bool = False
    hidden: bool = False
    base: Path | None = None
    floor: Path | None = None
    message: str = ""
    outcome: Outcome | None = None
    # ``None`` while browsing; the query text (possibly empty) while searching.
    search_query: str | None = None
    search_focused: bool = False
    results: tuple[PathEntry, ...] = ()
    search_origin: int = 0
    # Last cursor position per visited directory.
    history: dict = field(default_factory=dict)

    @classmethod
    def start(cls, directory, lister=list_directory, **kwargs) -> PickerState:
        directory = Path(directory).absolute()
        return cls(directory=directory, entries=lister(directory), **kwargs)

    @property
    def searching(self) -> bool:
        return self.search_query is not None

    @property
    def listing(self) -> tuple[PathEntry, ...]:
        """The entries the cursor moves over: search results or the directory."""
        return self.results if self.searching else self.entries

    @property
    def current(self) -> PathEntry | None:
        listing = self.listing
        if not listing:
            return None
        return listing[self.cursor]

    @property
    def done(self) -> bool:
        return self.outcome is not None

    @property
    def mode(self) -> PathMode:
        return PathMode.from_flags(relative=self.relative, no_path=self.no_header)

    def display_name(self, entry) -> str:
        if self.searching:
            try:
                return str(entry.path.relative_to(self.directory))
            except ValueError:
                return str(entry.path)
        return entry.path.name

    def is_selected(self, path) -> bool:
        return self.selection.is_selected(path, self.ignore)

    def is_root(self, path) -> bool:
        return self.selection.is_root(path)

    def is_excluded(self, path) -> bool:
        return self.ignore.covers(canonical(path))

    def config(self) -> AggregationConfig:
        return AggregationConfig(
            mode=self.mode, hidden=self.hidden, ignore=self.ignore, base=self.base
        )

    def result(self) -> PickerResult | None:
        if self.outcome is not Outcome.CONFIRMED:
            return None
        return PickerResult(self.selection.copy(), self.config())


_BROWSING = dict(search_query=None, search_focused=False, results=(), search_origin=0)


def _move(state, delta):
    return replace(state, cursor=_clamp(state.cursor + delta, state.listing))


def _remember(state):
    history = dict(state.history)
    history[state.directory] = state.search_origin if state.searching else state.cursor
    return history


def _change_directory(state, directory, entries, cursor):
    return replace(
        state,
        directory=directory,
        entries=entries,
        cursor=_clamp(cursor, entries),
        history=_remember(state),
        **_BROWSING,
    )


def _enter(state, lister):
    entry = state.current
    if entry is None or not entry.is_dir:
        return state
    try:
        entries = lister(entry.path)
    except OSError as exc:
        logging.debug("Cannot open %s: %s", entry.path, exc)
        return replace(state, message=f"Cannot open {entry.path.name}: {exc.strerror or exc}")
    return _change_directory(state, entry.path, entries, state.history.get(entry.path, 0))


def _at_floor(state):
    directory = state.directory
    if directory.parent == directory:
        return True
    return state.floor is not None and canonical(directory) == canonical(state.floor)


def _parent(state, lister):
    if _at_floor(state):
        return state
    parent = state.directory.parent
    try:
        entries = lister(parent)
    except OSError as exc:
        logging.debug("Cannot open %s: %s", parent, exc)
        return replace(state, message=f"Cannot open {parent}: {exc.strerror or exc}")
    cursor = state.history.get(parent)
    if cursor is None:
        cursor = 0
        for index, entry in enumerate(entries):
            if entry.path.name == state.directory.name:
                cursor = index
                break
    return _change_directory(state, parent, entries, cursor)


def _resolve_current(state):
    entry = state.current
    if entry is None:
        return None, state
    try:
        return PathEntry.from_path(entry.path), state
    except TraversalError as exc:
        return None, replace(state, message=f"Cannot select {entry.path.name}: {exc.reason.value}")


def _toggle(state):
    entry, state = _resolve_current(state)
    if entry is None:
        return state
    selection = state.selection.copy()
    selection.toggle(entry)
    return replace(state, selection=selection)


def _exclude(state):
    entry, state = _resolve_current(state)
    if entry is None:
        return state
    return replace(state, ignore=state.ignore.toggled(entry.path))


def _toggle_relative(state):
    if state.no_header:
        return state
    return replace(state, relative=not state.relative)


def _toggle_no_header(state):
    no_header = not state.no_header
    relative = False if no_header else state.relative
    return replace(state, no_header=no_header, relative=relative)


def _confirm(state):
    if not state.selection.selected_roots():
        return replace(state, message=NO_SELECTION_MESSAGE)
    return replace(state, outcome=Outcome.CONFIRMED)


def _start_search(state):
    return replace(
        state,
        search_query="",
        search_focused=True,
        results=state.entries,
        search_origin=state.cursor,
        cursor=0,
    )


def _leave_search(state):
    return replace(state, cursor=_clamp(state.search_origin, state.entries), **_BROWSING)


def _update_search(state, query, searcher):
    results = searcher(state.directory, query) if query else state.entries
    return replace(state, search_query=query, results=tuple(results), cursor=0)


def type_text(state, text, searcher=search_tree) -> PickerState:
    """Append ``text`` to the search query while the search box has focus."""
    if state.done or not state.search_focused or not text:
        return state
    return _update_search(state, state.search_query + text, searcher)


def _step_search_input(state, key, searcher):
    if key is Key.ESCAPE:
        return _leave_search(state)
    if key is Key.ERASE:
        if not state.search_query:
            return state
        return _update_search(state, state.search_query[:-1], searcher)
    if key in (Key.SUBMIT, Key.UP, Key.DOWN):
        return replace(state, search_focused=False)
    if key is Key.QUIT:
        return replace(state, outcome=Outcome.ABORTED)
    return state


def step(state, key, lister=list_directory, searcher=search_tree) -> PickerState:
    """Apply ``key`` to ``state`` and return the next state.

    While the search box has focus only the search keys (``ESCAPE``,
    ``ERASE``, ``SUBMIT``, ``UP``, ``DOWN``) and ``QUIT`` act; typed text
    goes through :func:`type_text`. Outside it, ``ESCAPE`` leaves an open
    search or, when browsing, quits.
    """
    if state.done:
        return state
    if state.message:
        state = replace(state, message="")

    if state.search_focused:
        return _step_search_input(state, key, searcher)

    if key is Key.UP:
        return _move(state, -1)
    if key is Key.DOWN:
        return _move(state, 1)
    if key is Key.RIGHT:
        return _enter(state, lister)
    if key is Key.LEFT:
        return _parent(state, lister)
    if key is Key.TOGGLE:
        return _toggle(state)
    if key is Key.EXCLUDE:
        return _exclude(state)
    if key is Key.RELATIVE:
        return _toggle_relative(state)
    if key is Key.NO_HEADER:
        return _toggle_no_header(state)
    if key is Key.CONFIRM:
        return _confirm(state)
    if key is Key.SEARCH:
        if state.searching:
            return replace(state, search_focused=True)
        return _start_search(state)
    if key is Key.ESCAPE:
        if state.searching:
            return _leave_search(state)
        return replace(state, outcome=Outcome.ABORTED)
    if key in (Key.ERASE, Key.SUBMIT):
        return state
    if key is Key.QUIT:
        return replace(state, outcome=Outcome.ABORTED)
    raise ValueError(f"Unknown picker key: {key!r}")
