"""Terminal adapter for the interactive picker.

Owns raw-mode lifecycle and alternate-screen switching, decodes key bytes
into picker keys, and renders a :class:`picker.PickerState` as text lines.
"""

from __future__ import annotations

import contextlib
import os
from pathlib import Path
import select
import shutil
import sys
import termios
import textwrap
import tty

from picker import Key, PickerState, step, type_text
from utils import InvalidConfigError

ESC_SEQUENCE_TIMEOUT_MS = 25
SCROLL_MARGIN = 2

REVERSE = "\x1b[7m"
BOLD = "\x1b[1m"
BLUE = "\x1b[34m"
MAGENTA = "\x1b[35m"
RED = "\x1b[31m"
DIM = "\x1b[2m"
RESET = "\x1b[0m"

KEYMAP = {
    "UP": Key.UP,
    "k": Key.UP,
    "DOWN": Key.DOWN,
    "j": Key.DOWN,
    "LEFT": Key.LEFT,
    "h": Key.LEFT,
    "BACKSPACE": Key.LEFT,
    "RIGHT": Key.RIGHT,
    "l": Key.RIGHT,
    "ENTER": Key.RIGHT,
    " ": Key.TOGGLE,
    "x": Key.EXCLUDE,
    "r": Key.RELATIVE,
    "n": Key.NO_HEADER,
    "c": Key.CONFIRM,
    "q": Key.QUIT,
    "CTRL_C": Key.QUIT,
    "ESC": Key.ESCAPE,
    "/": Key.SEARCH,
}

# Keys while typing into the search box; other printable input is query text.
SEARCH_KEYMAP = {
    "ESC": Key.ESCAPE,
    "BACKSPACE": Key.ERASE,
    "ENTER": Key.SUBMIT,
    "UP": Key.UP,
    "DOWN": Key.DOWN,
    "CTRL_C": Key.QUIT,
}

HELP_ITEMS = (
    ("↑/k", "Move up"),
    ("↓/j", "Move down"),
    ("←/h/Backspace", "Up dir"),
    ("→/l/Enter", "Open dir"),
    ("Space", "Select/Unselect"),
    ("/", "Search files"),
    ("x", "Exclude"),
    ("r", "Toggle relative path"),
    ("n", "Toggle no path headers"),
    ("c", "Confirm"),
    ("q/Ctrl-c/Esc", "Quit"),
)

SEARCH_INPUT_HELP_ITEMS = (
    ("Type", "Filter by name"),
    ("Backspace", "Delete"),
    ("Enter/↑/↓", "Browse results"),
    ("Esc", "Leave search"),
)

SEARCH_HELP_ITEMS = (
    ("↑/k", "Move up"),
    ("↓/j", "Move down"),
    ("←/h", "Up dir"),
    ("→/l/Enter", "Open dir"),
    ("Space", "Select/Unselect"),
    ("/", "Continue searching"),
    ("Esc", "Leave search"),
    ("c", "Confirm"),
    ("q/Ctrl-c", "Quit"),
)


class TerminalController:
    def __init__(self, stdin_fd: int, stdout_fd: int) -> None:
        self.stdin_fd = stdin_fd
        self.stdout_fd = stdout_fd
        self._saved_tty_state = termios.tcgetattr(stdin_fd)

    def enable_tui_mode(self) -> None:
        tty.setraw(self.stdin_fd, termios.TCSAFLUSH)
        # Enter alternate screen and hide cursor.
        os.write(self.stdout_fd, b"\x1b[?1049h\x1b[?25l")

    def disable_tui_mode(self) -> None:
        # Show cursor and restore the main screen buffer.
        os.write(self.stdout_fd, b"\x1b[?25h\x1b[?1049l")
        termios.tcsetattr(self.stdin_fd, termios.TCSAFLUSH, self._saved_tty_state)

    def draw(self, lines) -> None:
        payload = "\x1b[H\x1b[2J" + "\r\n".join(lines)
        os.write(self.stdout_fd, payload.encode("utf-8", errors="replace"))

    @contextlib.contextmanager
    def raw_mode(self):
        try:
            self.enable_tui_mode()
            yield
        finally:
            self.disable_tui_mode()


def _read_ready_byte(fd: int, timeout_ms: int) -> bytes | None:
    ready, _, _ = select.select([fd], [], [], max(0.0, timeout_ms / 1000.0))
    if not ready:
        return None
    ch = os.read(fd, 1)
    if not ch:
        return None
    return ch


def read_key(fd: int) -> str:
    """Read one key press from ``fd`` and return its token.

    Returns an empty string when the input is closed.
    """
    ch = os.read(fd, 1)
    if not ch:
        return ""

    if ch == b"\x03":
        return "CTRL_C"
    if ch in {b"\x08", b"\x7f"}:
        return "BACKSPACE"
    if ch in {b"\r", b"\n"}:
        return "ENTER"

    if ch != b"\x1b":
        if ch[0] >= 0x80:
            # Collect the rest of a multi-byte UTF-8 character.
            while True:
                try:
                    return ch.decode("utf-8")
                except UnicodeDecodeError:
                    if len(ch) >= 4:
                        return ch.decode("utf-8", errors="replace")
                    more = _read_ready_byte(fd, ESC_SEQUENCE_TIMEOUT_MS)
                    if more is None:
                        return ch.decode("utf-8", errors="replace")
                    ch += more
        return ch.decode("utf-8", errors="replace")

    # Escape / arrow key sequences.
    seq = _read_ready_byte(fd, ESC_SEQUENCE_TIMEOUT_MS)
    if seq is None:
        return "ESC"
    if seq not in {b"[", b"O"}:
        return "ESC"
    seq = _read_ready_byte(fd, ESC_SEQUENCE_TIMEOUT_MS)
    if seq == b"A":
        return "UP"
    if seq == b"B":
        return "DOWN"
    if seq == b"C":
        return "RIGHT"
    if seq == b"D":
        return "LEFT"
    return "ESC"


def visible_window(cursor, total, height, offset):
    """Return the scroll offset that keeps ``cursor`` inside a ``height``-line window."""
    if total <= height or height <= 0:
        return 0
    margin = min(SCROLL_MARGIN, max(0, (height - 1) // 2))
    if cursor < offset + margin:
        offset = cursor - margin
    elif cursor + margin >= offset + height:
        offset = cursor + margin + 1 - height
    return max(0, min(offset, total - height))


def _truncate(text, width):
    if width <= 0:
        return ""
    if len(text) <= width:
        return text
    if width == 1:
        return text[:1]
    return text[: width - 1] + "…"


def _marker(state, entry):
    if state.is_excluded(entry.path):
        return "[-]"
    if state.is_root(entry.path):
        return "[x]"
    if state.is_selected(entry.path):
        return "[+]"
    return "[ ]"


def _title(state, base):
    if state.searching:
        title = f"Search: {state.search_query}"
        if state.search_focused:
            return title + "_", "Enter to browse results, Esc to leave search"
        return title, f"Search Results ({len(state.results)} found)"

    title = "Current Directory"
    if state.no_header:
        title += " [n: no path]"
    elif state.relative:
        title += " [r: relative]"
    directory = state.directory
    if state.relative and base is not None:
        try:
            directory = directory.relative_to(base)
        except ValueError:
            pass
    return title, str(directory)


def _help_items(state):
    if state.search_focused:
        return SEARCH_INPUT_HELP_ITEMS
    if state.searching:
        return SEARCH_HELP_ITEMS
    return HELP_ITEMS


def _help_lines(items, width):
    text = "  ".join(f"{key}: {desc}" for key, desc in items)
    return textwrap.wrap(text, width=max(10, width)) or [""]


def render_lines(state: PickerState, width: int, height: int, offset: int = 0):
    """Render ``state`` into at most ``height`` lines.

    Returns ``(lines, offset)`` where ``offset`` is the updated scroll
    position of the file list.
    """
    title, subtitle = _title(state, state.base)
    header = [
        MAGENTA + BOLD + _truncate(title, width) + RESET,
        _truncate(subtitle, width),
        DIM + "─" * max(0, width) + RESET,
    ]

    if state.message:
        footer_text = [RED + BOLD + _truncate(state.message, width) + RESET]
    else:
        footer_text = [
            _truncate(line, width) for line in _help_lines(_help_items(state), width)
        ]
    footer = [DIM + "─" * max(0, width) + RESET] + footer_text

    listing = state.listing
    list_height = max(1, height - len(header) - len(footer))
    offset = visible_window(state.cursor, len(listing), list_height, offset)

    body = []
    if not listing:
        placeholder = "(no matches)" if state.searching else "(empty directory)"
        body.append(DIM + placeholder + RESET)
    for index in range(offset, min(len(listing), offset + list_height)):
        entry = listing[index]
        name = state.display_name(entry) + ("/" if entry.is_dir else "")
        text = _truncate(f"{_marker(state, entry)} {name}", width)
        style = BLUE if entry.is_dir else ""
        if state.is_selected(entry.path):
            style += BOLD
        if index == state.cursor and not state.search_focused:
            style += REVERSE
        body.append(style + text + RESET if style else text)
    body.extend([""] * (list_height - len(body)))

    return header + body + footer, offset


def apply_token(state, token):
    """Feed one key token from :func:`read_key` into the picker."""
    if not token:
        return step(state, Key.QUIT)
    if state.search_focused:
        key = SEARCH_KEYMAP.get(token)
        if key is not None:
            return step(state, key)
        if len(token) == 1 and token.isprintable():
            return type_text(state, token)
        return state
    key = KEYMAP.get(token)
    if key is None:
        return state
    return step(state, key)


def run_picker(start=None, *, selection=None, stdin_fd=None, stdout_fd=None, **options):
    """Run the picker until the user confirms or quits.

    ``options`` are passed through to :meth:`PickerState.start` (``hidden``,
    ``relative``, ``no_header``, ``ignore``, ``base``, ``floor``). Returns a
    :class:`picker.PickerResult`, or ``None`` when the user quits. Raises
    :class:`InvalidConfigError` when there is no terminal or the start
    directory cannot be listed.
    """
    if stdin_fd is None:
        stdin_fd = sys.stdin.fileno()
    if stdout_fd is None:
        stdout_fd = sys.stdout.fileno()
    if not os.isatty(stdin_fd) or not os.isatty(stdout_fd):
        raise InvalidConfigError("Interactive mode (--tui) requires a terminal.")

    start = Path(start) if start is not None else Path.cwd()
    if selection is not None:
        options['selection'] = selection
    try:
        state = PickerState.start(start, **options)
    except OSError as exc:
        raise InvalidConfigError(f"Cannot open {start}: {exc.strerror or exc}") from exc

    controller = TerminalController(stdin_fd, stdout_fd)
    offset = 0
    with controller.raw_mode():
        while not state.done:
            size = shutil.get_terminal_size()
            lines, offset = render_lines(state, size.columns, size.lines, offset)
            controller.draw(lines)
            state = apply_token(state, read_key(stdin_fd))
    return state.result()
