"""Delivery of the aggregated buffer to stdout, a file, and the clipboard."""

import enum
import logging
import sys
from pathlib import Path
from typing import NamedTuple

import pyperclip

from utils import (
    ClipboardError,
    InvalidConfigError,
    WriteConflictCancelled,
    decode_best_effort,
)

OK = 'ok'
FAILED = 'failed'
CANCELLED = 'cancelled'


class ConflictChoice(enum.Enum):
    REPLACE = 'replace'
    APPEND = 'append'
    CANCEL = 'cancel'

    @classmethod
    def from_policy(cls, policy):
        """Map an ``on_conflict`` policy to a fixed choice; ``'ask'`` maps to ``None``."""
        if policy in (None, 'ask'):
            return None
        return cls(policy)


_ANSWERS = {
    '': ConflictChoice.REPLACE,
    'r': ConflictChoice.REPLACE,
    'replace': ConflictChoice.REPLACE,
    'a': ConflictChoice.APPEND,
    'append': ConflictChoice.APPEND,
    'c': ConflictChoice.CANCEL,
    'cancel': ConflictChoice.CANCEL,
}


class Destinations:
    """The validated set of sinks one run writes to."""

    def __init__(self, stdout=False, file=None, clipboard=False):
        self.stdout = stdout
        self.file = Path(file) if file is not None else None
        self.clipboard = clipboard

    @classmethod
    def from_flags(cls, print_=False, write=None, clipboard=True):
        """Build destinations from ``--print``, ``--write`` and the clipboard switch.

        Nothing requested means clipboard only. Printing also copies to the
        clipboard unless it is disabled. Writing to a file alone does not
        touch the clipboard.
        """
        if not print_ and write is None:
            if not clipboard:
                raise InvalidConfigError(
                    "No output destination: the clipboard is disabled and "
                    "neither --print nor --write was given."
                )
            return cls(clipboard=True)
        return cls(stdout=print_, file=write, clipboard=bool(print_ and clipboard))

    def names(self):
        names = []
        if self.stdout:
            names.append('stdout')
        if self.file is not None:
            names.append('file')
        if self.clipboard:
            names.append('clipboard')
        return names

    def __eq__(self, other):
        if not isinstance(other, Destinations):
            return NotImplemented
        return (self.stdout, self.file, self.clipboard) == (
            other.stdout,
            other.file,
            other.clipboard,
        )

    def __repr__(self):
        return (
            f"Destinations(stdout={self.stdout!r}, file={self.file!r}, "
            f"clipboard={self.clipboard!r})"
        )


class Outcome(NamedTuple):
    destination: str
    status: str
    detail: str | None = None


class DispatchReport:
    def __init__(self):
        self.outcomes = []

    def add(self, destination, status, detail=None):
        self.outcomes.append(Outcome(destination, status, detail))

    def get(self, destination):
        for outcome in self.outcomes:
            if outcome.destination == destination:
                return outcome
        return None

    @property
    def failed(self):
        return [o for o in self.outcomes if o.status == FAILED]

    @property
    def all_failed(self):
        return bool(self.outcomes) and len(self.failed) == len(self.outcomes)


def ask_conflict(path, input_stream=None, output_stream=None):
    """Ask what to do with an existing ``path``; end of input means cancel."""
    input_stream = input_stream or sys.stdin
    output_stream = output_stream or sys.stderr

    output_stream.write(f"File '{path}' already exists. What would you like to do?\n")
    while True:
        output_stream.write("[R]eplace, [a]ppend or [c]ancel? ")
        output_stream.flush()
        answer = input_stream.readline()
        if not answer:
            output_stream.write("\n")
            return ConflictChoice.CANCEL
        choice = _ANSWERS.get(answer.strip().lower())
        if choice is not None:
            return choice
        output_stream.write("Please answer 'r', 'a' or 'c'.\n")


def write_stdout(buffer, stream=None):
    """Write ``buffer`` verbatim to ``stream`` (the binary stdout by default)."""
    if stream is None:
        sys.stdout.flush()
        stream = getattr(sys.stdout, 'buffer', None)
        if stream is None:
            sys.stdout.write(decode_best_effort(buffer))
            sys.stdout.flush()
            return
    stream.write(buffer)
    stream.flush()


def write_file(path, buffer, choice=None, prompt=ask_conflict):
    """Write ``buffer`` to ``path`` and return what was done.

    When ``path`` exists, ``choice`` (or the answer from ``prompt`` when it
    is ``None``) decides between replacing, appending and cancelling.
    Returns ``'created'``, ``'replaced'`` or ``'appended'``.
    """
    path = Path(path)
    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(buffer)
        return 'created'

    if choice is None:
        choice = prompt(path)
    if choice is ConflictChoice.CANCEL:
        raise WriteConflictCancelled(str(path))
    if choice is ConflictChoice.APPEND:
        with path.open('ab') as f:
            f.write(buffer)
        return 'appended'
    path.write_bytes(buffer)
    return 'replaced'


def copy_to_clipboard(buffer):
    """Place ``buffer`` on the system clipboard or raise :class:`ClipboardError`."""
    text = decode_best_effort(buffer)
    try:
        pyperclip.copy(text)
    except pyperclip.PyperclipException as exc:
        raise ClipboardError(str(exc)) from exc


def dispatch(
    buffer,
    destinations,
    on_conflict=None,
    prompt=ask_conflict,
    stdout=None,
    clipboard=copy_to_clipboard,
):
    """Send ``buffer`` to every requested destination.

    Each sink is attempted independently: a cancelled or failed file write
    does not stop stdout or the clipboard, and a clipboard failure does not
    undo a write that already happened.
    """
    report = DispatchReport()

    if destinations.stdout:
        try:
            write_stdout(buffer, stdout)
        except OSError as exc:
            logging.error("Failed to write to stdout: %s", exc)
            report.add('stdout', FAILED, str(exc))
        else:
            report.add('stdout', OK)

    if destinations.file is not None:
        path = destinations.file
        try:
            action = write_file(path, buffer, on_conflict, prompt)
        except WriteConflictCancelled:
            logging.info("Operation cancelled; '%s' was left unchanged.", path)
            report.add('file', CANCELLED, str(path))
        except OSError as exc:
            logging.error("Failed to write to file '%s': %s", path, exc)
            report.add('file', FAILED, str(exc))
        else:
            logging.debug("%s %s", action.capitalize(), path)
            report.add('file', OK, f"{action} {path}")

    if destinations.clipboard:
        try:
            clipboard(buffer)
        except ClipboardError as exc:
            logging.warning("Failed to copy to clipboard: %s", exc)
            report.add('clipboard', FAILED, str(exc))
        else:
            report.add('clipboard', OK)

    return report
