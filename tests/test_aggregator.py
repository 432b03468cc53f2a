import logging
from pathlib import Path

import pytest

import aggregator
from aggregator import aggregate, aggregate_selection, read_file
from path_formatter import PathMode
from selection import AggregationConfig, Selection
from utils import ReadError, Reason
from walker import IgnoreSpec


@pytest.fixture
def files(tmp_path):
    (tmp_path / "a.txt").write_text("hello\n", encoding="utf-8")
    (tmp_path / "b.txt").write_text("world", encoding="utf-8")
    return tmp_path.resolve()


def test_absolute_headers_with_blank_line_between_files(files):
    result = aggregate([files / "a.txt", files / "b.txt"], AggregationConfig())

    expected = (
        f"--- File: {files}/a.txt ---\nhello\n\n"
        f"--- File: {files}/b.txt ---\nworld\n"
    ).encode()
    assert result.buffer == expected
    assert result.files == [files / "a.txt", files / "b.txt"]
    assert result.warnings == []


def test_relative_headers(files):
    config = AggregationConfig(mode=PathMode.RELATIVE, base=files)
    result = aggregate([files / "a.txt"], config)

    assert result.buffer == b"--- File: a.txt ---\nhello\n"


def test_without_headers_content_is_preserved(files):
    config = AggregationConfig(mode=PathMode.NONE)
    result = aggregate([files / "a.txt", files / "b.txt"], config)

    assert result.buffer == b"hello\nworld\n"


def test_binary_content_is_passed_through(tmp_path):
    data = bytes(range(256)) + b"\n"
    (tmp_path / "blob.bin").write_bytes(data)

    result = aggregate([tmp_path / "blob.bin"], AggregationConfig(mode=PathMode.NONE))
    assert result.buffer == data


def test_aggregation_is_deterministic(files):
    selection = Selection()
    selection.add(files)
    config = AggregationConfig()

    first = aggregate_selection(selection, config)
    second = aggregate_selection(selection, config)
    assert first.buffer == second.buffer
    assert first.file_count == 2
    assert first.size == len(first.buffer)


def test_unreadable_file_is_skipped_with_warning(files, monkeypatch, caplog):
    real_read_bytes = Path.read_bytes
    secret = files / "b.txt"

    def fake_read_bytes(self):
        if self == secret:
            raise PermissionError(13, "Permission denied", str(self))
        return real_read_bytes(self)

    monkeypatch.setattr(Path, "read_bytes", fake_read_bytes)

    with caplog.at_level(logging.WARNING):
        result = aggregate([files / "a.txt", secret], AggregationConfig())

    assert result.buffer == f"--- File: {files}/a.txt ---\nhello\n".encode()
    assert result.files == [files / "a.txt"]
    assert len(result.warnings) == 1
    skipped = result.warnings[0]
    assert skipped.path == secret
    assert skipped.reason is Reason.PERMISSION_DENIED
    assert "permission denied" in skipped.describe()
    assert "Skipping" in caplog.text


def test_skipped_first_file_adds_no_leading_separator(files, monkeypatch):
    def fake_read_file(path):
        if Path(path).name == "a.txt":
            raise ReadError(Path(path), Reason.PATH_VANISHED)
        return Path(path).read_bytes()

    monkeypatch.setattr(aggregator, "read_file", fake_read_file)

    result = aggregate([files / "a.txt", files / "b.txt"], AggregationConfig())
    assert result.buffer == f"--- File: {files}/b.txt ---\nworld\n".encode()


def test_read_file_wraps_os_errors(tmp_path):
    with pytest.raises(ReadError) as excinfo:
        read_file(tmp_path / "missing.txt")
    assert excinfo.value.reason is Reason.PATH_VANISHED

    with pytest.raises(ReadError) as excinfo:
        read_file(tmp_path)
    assert excinfo.value.reason in (Reason.NOT_READABLE, Reason.PERMISSION_DENIED)


def test_aggregate_selection_collects_traversal_warnings(files, monkeypatch):
    (files / "locked").mkdir()
    (files / "locked" / "c.txt").write_text("c", encoding="utf-8")
    real_scandir = aggregator.os.scandir

    def fake_scandir(path):
        if Path(path).name == "locked":
            raise PermissionError(13, "Permission denied")
        return real_scandir(path)

    monkeypatch.setattr("walker.os.scandir", fake_scandir)

    selection = Selection()
    selection.add(files)
    result = aggregate_selection(selection, AggregationConfig(mode=PathMode.NONE))

    assert result.buffer == b"hello\nworld\n"
    assert [(w.path, w.reason) for w in result.warnings] == [
        (files / "locked", Reason.PERMISSION_DENIED)
    ]


def test_aggregate_selection_respects_ignore(files):
    selection = Selection()
    selection.add(files)
    config = AggregationConfig(mode=PathMode.NONE, ignore=IgnoreSpec([files / "a.txt"]))

    assert aggregate_selection(selection, config).buffer == b"world\n"


def test_progress_disabled_when_debugging(monkeypatch):
    monkeypatch.delenv("CI", raising=False)
    root = logging.getLogger()
    previous = root.level
    root.setLevel(logging.DEBUG)
    try:
        assert aggregator.progress_enabled() is False
    finally:
        root.setLevel(previous)


def test_progress_disabled_in_ci(monkeypatch):
    monkeypatch.setenv("CI", "1")
    assert aggregator.progress_enabled() is False
