import logging
import os
from pathlib import Path

import pytest

from utils import Reason, TraversalError
from walker import IgnoreSpec, Kind, PathEntry, walk


def _make_tree(root: Path, files):
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root.resolve()


def _rel(paths, root):
    return [p.relative_to(root).as_posix() for p in paths]


def test_walk_single_file_yields_itself(tmp_path):
    root = _make_tree(tmp_path, {"a.txt": "a"})
    assert list(walk(root / "a.txt")) == [root / "a.txt"]


def test_walk_directory_in_name_order(tmp_path):
    root = _make_tree(
        tmp_path,
        {
            "c.txt": "c",
            "a.txt": "a",
            "b/z.txt": "z",
            "b/y/deep.txt": "d",
        },
    )

    assert _rel(walk(root), root) == ["a.txt", "b/y/deep.txt", "b/z.txt", "c.txt"]


def test_walk_is_restartable(tmp_path):
    root = _make_tree(tmp_path, {"a.txt": "a", "sub/b.txt": "b"})

    assert list(walk(root)) == list(walk(root))


def test_walk_skips_hidden_unless_requested(tmp_path):
    root = _make_tree(
        tmp_path,
        {"visible.txt": "v", ".hidden.txt": "h", ".git/config": "c"},
    )

    assert _rel(walk(root), root) == ["visible.txt"]
    assert _rel(walk(root, hidden=True), root) == [
        ".git/config",
        ".hidden.txt",
        "visible.txt",
    ]


def test_explicit_hidden_root_is_walked(tmp_path):
    root = _make_tree(tmp_path, {".config/settings.ini": "x"})

    assert _rel(walk(root / ".config"), root) == [".config/settings.ini"]


def test_ignore_directory_skips_subtree(tmp_path):
    root = _make_tree(
        tmp_path,
        {
            "dirA/keep.txt": "k",
            "dirA/sub/skip.txt": "s",
            "dirA/sub/deeper/skip2.txt": "s",
            "dirA/subway.txt": "k",
        },
    )

    ignore = IgnoreSpec([root / "dirA" / "sub"])
    assert _rel(walk(root / "dirA", ignore=ignore), root) == [
        "dirA/keep.txt",
        "dirA/subway.txt",
    ]


def test_ignore_file_inside_directory(tmp_path):
    root = _make_tree(tmp_path, {"a.txt": "a", "b.txt": "b"})

    ignore = IgnoreSpec([root / "b.txt"])
    assert _rel(walk(root, ignore=ignore), root) == ["a.txt"]


def test_file_root_equal_to_ignore_is_dropped(tmp_path):
    root = _make_tree(tmp_path, {"a.txt": "a"})

    assert list(walk(root / "a.txt", ignore=IgnoreSpec([root / "a.txt"]))) == []


def test_explicit_file_under_ignored_directory_is_kept(tmp_path):
    root = _make_tree(tmp_path, {"build/out.txt": "o"})

    ignore = IgnoreSpec([root / "build"])
    assert list(walk(root / "build" / "out.txt", ignore=ignore)) == [
        root / "build" / "out.txt"
    ]
    assert list(walk(root / "build", ignore=ignore)) == []


def test_directory_root_nested_in_ignored_directory_expands_to_nothing(tmp_path):
    root = _make_tree(tmp_path, {"build/gen/x.txt": "x"})

    ignore = IgnoreSpec([root / "build"])
    assert list(walk(root / "build" / "gen", ignore=ignore)) == []


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
def test_symlink_loop_is_not_followed(tmp_path, caplog):
    root = _make_tree(tmp_path, {"a/file.txt": "f"})
    try:
        os.symlink(root / "a", root / "a" / "loop", target_is_directory=True)
    except OSError:
        pytest.skip("cannot create symlinks here")

    with caplog.at_level(logging.DEBUG):
        files = list(walk(root))

    assert files == [root / "a" / "file.txt"]
    assert "symlink loop" in caplog.text


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
def test_symlinked_file_yields_canonical_path(tmp_path):
    root = _make_tree(tmp_path, {"real/data.txt": "d", "view/.keep": ""})
    try:
        os.symlink(root / "real" / "data.txt", root / "view" / "link.txt")
    except OSError:
        pytest.skip("cannot create symlinks here")

    assert list(walk(root / "view")) == [root / "real" / "data.txt"]


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
def test_broken_symlink_is_reported(tmp_path):
    root = _make_tree(tmp_path, {"ok.txt": "ok"})
    try:
        os.symlink(root / "missing.txt", root / "broken.txt")
    except OSError:
        pytest.skip("cannot create symlinks here")

    errors = []
    files = list(walk(root, on_error=errors.append))

    assert files == [root / "ok.txt"]
    assert len(errors) == 1
    assert errors[0].reason is Reason.PATH_VANISHED
    assert errors[0].path == root / "broken.txt"


def test_missing_root_raises_without_callback(tmp_path):
    with pytest.raises(TraversalError) as excinfo:
        list(walk(tmp_path / "gone"))
    assert excinfo.value.reason is Reason.PATH_VANISHED


def test_unreadable_directory_is_reported_and_walk_continues(tmp_path, monkeypatch):
    root = _make_tree(tmp_path, {"a.txt": "a", "locked/x.txt": "x", "z.txt": "z"})
    real_scandir = os.scandir

    def fake_scandir(path):
        if Path(path) == root / "locked":
            raise PermissionError(13, "Permission denied")
        return real_scandir(path)

    monkeypatch.setattr("walker.os.scandir", fake_scandir)

    errors = []
    files = list(walk(root, on_error=errors.append))

    assert _rel(files, root) == ["a.txt", "z.txt"]
    assert [(e.path, e.reason) for e in errors] == [
        (root / "locked", Reason.PERMISSION_DENIED)
    ]


def test_path_entry_kind(tmp_path):
    root = _make_tree(tmp_path, {"f.txt": "f"})

    assert PathEntry.from_path(root).kind is Kind.DIRECTORY
    assert PathEntry.from_path(root / "f.txt").kind is Kind.FILE
    assert PathEntry.from_path(root / "." / "f.txt").path == root / "f.txt"


def test_ignore_spec_toggle_and_equality(tmp_path):
    ignore = IgnoreSpec()
    assert not ignore

    ignore = ignore.toggled(tmp_path / "a")
    assert ignore.matches(tmp_path / "a")
    assert ignore.covers(tmp_path.resolve() / "a" / "b" / "c")
    assert not ignore.covers(tmp_path.resolve() / "ab")

    assert ignore.toggled(tmp_path / "a") == IgnoreSpec()


def test_order_follows_full_paths(tmp_path):
    root = _make_tree(
        tmp_path,
        {"a/x.txt": "x", "a-b.txt": "ab", "a.txt": "a", "a.b/y.txt": "y"},
    )

    names = _rel(walk(root), root)
    assert names == ["a-b.txt", "a.b/y.txt", "a.txt", "a/x.txt"]
    assert names == sorted(names)


@pytest.mark.skipif(not hasattr(os, "mkfifo"), reason="FIFOs unavailable")
def test_fifo_root_is_reported_not_read(tmp_path):
    fifo = tmp_path / "pipe"
    os.mkfifo(fifo)

    assert PathEntry.from_path(fifo).kind is Kind.OTHER

    errors = []
    assert list(walk(fifo, on_error=errors.append)) == []
    assert [(e.path, e.reason) for e in errors] == [
        (fifo.resolve(), Reason.NOT_READABLE)
    ]

    with pytest.raises(TraversalError):
        list(walk(fifo))


@pytest.mark.skipif(not hasattr(os, "mkfifo"), reason="FIFOs unavailable")
def test_fifo_inside_directory_is_skipped(tmp_path):
    root = _make_tree(tmp_path, {"a.txt": "a"})
    os.mkfifo(root / "pipe")

    errors = []
    assert _rel(walk(root, on_error=errors.append), root) == ["a.txt"]
    assert errors == []
