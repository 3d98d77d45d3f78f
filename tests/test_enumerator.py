"""Tests for PathEnumerator."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from filestash.index.cancellation import CancellationToken
from filestash.index.enumerator import PathEnumerator


def _make_tree(root: Path) -> None:
    (root / "a" / "b").mkdir(parents=True)
    (root / "a" / "one.txt").write_text("1")
    (root / "a" / "b" / "two.txt").write_text("2")
    (root / "top.txt").write_text("top")


class TestPathEnumerator:
    """Test recursive enumeration."""

    @pytest.mark.asyncio
    async def test_lists_everything(self, tmp_path: Path) -> None:
        """Should emit the root, every directory and every file once."""
        _make_tree(tmp_path)

        items = await PathEnumerator().enumerate(str(tmp_path), CancellationToken())

        paths = {item.path: item.is_directory for item in items}
        assert paths == {
            str(tmp_path): True,
            str(tmp_path / "a"): True,
            str(tmp_path / "a" / "b"): True,
            str(tmp_path / "a" / "one.txt"): False,
            str(tmp_path / "a" / "b" / "two.txt"): False,
            str(tmp_path / "top.txt"): False,
        }
        assert len(items) == len(paths)
        assert items[0].path == str(tmp_path)

    @pytest.mark.asyncio
    async def test_captures_stat(self, tmp_path: Path) -> None:
        (tmp_path / "data.bin").write_bytes(b"x" * 42)

        items = await PathEnumerator().enumerate(str(tmp_path), CancellationToken())

        by_path = {item.path: item for item in items}
        assert by_path[str(tmp_path / "data.bin")].stat.st_size == 42

    @pytest.mark.asyncio
    async def test_empty_directory(self, tmp_path: Path) -> None:
        items = await PathEnumerator().enumerate(str(tmp_path), CancellationToken())

        assert [item.path for item in items] == [str(tmp_path)]

    @pytest.mark.asyncio
    async def test_missing_root_is_skipped(self, tmp_path: Path) -> None:
        skipped = []
        enumerator = PathEnumerator(on_skip=lambda path, exc: skipped.append(path))

        items = await enumerator.enumerate(str(tmp_path / "missing"), CancellationToken())

        assert items == []
        assert skipped == [str(tmp_path / "missing")]

    @pytest.mark.asyncio
    async def test_unlistable_directory_is_skipped(self, tmp_path: Path) -> None:
        """A directory that cannot be listed is still emitted, its children are not."""
        _make_tree(tmp_path)
        blocked = str(tmp_path / "a")
        real_listdir = os.listdir

        def fake_listdir(path):
            if path == blocked:
                raise PermissionError("denied")
            return real_listdir(path)

        skipped = []
        enumerator = PathEnumerator(on_skip=lambda path, exc: skipped.append(path))
        with patch("filestash.index.enumerator.os.listdir", side_effect=fake_listdir):
            items = await enumerator.enumerate(str(tmp_path), CancellationToken())

        paths = {item.path for item in items}
        assert blocked in paths
        assert str(tmp_path / "a" / "one.txt") not in paths
        assert str(tmp_path / "top.txt") in paths
        assert skipped == [blocked]

    @pytest.mark.asyncio
    async def test_unstatable_entry_is_skipped(self, tmp_path: Path) -> None:
        _make_tree(tmp_path)
        broken = str(tmp_path / "top.txt")
        real_lstat = os.lstat

        def fake_lstat(path, *args, **kwargs):
            if path == broken:
                raise FileNotFoundError(path)
            return real_lstat(path, *args, **kwargs)

        with patch("filestash.index.enumerator.os.lstat", side_effect=fake_lstat):
            items = await PathEnumerator().enumerate(str(tmp_path), CancellationToken())

        paths = {item.path for item in items}
        assert broken not in paths
        assert str(tmp_path / "a" / "one.txt") in paths

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, tmp_path: Path) -> None:
        _make_tree(tmp_path)
        token = CancellationToken()
        token.cancel()

        items = await PathEnumerator().enumerate(str(tmp_path), token)

        assert items == []

    @pytest.mark.asyncio
    async def test_cancel_stops_between_directories(self, tmp_path: Path) -> None:
        """Cancellation is honoured once the current directory listing completes."""
        _make_tree(tmp_path)
        token = CancellationToken()
        real_listdir = os.listdir

        def cancelling_listdir(path):
            token.cancel()
            return real_listdir(path)

        with patch("filestash.index.enumerator.os.listdir", side_effect=cancelling_listdir):
            items = await PathEnumerator().enumerate(str(tmp_path), token)

        paths = {item.path for item in items}
        # The root listing finished, so its direct children are present.
        assert paths == {str(tmp_path), str(tmp_path / "top.txt")}

    @pytest.mark.asyncio
    async def test_symlinked_directory_not_followed(self, tmp_path: Path) -> None:
        _make_tree(tmp_path)
        link = tmp_path / "loop"
        try:
            link.symlink_to(tmp_path, target_is_directory=True)
        except (OSError, NotImplementedError):
            pytest.skip("cannot create symlinks")

        items = await PathEnumerator().enumerate(str(tmp_path), CancellationToken())

        by_path = {item.path: item for item in items}
        assert by_path[str(link)].is_directory is False
        assert not any(path.startswith(str(link) + os.sep) for path in by_path)
