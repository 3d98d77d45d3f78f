"""Utility helpers for working with files."""

from __future__ import annotations

import asyncio
import hashlib
import os
import stat
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from filestash.errors import FingerprintReadError
from filestash.models import EnumeratedItem, IndexRecord

IN_MEMORY_LIMIT = 10 * 1024 * 1024
STREAM_CHUNK_SIZE = 64 * 1024
FINGERPRINT_LENGTH = 8

_WIN_HIDDEN = getattr(stat, "FILE_ATTRIBUTE_HIDDEN", 0x2)
_WIN_READONLY = getattr(stat, "FILE_ATTRIBUTE_READONLY", 0x1)

FingerprintStrategy = Callable[[Path], str]


def _digest(hasher) -> str:
    return hasher.hexdigest()[:FINGERPRINT_LENGTH]


def fingerprint_bytes(path: Path) -> str:
    """Fingerprint a file by reading it fully into memory."""
    return _digest(hashlib.md5(Path(path).read_bytes()))


def fingerprint_stream(path: Path) -> str:
    """Fingerprint a file in fixed-size blocks without buffering it whole."""
    hasher = hashlib.md5()
    with Path(path).open("rb") as handle:
        for chunk in iter(lambda: handle.read(STREAM_CHUNK_SIZE), b""):
            hasher.update(chunk)
    return _digest(hasher)


def select_strategy(size_bytes: int) -> FingerprintStrategy:
    """Pick the fingerprint strategy for a file of ``size_bytes``."""
    if size_bytes < IN_MEMORY_LIMIT:
        return fingerprint_bytes
    return fingerprint_stream


def compute_fingerprint(path: Path, size_bytes: int, *, is_directory: bool = False) -> str | None:
    """Return the content fingerprint of ``path``, or None for directories.

    Raises FingerprintReadError when the file cannot be read.
    """
    if is_directory:
        return None
    strategy = select_strategy(size_bytes)
    try:
        return strategy(Path(path))
    except OSError as exc:
        raise FingerprintReadError(str(path), exc.strerror or str(exc)) from exc


async def compute_fingerprint_async(
    path: Path, size_bytes: int, *, is_directory: bool = False
) -> str | None:
    """Run compute_fingerprint in a worker thread."""
    if is_directory:
        return None
    return await asyncio.to_thread(compute_fingerprint, path, size_bytes, is_directory=False)


def _timestamp(value: float | None) -> str | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()


def file_attributes(name: str, st: os.stat_result) -> str:
    """Describe an entry as a comma-joined flag set, e.g. ``FILE,HIDDEN``."""
    attrs = []
    if stat.S_ISDIR(st.st_mode):
        attrs.append("DIR")
    elif stat.S_ISREG(st.st_mode):
        attrs.append("FILE")
    if stat.S_ISLNK(st.st_mode):
        attrs.append("SYMLINK")

    win_attrs = getattr(st, "st_file_attributes", 0)
    if name.startswith(".") or win_attrs & _WIN_HIDDEN:
        attrs.append("HIDDEN")
    if not st.st_mode & stat.S_IWUSR or win_attrs & _WIN_READONLY:
        attrs.append("READONLY")
    return ",".join(attrs)


def build_record(item: EnumeratedItem, fingerprint: str | None = None) -> IndexRecord:
    """Build an IndexRecord from an enumerated entry."""
    path = Path(item.path)
    st = item.stat
    name = path.name or item.path
    created = getattr(st, "st_birthtime", None)
    if created is None:
        created = st.st_ctime
    return IndexRecord(
        full_path=item.path,
        parent_directory=str(path.parent) if path.name else "",
        name=name,
        extension="" if item.is_directory else path.suffix,
        size_bytes=0 if item.is_directory else st.st_size,
        created_at=_timestamp(created),
        modified_at=_timestamp(st.st_mtime),
        is_directory=item.is_directory,
        attributes=file_attributes(name, st),
        fingerprint=None if item.is_directory else fingerprint,
    )
