"""Recursive, cancellable directory enumeration."""

from __future__ import annotations

import asyncio
import logging
import os
import stat
from typing import Callable, List, Optional

from filestash.config import DEFAULT_STAT_CONCURRENCY
from filestash.index.cancellation import CancellationToken
from filestash.models import EnumeratedItem

LOGGER = logging.getLogger(__name__)

SkipCallback = Callable[[str, OSError], None]


class PathEnumerator:
    """Lists every file and directory under a root.

    Traversal uses an explicit work stack rather than recursion. The direct
    children of each directory are stat'ed concurrently, with at most
    ``stat_concurrency`` stat calls in flight across all roots sharing this
    enumerator. Entries that cannot be listed or stat'ed are skipped.
    """

    def __init__(
        self,
        *,
        stat_concurrency: int = DEFAULT_STAT_CONCURRENCY,
        on_skip: Optional[SkipCallback] = None,
    ) -> None:
        self._semaphore = asyncio.Semaphore(max(1, stat_concurrency))
        self._on_skip = on_skip

    def _skip(self, path: str, exc: OSError) -> None:
        LOGGER.debug("Skipping %s: %s", path, exc)
        if self._on_skip is not None:
            self._on_skip(path, exc)

    async def _lstat(self, path: str) -> EnumeratedItem | None:
        async with self._semaphore:
            try:
                st = await asyncio.to_thread(os.lstat, path)
            except OSError as exc:
                self._skip(path, exc)
                return None
        return EnumeratedItem(path=path, is_directory=stat.S_ISDIR(st.st_mode), stat=st)

    async def enumerate(self, root: str, token: CancellationToken) -> List[EnumeratedItem]:
        """Return all entries under ``root``, the root included.

        Cancellation is checked once per directory popped from the stack, so
        the listing of a single directory always runs to completion. A
        cancelled enumeration returns whatever was found so far.
        """
        items: List[EnumeratedItem] = []
        try:
            root_stat = await asyncio.to_thread(os.stat, root)
        except OSError as exc:
            self._skip(root, exc)
            return items

        stack = [EnumeratedItem(path=root, is_directory=True, stat=root_stat)]
        while stack:
            if token.cancelled:
                LOGGER.debug("Enumeration of %s cancelled with %d items", root, len(items))
                break

            current = stack.pop()
            items.append(current)

            try:
                names = await asyncio.to_thread(os.listdir, current.path)
            except OSError as exc:
                self._skip(current.path, exc)
                continue

            children = await asyncio.gather(
                *(self._lstat(os.path.join(current.path, name)) for name in sorted(names))
            )
            for child in children:
                if child is None:
                    continue
                if child.is_directory:
                    stack.append(child)
                else:
                    items.append(child)

        return items
