"""Read-only query interface over the index."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

from filestash.index.storage import SQLiteIndexStore
from filestash.index.tree import TreeNode, build_tree
from filestash.models import IndexRecord

MAX_PAGE_SIZE = 1000


@dataclass(slots=True)
class SearchPage:
    records: List[IndexRecord]
    total: int
    skip: int
    limit: int


class Searcher:
    """High-level API to query the index store."""

    def __init__(self, store: SQLiteIndexStore) -> None:
        self.store = store

    def search(
        self,
        text: str | None = None,
        *,
        prefix: str | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> SearchPage:
        """Return one page of records matching ``text`` under ``prefix``.

        ``text`` is matched as a case-insensitive substring of the name, full
        path, extension or fingerprint.
        """
        text = text.strip() if text else None
        skip = max(0, skip)
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        records = self.store.query_records(prefix=prefix, search=text, skip=skip, limit=limit)
        total = self.store.count_records(prefix=prefix, search=text)
        return SearchPage(records=records, total=total, skip=skip, limit=limit)

    def tree(self, text: str | None = None, *, prefix: str | None = None) -> List[TreeNode]:
        """Build the tree of every record matching the filters."""
        text = text.strip() if text else None
        records = self.store.query_records(prefix=prefix, search=text, limit=None)
        return build_tree(records)

    def stats(self) -> dict:
        return self.store.get_stats()
