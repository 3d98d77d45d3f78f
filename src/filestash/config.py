"""Application configuration defaults."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path

DEFAULT_CONCURRENCY = 4
DEFAULT_HISTORY_LIMIT = 100
DEFAULT_STAT_CONCURRENCY = 64


def _get_default_db_path() -> Path:
    """Get the default database path based on platform and environment."""
    override = os.environ.get("FILESTASH_DB")
    if override:
        return Path(override)

    # When running from source, prefer local data/ if it exists
    local_db = Path("data/filestash.db")
    if local_db.exists():
        return local_db

    if sys.platform == "win32":
        appdata = os.environ.get("LOCALAPPDATA", os.path.expanduser("~"))
        return Path(appdata) / "FileStash" / "filestash.db"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "FileStash" / "filestash.db"
    return Path.home() / ".local" / "share" / "filestash" / "filestash.db"


def _get_default_concurrency() -> int:
    raw = os.environ.get("FILESTASH_CONCURRENCY")
    if not raw:
        return DEFAULT_CONCURRENCY
    try:
        return max(1, int(raw))
    except ValueError:
        return DEFAULT_CONCURRENCY


@dataclass(slots=True)
class AppConfig:
    db_path: Path | None = None
    concurrency: int | None = None
    fingerprint: bool = True
    history_limit: int = DEFAULT_HISTORY_LIMIT
    stat_concurrency: int = DEFAULT_STAT_CONCURRENCY

    def __post_init__(self) -> None:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if self.concurrency is None:
            self.concurrency = _get_default_concurrency()

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path
