"""Core FileStash data models."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

SCANNING = "scanning"
COMPLETED = "completed"
ERROR = "error"
CANCELLED = "cancelled"

TERMINAL_STATUSES = frozenset({COMPLETED, ERROR, CANCELLED})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(slots=True)
class EnumeratedItem:
    """A filesystem entry found by the enumerator, with its ``lstat`` result."""

    path: str
    is_directory: bool
    stat: os.stat_result


@dataclass(slots=True)
class IndexRecord:
    """Metadata persisted for one filesystem entry, keyed by ``full_path``."""

    full_path: str
    parent_directory: str
    name: str
    extension: str
    size_bytes: int
    created_at: str | None
    modified_at: str | None
    is_directory: bool
    attributes: str
    fingerprint: str | None = None
    id: int | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "full_path": self.full_path,
            "parent_directory": self.parent_directory,
            "name": self.name,
            "extension": self.extension,
            "size_bytes": self.size_bytes,
            "created_at": self.created_at,
            "modified_at": self.modified_at,
            "is_directory": self.is_directory,
            "attributes": self.attributes,
            "fingerprint": self.fingerprint,
        }


@dataclass(slots=True, frozen=True)
class ScanHistoryEntry:
    """Immutable summary of a finished scan."""

    scan_id: str
    roots: tuple[str, ...]
    concurrency: int
    fingerprint_enabled: bool
    status: str
    total: int
    processed: int
    error_count: int
    started_at: str
    ended_at: str | None
    duration_ms: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scan_id": self.scan_id,
            "roots": list(self.roots),
            "concurrency": self.concurrency,
            "fingerprint_enabled": self.fingerprint_enabled,
            "status": self.status,
            "total": self.total,
            "processed": self.processed,
            "error_count": self.error_count,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "duration_ms": self.duration_ms,
        }


@dataclass(slots=True)
class ScanJob:
    """Mutable state of one scan invocation.

    Only the event loop thread mutates a job, so plain integer updates of
    ``processed`` are atomic with respect to the chunk workers.
    """

    id: str
    roots: List[str]
    concurrency: int
    fingerprint_enabled: bool
    status: str = SCANNING
    total: int = 0
    processed: int = 0
    errors: List[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=utc_now)
    ended_at: Optional[datetime] = None
    cancellation_requested: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def duration_ms(self) -> int | None:
        if self.ended_at is None:
            return None
        return int((self.ended_at - self.started_at).total_seconds() * 1000)

    def finish(self, status: str) -> None:
        """Move the job into a terminal state; later calls are ignored."""
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Not a terminal status: {status}")
        if self.is_terminal:
            return
        self.status = status
        self.ended_at = utc_now()

    def snapshot(self) -> Dict[str, Any]:
        return {
            "scan_id": self.id,
            "roots": list(self.roots),
            "concurrency": self.concurrency,
            "fingerprint_enabled": self.fingerprint_enabled,
            "status": self.status,
            "total": self.total,
            "processed": self.processed,
            "errors": list(self.errors),
            "started_at": _isoformat(self.started_at),
            "ended_at": _isoformat(self.ended_at),
            "duration_ms": self.duration_ms,
            "cancellation_requested": self.cancellation_requested,
        }

    def to_history_entry(self) -> ScanHistoryEntry:
        return ScanHistoryEntry(
            scan_id=self.id,
            roots=tuple(self.roots),
            concurrency=self.concurrency,
            fingerprint_enabled=self.fingerprint_enabled,
            status=self.status,
            total=self.total,
            processed=self.processed,
            error_count=len(self.errors),
            started_at=self.started_at.isoformat(),
            ended_at=_isoformat(self.ended_at),
            duration_ms=self.duration_ms or 0,
        )
