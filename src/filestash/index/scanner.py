"""Scan job orchestration."""

from __future__ import annotations

import asyncio
import logging
import math
import os
import stat
import time
from pathlib import Path
from typing import Dict, List, Sequence

from filestash.config import DEFAULT_CONCURRENCY, DEFAULT_STAT_CONCURRENCY
from filestash.errors import (
    FingerprintReadError,
    InvalidCancelRequestError,
    PathNotFoundError,
    ScanNotADirectoryError,
    ScanNotFoundError,
)
from filestash.index.cancellation import CancellationToken
from filestash.index.enumerator import PathEnumerator
from filestash.index.storage import SQLiteIndexStore
from filestash.models import (
    CANCELLED,
    COMPLETED,
    ERROR,
    SCANNING,
    EnumeratedItem,
    IndexRecord,
    ScanHistoryEntry,
    ScanJob,
)
from filestash.utils.files import build_record, compute_fingerprint_async

LOGGER = logging.getLogger(__name__)


def partition(items: Sequence[EnumeratedItem], parts: int) -> List[Sequence[EnumeratedItem]]:
    """Split items into at most ``parts`` contiguous chunks of equal size."""
    if not items:
        return []
    size = math.ceil(len(items) / parts)
    return [items[start : start + size] for start in range(0, len(items), size)]


def _merge(results: Sequence[List[EnumeratedItem]]) -> List[EnumeratedItem]:
    # Overlapping roots would otherwise yield the same path twice.
    seen: set[str] = set()
    merged: List[EnumeratedItem] = []
    for items in results:
        for item in items:
            if item.path in seen:
                continue
            seen.add(item.path)
            merged.append(item)
    return merged


class ScanOrchestrator:
    """Runs scan jobs and keeps track of their progress.

    Jobs live in an in-memory registry owned by this instance until removed
    with :meth:`forget`. Every finished job is also summarized in the store's
    scan history.
    """

    def __init__(
        self,
        store: SQLiteIndexStore,
        *,
        stat_concurrency: int = DEFAULT_STAT_CONCURRENCY,
    ) -> None:
        self.store = store
        self.stat_concurrency = stat_concurrency
        self._jobs: Dict[str, ScanJob] = {}
        self._tokens: Dict[str, CancellationToken] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._last_id = 0

    def _next_id(self) -> str:
        scan_id = max(time.time_ns() // 1_000_000, self._last_id + 1)
        self._last_id = scan_id
        return str(scan_id)

    async def start(
        self,
        roots: Sequence[str | Path],
        concurrency: int = DEFAULT_CONCURRENCY,
        fingerprint_enabled: bool = True,
    ) -> str:
        """Validate ``roots`` and start scanning them in the background.

        Raises PathNotFoundError or ScanNotADirectoryError before any job is
        created if a root is unusable.
        """
        if not roots:
            raise ValueError("At least one root is required")
        if concurrency < 1:
            raise ValueError("Concurrency must be at least 1")

        resolved: List[str] = []
        for root in roots:
            path = Path(root).expanduser()
            if not path.exists():
                raise PathNotFoundError(str(root))
            if not path.is_dir():
                raise ScanNotADirectoryError(str(root))
            resolved.append(os.path.abspath(path))

        job = ScanJob(
            id=self._next_id(),
            roots=resolved,
            concurrency=concurrency,
            fingerprint_enabled=fingerprint_enabled,
        )
        token = CancellationToken()
        self._jobs[job.id] = job
        self._tokens[job.id] = token
        self._tasks[job.id] = asyncio.create_task(self._run(job, token))
        LOGGER.info(
            "Scan %s started: %s (concurrency=%d, fingerprint=%s)",
            job.id,
            ", ".join(resolved),
            concurrency,
            fingerprint_enabled,
        )
        return job.id

    async def scan(
        self,
        roots: Sequence[str | Path],
        concurrency: int = DEFAULT_CONCURRENCY,
        fingerprint_enabled: bool = True,
    ) -> dict:
        """Start a scan and wait for it to finish."""
        scan_id = await self.start(roots, concurrency, fingerprint_enabled)
        return await self.wait(scan_id)

    def get_job(self, scan_id: str) -> ScanJob:
        try:
            return self._jobs[scan_id]
        except KeyError:
            raise ScanNotFoundError(scan_id) from None

    def progress(self, scan_id: str) -> dict:
        return self.get_job(scan_id).snapshot()

    def jobs(self) -> List[dict]:
        return [job.snapshot() for job in self._jobs.values()]

    def request_cancel(self, scan_id: str) -> dict:
        job = self.get_job(scan_id)
        if job.status != SCANNING:
            raise InvalidCancelRequestError(scan_id, job.status)
        if not job.cancellation_requested:
            LOGGER.info("Cancellation requested for scan %s", scan_id)
        job.cancellation_requested = True
        self._tokens[scan_id].cancel()
        return job.snapshot()

    async def wait(self, scan_id: str) -> dict:
        """Wait for a scan to reach a terminal state and return its snapshot."""
        job = self.get_job(scan_id)
        task = self._tasks.get(scan_id)
        if task is not None:
            # An interrupted run still leaves a terminal job behind.
            await asyncio.gather(task, return_exceptions=True)
        return job.snapshot()

    def forget(self, scan_id: str) -> None:
        """Drop a finished job from the registry. Its history entry is kept."""
        job = self.get_job(scan_id)
        if not job.is_terminal:
            raise ValueError(f"Scan {scan_id} is still running")
        del self._jobs[scan_id]
        self._tokens.pop(scan_id, None)
        self._tasks.pop(scan_id, None)

    def history(self, limit: int | None = None) -> List[ScanHistoryEntry]:
        return self.store.list_history(limit)

    async def shutdown(self) -> None:
        """Cancel running scans and wait for them to record their results."""
        running = [
            scan_id for scan_id, job in self._jobs.items() if job.status == SCANNING
        ]
        for scan_id in running:
            self.request_cancel(scan_id)
        tasks = [self._tasks[scan_id] for scan_id in running if scan_id in self._tasks]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, job: ScanJob, token: CancellationToken) -> None:
        try:
            await self._execute(job, token)
        except asyncio.CancelledError:
            job.errors.append("Scan task was interrupted")
            job.finish(CANCELLED)
            raise
        except Exception as exc:
            LOGGER.exception("Scan %s failed: %s", job.id, exc)
            job.errors.append(f"Scan error: {exc}")
            job.finish(ERROR)
        finally:
            await self._record_history(job)

    async def _record_history(self, job: ScanJob) -> None:
        if not job.is_terminal:
            job.finish(ERROR)
        LOGGER.info(
            "Scan %s %s: %d/%d items, %d errors, %d ms",
            job.id,
            job.status,
            job.processed,
            job.total,
            len(job.errors),
            job.duration_ms or 0,
        )
        try:
            await asyncio.to_thread(self.store.append_history, job.to_history_entry())
        except Exception as exc:
            LOGGER.error("Failed to record history for scan %s: %s", job.id, exc)

    async def _execute(self, job: ScanJob, token: CancellationToken) -> None:
        if token.cancelled:
            job.finish(CANCELLED)
            return

        skipped = 0

        def count_skip(path: str, exc: OSError) -> None:
            nonlocal skipped
            skipped += 1

        enumerator = PathEnumerator(stat_concurrency=self.stat_concurrency, on_skip=count_skip)
        results = await asyncio.gather(*(enumerator.enumerate(root, token) for root in job.roots))
        items = _merge(results)
        if skipped:
            job.errors.append(f"Skipped {skipped} unreadable entries during enumeration")

        if token.cancelled:
            job.total = len(items)
            job.processed = 0
            job.finish(CANCELLED)
            return

        job.total = len(items)
        chunks = partition(items, job.concurrency)
        chunk_records = await asyncio.gather(
            *(self._process_chunk(job, token, chunk) for chunk in chunks)
        )
        records = [record for chunk in chunk_records for record in chunk]

        # Completed work is kept even when the scan was cancelled.
        if records:
            await self._persist(job, records)
        job.finish(CANCELLED if token.cancelled else COMPLETED)

    async def _process_chunk(
        self,
        job: ScanJob,
        token: CancellationToken,
        chunk: Sequence[EnumeratedItem],
    ) -> List[IndexRecord]:
        records: List[IndexRecord] = []
        for item in chunk:
            fingerprint = None
            hashed = job.fingerprint_enabled and stat.S_ISREG(item.stat.st_mode)
            if hashed:
                try:
                    fingerprint = await compute_fingerprint_async(
                        Path(item.path), item.stat.st_size
                    )
                except FingerprintReadError as exc:
                    LOGGER.warning("%s", exc)
                    job.errors.append(str(exc))
            records.append(build_record(item, fingerprint))
            job.processed += 1
            if not hashed:
                # Let pollers and cancel requests run between items.
                await asyncio.sleep(0)
            if token.cancelled:
                break
        return records

    async def _persist(self, job: ScanJob, records: List[IndexRecord]) -> None:
        failed: List[str] = []
        written = await asyncio.to_thread(
            self.store.write_batch,
            records,
            on_error=lambda record, exc: failed.append(record.full_path),
        )
        LOGGER.debug("Scan %s persisted %d records", job.id, written)
        if failed:
            job.errors.append(f"Failed to persist {len(failed)} records")
