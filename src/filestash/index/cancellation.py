"""Cooperative cancellation for scans."""

from __future__ import annotations


class CancellationToken:
    """Flag polled by scan workers at fixed checkpoints.

    Once set it stays set.
    """

    __slots__ = ("_cancelled",)

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True
