"""Exceptions raised by the FileStash scan engine."""

from __future__ import annotations


class FileStashError(Exception):
    """Base class for FileStash errors."""


class PathNotFoundError(FileStashError):
    def __init__(self, path: str) -> None:
        super().__init__(f"Path not found: {path}")
        self.path = path


class ScanNotADirectoryError(FileStashError):
    def __init__(self, path: str) -> None:
        super().__init__(f"Path is not a directory: {path}")
        self.path = path


class ScanNotFoundError(FileStashError):
    def __init__(self, scan_id: str) -> None:
        super().__init__(f"Scan not found: {scan_id}")
        self.scan_id = scan_id


class InvalidCancelRequestError(FileStashError):
    """Raised when cancelling a scan that is no longer running."""

    def __init__(self, scan_id: str, current_status: str) -> None:
        super().__init__(f"Scan {scan_id} cannot be cancelled (status: {current_status})")
        self.scan_id = scan_id
        self.current_status = current_status


class FingerprintReadError(FileStashError):
    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Cannot fingerprint {path}: {reason}")
        self.path = path
        self.reason = reason
