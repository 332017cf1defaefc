"""Exceptions raised by the reconciliation jobs."""

from typing import Any, List, Optional


class ReconcileError(Exception):
    """Base class for every error the jobs raise on purpose."""


class ConfigurationError(ReconcileError):
    """Invalid flags or settings. Raised before any I/O happens."""


class StoreError(ReconcileError):
    """The document store is unreachable or rejected a read/write."""


class WriteGroupCommitError(StoreError):
    """An atomic write-group failed to commit. None of its patches applied."""

    def __init__(self, message: str, record_ids: Optional[List[Any]] = None):
        super().__init__(message)
        self.record_ids = list(record_ids or [])


class ScanAbortedError(ReconcileError):
    """
    A run stopped on an I/O failure.

    ``last_cursor`` is the last record ID the scanner handed out; pass it
    back as ``--startAfter`` to resume.
    """

    def __init__(self, message: str, last_cursor: Optional[str], state=None):
        super().__init__(message)
        self.last_cursor = last_cursor
        self.state = state
