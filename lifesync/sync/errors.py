"""Sync engine exceptions."""
from __future__ import annotations


class SyncError(Exception):
    """Base class for sync engine errors."""


class SyncAlreadyRunningError(SyncError):
    """A sync run is already in progress; the new request was rejected."""


class IssueNotFoundError(SyncError):
    """No issue with the requested id exists."""


class ResolutionError(SyncError):
    """An issue could not be resolved; it stays unresolved and can be retried."""
