"""Error taxonomy for the analytics and backup layers."""
from __future__ import annotations

from typing import Optional


class HRAnalyticsError(Exception):
    """Base class for all application errors."""


class NotFoundError(HRAnalyticsError):
    """A tenant-scoped entity (or group of entities) does not exist."""

    def __init__(self, kind: str, identifier: str, tenant_id: Optional[str] = None) -> None:
        self.kind = kind
        self.identifier = identifier
        self.tenant_id = tenant_id
        label = kind.capitalize()
        if kind in {"team", "department"}:
            message = f"{label} not found or has no employees: {identifier}"
        else:
            message = f"{label} not found: {identifier}"
        super().__init__(message)


class SnapshotNotFound(NotFoundError):
    def __init__(self, path: str) -> None:
        super().__init__("snapshot", path)
        self.args = (f"Backup file does not exist: {path}",)


class SnapshotSourceMissing(NotFoundError):
    def __init__(self, path: str) -> None:
        super().__init__("file", path)
        self.args = (f"Source file does not exist: {path}",)


class ValidationError(HRAnalyticsError):
    """Missing or invalid input."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class StoreError(HRAnalyticsError):
    """The tenant store failed to serve a query or insert."""


class ScoreDecodeError(HRAnalyticsError):
    """A stored score could not be decoded into a finite number."""

    def __init__(self, field: str, value: object) -> None:
        super().__init__(f"Malformed {field}: {value!r}")
        self.field = field
        self.value = value


class OperationCancelled(HRAnalyticsError):
    """The caller cancelled an aggregation before it completed."""


class AnalyticsError(HRAnalyticsError):
    """An aggregation failed; wraps the underlying cause with an operation label."""

    def __init__(self, operation: str, cause: BaseException) -> None:
        super().__init__(f"Failed to {operation}: {cause}")
        self.operation = operation
        self.cause = cause


class FileLockError(HRAnalyticsError):
    """Lock acquisition on a tabular file exhausted its retry budget."""

    def __init__(self, path: str, attempts: int) -> None:
        super().__init__(f"Could not acquire lock on {path} after {attempts} attempts")
        self.path = path
        self.attempts = attempts


class TabularWriteError(HRAnalyticsError):
    """Writing a tabular file failed while the lock was held."""

    def __init__(self, path: str, cause: BaseException) -> None:
        super().__init__(f"Failed to write CSV file {path}: {cause}")
        self.path = path
        self.cause = cause
