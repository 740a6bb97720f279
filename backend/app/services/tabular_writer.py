"""CSV writes serialized through an advisory lock file.

The lock domain is the data file path: writers create `<file>.lock`
exclusively, retry with exponential backoff, and give up with
`FileLockError` once the retry budget is spent. A lock file older than the
staleness threshold is assumed abandoned by a crashed writer and is
reclaimed. That reclaim is best-effort: a writer stalled for longer than
the threshold can lose its lock to another writer, so mutual exclusion is
only guaranteed for writers that finish within it.
"""
from __future__ import annotations

import csv
import io
import os
import threading
import time
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Mapping, Optional, Sequence

from app.core.config import Settings, get_settings
from app.core.errors import FileLockError, TabularWriteError
from app.core.logging import logger


@dataclass(frozen=True)
class LockPolicy:
    """Retry/backoff and staleness settings, in seconds."""

    retries: int = 3
    factor: float = 2.0
    min_timeout: float = 0.05
    max_timeout: float = 0.2
    stale: float = 5.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "LockPolicy":
        return cls(
            retries=settings.csv_lock_retries,
            factor=settings.csv_lock_factor,
            min_timeout=settings.csv_lock_min_timeout_ms / 1000.0,
            max_timeout=settings.csv_lock_max_timeout_ms / 1000.0,
            stale=settings.csv_lock_stale_ms / 1000.0,
        )

    def delays(self) -> Iterator[float]:
        for attempt in range(self.retries):
            yield min(self.min_timeout * (self.factor ** attempt), self.max_timeout)


class FileLock:
    """Exclusive advisory lock on a file path, usable as a context manager."""

    def __init__(self, path: str | Path, policy: Optional[LockPolicy] = None) -> None:
        self.path = Path(path)
        self.lock_path = self.path.with_name(f"{self.path.name}.lock")
        self.policy = policy or LockPolicy()
        self.acquired = False

    def _try_create(self) -> bool:
        try:
            fd = os.open(str(self.lock_path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w") as handle:
            handle.write(f"{os.getpid()} {time.time():.3f}\n")
        return True

    def _lock_age(self) -> Optional[float]:
        try:
            return time.time() - self.lock_path.stat().st_mtime
        except FileNotFoundError:
            return None

    def _reclaim_if_stale(self) -> None:
        age = self._lock_age()
        if age is None or age <= self.policy.stale:
            return
        logger.warning(
            "Reclaiming stale file lock",
            path=str(self.path),
            lock_age_s=round(age, 3),
            stale_after_s=self.policy.stale,
        )
        self.lock_path.unlink(missing_ok=True)

    def acquire(self) -> "FileLock":
        self.path.parent.mkdir(parents=True, exist_ok=True)
        started = time.monotonic()
        attempts = 0
        for delay in [*self.policy.delays(), None]:
            attempts += 1
            if self._try_create():
                self.acquired = True
                logger.debug(
                    "Write lock acquired",
                    path=str(self.path),
                    attempts=attempts,
                    lock_time_ms=round((time.monotonic() - started) * 1000, 1),
                )
                return self
            self._reclaim_if_stale()
            if self._try_create():
                self.acquired = True
                return self
            if delay is None:
                break
            time.sleep(delay)

        logger.error("Could not acquire write lock", path=str(self.path), attempts=attempts)
        raise FileLockError(str(self.path), attempts)

    def release(self) -> None:
        if not self.acquired:
            return
        self.acquired = False
        try:
            self.lock_path.unlink()
            logger.debug("Write lock released", path=str(self.path))
        except OSError as exc:
            # data is already on disk; a leftover lock file ages into staleness
            logger.warning("Failed to release lock", path=str(self.path), error=str(exc))

    def __enter__(self) -> "FileLock":
        return self.acquire()

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.release()
        return False


@dataclass(frozen=True)
class ColumnSpec:
    """One CSV column: record key and header title."""

    id: str
    title: str

    @classmethod
    def of(cls, *ids: str) -> List["ColumnSpec"]:
        return [cls(id=column, title=column) for column in ids]


def _cell(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def format_row(values: Sequence[Any]) -> str:
    """One CSV line: commas, quotes and newlines force quoting, quotes are doubled."""
    buffer = io.StringIO()
    csv.writer(buffer, lineterminator="\n").writerow([_cell(value) for value in values])
    return buffer.getvalue()


def _record_row(columns: Sequence[ColumnSpec], record: Mapping[str, Any]) -> str:
    return format_row([record.get(column.id) for column in columns])


def _ends_with_newline(path: Path) -> bool:
    with path.open("rb") as handle:
        handle.seek(0, os.SEEK_END)
        if handle.tell() == 0:
            return True
        handle.seek(-1, os.SEEK_END)
        return handle.read(1) == b"\n"


def _ensure_trailing_newline(path: Path) -> None:
    if path.exists() and not _ends_with_newline(path):
        with path.open("a", encoding="utf-8", newline="") as handle:
            handle.write("\n")
        logger.debug("Newline appended to file", path=str(path))


def _has_data_rows(path: Path) -> bool:
    """True when the file holds a header plus at least one non-blank line."""
    if not path.exists():
        return False
    seen = 0
    with path.open("r", encoding="utf-8", newline="") as handle:
        for line in handle:
            if line.strip():
                seen += 1
                if seen > 1:
                    return True
    return False


class LockedTabularWriter:
    """Writes tenant CSV datasets under a per-file advisory lock."""

    def __init__(self, policy: Optional[LockPolicy] = None) -> None:
        self._policy = policy or LockPolicy()

    def _write_unlocked(
        self,
        path: Path,
        columns: Sequence[ColumnSpec],
        records: Iterable[Mapping[str, Any]],
        append: bool,
    ) -> int:
        # rows are rendered before the file is touched so a failing record
        # source leaves the existing file as it was
        rows = [_record_row(columns, record) for record in records]

        if append and path.exists() and path.stat().st_size > 0:
            prefix = "" if _ends_with_newline(path) else "\n"
            with path.open("a", encoding="utf-8", newline="") as handle:
                handle.write(prefix + "".join(rows))
        else:
            temp_path = path.with_name(f".{path.name}.{os.getpid()}.{threading.get_ident()}.tmp")
            try:
                with temp_path.open("w", encoding="utf-8", newline="") as handle:
                    handle.write(format_row([column.title for column in columns]))
                    handle.write("".join(rows))
                temp_path.replace(path)
            except Exception:
                temp_path.unlink(missing_ok=True)
                raise
        _ensure_trailing_newline(path)
        return len(rows)

    def write_all(
        self,
        path: str | Path,
        columns: Sequence[ColumnSpec],
        records: Iterable[Mapping[str, Any]],
        append: bool = False,
    ) -> int:
        """Write every record (replacing the file unless `append`); returns rows written."""
        target = Path(path)
        started = time.monotonic()
        with FileLock(target, self._policy):
            try:
                written = self._write_unlocked(target, columns, records, append)
            except OSError as exc:
                logger.error("Failed to write CSV file", path=str(target), error=str(exc), operation="write_all")
                raise TabularWriteError(str(target), exc) from exc

        logger.info(
            "CSV write operation completed",
            path=str(target),
            record_count=written,
            total_time_ms=round((time.monotonic() - started) * 1000, 1),
            operation="write_all",
        )
        return written

    def append_one(self, path: str | Path, columns: Sequence[ColumnSpec], record: Mapping[str, Any]) -> None:
        """Append a single row; a missing or header-only file is rewritten with header and row."""
        target = Path(path)
        started = time.monotonic()
        with FileLock(target, self._policy):
            try:
                if _has_data_rows(target):
                    line = _record_row(columns, record)
                    if not _ends_with_newline(target):
                        line = "\n" + line
                    with target.open("a", encoding="utf-8", newline="") as handle:
                        handle.write(line)
                    logger.debug("Record appended to existing file", path=str(target))
                else:
                    self._write_unlocked(target, columns, [record], append=False)
                    logger.debug("New file created with record", path=str(target))
                _ensure_trailing_newline(target)
            except OSError as exc:
                logger.error("Failed to append to CSV file", path=str(target), error=str(exc), operation="append_one")
                raise TabularWriteError(str(target), exc) from exc

        logger.info(
            "CSV append operation completed",
            path=str(target),
            total_time_ms=round((time.monotonic() - started) * 1000, 1),
            operation="append_one",
        )


@lru_cache()
def get_tabular_writer() -> LockedTabularWriter:
    return LockedTabularWriter(LockPolicy.from_settings(get_settings()))
