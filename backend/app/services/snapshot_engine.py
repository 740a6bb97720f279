"""Checksum-verified file snapshots kept in a flat backup directory.

The directory listing is the only index: a snapshot is a timestamp-suffixed
byte copy of a data file and its MD5 is reported at creation time so callers
can verify it later.
"""
from __future__ import annotations

import hashlib
import os
import shutil
import threading
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from app.core.config import get_settings
from app.core.errors import SnapshotNotFound, SnapshotSourceMissing, ValidationError
from app.core.logging import logger
from app.models.backups import SnapshotInfo, SnapshotListing

_CHUNK_SIZE = 1024 * 1024


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def _created_timestamp(stat: os.stat_result) -> float:
    # Snapshots are written with copyfile, so mtime is the copy time where
    # the platform has no birth time.
    return min(getattr(stat, "st_birthtime", stat.st_mtime), stat.st_mtime)


def snapshot_name(source: Path, now: Optional[datetime] = None) -> str:
    """`<basename>.backup-<ISO timestamp>` with ':' and '.' made filename-safe."""
    moment = now or datetime.now(timezone.utc)
    stamp = moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return f"{source.name}.backup-{stamp.replace(':', '-').replace('.', '-')}"


def file_checksum(path: str | Path) -> str:
    digest = hashlib.md5()  # noqa: S324 - integrity check, not security
    with Path(path).open("rb") as handle:
        for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


class SnapshotEngine:
    """Creates, lists, restores, verifies and retires snapshots under `backup_root`."""

    def __init__(self, backup_root: str | Path) -> None:
        self._root = Path(backup_root)

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, file_name: str) -> Path:
        """Map a client-supplied snapshot name onto a path inside the backup root."""
        name = (file_name or "").strip()
        if not name or name in {".", ".."} or "/" in name or "\\" in name or ".." in name:
            raise ValidationError(f"Invalid backup file name '{file_name}'", field="backupFileName")
        return self._root / name

    @staticmethod
    def _copy_exclusive(source: Path, destination: Path) -> Path:
        """Copy into a file that did not exist before; taken names get a `-N` suffix."""
        candidate = destination
        attempt = 0
        while True:
            try:
                handle = candidate.open("xb")
            except FileExistsError:
                attempt += 1
                candidate = destination.with_name(f"{destination.name}-{attempt}")
                continue
            try:
                with handle, source.open("rb") as reader:
                    shutil.copyfileobj(reader, handle, _CHUNK_SIZE)
            except Exception:
                candidate.unlink(missing_ok=True)
                raise
            return candidate

    def create_snapshot(self, source_path: str | Path, name: Optional[str] = None) -> SnapshotInfo:
        source = Path(source_path)
        logger.debug("Creating backup", source_path=str(source), backup_name=name)
        if not source.is_file():
            logger.warning("Source file does not exist for backup", source_path=str(source))
            raise SnapshotSourceMissing(str(source))

        self._root.mkdir(parents=True, exist_ok=True)
        destination = self._copy_exclusive(source, self.resolve(name) if name else self._root / snapshot_name(source))

        checksum = file_checksum(destination)
        stat = destination.stat()
        info = SnapshotInfo(
            source_file=str(source),
            backup_file=str(destination),
            file_name=destination.name,
            size=stat.st_size,
            created_at=_iso(_created_timestamp(stat)),
            checksum=checksum,
        )
        logger.info("Backup created", source_path=str(source), backup_path=str(destination), size=stat.st_size)
        return info

    def restore_snapshot(self, snapshot_path: str | Path, target_path: str | Path) -> bool:
        snapshot = Path(snapshot_path)
        target = Path(target_path)
        if not snapshot.is_file():
            logger.warning("Backup file does not exist for restoration", backup_path=str(snapshot))
            raise SnapshotNotFound(str(snapshot))

        target.parent.mkdir(parents=True, exist_ok=True)
        temp_path = target.parent / f".tmp_{target.name}_{os.getpid()}_{threading.get_ident()}"
        try:
            shutil.copyfile(snapshot, temp_path)
            temp_path.replace(target)
        except Exception:
            temp_path.unlink(missing_ok=True)
            raise

        logger.info("File restored from backup", backup_path=str(snapshot), target_path=str(target))
        return True

    def list_snapshots(self) -> List[SnapshotListing]:
        if not self._root.exists():
            return []

        listings: List[SnapshotListing] = []
        for entry in self._root.iterdir():
            try:
                if not entry.is_file():
                    continue
                stat = entry.stat()
                listings.append(
                    SnapshotListing(
                        file_name=entry.name,
                        file_path=str(entry),
                        size=stat.st_size,
                        created_at=_iso(_created_timestamp(stat)),
                        modified_at=_iso(stat.st_mtime),
                    )
                )
            except OSError as exc:
                logger.warning("Failed to read backup metadata", file=entry.name, error=str(exc))

        listings.sort(key=lambda item: item.created_at, reverse=True)
        logger.info("Backups listed", count=len(listings))
        return listings

    def purge_older_than(self, max_age_days: float = 7) -> int:
        if not self._root.exists():
            return 0

        cutoff = (datetime.now(timezone.utc) - timedelta(days=max_age_days)).timestamp()
        deleted = 0
        for entry in self._root.iterdir():
            try:
                if not entry.is_file():
                    continue
                if _created_timestamp(entry.stat()) < cutoff:
                    entry.unlink()
                    deleted += 1
                    logger.info("Deleted old backup", path=str(entry))
            except OSError as exc:
                logger.warning("Failed to delete backup file", file=entry.name, error=str(exc))

        logger.info("Old backups cleaned up", deleted=deleted, max_age_days=max_age_days)
        return deleted

    def verify_integrity(self, snapshot_path: str | Path, expected_checksum: str) -> bool:
        snapshot = Path(snapshot_path)
        if not snapshot.is_file():
            logger.warning("Backup file does not exist for integrity verification", backup_path=str(snapshot))
            return False

        actual = file_checksum(snapshot)
        is_valid = actual == expected_checksum
        if is_valid:
            logger.info("Backup integrity verified", backup_path=str(snapshot))
        else:
            logger.warning(
                "Backup integrity verification failed",
                backup_path=str(snapshot),
                expected_checksum=expected_checksum,
                actual_checksum=actual,
            )
        return is_valid


@lru_cache()
def get_snapshot_engine() -> SnapshotEngine:
    return SnapshotEngine(get_settings().backup_dir)
