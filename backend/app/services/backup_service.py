"""Tenant dataset export, snapshotting and scheduled backups."""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from app.core.config import Settings, get_settings
from app.core.errors import HRAnalyticsError, ValidationError
from app.core.logging import logger
from app.models.backups import FileBackupResult, ScheduleStatus, TenantBackupResponse
from app.models.records import EntityKind
from app.services.hr_store import BoundedFetch, SQLiteTenantStore, get_tenant_store, table_columns
from app.services.snapshot_engine import SnapshotEngine, get_snapshot_engine
from app.services.tabular_writer import ColumnSpec, LockedTabularWriter, get_tabular_writer

EXPORT_PAGE_SIZE = 500


class BackupService:
    def __init__(
        self,
        store: SQLiteTenantStore,
        snapshots: SnapshotEngine,
        writer: LockedTabularWriter,
        settings: Settings,
    ) -> None:
        self._store = store
        self._snapshots = snapshots
        self._writer = writer
        self._settings = settings

    def snapshots_for(self, tenant_id: str) -> SnapshotEngine:
        """Snapshot engine rooted at the tenant's own backup directory."""
        return SnapshotEngine(self._snapshots.root / tenant_id)

    def tenant_file(self, tenant_id: str, file_name: str) -> Path:
        """Path of a dataset file inside the tenant's data directory."""
        name = (file_name or "").strip()
        if not name or "/" in name or "\\" in name or ".." in name:
            raise ValidationError(f"Invalid target file name '{file_name}'", field="targetFileName")
        return self._settings.tenant_dir(tenant_id) / name

    def _export(self, tenant_id: str) -> List[Tuple[Path, Optional[str]]]:
        """Write one CSV per record kind; pairs each file with an error when its export was cut short."""
        cap = self._settings.backup_export_max_records
        exported: List[Tuple[Path, Optional[str]]] = []
        for kind in EntityKind:
            fetch = BoundedFetch(
                self._store,
                tenant_id,
                kind,
                page_size=EXPORT_PAGE_SIZE,
                max_records=cap,
            )
            path = self.tenant_file(tenant_id, f"{kind.value}.csv")
            count = self._writer.write_all(path, ColumnSpec.of(*table_columns(kind)), fetch)
            error = None
            if fetch.truncated:
                error = f"Export of {kind.value} stopped at {count} records (cap {cap})"
                logger.warning("Dataset export hit record cap", tenant_id=tenant_id, kind=kind.value, rows=count)
            exported.append((path, error))
        logger.info("Tenant dataset exported", tenant_id=tenant_id, files=len(exported))
        return exported

    def export_tenant_dataset(self, tenant_id: str) -> List[Path]:
        """Write one CSV per record kind for the tenant; returns the files written."""
        return [path for path, _ in self._export(tenant_id)]

    def create_tenant_backups(self, tenant_id: str) -> TenantBackupResponse:
        exported = self._export(tenant_id)

        snapshots = self.snapshots_for(tenant_id)
        details: List[FileBackupResult] = []
        for path, export_error in exported:
            if export_error:
                details.append(FileBackupResult(file=path.name, success=False, error=export_error))
                continue
            try:
                info = snapshots.create_snapshot(path)
                details.append(FileBackupResult(file=path.name, success=True, backup_info=info))
            except (HRAnalyticsError, OSError) as exc:
                logger.error("Failed to back up file", tenant_id=tenant_id, file=path.name, error=str(exc))
                details.append(FileBackupResult(file=path.name, success=False, error=str(exc)))

        try:
            snapshots.purge_older_than(self._settings.backup_retention_days)
        except OSError as exc:
            logger.warning("Failed to clean up old backups", error=str(exc))

        successful = sum(1 for item in details if item.success)
        logger.info(
            "Tenant backups created",
            tenant_id=tenant_id,
            successful=successful,
            failed=len(details) - successful,
        )
        return TenantBackupResponse(
            message="Backup operation completed",
            tenant_id=tenant_id,
            successful=successful,
            failed=len(details) - successful,
            details=details,
        )

    def create_all_backups(self) -> Dict[str, Any]:
        results: Dict[str, Any] = {}
        for tenant_id in self._store.list_tenants():
            try:
                results[tenant_id] = self.create_tenant_backups(tenant_id).model_dump()
            except Exception as exc:
                logger.error("Failed to back up tenant", tenant_id=tenant_id, error=str(exc))
                results[tenant_id] = {"error": str(exc)}
        logger.info("Backups created for all tenants", tenants=len(results))
        return results


class BackupScheduler:
    """Runs `create_all_backups` on a fixed interval as an asyncio task."""

    def __init__(self, service: BackupService, interval_minutes: int, enabled: bool = True) -> None:
        self._service = service
        self._interval = max(1, int(interval_minutes))
        self._enabled = enabled
        self._task: Optional[asyncio.Task] = None
        self.last_run_at: Optional[str] = None
        self.last_error: Optional[str] = None

    async def run_once(self) -> None:
        try:
            await asyncio.to_thread(self._service.create_all_backups)
            self.last_error = None
        except Exception as exc:
            self.last_error = str(exc)
            logger.error("Scheduled backup failed", error=str(exc))
        finally:
            self.last_run_at = datetime.now(timezone.utc).isoformat()

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval * 60)
            await self.run_once()

    def start(self) -> None:
        if not self._enabled or self._task is not None:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info("Backup scheduler started", interval_minutes=self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Backup scheduler stopped")

    def status(self) -> ScheduleStatus:
        return ScheduleStatus(
            scheduled=self._task is not None and not self._task.done(),
            interval_minutes=self._interval,
            last_run_at=self.last_run_at,
            last_error=self.last_error,
        )


@lru_cache()
def get_backup_service() -> BackupService:
    return BackupService(get_tenant_store(), get_snapshot_engine(), get_tabular_writer(), get_settings())


@lru_cache()
def get_backup_scheduler() -> BackupScheduler:
    settings = get_settings()
    return BackupScheduler(
        get_backup_service(),
        settings.backup_interval_minutes,
        enabled=settings.backup_schedule_enabled,
    )
