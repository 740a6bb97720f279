"""Models for backup snapshots and the backup API."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SnapshotInfo(BaseModel):
    """Metadata returned when a snapshot is taken."""

    source_file: str
    backup_file: str
    file_name: str
    size: int
    created_at: str
    checksum: str


class SnapshotListing(BaseModel):
    file_name: str
    file_path: str
    size: int
    created_at: str
    modified_at: str


class FileBackupResult(BaseModel):
    file: str
    success: bool
    backup_info: Optional[SnapshotInfo] = None
    error: Optional[str] = None


class TenantBackupResponse(BaseModel):
    message: str
    tenant_id: str
    successful: int
    failed: int
    details: List[FileBackupResult]


class AllTenantsBackupResponse(BaseModel):
    message: str
    details: Dict[str, Any]


class BackupListResponse(BaseModel):
    message: str
    count: int
    backups: List[SnapshotListing]


class RestoreRequest(BaseModel):
    """Request body uses the camelCase names clients already send."""

    model_config = ConfigDict(populate_by_name=True)

    backup_file_name: Optional[str] = Field(default=None, alias="backupFileName")
    target_file_name: Optional[str] = Field(default=None, alias="targetFileName")


class VerifyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    backup_file_name: Optional[str] = Field(default=None, alias="backupFileName")
    expected_checksum: Optional[str] = Field(default=None, alias="expectedChecksum")


class ScheduleStatus(BaseModel):
    scheduled: bool
    interval_minutes: int
    last_run_at: Optional[str] = None
    last_error: Optional[str] = None
