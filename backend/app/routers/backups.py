"""API routes for dataset snapshots: create, list, restore, verify."""
from fastapi import APIRouter, Depends, HTTPException

from app.core.auth import TenantContext, get_tenant_context, require_roles
from app.core.errors import FileLockError, NotFoundError, ValidationError
from app.core.logging import logger
from app.models.backups import (
    AllTenantsBackupResponse,
    BackupListResponse,
    RestoreRequest,
    ScheduleStatus,
    TenantBackupResponse,
    VerifyRequest,
)
from app.services.backup_service import (
    BackupScheduler,
    BackupService,
    get_backup_scheduler,
    get_backup_service,
)

router = APIRouter(prefix="/backups", tags=["backups"])


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, FileLockError):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


@router.post("/create", response_model=TenantBackupResponse)
def create_backup(
    context: TenantContext = Depends(require_roles("manager", "admin")),
    service: BackupService = Depends(get_backup_service),
):
    try:
        return service.create_tenant_backups(context.tenant_id)
    except Exception as exc:
        logger.error("Error creating backup", tenant_id=context.tenant_id, error=str(exc))
        raise _http_error(exc)


@router.post("/create-all", response_model=AllTenantsBackupResponse)
def create_all_backups(
    context: TenantContext = Depends(require_roles("admin")),
    service: BackupService = Depends(get_backup_service),
):
    try:
        details = service.create_all_backups()
    except Exception as exc:
        logger.error("Error creating backups for all tenants", error=str(exc))
        raise _http_error(exc)
    return AllTenantsBackupResponse(message="Backups created for all tenants", details=details)


@router.get("/list", response_model=BackupListResponse)
def list_backups(
    context: TenantContext = Depends(get_tenant_context),
    service: BackupService = Depends(get_backup_service),
):
    try:
        backups = service.snapshots_for(context.tenant_id).list_snapshots()
    except Exception as exc:
        logger.error("Error listing backups", error=str(exc))
        raise _http_error(exc)
    return BackupListResponse(message="Backups retrieved successfully", count=len(backups), backups=backups)


@router.post("/restore")
def restore_backup(
    request: RestoreRequest,
    context: TenantContext = Depends(require_roles("manager", "admin")),
    service: BackupService = Depends(get_backup_service),
):
    if not request.backup_file_name or not request.target_file_name:
        raise HTTPException(status_code=400, detail="backupFileName and targetFileName are required")

    try:
        snapshots = service.snapshots_for(context.tenant_id)
        snapshot = snapshots.resolve(request.backup_file_name)
        target = service.tenant_file(context.tenant_id, request.target_file_name)
        snapshots.restore_snapshot(snapshot, target)
    except Exception as exc:
        logger.error(
            "Error restoring backup",
            backup_file=request.backup_file_name,
            target_file=request.target_file_name,
            error=str(exc),
        )
        raise _http_error(exc)

    return {
        "message": "Backup restored successfully",
        "backupFile": request.backup_file_name,
        "targetFile": request.target_file_name,
    }


@router.post("/verify")
def verify_backup(
    request: VerifyRequest,
    context: TenantContext = Depends(get_tenant_context),
    service: BackupService = Depends(get_backup_service),
):
    if not request.backup_file_name or not request.expected_checksum:
        raise HTTPException(status_code=400, detail="backupFileName and expectedChecksum are required")

    try:
        snapshots = service.snapshots_for(context.tenant_id)
        is_valid = snapshots.verify_integrity(snapshots.resolve(request.backup_file_name), request.expected_checksum)
    except Exception as exc:
        logger.error("Error verifying backup", backup_file=request.backup_file_name, error=str(exc))
        raise _http_error(exc)

    return {
        "message": "Backup integrity verified" if is_valid else "Backup integrity check failed",
        "backupFile": request.backup_file_name,
        "isValid": is_valid,
    }


@router.get("/status", response_model=ScheduleStatus)
def backup_status(
    context: TenantContext = Depends(get_tenant_context),
    scheduler: BackupScheduler = Depends(get_backup_scheduler),
):
    return scheduler.status()
