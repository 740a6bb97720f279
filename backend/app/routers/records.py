"""API routes for tenant records: employees, interactions, kudos, contributions."""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.core.auth import TenantContext, get_tenant_context, require_roles
from app.core.errors import FileLockError, NotFoundError, ValidationError
from app.core.logging import logger
from app.models.records import (
    ContributionCreateRequest,
    EmployeeCreateRequest,
    EntityKind,
    InteractionCreateRequest,
    KudosCreateRequest,
    RecordPage,
)
from app.services.record_service import RecordService, get_record_service

router = APIRouter(tags=["records"])


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, FileLockError):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def _create(service: RecordService, context: TenantContext, kind: EntityKind, payload: dict) -> dict:
    try:
        return service.create(context.tenant_id, kind, payload)
    except Exception as exc:
        logger.error("Failed to create record", kind=kind.value, tenant_id=context.tenant_id, error=str(exc))
        raise _http_error(exc)


def _page(
    service: RecordService,
    context: TenantContext,
    kind: EntityKind,
    page: int,
    limit: int,
    filters: Optional[dict] = None,
) -> RecordPage:
    try:
        return service.page(context.tenant_id, kind, page, limit, filters)
    except Exception as exc:
        logger.error("Failed to list records", kind=kind.value, tenant_id=context.tenant_id, error=str(exc))
        raise _http_error(exc)


@router.post("/employees", status_code=status.HTTP_201_CREATED)
def create_employee(
    request: EmployeeCreateRequest,
    context: TenantContext = Depends(require_roles("manager", "admin")),
    service: RecordService = Depends(get_record_service),
):
    return _create(service, context, EntityKind.EMPLOYEES, request.model_dump())


@router.get("/employees", response_model=RecordPage)
def list_employees(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    team: Optional[str] = Query(default=None),
    department: Optional[str] = Query(default=None),
    context: TenantContext = Depends(get_tenant_context),
    service: RecordService = Depends(get_record_service),
):
    filters = {key: value for key, value in {"team": team, "department": department}.items() if value}
    return _page(service, context, EntityKind.EMPLOYEES, page, limit, filters)


@router.get("/employees/{employee_id}")
def get_employee(
    employee_id: str,
    context: TenantContext = Depends(get_tenant_context),
    service: RecordService = Depends(get_record_service),
):
    try:
        return service.employee(context.tenant_id, employee_id)
    except Exception as exc:
        logger.error("Failed to fetch employee", employee_id=employee_id, error=str(exc))
        raise _http_error(exc)


@router.post("/interactions", status_code=status.HTTP_201_CREATED)
def create_interaction(
    request: InteractionCreateRequest,
    context: TenantContext = Depends(get_tenant_context),
    service: RecordService = Depends(get_record_service),
):
    return _create(service, context, EntityKind.INTERACTIONS, request.model_dump())


@router.get("/interactions", response_model=RecordPage)
def list_interactions(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    context: TenantContext = Depends(get_tenant_context),
    service: RecordService = Depends(get_record_service),
):
    return _page(service, context, EntityKind.INTERACTIONS, page, limit)


@router.post("/kudos", status_code=status.HTTP_201_CREATED)
def create_kudos(
    request: KudosCreateRequest,
    context: TenantContext = Depends(get_tenant_context),
    service: RecordService = Depends(get_record_service),
):
    if request.from_employee_id == request.to_employee_id:
        raise HTTPException(status_code=400, detail="Cannot give kudos to yourself")
    return _create(service, context, EntityKind.KUDOS, request.model_dump())


@router.get("/kudos", response_model=RecordPage)
def list_kudos(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    context: TenantContext = Depends(get_tenant_context),
    service: RecordService = Depends(get_record_service),
):
    return _page(service, context, EntityKind.KUDOS, page, limit)


@router.post("/contributions", status_code=status.HTTP_201_CREATED)
def create_contribution(
    request: ContributionCreateRequest,
    context: TenantContext = Depends(require_roles("manager", "admin")),
    service: RecordService = Depends(get_record_service),
):
    try:
        return service.create_contribution(context.tenant_id, request)
    except Exception as exc:
        logger.error(
            "Failed to add contribution scores",
            employee_id=request.employee_id,
            tenant_id=context.tenant_id,
            error=str(exc),
        )
        raise _http_error(exc)


@router.get("/contributions", response_model=RecordPage)
def list_contributions(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    employee_id: Optional[str] = Query(default=None),
    context: TenantContext = Depends(get_tenant_context),
    service: RecordService = Depends(get_record_service),
):
    filters = {"employee_id": employee_id} if employee_id else None
    return _page(service, context, EntityKind.CONTRIBUTIONS, page, limit, filters)
