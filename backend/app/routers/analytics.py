"""API routes for tenant analytics."""
import asyncio
import threading
from typing import Any, Callable, List, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Request

from app.core.auth import TenantContext, get_tenant_context
from app.core.errors import NotFoundError
from app.core.logging import logger
from app.models.analytics import (
    DepartmentMetrics,
    EmployeeMetrics,
    HistoryPoint,
    OverallStats,
    TeamMetrics,
    TopContributor,
)
from app.services.analytics_engine import AnalyticsEngine, get_analytics_engine

router = APIRouter(prefix="/analytics", tags=["analytics"])

T = TypeVar("T")

DISCONNECT_POLL_SECONDS = 0.1


async def run_cancellable(request: Request, operation: Callable[..., T], *args: Any) -> T:
    """Run a blocking engine call in a worker thread; a client disconnect sets its cancel event."""
    cancel = threading.Event()
    task = asyncio.ensure_future(asyncio.to_thread(operation, *args, cancel=cancel))
    while not task.done():
        await asyncio.wait({task}, timeout=DISCONNECT_POLL_SECONDS)
        if not task.done() and await request.is_disconnected():
            logger.info("Client disconnected, cancelling analytics request", path=request.url.path)
            cancel.set()
            break
    return await task


@router.get("/employee/{employee_id}", response_model=EmployeeMetrics)
async def employee_metrics(
    employee_id: str,
    request: Request,
    context: TenantContext = Depends(get_tenant_context),
    engine: AnalyticsEngine = Depends(get_analytics_engine),
):
    try:
        return await run_cancellable(request, engine.employee_metrics, context.tenant_id, employee_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except Exception as exc:
        logger.error("Error fetching employee metrics", employee_id=employee_id, error=str(exc))
        raise HTTPException(status_code=500, detail=str(exc))


@router.get("/employee/{employee_id}/history", response_model=List[HistoryPoint])
async def employee_history(
    employee_id: str,
    request: Request,
    context: TenantContext = Depends(get_tenant_context),
    engine: AnalyticsEngine = Depends(get_analytics_engine),
):
    try:
        return await run_cancellable(request, engine.employee_history, context.tenant_id, employee_id)
    except Exception as exc:
        logger.error("Error fetching employee history", employee_id=employee_id, error=str(exc))
        raise HTTPException(status_code=500, detail=str(exc))


@router.get("/team/{team_id}", response_model=TeamMetrics)
async def team_metrics(
    team_id: str,
    request: Request,
    context: TenantContext = Depends(get_tenant_context),
    engine: AnalyticsEngine = Depends(get_analytics_engine),
):
    try:
        return await run_cancellable(request, engine.team_metrics, context.tenant_id, team_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except Exception as exc:
        logger.error("Error fetching team metrics", team_id=team_id, error=str(exc))
        raise HTTPException(status_code=500, detail=str(exc))


@router.get("/department/{dept_id}", response_model=DepartmentMetrics)
async def department_metrics(
    dept_id: str,
    request: Request,
    context: TenantContext = Depends(get_tenant_context),
    engine: AnalyticsEngine = Depends(get_analytics_engine),
):
    try:
        return await run_cancellable(request, engine.department_metrics, context.tenant_id, dept_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except Exception as exc:
        logger.error("Error fetching department metrics", dept_id=dept_id, error=str(exc))
        raise HTTPException(status_code=500, detail=str(exc))


@router.get("/stats", response_model=OverallStats)
async def overall_stats(
    request: Request,
    context: TenantContext = Depends(get_tenant_context),
    engine: AnalyticsEngine = Depends(get_analytics_engine),
):
    try:
        return await run_cancellable(request, engine.overall_stats, context.tenant_id)
    except Exception as exc:
        logger.error("Error fetching overall stats", tenant_id=context.tenant_id, error=str(exc))
        raise HTTPException(status_code=500, detail=str(exc))


@router.get("/top-contributors", response_model=List[TopContributor])
async def top_contributors(
    request: Request,
    context: TenantContext = Depends(get_tenant_context),
    engine: AnalyticsEngine = Depends(get_analytics_engine),
):
    try:
        return await run_cancellable(request, engine.top_contributors, context.tenant_id)
    except Exception as exc:
        logger.error("Error fetching top contributors", tenant_id=context.tenant_id, error=str(exc))
        raise HTTPException(status_code=500, detail=str(exc))
