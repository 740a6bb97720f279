"""HR Analytics - multi-tenant contribution analytics API"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from app.core.config import get_settings
from app.core.logging import configure_logging, logger
from app.routers import analytics, backups, records
from app.services.backup_service import get_backup_scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info(
        "HR Analytics API starting",
        version="1.0.0",
        auth_enabled=settings.auth_enabled,
        backup_dir=settings.backup_dir,
        backup_schedule_enabled=settings.backup_schedule_enabled,
    )
    scheduler = get_backup_scheduler()
    scheduler.start()
    yield
    # Shutdown
    await scheduler.stop()
    logger.info("HR Analytics API shutting down")


app = FastAPI(
    title="HR Analytics API",
    description="Tenant-scoped contribution analytics, dataset export and checksum-verified backups",
    version="1.0.0",
    lifespan=lifespan
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(analytics.router)
app.include_router(backups.router)
app.include_router(records.router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "HR Analytics API",
        "version": "1.0.0",
        "description": "Employee contribution analytics",
        "endpoints": {
            "analytics": "/analytics",
            "backups": "/backups",
            "employees": "/employees",
            "interactions": "/interactions",
            "kudos": "/kudos",
            "contributions": "/contributions",
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
