"""Health check endpoints."""
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from portal.api.deps import get_ils
from portal.config import settings
from portal.database import get_db
from portal.services.ils import ILSConnection

logger = structlog.get_logger()
router = APIRouter()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("")
async def health_check():
    """Basic health check."""
    return {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": _now(),
    }


@router.get("/ready")
async def readiness_check(
    db: AsyncSession = Depends(get_db),
    catalog: ILSConnection = Depends(get_ils),
):
    """Readiness check: database connectivity and the configured ILS driver."""
    try:
        await db.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception as e:
        logger.error("Database readiness check failed", error=str(e))
        db_status = "error"

    return {
        "status": "ready" if db_status == "connected" else "not_ready",
        "database": db_status,
        "ils": {
            "driver": settings.ILS_DRIVER,
            "holds": bool(await catalog.check_function("Holds")),
            "cancelHolds": bool(await catalog.check_function("cancelHolds")),
        },
        "timestamp": _now(),
    }


@router.get("/live")
async def liveness_check():
    """Liveness check for container orchestration."""
    return {"status": "alive"}
