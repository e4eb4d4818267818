"""Health check endpoints"""

import logging
from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from disastershield.config import settings
from disastershield.db.database import get_db
from disastershield.utils.clock import utc_now

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/")
async def health_check() -> dict[str, Any]:
    """Basic health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": utc_now().isoformat(),
        "service": "DisasterShield API",
        "version": "0.1.0",
    }


@router.get("/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
    """Readiness check including database connectivity"""
    checks = {
        "api": "healthy",
        "database": "unknown",
        "email": "configured" if settings.is_email_configured() else "disabled",
        "sms": "configured" if settings.is_sms_configured() else "disabled",
        "payments": "configured" if settings.is_payments_configured() else "disabled",
    }

    try:
        result = await db.execute(text("SELECT 1"))
        checks["database"] = "healthy" if result.scalar() == 1 else "unhealthy"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        checks["database"] = "unhealthy"

    overall_status = "healthy" if checks["database"] == "healthy" else "unhealthy"

    return {
        "status": overall_status,
        "timestamp": utc_now().isoformat(),
        "checks": checks,
    }


@router.get("/live")
async def liveness_check() -> dict[str, str]:
    """Kubernetes liveness probe endpoint"""
    return {"status": "alive"}
