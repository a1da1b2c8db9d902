from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from app.config import Settings, get_settings
from app.core.database import check_database_health

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("")
async def health_check(config: Settings = Depends(get_settings)):
    """Liveness probe."""
    return {
        "status": "healthy",
        "version": config.app_version,
        "environment": config.environment,
    }


@router.get("/ready")
async def readiness_check(config: Settings = Depends(get_settings)):
    """Readiness probe; fails when the configured database cannot be reached."""
    if not await check_database_health():
        logger.warning("health.database_unavailable")
        raise HTTPException(status_code=503, detail="Database is not available")

    return {
        "status": "ready",
        "version": config.app_version,
        "environment": config.environment,
        "database": "connected" if config.database_url else "not configured",
        "stripe": "configured" if config.stripe_secret_key else "not configured",
        "email": "configured" if config.resend_api_key else "not configured",
    }
