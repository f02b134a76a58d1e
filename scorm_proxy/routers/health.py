"""
Health probes: process status, database readiness and liveness.
"""

import os
import time
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from scorm_proxy.config import RuntimeSettings, get_settings
from scorm_proxy.db.config import get_session
from scorm_proxy.models.schemas import HealthCheckResponse

router = APIRouter()

_started_at = time.monotonic()


@router.get("/health", response_model=HealthCheckResponse, summary="Health Check")
async def health_check(settings: RuntimeSettings = Depends(get_settings)):
    """Service status, version and uptime; never touches the database."""
    return HealthCheckResponse(
        status="healthy",
        version=os.getenv("APP_VERSION", "1.0.0"),
        environment=settings.environment,
        uptime=time.monotonic() - _started_at,
    )


@router.get("/health/ready", summary="Readiness Check")
async def readiness_check(session: AsyncSession = Depends(get_session)):
    """200 once the database answers ``SELECT 1``, 503 otherwise."""
    try:
        await session.execute(text("SELECT 1"))
    except Exception as e:
        raise HTTPException(status_code=503, detail=f"Database not ready: {e}")
    return {"status": "ready", "timestamp": datetime.utcnow().isoformat()}


@router.get("/health/live", summary="Liveness Check")
async def liveness_check():
    return {"status": "alive", "pid": os.getpid()}
