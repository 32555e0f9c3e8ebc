"""Health check endpoints."""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from datetime import datetime
import logging

from dockyards.api.dependencies import get_container
from dockyards.container import Container
from dockyards.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(tags=["System"])


@router.get("/health")
async def health_check():
    """Liveness probe - basic health check."""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
    }


@router.get("/health/ready")
async def readiness_check(
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    """Readiness probe - checks database connectivity and reports queued garbage."""
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Readiness check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "not_ready", "error": str(e)})

    return {
        "status": "ready",
        "checks": {
            "database": True,
        },
        "garbage": {
            "cluster": len(getattr(container.cluster_service, "garbage", ())),
            "cloud": len(getattr(container.cloud_service, "garbage", ())),
        },
    }
