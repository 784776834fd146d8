"""
Health check endpoints.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
import redis.asyncio as redis

from config import settings
from database import engine

router = APIRouter()


async def _database_status() -> str:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return "up"
    except Exception as exc:
        return f"down: {exc}"


@router.get("/health")
async def health_check():
    """
    Health check endpoint.
    Reports database and Redis reachability plus the active unlock policy.
    """
    health_status = {
        "status": "healthy",
        "api": "up",
        "database": await _database_status(),
        "redis": "unknown",
        "unlock_policy": {
            "credit_cost": max(int(settings.UNLOCK_CREDIT_COST), 1),
            "grant_days": max(int(settings.UNLOCK_GRANT_DAYS), 1),
        },
    }
    if health_status["database"] != "up":
        health_status["status"] = "degraded"

    # Redis only backs rate limiting, so an outage degrades but does not fail.
    try:
        client = redis.from_url(settings.REDIS_URL)
        await client.ping()
        await client.aclose()
        health_status["redis"] = "up"
    except Exception as exc:
        health_status["redis"] = f"down: {exc}"
        health_status["status"] = "degraded"

    return health_status


@router.get("/health/ready")
async def readiness_check():
    """Kubernetes-style readiness probe."""
    database = await _database_status()
    if database != "up":
        return JSONResponse(
            status_code=503,
            content={"ready": False, "database": database},
        )
    return {"ready": True}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}
