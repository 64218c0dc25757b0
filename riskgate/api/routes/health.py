"""Health and readiness endpoints."""

import redis.asyncio as aioredis
import structlog
from fastapi import APIRouter
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

from riskgate.config import settings

logger = structlog.get_logger()
router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    from riskgate.main import get_uptime

    return {
        "status": "healthy",
        "version": settings.app_version,
        "uptime_seconds": get_uptime(),
    }


@router.get("/ready")
async def ready() -> JSONResponse:
    checks: dict[str, bool] = {}

    if settings.storage_backend == "postgres" or settings.velocity_backend == "postgres":
        from riskgate.db.database import check_db

        checks["database"] = await check_db()

    if settings.velocity_backend == "redis":
        client = aioredis.from_url(settings.redis_url)
        try:
            await client.ping()
            checks["redis"] = True
        except (RedisError, OSError):
            logger.warning("redis_check_failed")
            checks["redis"] = False
        finally:
            await client.aclose()

    all_ready = all(checks.values())
    return JSONResponse(
        status_code=200 if all_ready else 503,
        content={"status": "ready" if all_ready else "degraded", **checks},
    )
