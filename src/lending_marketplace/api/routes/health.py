"""Health check endpoint.

Verifies connectivity to the database and Redis, returns structured status.
Used by Docker healthchecks, load balancers, and monitoring systems.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from lending_marketplace.logging_config import get_logger
from lending_marketplace.schemas.common import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check(request: Request) -> HealthResponse:
    """Check connectivity to the database and Redis."""
    state = request.app.state
    db_status = "not configured"
    redis_status = "not configured"

    if state.engine is not None:
        try:
            async with state.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            db_status = "healthy"
        except (SQLAlchemyError, OSError) as exc:
            db_status = f"unhealthy: {exc}"
            logger.error("health.db_check_failed", error=str(exc))

    redis = getattr(state, "redis", None)
    if redis is not None:
        try:
            await redis.ping()
            redis_status = "healthy"
        except (RedisError, OSError) as exc:
            redis_status = f"unhealthy: {exc}"
            logger.error("health.redis_check_failed", error=str(exc))

    overall = "ok" if db_status == "healthy" else "degraded"

    return HealthResponse(
        status=overall,
        version=request.app.version,
        database=db_status,
        redis=redis_status,
    )
