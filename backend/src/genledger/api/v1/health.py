"""Liveness and readiness probes."""
from datetime import datetime

import structlog
from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from redis import asyncio as aioredis
from sqlalchemy import text

from genledger.config import settings
from genledger.database import engine

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Health"])

SERVICE_VERSION = "0.1.0"


async def _database_status() -> str:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("readiness_database_unreachable", error=str(exc))
        return "disconnected"
    return "connected"


async def _sweep_queue_status() -> str:
    """The arq queue the completion sweeps are scheduled through."""
    client = aioredis.from_url(str(settings.arq_redis_url))
    try:
        await client.ping()
    except Exception as exc:
        logger.error("readiness_sweep_queue_unreachable", error=str(exc))
        return "disconnected"
    finally:
        await client.aclose()
    return "connected"


def _provider_status() -> str:
    if not settings.provider_api_token:
        return "missing_api_token"
    if not settings.provider_webhook_secret:
        # Unsigned webhooks are rejected in production
        return "unsigned_webhooks" if not settings.is_production else "missing_webhook_secret"
    return "configured"


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check() -> dict[str, str]:
    """Liveness probe. Touches no external dependency."""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": SERVICE_VERSION,
    }


@router.get("/health/ready")
async def readiness_check() -> JSONResponse:
    """
    Readiness probe.

    Not ready when the database or the sweep queue is unreachable, or when
    production is missing provider credentials. In other environments a
    provider misconfiguration is reported but does not fail the probe.
    """
    checks = {
        "database": await _database_status(),
        "sweep_queue": await _sweep_queue_status(),
        "provider": _provider_status(),
    }
    ready = checks["database"] == "connected" and checks["sweep_queue"] == "connected"
    if settings.is_production and checks["provider"] != "configured":
        ready = False

    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"ready": ready, "checks": checks, "timestamp": datetime.utcnow().isoformat()},
    )
