"""FastAPI application entry point."""
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx
import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from sqlalchemy.exc import SQLAlchemyError

from genledger.adapters.storage import S3Storage
from genledger.config import settings
from genledger.database import AsyncSessionLocal, engine
from genledger.middleware.logging import LoggingMiddleware, setup_logging
from genledger.middleware.metrics import MetricsMiddleware
from genledger.schemas.error import REMEDIATION_HINTS, VALIDATION_CODES, ErrorCode, ErrorDetail, ErrorResponse
from genledger.services.platform_settings import build_settings_cache

# Setup structured logging
setup_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Create shared clients on startup and close them on shutdown."""
    logger.info("application_starting", env=settings.app_env)
    app.state.http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.provider_timeout_seconds, read=settings.artifact_fetch_timeout_seconds),
    )
    app.state.storage = S3Storage()
    app.state.settings_cache = build_settings_cache(AsyncSessionLocal)
    yield
    await app.state.http_client.aclose()
    logger.info("application_shutting_down")


app = FastAPI(
    title="Generation Job Ledger",
    description="Generation job lifecycle, completion tracking and exactly-once billing",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

if settings.otel_enabled:
    from genledger.tracing import setup_tracing

    setup_tracing(app, engine)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(MetricsMiddleware)
app.add_middleware(LoggingMiddleware)

# Mount Prometheus metrics endpoint
app.mount("/metrics", make_asgi_app())


def _request_id(request: Request) -> str:
    return request.headers.get("x-request-id", f"req_{uuid.uuid4().hex[:12]}")


def error_response(
    request: Request,
    status_code: int,
    error: str,
    message: str,
    details: list[ErrorDetail],
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    """Render the shared error envelope; the remediation hint follows the first detail's code."""
    code = details[0].code if details else None
    body = ErrorResponse(
        error=error,
        message=message,
        details=details,
        remediation=REMEDIATION_HINTS.get(code),
        request_id=_request_id(request),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"), headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """422 with one detail per invalid field."""
    details = []
    for error in exc.errors():
        value = error.get("input")
        details.append(
            ErrorDetail(
                code=VALIDATION_CODES.get(error["type"], ErrorCode.VALIDATION_ERROR),
                message=error["msg"],
                field=".".join(str(loc) for loc in error["loc"]),
                value=value if isinstance(value, (str, int, float, bool)) else None,
            )
        )
    logger.warning("request_validation_failed", error_count=len(details), fields=[d.field for d in details])
    return error_response(
        request, status.HTTP_422_UNPROCESSABLE_ENTITY, "ValidationError", "Request validation failed", details
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """503 with Retry-After."""
    logger.error("database_error", error_type=type(exc).__name__, error_message=str(exc))
    message = "Database temporarily unavailable" if settings.is_production else str(exc)
    return error_response(
        request,
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "DatabaseError",
        "A database error occurred",
        [ErrorDetail(code=ErrorCode.DATABASE_ERROR, message=message)],
        headers={"Retry-After": "30"},
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_exception", exception_type=type(exc).__name__, exc_info=exc)
    message = str(exc) if settings.debug else "Internal server error"
    return error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "InternalServerError",
        "An unexpected error occurred",
        [ErrorDetail(code=ErrorCode.INTERNAL_ERROR, message=message)],
    )


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    return {
        "service": "Generation Job Ledger",
        "version": "0.1.0",
        "status": "operational",
        "docs": "/docs",
    }


# Include routers
from genledger.api.v1 import balance, health, jobs, maintenance, platform  # noqa: E402
from genledger.api.webhooks import provider as provider_webhook  # noqa: E402

app.include_router(health.router)
app.include_router(jobs.router, prefix="/v1", tags=["Jobs"])
app.include_router(balance.router, prefix="/v1", tags=["Balance"])
app.include_router(platform.router, prefix="/v1", tags=["Platform"])
app.include_router(maintenance.router, prefix="/v1", tags=["Maintenance"])
app.include_router(provider_webhook.router)
