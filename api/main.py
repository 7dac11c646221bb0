"""
api/main.py -- FastAPI application entry point for DriftWatch.

Exposes the monitoring drivers over HTTP so an external cron (or the scanner
service) can trigger passes and report results without running the CLI.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. log_requests       -- one access log line per request with latency
  2. SlowAPIMiddleware  -- enforces per-route rate limits from api.limiter

Lifespan builds the store, the outbound HTTP clients and the three drivers
on startup and closes them on shutdown, in reverse order.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError

from api.dependencies import require_service_token
from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.alerts import router as alerts_router
from api.routes.v1.cron import router as cron_router
from api.routes.v1.websites import router as websites_router
from core.config import get_settings
from core.dispatch import HttpScanExecutor
from core.mailer import ResendEmailSender
from jobs.alerts import ComplianceAlertService
from jobs.digest import WeeklyDigestScheduler
from jobs.scans import ScanTriggerScheduler
from monitor.store import MonitorStore

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("driftwatch.api")


# ---------------------------------------------------------------------------
# Lifespan -- startup / shutdown
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Settings first -- a missing secret in production aborts startup here.
      2. Store second -- every driver reads and writes through it.
      3. HTTP clients, then the drivers that use them.
    """
    settings = get_settings()
    logger.info("%s API starting up", settings.app_name)

    app.state.store = MonitorStore(settings.database_url) if settings.database_url else MonitorStore()
    logger.info("Monitor store initialized")

    app.state.scan_executor = HttpScanExecutor(
        settings.scanner_url,
        timeout=settings.scan_timeout_seconds,
        token=settings.scanner_token or None,
    )
    app.state.mailer = ResendEmailSender(settings.resend_api_key, settings.monitoring_email_from)

    app.state.scan_scheduler = ScanTriggerScheduler(
        app.state.store,
        app.state.scan_executor,
        max_workers=settings.scan_max_workers,
        claim_window=timedelta(minutes=settings.scan_claim_window_minutes),
        stale_after=timedelta(minutes=settings.stale_scan_job_minutes),
    )
    app.state.alert_service = ComplianceAlertService(app.state.store)
    app.state.digest_scheduler = WeeklyDigestScheduler(
        app.state.store,
        app.state.mailer,
        app_name=settings.app_name,
        dashboard_url=settings.dashboard_url,
    )

    yield

    # Shutdown
    app.state.mailer.close()
    app.state.scan_executor.close()
    app.state.store.close()
    logger.info("%s API shutdown complete", settings.app_name)


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="DriftWatch API",
    description="Plan-aware compliance monitoring: scan scheduling, drop alerts and weekly digests.",
    version=__version__,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced below with token-protected routes.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(cron_router, prefix="/api/v1", tags=["Cron"])
app.include_router(websites_router, prefix="/api/v1", tags=["Websites"])
app.include_router(alerts_router, prefix="/api/v1", tags=["Alerts"])


# ---------------------------------------------------------------------------
# Token-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False, dependencies=[Depends(require_service_token)])
async def docs():
    """Swagger UI -- requires X-Service-Token."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="DriftWatch API")


@app.get("/redoc", include_in_schema=False, dependencies=[Depends(require_service_token)])
async def redoc():
    """ReDoc UI -- requires X-Service-Token."""
    return get_redoc_html(openapi_url="/openapi.json", title="DriftWatch API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with detail=ErrorDetail(...).model_dump()
    (a dict). When detail is already a structured dict, use it directly as the
    error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit and no token --
# load balancers and uptime checks must not be throttled or need secrets.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and per-component status."""
    components = {"app": "ok"}
    try:
        components["database"] = "ok" if request.app.state.store.ping() else "error"
    except SQLAlchemyError:
        logger.exception("Health check: database ping failed")
        components["database"] = "error"
    status = "healthy" if all(v == "ok" for v in components.values()) else "degraded"
    return HealthResponse(status=status, version=__version__, components=components)
