"""
Escrow Service - Main Application
=================================

FastAPI application for the commitment index, identity escrow, dispute
scheduling and disclosure.

Version: 0.1.0
"""

import uuid
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from services.escrow.dependencies import get_container
from services.escrow.errors import EscrowError, FieldOverflow, NotOverdue
from services.escrow.routes import commitments, discovery, disputes, escrow, reveal
from shared.config import settings
from shared.database import DatabaseClient
from shared.logging import bind_context, clear_context, get_logger, setup_logging
from shared.models.common import ErrorResponse, HealthResponse


# Setup logging
setup_logging(
    log_level=settings.log_level.value,
    json_logs=settings.is_production,
    service_name="escrow",
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> Any:
    """Application lifespan manager."""
    logger.info(
        "escrow_service_starting",
        environment=settings.environment.value,
        port=settings.ports.escrow,
    )

    # Startup
    try:
        await DatabaseClient.init_models()

        container = get_container()
        await container.ledger.connect()
        logger.info("ledger_connected", mode=container.ledger.mode.value)

        if settings.scheduler.enabled:
            await container.scheduler.start()
        if settings.event_watcher.enabled:
            await container.watcher.start()

    except Exception as e:
        logger.error("startup_failed", error=str(e))
        raise

    yield

    # Shutdown
    logger.info("escrow_service_shutting_down")
    await container.watcher.stop()
    await container.scheduler.stop()
    await container.channel.close()
    await container.payload_store.close()
    await container.ledger.disconnect()
    await DatabaseClient.close()


# Create FastAPI application
app = FastAPI(
    title="VeilCredit Escrow Service",
    description="Commitment discovery, threshold identity escrow and default disclosure",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors.origins_list,
    allow_credentials=settings.cors.allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context(request: Request, call_next: Any) -> Any:
    """Bind a request id and path to every log line of the request."""
    clear_context()
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:16]
    bind_context(request_id=request_id, path=request.url.path)
    response = await call_next(request)
    response.headers["x-request-id"] = request_id
    return response


# ============================================================================
# Health Check Endpoints
# ============================================================================


@app.get("/health", response_model=HealthResponse, tags=["Health"])
@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """
    Service health check.

    Returns health status of the service and its dependencies.
    """
    container = get_container()
    components: dict[str, dict[str, Any]] = {}

    components["database"] = await DatabaseClient.health_check()

    try:
        components["ledger"] = await container.ledger.health_check()
    except Exception as e:
        components["ledger"] = {"status": "unhealthy", "error": str(e)}

    components["payload_store"] = await container.payload_store.health_check()

    all_healthy = all(c.get("status") == "healthy" for c in components.values())

    return HealthResponse(
        status="healthy" if all_healthy else "degraded",
        service="escrow",
        version="0.1.0",
        components=components,
    )


@app.get("/", tags=["Health"])
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": "VeilCredit Escrow Service",
        "version": "0.1.0",
        "docs": "/docs",
    }


# ============================================================================
# Include Routers
# ============================================================================

app.include_router(
    commitments.router,
    prefix="/api/v1/commitments",
    tags=["Commitments"],
)

app.include_router(
    discovery.router,
    prefix="/api/v1",
    tags=["Discovery"],
)

app.include_router(
    escrow.router,
    prefix="/api/v1/escrow",
    tags=["Escrow"],
)

app.include_router(
    disputes.router,
    prefix="/api/v1/disputes",
    tags=["Disputes"],
)

app.include_router(
    reveal.router,
    prefix="/api/v1/reveal",
    tags=["Disclosure"],
)


# ============================================================================
# Error Handlers
# ============================================================================


@app.exception_handler(EscrowError)
async def escrow_exception_handler(request: Request, exc: EscrowError) -> JSONResponse:
    """Map escrow errors to their HTTP status and stable code."""
    logger.warning(
        "escrow_error",
        code=exc.code,
        status_code=exc.http_status,
        path=request.url.path,
    )
    envelope = ErrorResponse(
        error=exc.message,
        error_code=exc.code,
        status_code=exc.http_status,
    )
    if isinstance(exc, NotOverdue):
        envelope.remaining_seconds = max(0, round(exc.remaining_seconds))
    return JSONResponse(status_code=exc.http_status, content=envelope.to_content())


@app.exception_handler(FieldOverflow)
async def field_overflow_handler(request: Request, exc: FieldOverflow) -> JSONResponse:
    """Values that are not field elements."""
    logger.warning("field_overflow", error=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=ErrorResponse(
            error=str(exc),
            error_code="field_overflow",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        ).to_content(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions."""
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=str(exc.detail), status_code=exc.status_code).to_content(),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="Internal server error",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        ).to_content(),
    )


# ============================================================================
# Run with Uvicorn
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "services.escrow.main:app",
        host="0.0.0.0",
        port=settings.ports.escrow,
        reload=settings.debug,
        log_level=settings.log_level.value.lower(),
    )
