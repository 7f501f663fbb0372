"""
SafetyOps - Incident & CAPA Compliance Engine

FastAPI application entry point.
"""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from safetyops.app.api import capas, health, incidents, metrics
from safetyops.app.api.deps import bind_entity_id
from safetyops.app.core.config import get_settings
from safetyops.app.core.database import init_db
from safetyops.app.core.exceptions import (
    ConflictUnsupported,
    InvalidTransitionError,
    NotFoundError,
    SafetyEngineError,
    ValidationFailure,
)
from safetyops.app.core.logging import get_logger, setup_logging
from safetyops.app.middleware.trace import TracingMiddleware

settings = get_settings()

setup_logging(level=settings.log_level, debug=settings.debug)
logger = get_logger(__name__)

_STATUS_BY_ERROR = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ValidationFailure: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InvalidTransitionError: status.HTTP_409_CONFLICT,
    ConflictUnsupported: status.HTTP_409_CONFLICT,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    await init_db()
    yield
    logger.info(f"Shutting down {settings.app_name}")


app = FastAPI(
    title=settings.app_name,
    description="Incident reporting, CAPA tracking and safety KPIs for RPAS operations",
    version=settings.app_version,
    lifespan=lifespan,
)


@app.exception_handler(SafetyEngineError)
async def safety_engine_error_handler(request: Request, exc: SafetyEngineError):
    status_code = _STATUS_BY_ERROR.get(type(exc), status.HTTP_400_BAD_REQUEST)
    logger.warning(
        f"{request.method} {request.url.path} rejected: {exc.message}",
        extra={"extra_data": {"error": exc.code, "status_code": status_code}},
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


app.add_middleware(TracingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Correlation-ID"],
    expose_headers=["X-Correlation-ID", "X-Event-ID"],
)

app.include_router(health.router, tags=["Health"])
app.include_router(
    incidents.router,
    prefix=f"{settings.api_prefix}/incidents",
    tags=["Incidents"],
    dependencies=[Depends(bind_entity_id)],
)
app.include_router(
    capas.router,
    prefix=f"{settings.api_prefix}/capas",
    tags=["CAPA"],
    dependencies=[Depends(bind_entity_id)],
)
app.include_router(
    metrics.router,
    prefix=f"{settings.api_prefix}/metrics",
    tags=["Safety Metrics"],
)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "description": "Incident & CAPA Compliance Engine",
        "docs": "/docs",
    }
