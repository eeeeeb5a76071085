"""PactLink API - Main FastAPI application."""

import logging
import os
import sys
from contextlib import asynccontextmanager

import redis
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from pactlink_api.db.session import SessionLocal
from pactlink_api.errors import PactLinkError, SignatureAlreadyApplied
from pactlink_api.middleware.correlation import CorrelationIDMiddleware
from pactlink_api.middleware.rate_limit import RateLimitMiddleware
from pactlink_api.routes import admin, audit, signatures, tokens
from pactlink_api.routes.signatures import SignatureResponse
from pactlink_api.settings import get_settings

settings = get_settings()

LOG_FORMATS = {
    "json": '{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s", "module": "%(name)s"}',
    "text": "%(asctime)s %(levelname)s %(name)s: %(message)s",
}

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format=LOG_FORMATS.get(settings.log_format, LOG_FORMATS["json"]),
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting PactLink API...")
    try:
        settings.validate_production_settings()
    except ValueError as e:
        logger.error(f"Configuration validation failed: {e}")
        raise

    yield
    logger.info("Shutting down PactLink API...")


# Create FastAPI app
app = FastAPI(
    title="PactLink API",
    description="Secure action links and OTP-gated contract signing",
    version="0.1.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Custom middleware (order matters - last added is first executed)
app.add_middleware(RateLimitMiddleware)
app.add_middleware(CorrelationIDMiddleware)


@app.exception_handler(PactLinkError)
async def pactlink_error_handler(request: Request, exc: PactLinkError):
    """Map typed service errors to structured responses."""
    content = exc.to_dict()
    if isinstance(exc, SignatureAlreadyApplied) and exc.signature is not None:
        content["signature"] = SignatureResponse.model_validate(exc.signature).model_dump(mode="json")
    return JSONResponse(status_code=exc.http_status, content=content)


@app.exception_handler(OperationalError)
async def database_unavailable_handler(request: Request, exc: OperationalError):
    """Datastore outages are retriable by infrastructure."""
    logger.error(
        f"Database unavailable: {exc.__class__.__name__}",
        extra={"correlation_id": getattr(request.state, "correlation_id", None)},
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"error": "service_unavailable", "detail": "Service temporarily unavailable."},
        headers={"Retry-After": "5"},
    )


# Prometheus metrics
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# Register routers
app.include_router(tokens.router)
app.include_router(signatures.router)
app.include_router(admin.router)
app.include_router(audit.router)


@app.get("/health")
async def health_check():
    """Health check endpoint (basic liveness)."""
    return {
        "status": "healthy",
        "service": "pactlink-api",
        "version": "0.1.0",
    }


@app.get("/ready")
async def readiness_check():
    """Readiness check endpoint (verifies dependencies)."""
    from alembic.config import Config
    from alembic.runtime.migration import MigrationContext
    from alembic.script import ScriptDirectory

    checks = {
        "database": False,
        "migrations": False,
        "redis": False,
    }

    # Check database connectivity and that migrations are at head
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = True

        context = MigrationContext.configure(db.connection())
        current_rev = context.get_current_revision()
        alembic_cfg = Config(os.path.join(os.path.dirname(__file__), "..", "alembic.ini"))
        head_rev = ScriptDirectory.from_config(alembic_cfg).get_current_head()
        if current_rev == head_rev:
            checks["migrations"] = True
        else:
            logger.warning(f"Migrations not at head: current={current_rev}, head={head_rev}")
    except Exception as e:
        logger.error(f"Database check failed: {e.__class__.__name__}")
    finally:
        db.close()

    # Check Redis
    try:
        redis_client = redis.from_url(settings.redis_url, decode_responses=True)
        redis_client.ping()
        checks["redis"] = True
    except redis.RedisError as e:
        logger.error(f"Redis check failed: {e.__class__.__name__}")

    all_ready = all(checks.values())

    return JSONResponse(
        content={
            "status": "ready" if all_ready else "not_ready",
            "checks": checks,
        },
        status_code=200 if all_ready else 503,
    )


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "PactLink API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
    }
