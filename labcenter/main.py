"""FastAPI application entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy import func, select
from starlette.exceptions import HTTPException as StarletteHTTPException

from labcenter.api.v1.router import api_router
from labcenter.config import settings
from labcenter.core.exceptions import AppException
from labcenter.core.firebase import initialize_firebase
from labcenter.core.redis_client import close_redis_connection, get_redis_client
from labcenter.database import engine
from labcenter.middleware.error_handler import (
    app_exception_handler,
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from labcenter.middleware.logging import LoggingMiddleware, configure_logging
from labcenter.models import lab_tests, metadata

configure_logging()
logger = structlog.get_logger()

OPENAPI_TAGS = [
    {"name": "Appointments", "description": "Booking, the lab workflow and report entry"},
    {"name": "Catalog", "description": "Bookable tests, prices and report formats"},
    {"name": "Notifications", "description": "In-app inbox and FCM device tokens"},
    {"name": "Users", "description": "Profiles, patients and phlebotomists"},
    {"name": "Admin", "description": "Audit trail, reviews, metrics and announcements"},
]


def _start_firebase() -> None:
    # Sign-in and push need Firebase; JWT holders are still served without it
    try:
        initialize_firebase(settings.firebase_credentials_path, settings.firebase_config_json)
        logger.info("firebase_initialized", push_enabled=settings.push_enabled)
    except Exception as e:
        logger.warning(
            "firebase_initialization_failed",
            error=str(e),
            note="Sign-in and push are unavailable. Set FIREBASE_CREDENTIALS_PATH or FIREBASE_CONFIG_JSON.",
        )


async def _check_database() -> None:
    try:
        async with engine.begin() as conn:
            if settings.is_sqlite:
                # Local development database; PostgreSQL is migrated with alembic
                await conn.run_sync(metadata.create_all)
            catalog_size = (await conn.execute(select(func.count()).select_from(lab_tests))).scalar()
        logger.info("database_connected", catalog_tests=catalog_size)
        if not catalog_size:
            logger.warning("catalog_empty", note="Run scripts/seed_catalog.py before taking bookings")
    except Exception as e:
        logger.error("database_connection_failed", error=str(e))


def _check_redis() -> None:
    try:
        get_redis_client().ping()
        logger.info("redis_connected")
    except Exception as e:
        logger.error("redis_connection_failed", error=str(e), note="Caches disabled")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Start external clients, check backing stores, and close them on shutdown."""
    logger.info("application_startup", environment=settings.environment, version=settings.app_version)

    _start_firebase()
    await _check_database()
    _check_redis()

    yield

    logger.info("application_shutdown")
    await engine.dispose()
    close_redis_connection()
    logger.info("connections_closed")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Diagnostic center backend: home sample collection, lab workflow and reports",
    openapi_tags=OPENAPI_TAGS,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)
app.add_middleware(LoggingMiddleware)

app.add_exception_handler(AppException, app_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(Exception, general_exception_handler)  # type: ignore[arg-type]

app.include_router(api_router, prefix=settings.api_v1_prefix)

Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    should_instrument_requests_inprogress=True,
    excluded_handlers=["/docs", "/redoc", "/openapi.json", "/metrics"],
    inprogress_name="http_requests_inprogress",
    inprogress_labels=True,
).instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """Service banner."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "labcenter.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_level=settings.log_level.lower(),
    )
