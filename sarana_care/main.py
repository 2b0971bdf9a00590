"""Sarana Care: Main FastAPI Application.

Facility complaint tracking for campus students and staff, with an
append-only progress log per complaint and per-user notifications derived
from the complaint list on every poll.
"""

import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .api import api_router
from .api.reference import health_check
from .core import close_db, get_settings, init_db
from .core.database import skip_schema_bootstrap
from .schemas import ErrorResponse
from .services.reconciler import NotificationContextRegistry

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info(
        f"Starting {settings.app_name} v{settings.app_version} "
        f"({settings.environment})"
    )

    # Production schemas are migrated out of band
    if not skip_schema_bootstrap():
        try:
            await init_db()
        except (OSError, SQLAlchemyError) as e:
            logger.warning(f"Could not initialize database: {e}")

    yield
    # Shutdown
    await close_db()


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="""
        ## Sarana Care API

        Facility complaint reporting and tracking.

        ### Key Features

        - **Status Lifecycle**: `pending -> in_progress -> done`, staff only.
        - **Progress Log**: Every status change appends an entry; nothing is edited in place.
        - **Notifications**: Derived from the newest complaints on each poll, with per-user read and cleared state.

        ### Authentication

        All endpoints except health and categories require a valid JWT in the
        `Authorization: Bearer <token>` header.
        """,
        openapi_url=f"{settings.api_prefix}/openapi.json",
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        lifespan=lifespan,
    )

    # Credentials require explicit origins, not "*"
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH", "HEAD"],
        allow_headers=["*"],
        max_age=86400,
    )

    app.add_exception_handler(Exception, global_exception_handler)

    # Per-user notification state lives for the life of the process
    app.state.notification_contexts = NotificationContextRegistry(
        limit=settings.notification_context_limit,
    )

    # Root-level health check for load balancers
    app.add_api_route("/health", health_check, methods=["GET"], tags=["health"])
    app.include_router(api_router, prefix=settings.api_prefix)
    return app


async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.error(
        f"Unhandled exception on {request.method} {request.url.path}: {exc}\n"
        f"{traceback.format_exc()}"
    )

    message = "An unexpected error occurred"
    if settings.debug or settings.environment != "production":
        message = f"{message}: {str(exc)[:200]}"

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="internal_error",
            message=message,
            details=[],
        ).model_dump(),
    )


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(
        "sarana_care.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
