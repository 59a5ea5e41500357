"""Ops Journal: Main FastAPI Application.

A journal of operational changes attached to an org/system tree, with
node-level visibility and subscription-driven email notifications.
"""

import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import api_router
from .core import (
    InMemoryRateLimitStore,
    RateLimiter,
    async_session_factory,
    close_db,
    get_settings,
    init_db,
)
from .schemas import ErrorResponse
from .services import JournalError, OutboxWorker, QueuedAuditSink, build_mail_sender

logger = logging.getLogger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    # Startup - skip init_db in production (tables already exist)
    if settings.environment != "production":
        try:
            await init_db()
        except Exception as e:
            logger.warning(f"Could not initialize database: {e}")

    audit_sink = QueuedAuditSink(async_session_factory)
    audit_sink.start()
    app.state.audit_sink = audit_sink

    worker: OutboxWorker | None = None
    if settings.outbox_worker_enabled:
        worker = OutboxWorker(
            async_session_factory,
            build_mail_sender(settings),
            audit_sink,
            batch_size=settings.outbox_batch_size,
            poll_interval_seconds=settings.outbox_poll_interval_seconds,
            base_url=settings.app_base_url,
        )
        worker.start()

    yield

    # Shutdown
    if worker is not None:
        await worker.stop()
    await audit_sink.stop()
    await close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    ## Ops Journal API

    A **journal of operational changes** (deployments, migrations, config
    changes) organized on an org/system tree.

    ### Key Features

    - **Hierarchical Visibility**: Nodes inherit, open or restrict visibility by role.
    - **Change Records**: Dated entries with a full revision history.
    - **Subscriptions**: Email notifications for a node and, optionally, its subtree.
    - **Audit Trail**: Every mutation and delivery is recorded.

    ### Authentication

    All endpoints require a valid JWT token in the `Authorization: Bearer <token>` header.
    """,
    openapi_url=f"{settings.api_prefix}/openapi.json",
    docs_url=f"{settings.api_prefix}/docs",
    redoc_url=f"{settings.api_prefix}/redoc",
    lifespan=lifespan,
)

app.state.rate_limiter = RateLimiter(
    InMemoryRateLimitStore(),
    limit=settings.rate_limit_requests,
    period_seconds=settings.rate_limit_period_seconds,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH", "HEAD"],
    allow_headers=["*"],
    max_age=86400,
)


@app.exception_handler(JournalError)
async def journal_exception_handler(request: Request, exc: JournalError):
    """Map domain errors to their HTTP status."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.code, message=str(exc)).model_dump(),
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    error_detail = str(exc)
    # In development/debug mode, include full traceback
    if settings.debug or settings.environment != "production":
        error_detail = f"{str(exc)}\n{traceback.format_exc()}"

    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {error_detail}")

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="internal_error",
            message=f"An unexpected error occurred: {str(exc)[:200]}",
        ).model_dump(),
    )


# Health check endpoint
@app.get("/health", tags=["health"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": settings.app_version}


# Include API routes
app.include_router(api_router, prefix=settings.api_prefix)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "ops_journal.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
