"""
Imagery Relay Gateway - Main Application

FastAPI application with:
- Synchronous-looking upload endpoint over an async job/reply broker flow
- API versioning (/api/v1/)
- Structured logging with structlog
- Prometheus metrics
- Global exception handling
- Explicit process context (broker, store, reply loop) owned by the lifespan
"""

import asyncio
import os
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from fastapi.responses import JSONResponse

from src.core.config import Settings, settings as default_settings
from src.core.context import AppContext, build_context
from src.core.logging import setup_logging, get_logger
from src.core.exceptions import register_exception_handlers
from src.core.metrics import set_app_info, http_requests_total, http_request_duration_seconds
from src.api.v1 import api_v1_router
from src.api.v1.upload import router as upload_router


# =============================================================================
# Initialize Logging
# =============================================================================
setup_logging(
    log_level=default_settings.LOG_LEVEL,
    json_format=default_settings.LOG_FORMAT_JSON
)
logger = get_logger(__name__)


def create_app(
    settings: Settings = default_settings,
    context_factory: Optional[Callable[[], AppContext]] = None
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Application settings
        context_factory: Builds the process context at startup; defaults to
            the broker and store configured in settings
    """
    if context_factory is None:
        def context_factory() -> AppContext:
            return build_context(settings)

    # =========================================================================
    # Lifespan Handler
    # =========================================================================
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler - startup and shutdown."""
        startup_start = time.time()

        logger.info(
            "application_starting",
            app_name=settings.APP_NAME,
            version=settings.APP_VERSION,
            environment=settings.ENVIRONMENT
        )

        context = context_factory()
        app.state.context = context
        await context.start()

        set_app_info(
            version=settings.APP_VERSION,
            environment=settings.ENVIRONMENT
        )

        logger.info(
            "application_ready",
            startup_time_seconds=time.time() - startup_start,
            job_topic=settings.BROKER_JOB_TOPIC,
            reply_topic=settings.BROKER_REPLY_TOPIC
        )

        yield

        # Shutdown
        logger.info("application_shutting_down")
        await context.stop()
        logger.info("application_shutdown_complete")

    app = FastAPI(
        title=settings.APP_NAME,
        description="""
        Image relay gateway:

        - **Upload**: images are stored in the object store
        - **Dispatch**: a transformation job is published to the broker
        - **Correlate**: the worker's reply is matched to the waiting request
        - **Render**: the processed image is returned as an HTML fragment

        ## API Versioning

        Versioned endpoints live under `/api/v1/`; `POST /upload` is also
        served at the root for the bundled upload page.
        """,
        version=settings.APP_VERSION,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json"
    )

    # =========================================================================
    # Middleware
    # =========================================================================

    # CORS
    cors_origins = settings.CORS_ORIGINS.split(",")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request timing middleware
    @app.middleware("http")
    async def add_request_timing(request: Request, call_next):
        """Track request timing for metrics."""
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=request.url.path
        ).observe(duration)

        http_requests_total.labels(
            method=request.method,
            endpoint=request.url.path,
            status=response.status_code
        ).inc()

        response.headers["X-Process-Time"] = str(duration)

        return response

    # =========================================================================
    # Register Exception Handlers
    # =========================================================================
    register_exception_handlers(app)

    # =========================================================================
    # Include API Routers
    # =========================================================================
    app.include_router(api_v1_router)
    app.include_router(upload_router, tags=["upload"])

    # =========================================================================
    # Health Endpoints
    # =========================================================================

    @app.get("/health", tags=["health"])
    async def health():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": settings.APP_VERSION
        }

    @app.get("/ready", tags=["health"])
    async def ready(request: Request):
        """Readiness check - verifies broker, store and reply loop."""
        context: AppContext = request.app.state.context
        checks = {
            "broker": False,
            "storage": False,
            "reply_loop": context.reply_loop_running
        }

        try:
            checks["broker"] = await asyncio.wait_for(
                context.broker.ping(),
                timeout=settings.READY_CHECK_TIMEOUT_SECONDS
            )
        except asyncio.TimeoutError:
            logger.warning("ready_check_timed_out", dependency="broker")

        try:
            checks["storage"] = await asyncio.wait_for(
                context.storage.ping(),
                timeout=settings.READY_CHECK_TIMEOUT_SECONDS
            )
        except asyncio.TimeoutError:
            logger.warning("ready_check_timed_out", dependency="storage")

        all_ready = all(checks.values())

        return JSONResponse(
            status_code=200 if all_ready else 503,
            content={
                "ready": all_ready,
                "checks": checks,
                "pending_requests": context.correlator.pending_count
            }
        )

    # =========================================================================
    # Static Files & UI
    # =========================================================================

    # Processed results, referenced by the upload fragments
    Path(settings.PROCESSED_IMAGES_DIR).mkdir(parents=True, exist_ok=True)
    app.mount("/images", StaticFiles(directory=settings.PROCESSED_IMAGES_DIR), name="images")

    # Upload page
    if os.path.exists(os.path.join(settings.STATIC_DIR, "index.html")):
        app.mount("/", StaticFiles(directory=settings.STATIC_DIR, html=True), name="ui")
    else:
        @app.get("/", tags=["root"])
        async def root():
            """Root endpoint with API information."""
            return {
                "name": settings.APP_NAME,
                "version": settings.APP_VERSION,
                "environment": settings.ENVIRONMENT,
                "docs": "/api/docs",
                "upload": "/upload",
                "metrics": "/api/v1/metrics"
            }

    return app


app = create_app()


# =============================================================================
# Development Server
# =============================================================================
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=8080,
        reload=True,
        log_level="info"
    )
