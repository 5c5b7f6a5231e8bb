"""
QR Upload Viewer - Main Application

FastAPI application with:
- API versioning (/api/v1/)
- Structured logging with structlog
- Prometheus metrics
- Global exception handling
- Database readiness and migrations before serving traffic
- Background QR detection (in-process or Celery)
"""

import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
import redis.asyncio as redis

from qr_viewer.core.config import Settings, settings
from qr_viewer.core.database import Database
from qr_viewer.core.exceptions import PersistenceError, register_exception_handlers
from qr_viewer.core.health import HealthChecker, UNHEALTHY
from qr_viewer.core.logging import setup_logging, get_logger
from qr_viewer.core.metrics import record_http_request, set_app_info
from qr_viewer.core.startup import prepare_database
from qr_viewer.core.storage import LocalStorage, PUBLIC_PREFIX
from qr_viewer.api.v1 import api_v1_router
from qr_viewer.engines.artifacts.services import QRArtifactService
from qr_viewer.engines.detection.services import QRDetectionService
from qr_viewer.modules.uploads.services import IngestionGateway, UploadTracker
from qr_viewer.pipeline.scheduler import build_scheduler

logger = get_logger(__name__)


# =============================================================================
# Lifespan Handler
# =============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler - startup and shutdown.

    Startup fails (and the server exits non-zero) when the database cannot
    be reached within the configured attempts.
    """
    app_settings: Settings = app.state.settings
    startup_start = time.time()

    logger.info(
        "application_starting",
        app_name=app_settings.APP_NAME,
        version=app_settings.APP_VERSION,
        environment=app_settings.ENVIRONMENT,
        detection_backend=app_settings.DETECTION_BACKEND,
    )

    db = Database(app_settings.DATABASE_URL)
    try:
        await prepare_database(db, app_settings)
    except PersistenceError as e:
        logger.critical("startup_aborted", error=e.message)
        await db.dispose()
        raise

    storage = LocalStorage(app_settings.UPLOAD_DIR)
    detector = QRDetectionService.from_settings(app_settings)
    scheduler = build_scheduler(app_settings, db, detector)

    app.state.db = db
    app.state.storage = storage
    app.state.scheduler = scheduler
    app.state.gateway = IngestionGateway(db, storage, scheduler, app_settings)
    app.state.tracker = UploadTracker(db, storage, app_settings)
    app.state.artifacts = QRArtifactService(db, storage, app_settings)
    app.state.health = HealthChecker(db, app_settings, scheduler=scheduler, started_at=startup_start)

    # Redis is only needed when detection runs on Celery workers
    app.state.redis = None
    if scheduler.backend == "celery":
        app.state.redis = redis.from_url(
            app_settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True
        )
        logger.info("redis_connected", url=app_settings.REDIS_URL)

    set_app_info(
        version=app_settings.APP_VERSION,
        environment=app_settings.ENVIRONMENT,
        detection_backend=scheduler.backend,
    )

    logger.info(
        "application_ready",
        startup_time_seconds=round(time.time() - startup_start, 3),
        strategies=detector.strategy_names,
    )

    yield

    # Shutdown
    logger.info("application_shutting_down")
    await scheduler.shutdown(app_settings.SHUTDOWN_GRACE_PERIOD_SECONDS)
    if app.state.redis is not None:
        await app.state.redis.aclose()
    await db.dispose()
    logger.info("application_shutdown_complete")


# =============================================================================
# Create FastAPI Application
# =============================================================================
def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    app_settings = app_settings or settings

    setup_logging(
        log_level=app_settings.LOG_LEVEL,
        json_format=app_settings.LOG_FORMAT_JSON,
        app_version=app_settings.APP_VERSION,
    )

    app = FastAPI(
        title=app_settings.APP_NAME,
        description="""
        Upload images and get back the QR codes they contain.

        - **Upload**: validated by size, type and file signature; accepted immediately
        - **Detection**: runs in the background over three raster variants
        - **Results**: poll by id until `completed` or `failed`
        - **Observability**: structured logging, Prometheus metrics

        ## API Versioning

        All endpoints are versioned under `/api/v1/`
        """,
        version=app_settings.APP_VERSION,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json"
    )
    app.state.settings = app_settings

    # =========================================================================
    # Middleware
    # =========================================================================
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_request_timing(request: Request, call_next):
        """Track request timing for metrics."""
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        # Label by route template so ids do not explode cardinality
        route = request.scope.get("route")
        endpoint = getattr(route, "path", "unmatched")

        record_http_request(request.method, endpoint, response.status_code, duration)

        response.headers["X-Process-Time"] = str(duration)
        return response

    register_exception_handlers(app, debug=app_settings.DEBUG)

    # =========================================================================
    # Routers & Static Files
    # =========================================================================
    app.include_router(api_v1_router)

    upload_dir = Path(app_settings.UPLOAD_DIR)
    upload_dir.mkdir(parents=True, exist_ok=True)
    app.mount(PUBLIC_PREFIX, StaticFiles(directory=str(upload_dir)), name="uploads")

    # =========================================================================
    # Root Endpoints
    # =========================================================================
    @app.get("/", tags=["root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "name": app_settings.APP_NAME,
            "version": app_settings.APP_VERSION,
            "environment": app_settings.ENVIRONMENT,
            "docs": "/api/docs",
            "api_v1": "/api/v1",
            "metrics": "/api/v1/metrics"
        }

    @app.get("/health", tags=["health"])
    async def health(request: Request, quick: bool = Query(False)):
        """Full health report, or a lightweight one with ?quick=true."""
        checker: HealthChecker = request.app.state.health
        report = await checker.quick() if quick else await checker.full()
        return JSONResponse(
            status_code=503 if report["status"] == UNHEALTHY else 200,
            content=report
        )

    @app.get("/ready", tags=["health"])
    async def ready(request: Request):
        """Readiness check - verifies dependencies are available."""
        checks = {"database": False}

        try:
            await request.app.state.db.ping()
            checks["database"] = True
        except Exception as e:
            logger.warning("readiness_database_failed", error=str(e))

        if request.app.state.redis is not None:
            checks["redis"] = False
            try:
                await request.app.state.redis.ping()
                checks["redis"] = True
            except Exception as e:
                logger.warning("readiness_redis_failed", error=str(e))

        all_ready = all(checks.values())
        return JSONResponse(
            status_code=200 if all_ready else 503,
            content={"ready": all_ready, "checks": checks}
        )

    return app


app = create_app()


# =============================================================================
# Development Server
# =============================================================================
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "qr_viewer.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
