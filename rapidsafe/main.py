"""
FastAPI application entry point.

Run with:
    uvicorn rapidsafe.main:app --reload --port 8000

Or through the console script:
    rapidsafe-api
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from rapidsafe.core.config import settings
from rapidsafe.core.database import close_db, init_db
from rapidsafe.core.errors import register_error_handlers
from rapidsafe.core.health import HealthStatus, run_health_check
from rapidsafe.core.logging_config import get_logger, setup_logging
from rapidsafe.core.middleware import RequestLoggingMiddleware

# ── API routers ──
from rapidsafe.api.v1.alerts import router as alert_router
from rapidsafe.api.v1.alerts import tracking_router

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup, release the pool on shutdown."""
    logger.info(
        "Starting %s v%s [%s]",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
    )
    await init_db()
    yield
    await close_db()
    logger.info("Shutting down %s", settings.APP_NAME)


def create_app(*, use_lifespan: bool = True) -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Duress-aware emergency alerting: alert record lifecycle, "
            "SMS fanout to emergency contacts, and live location tracking."
        ),
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan if use_lifespan else None,
    )

    # ── Middleware stack (outermost first) ──
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    register_error_handlers(app)

    app.include_router(alert_router)
    app.include_router(tracking_router)

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "docs": "/docs",
        }

    @app.get("/health", tags=["health"])
    async def health_check():
        """Deep health probe."""
        report = await run_health_check()
        return report.to_dict()

    @app.get("/health/live", tags=["health"])
    async def liveness():
        return {"status": "alive"}

    @app.get("/health/ready", tags=["health"])
    async def readiness():
        report = await run_health_check()
        if report.status == HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "rapidsafe.main:app",
        host=settings.HOST,
        port=settings.PORT,
        workers=settings.WORKERS,
        reload=settings.RELOAD and settings.is_development,
    )


if __name__ == "__main__":
    run()
