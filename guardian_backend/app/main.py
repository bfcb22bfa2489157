"""
FastAPI application entry point.

Run with:
    uvicorn guardian_backend.app.main:app --reload --port 8000

Or from the project root:
    python -m uvicorn guardian_backend.app.main:app --reload
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from guardian_backend.app.core.config import Settings, settings as default_settings
from guardian_backend.app.core.logging_config import setup_logging, get_logger
from guardian_backend.app.core.errors import register_error_handlers
from guardian_backend.app.core.middleware import RequestLoggingMiddleware
from guardian_backend.app.core.health import HealthStatus, run_health_check
from guardian_backend.app.container import Services, build_services

# ── API routers ──
from guardian_backend.app.api.v1.alerts import router as alert_router
from guardian_backend.app.api.v1.locations import router as location_router
from guardian_backend.app.api.v1.responders import router as responder_router

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[Services] = None,
) -> FastAPI:
    """
    Build the application.

    Parameters
    ----------
    settings : Settings, optional
        Defaults to the environment-derived module settings.
    services : Services, optional
        Pre-built services (tests). When omitted they are built, and the
        schema created, at startup and closed at shutdown.
    """
    settings = settings or default_settings
    setup_logging(settings)

    # ── Application lifespan (startup / shutdown) ──

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage startup and shutdown events."""
        logger.info(
            "Starting %s v%s [%s]",
            settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
        )
        owned = None
        if getattr(app.state, "services", None) is None:
            owned = build_services(settings)
            owned.database.create_all()
            app.state.services = owned
        yield
        logger.info("Shutting down %s", settings.APP_NAME)
        if owned is not None:
            owned.close()
            app.state.services = None

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Personal-safety alert dispatch engine. "
            "Raises panic alerts, claims the nearest available responders, "
            "drives the alert lifecycle, tracks user and responder positions "
            "with proximity notifications, and evaluates trusted-location "
            "geofences."
        ),
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.services = services

    # ── Middleware stack (order matters — outermost first) ──

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    # ── Error handlers ──
    register_error_handlers(app, debug=settings.DEBUG)

    # ── Register routers ──
    app.include_router(alert_router)
    app.include_router(location_router)
    app.include_router(responder_router)

    # ── Root & health endpoints ──

    @app.get("/", tags=["root"])
    def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "modules": [
                "alert-lifecycle",
                "responder-matching",
                "location-tracking",
                "geofence",
                "trusted-locations",
                "responder-availability",
            ],
            "docs": "/docs",
        }

    @app.get("/health", tags=["health"])
    def health_check():
        """Deep health probe — checks all subsystems."""
        report = run_health_check(
            app.state.services,
            version=settings.APP_VERSION,
            environment=settings.ENVIRONMENT,
        )
        return report.to_dict()

    @app.get("/health/live", tags=["health"])
    def liveness():
        """Kubernetes liveness probe — is the process alive?"""
        return {"status": "alive"}

    @app.get("/health/ready", tags=["health"])
    def readiness():
        """Kubernetes readiness probe — can we serve traffic?"""
        report = run_health_check(
            app.state.services,
            version=settings.APP_VERSION,
            environment=settings.ENVIRONMENT,
        )
        if report.status == HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    return app


app = create_app()
