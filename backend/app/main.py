"""
FastAPI application entry point.

Run with:
    uvicorn backend.app.main:app --reload --port 4000

Or from the project root (HOST / PORT / RELOAD from settings):
    python -m backend.app.main
"""

from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from backend.app.core.config import settings
from backend.app.core.logging_config import setup_logging, get_logger
from backend.app.core.errors import register_error_handlers
from backend.app.core.middleware import RequestLoggingMiddleware
from backend.app.core.health import HealthStatus, run_health_check

# ── Engine + routers ──
from backend.app.notifications.notification_service import (
    NotificationService,
    build_notification_service,
)
from backend.app.api.v1.notifications import router as notification_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown events."""
    logger.info(
        "Starting %s v%s [%s] (escalation after %.1fs)",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
        settings.ESCALATION_TIMEOUT_SECONDS,
    )
    yield
    # Cancel outstanding escalation timers
    app.state.notifications.shutdown()
    logger.info("Shutting down %s", settings.APP_NAME)


# ── Create application ──

def create_app(service: Optional[NotificationService] = None) -> FastAPI:
    """Build the app around a notification service (a fresh one by default)."""
    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Security-event notification engine. Selects IN_APP / PUSH / "
            "WHATSAPP / SMS from the user's device context, tracks delivery "
            "telemetry, escalates unacknowledged events to a fallback "
            "channel, and runs the login device-trust / SIM-binding flow."
        ),
        version=settings.APP_VERSION,
        debug=settings.DEBUG,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.notifications = service or build_notification_service(settings)

    # ── Middleware stack (last added runs outermost) ──
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    register_error_handlers(app)
    app.include_router(notification_router)

    # ── Root & health endpoints ──

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "modules": [
                "channel-selection",
                "event-telemetry",
                "escalation",
                "device-binding",
            ],
            "docs": "/docs",
        }

    @app.get("/health", tags=["health"])
    async def health_check(request: Request):
        """Deep health probe — checks all subsystems."""
        report = await run_health_check(request.app.state.notifications)
        return report.to_dict()

    @app.get("/health/live", tags=["health"])
    async def liveness():
        """Kubernetes liveness probe — is the process alive?"""
        return {"status": "alive"}

    @app.get("/health/ready", tags=["health"])
    async def readiness(request: Request):
        """Kubernetes readiness probe — can we serve traffic?"""
        report = await run_health_check(request.app.state.notifications)
        if report.status == HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    return app


app = create_app()


def run() -> None:
    """Serve the module-level app with the configured bind address."""
    uvicorn.run(
        "backend.app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.RELOAD,
        log_config=None,
    )


if __name__ == "__main__":
    run()
