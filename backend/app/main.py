"""
Leave notification service — ASGI application.

    uvicorn backend.app.main:app --port 8000
    python -m backend.app.main          (uses HOST / PORT from settings)

The lifespan owns the notification stack: it builds the router and its
channels, starts their background initializers (credential validation,
pairing watch) without waiting on them, and stops them on shutdown.
Requests never wait for a channel to become ready; an unready channel is
just skipped by the router.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.app.api.v1.notifications import router as notifications_api
from backend.app.api.v1.notifications import ws_router as push_api
from backend.app.core.config import settings
from backend.app.core.errors import register_error_handlers
from backend.app.core.health import HealthStatus, run_health_check
from backend.app.core.logging_config import get_logger, setup_logging
from backend.app.core.middleware import RequestLoggingMiddleware
from backend.app.notifications.inbox import NotificationInbox
from backend.app.notifications.mailer import EmailNotifier
from backend.app.notifications.router import build_router
from backend.app.notifications.service import LeaveNotificationService
from backend.app.realtime.push_hub import PushHub

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    notification_router = build_router(settings)
    inbox = NotificationInbox()
    hub = PushHub(reconnect_delay_seconds=settings.PUSH_RECONNECT_DELAY_SECONDS)
    mailer = EmailNotifier.from_settings(settings)
    if not mailer.configured:
        logger.info("SMTP not configured; email copies of leave events are off")

    app.state.notification_router = notification_router
    app.state.inbox = inbox
    app.state.push_hub = hub
    app.state.notification_service = LeaveNotificationService(
        notification_router, inbox, hub, mailer=mailer,
    )

    await notification_router.start()
    logger.info(
        "%s v%s up [%s] sending as %s",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
        settings.INSTITUTION_SHORT_NAME,
    )
    try:
        yield
    finally:
        await notification_router.stop()
        logger.info("%s stopped", settings.APP_NAME)


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description=(
            "Leave status notifications: WhatsApp delivery through a paired "
            "web session or a hosted messaging API, with a recording sink as "
            "the last resort; in-app inbox; real-time dashboard push."
        ),
        lifespan=lifespan,
    )

    # Outermost first: CORS answers preflights before the access log sees them
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.CORS_ALLOW_ALL else settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_middleware(RequestLoggingMiddleware)
    register_error_handlers(application)

    application.include_router(notifications_api)
    application.include_router(push_api)

    @application.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "modules": ["notification-router", "in-app-inbox", "realtime-push"],
            "channels": application.state.notification_router.readiness_summary(),
            "docs": "/docs",
        }

    @application.get("/health", tags=["health"])
    async def health_check():
        """Channel readiness and push hub, no outbound I/O."""
        report = await run_health_check(
            application.state.notification_router, application.state.push_hub,
        )
        return report.to_dict()

    @application.get("/health/live", tags=["health"])
    async def liveness():
        return {"status": "alive"}

    @application.get("/health/ready", tags=["health"])
    async def readiness():
        """503 only when the recording sink itself is down."""
        report = await run_health_check(
            application.state.notification_router, application.state.push_hub,
        )
        code = 503 if report.status == HealthStatus.UNHEALTHY else 200
        return JSONResponse(status_code=code, content=report.to_dict())

    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_config=None)
