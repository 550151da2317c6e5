import socket
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .config import Settings
from .context import AppContext
from .infrastructure.database.database import init_db
from .logging_config import get_logger, setup_logging
from .logging_utils import log_system_info
from .middleware import log_requests_middleware
from .presentation.api_routes import api_router
from .presentation.error_handlers import EXCEPTION_HANDLERS
from .presentation.webhook_routes import webhook_router
from .telemetry import setup_telemetry


def create_app(
    settings: Settings | None = None, context: AppContext | None = None
) -> FastAPI:
    """Build the application around one explicit context.

    Tests pass a prebuilt context (in-memory engine, fake gateway); production
    builds it from the environment.
    """
    settings = context.settings if context else (settings or Settings())
    context = context or AppContext.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings)
        logger = get_logger(__name__)

        # Initialize database schema once at startup
        init_db(context.engine)
        logger.info("Database initialized successfully")

        log_system_info(settings, socket.gethostname())

        if not settings.telegram_configured:
            logger.warning("Telegram is not configured; approval cards cannot be sent")

        yield

        await context.aclose()
        logger.info("Application shutdown completed")

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        debug=settings.debug,
        lifespan=lifespan,
        description="""
**Service Tracker** - daily checklist of vehicle deliveries and returns.

Staff mark jobs done, override scheduled times and mark vehicles ready. Access
is granted by an admin chat through Telegram approval cards.

## Authentication

The caller identity is asserted by the authentication front through the
`X-Auth-Uid`, `X-Auth-Email`, `X-Auth-Name` and `X-Auth-Picture` headers.
Everything except the access request requires an active allowlist entry.
        """.strip(),
        openapi_tags=[
            {"name": "access", "description": "Access requests and approval"},
            {"name": "service-days", "description": "Per-date status, times, ready"},
            {"name": "settings", "description": "Per-user settings"},
            {"name": "telegram", "description": "Telegram Bot API webhook"},
        ],
    )
    app.state.context = context

    setup_telemetry(app, context)

    app.middleware("http")(log_requests_middleware)

    for exc_class, handler in EXCEPTION_HANDLERS.items():
        app.add_exception_handler(exc_class, handler)

    app.include_router(api_router)
    app.include_router(webhook_router)
    return app
