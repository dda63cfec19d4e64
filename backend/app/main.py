"""
FastAPI application entry point.

Run with:
    uvicorn backend.app.main:app --reload --port 8000

Or from the project root:
    python -m uvicorn backend.app.main:app --reload
"""

from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from backend.app.core.config import settings
from backend.app.core.logging_config import setup_logging, get_logger
from backend.app.core.errors import register_error_handlers
from backend.app.core.middleware import RequestLoggingMiddleware
from backend.app.core.health import HealthStatus, run_health_check

# ── Chat ──
from backend.app.chat.chat_service import ChatService
from backend.app.chat.webhook_client import DeliveryClient, build_delivery_client

# ── API routers ──
from backend.app.api.v1.chat import router as chat_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


def create_app(delivery_client: Optional[DeliveryClient] = None) -> FastAPI:
    """
    Build the application.

    Parameters
    ----------
    delivery_client : DeliveryClient | None
        Pre-built client (tests inject one backed by a mock transport).
        When omitted, the lifespan builds one from settings around a
        shared httpx.AsyncClient and closes it on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage startup and shutdown events."""
        logger.info(
            "Starting %s v%s [%s]",
            settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
        )
        http_client: Optional[httpx.AsyncClient] = None
        client = delivery_client
        if client is None:
            http_client = httpx.AsyncClient(timeout=settings.WEBHOOK_TIMEOUT_SECONDS)
            client = build_delivery_client(settings, http_client=http_client)

        app.state.delivery_client = client
        app.state.chat_service = ChatService(client)
        logger.info(
            "Webhook delivery: %d attempts, %.1fs apart",
            client.policy.max_attempts, client.policy.delay_seconds,
        )
        try:
            yield
        finally:
            await client.close()
            if http_client is not None:
                await http_client.aclose()
            logger.info("Shutting down %s", settings.APP_NAME)

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Backend for the Genie open-innovation chat. Relays each chat turn "
            "to the conversational webhook with bounded retries and turns "
            "every failure into displayable fallback text."
        ),
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
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

    # ── Error handlers ──
    register_error_handlers(app)

    # ── Register routers ──
    app.include_router(chat_router)

    # ── Root & health endpoints ──

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "modules": ["webhook-delivery", "chat-turns"],
            "docs": "/docs",
        }

    @app.get("/health", tags=["health"])
    async def health_check():
        """Health probe — checks webhook config and the delivery client."""
        report = await run_health_check(getattr(app.state, "delivery_client", None))
        return report.to_dict()

    @app.get("/health/live", tags=["health"])
    async def liveness():
        """Kubernetes liveness probe — is the process alive?"""
        return {"status": "alive"}

    @app.get("/health/ready", tags=["health"])
    async def readiness():
        """Kubernetes readiness probe — can we serve traffic?"""
        report = await run_health_check(getattr(app.state, "delivery_client", None))
        if report.status is HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    return app


app = create_app()
