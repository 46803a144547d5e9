"""
camlink - FastAPI Signaling Server

Brokers pairing sessions between a desktop client and a phone, then relays
WebRTC connection descriptors between them until the direct stream is up.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from camlink.config.defaults import AppDefaults, load_defaults_from_env
from camlink.core.signaling import ConnectionHub, SessionRegistry, SignalingChannel
from camlink.utils.version import APP_VERSION

# Route modules
from camlink.routes import RouteDependencies, set_dependencies
from camlink.routes import health, pairing
from camlink.routes.signaling import create_signaling_router

LOG_FORMAT = "[%(asctime)s] %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO"):
    """Configure root logging the same way for the server and the CLI clients."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
    )


def create_app(settings: Optional[AppDefaults] = None) -> FastAPI:
    """
    Build the signaling server application.

    Args:
        settings: Configuration (defaults to environment-derived settings)

    Returns:
        FastAPI app with the signaling router mounted on every configured path
    """
    settings = settings or load_defaults_from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Create the single registry/channel pair shared by every mount path"""
        logger.info(f"[Server] Starting camlink signaling v{APP_VERSION}")
        logger.info(f"[Server] Session timeout: {settings.SESSION_TIMEOUT:g}s")
        logger.info(f"[Server] Signaling paths: {', '.join(settings.SIGNALING_PATHS)}")

        hub = ConnectionHub()
        registry = SessionRegistry(
            timeout_seconds=settings.SESSION_TIMEOUT, notify=hub.deliver
        )
        channel = SignalingChannel(registry, hub)

        set_dependencies(
            RouteDependencies(
                settings=settings,
                session_registry=registry,
                connection_hub=hub,
                signaling_channel=channel,
            )
        )
        app.state.signaling_channel = channel

        reaper = asyncio.create_task(
            channel.run_reaper(settings.POLL_IDLE_TIMEOUT, settings.POLL_REAP_INTERVAL)
        )
        logger.info("[Server] ✅ Signaling channel initialized")

        try:
            yield
        finally:
            logger.info("[Server] Shutting down signaling channel")
            reaper.cancel()
            try:
                await reaper
            except asyncio.CancelledError:
                pass
            channel.shutdown()
            set_dependencies(None)

    app = FastAPI(
        title="camlink Signaling API",
        version=APP_VERSION,
        description="Phone-to-desktop camera pairing and WebRTC signaling relay",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.CORS_ORIGINS),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Log and return detailed validation errors"""
        logger.error(f"[VALIDATION ERROR] {request.method} {request.url}: {exc.errors()}")
        return JSONResponse(
            status_code=422,
            content={"success": False, "detail": jsonable_encoder(exc.errors())},
        )

    app.include_router(health.router)
    app.include_router(pairing.router)
    for path in settings.SIGNALING_PATHS:
        app.include_router(create_signaling_router(path))

    return app


def run(settings: Optional[AppDefaults] = None):
    """Serve the signaling API with uvicorn."""
    settings = settings or load_defaults_from_env()
    configure_logging(settings.LOG_LEVEL)

    logger.info(f"Starting camlink signaling server v{APP_VERSION}")
    logger.info(f"Server: http://{settings.SERVER_HOST}:{settings.SERVER_PORT}")

    uvicorn.run(
        create_app(settings),
        host=settings.SERVER_HOST,
        port=settings.SERVER_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
