"""FastAPI application entry point.

voicelink broker - mints short-lived realtime credentials so the long-lived
service key never reaches the browser.
"""

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from voicelink import __version__
from voicelink.api.routes import health, metrics, session
from voicelink.config import get_settings
from voicelink.logging_config import get_logger, setup_logging
from voicelink.services.credentials.broker import CredentialBroker

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler.

    Startup:
    - Initialize logging
    - Build the credential broker (fails fast without an upstream key)

    Shutdown:
    - Close the upstream HTTP session
    """
    settings = get_settings()

    api_key = settings.openai_api_key
    setup_logging(
        level=settings.log_level,
        enable_file=settings.is_production,
        secrets=(api_key.get_secret_value() if api_key else None,),
    )

    app.state.broker = CredentialBroker(settings=settings)
    logger.info(f"Auth service listening on http://localhost:{settings.port}")

    yield

    await app.state.broker.close()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="voicelink broker",
        description="Ephemeral credential broker for realtime voice sessions",
        version=__version__,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.include_router(health.router, tags=["Health"])
    app.include_router(session.router, tags=["Session"])
    app.include_router(metrics.router, tags=["Observability"])

    return app


def run() -> None:
    """Console entry point: serve the broker with uvicorn."""
    settings = get_settings()
    uvicorn.run("voicelink.main:create_app", factory=True, host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    run()
