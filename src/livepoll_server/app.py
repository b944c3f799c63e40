"""Application factory and CLI entry point.

``create_app()`` builds the FastAPI application with:
  - Lifespan handler that wires the change feed, the external adapters
    and the SDK services once
  - CORS middleware
  - Global exception handlers (SDK errors → 4xx/5xx)
  - All API routes mounted under ``/api/v1``
  - A ``/health`` endpoint for readiness checks

The ``cli()`` function is the ``livepoll-server`` console-script entry point.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from livepoll_db.engine import dispose_engine, get_engine
from livepoll_db.feed import ChangeFeed
from livepoll_core.accounts import AccountService
from livepoll_core.aggregation import ResultsService
from livepoll_core.display_control import DisplayControlService
from livepoll_core.errors import LivePollError
from livepoll_core.moderation import ModerationGate
from livepoll_core.presentation import PresentationService
from livepoll_core.submission import SubmissionPipeline

from livepoll_server.config import ServerSettings, load_settings
from livepoll_server.errors import (
    generic_error_handler,
    livepoll_error_handler,
    value_error_handler,
)
from livepoll_server.routes import register_routes

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Collaborators: built only when their credentials are configured
# ------------------------------------------------------------------

def build_classifier(settings: ServerSettings):
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY not set; responses are approved without review")
        return None
    from livepoll_core.adapters.openai_classifier import OpenAIModerationClassifier

    return OpenAIModerationClassifier(settings.openai_api_key, model=settings.moderation_model)


def build_object_store(settings: ServerSettings):
    if not (settings.supabase_url and settings.supabase_service_role_key):
        logger.warning("Supabase storage not configured; image answers are disabled")
        return None
    from livepoll_core.adapters.supabase_storage import SupabaseObjectStore

    return SupabaseObjectStore.from_credentials(
        settings.supabase_url, settings.supabase_service_role_key, settings.storage_bucket,
    )


def build_mailer(settings: ServerSettings):
    if not settings.resend_api_key:
        logger.warning("RESEND_API_KEY not set; account emails are disabled")
        return None
    from livepoll_core.adapters.resend_mailer import ResendEmailSender

    return ResendEmailSender(settings.resend_api_key, settings.email_from)


# ------------------------------------------------------------------
# Lifespan: runs once at startup/shutdown
# ------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Initialise shared resources at startup, tear down on shutdown.

    Startup:
      1. Attach the change feed to the ORM commit hooks
      2. Build the adapters that have credentials
      3. Build the SDK services and stash them on ``app.state``

    Shutdown:
      1. Detach the feed (closes every open subscription)
      2. Dispose the database engine's connection pool
    """
    settings: ServerSettings = app.state.settings

    feed = ChangeFeed()
    feed.attach()
    app.state.feed = feed

    app.state.gate = ModerationGate(build_classifier(settings))
    app.state.pipeline = SubmissionPipeline(store=build_object_store(settings))
    app.state.presentation = PresentationService()
    app.state.results = ResultsService()
    app.state.display_control = DisplayControlService()
    app.state.accounts = AccountService(build_mailer(settings), site_url=settings.site_url)
    logger.info("LivePoll services initialised")

    yield

    # --- Shutdown ---
    feed.detach()
    await dispose_engine()
    logger.info("Database engine disposed")


# ------------------------------------------------------------------
# Factory
# ------------------------------------------------------------------

def create_app(settings: ServerSettings | None = None) -> FastAPI:
    """Build and return the configured FastAPI application."""
    if settings is None:
        settings = load_settings()

    # --- Configure logging ---
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = FastAPI(
        title="LivePoll API Server",
        description="REST + WebSocket API for live polling events",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Store settings so the lifespan handler can read them
    app.state.settings = settings

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Exception handlers (most specific class wins) ---
    app.add_exception_handler(LivePollError, livepoll_error_handler)
    app.add_exception_handler(ValueError, value_error_handler)
    app.add_exception_handler(Exception, generic_error_handler)

    # --- Health check (outside /api/v1 prefix) ---
    @app.get("/health")
    async def health() -> dict:
        """Readiness check: verifies DB connectivity."""
        try:
            async with get_engine().connect() as conn:
                await conn.execute(text("SELECT 1"))
            return {"status": "ok"}
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Health check failed: %s", exc)
            return {"status": "error", "detail": "database unavailable"}

    # --- Mount all API routes ---
    register_routes(app)

    return app


# ------------------------------------------------------------------
# Module-level ASGI export (for uvicorn livepoll_server.app:app)
# ------------------------------------------------------------------
app = create_app()


# ------------------------------------------------------------------
# CLI entry point
# ------------------------------------------------------------------

def cli() -> None:
    """Console-script entry point: ``livepoll-server``."""
    import uvicorn

    settings = load_settings()
    uvicorn.run(
        "livepoll_server.app:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False,
    )
