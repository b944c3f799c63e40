"""Server configuration — reads settings from environment variables.

All settings have sensible defaults for local development.  In production
the values are typically overridden via env vars or a ``.env`` file.
Collaborators whose credentials are missing are simply not wired: the
moderation gate then approves without review, image uploads fail with
502 and account emails fail with 502.
"""

import os
from dataclasses import dataclass, field

from livepoll_core.constants import DEFAULT_MODERATION_MODEL

# Largest multipart body accepted for an image answer, checked before
# the image pipeline sees it (which applies its own 20 MB ceiling).
MAX_REQUEST_BYTES = int(os.getenv("MAX_REQUEST_BYTES", str(21 * 1024 * 1024)))


@dataclass(frozen=True)
class ServerSettings:
    """Immutable server configuration read from environment at startup."""

    # Network
    host: str = "0.0.0.0"
    port: int = 8080

    # CORS: comma-separated origins, or "*" for wide-open dev mode
    cors_origins: list[str] = field(default_factory=lambda: ["*"])

    # Logging
    log_level: str = "INFO"

    # Admin API key: shared secret for presenter endpoints (None = disabled)
    admin_api_key: str | None = None

    # Trusted proxy secret: when set, every request that carries
    # X-User-ID must also carry X-Proxy-Secret matching this value.
    trusted_proxy_secret: str | None = None

    # Moderation classifier
    openai_api_key: str | None = None
    moderation_model: str = DEFAULT_MODERATION_MODEL

    # Object storage for image answers
    supabase_url: str | None = None
    supabase_service_role_key: str | None = None
    storage_bucket: str = "response-images"

    # Email side channel
    resend_api_key: str | None = None
    email_from: str = "LivePoll <no-reply@localhost>"
    site_url: str = "http://localhost:8080"


def load_settings() -> ServerSettings:
    """Build settings from ``SERVER_*`` and collaborator environment variables."""
    raw_origins = os.getenv("SERVER_CORS_ORIGINS", "*")
    origins = [o.strip() for o in raw_origins.split(",") if o.strip()]

    return ServerSettings(
        host=os.getenv("SERVER_HOST", "0.0.0.0"),
        port=int(os.getenv("SERVER_PORT", "8080")),
        cors_origins=origins,
        log_level=os.getenv("SERVER_LOG_LEVEL", "INFO").upper(),
        admin_api_key=os.getenv("ADMIN_API_KEY") or None,
        trusted_proxy_secret=os.getenv("TRUSTED_PROXY_SECRET") or None,
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        moderation_model=os.getenv("MODERATION_MODEL", DEFAULT_MODERATION_MODEL),
        supabase_url=os.getenv("SUPABASE_URL") or None,
        supabase_service_role_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY") or None,
        storage_bucket=os.getenv("STORAGE_BUCKET", "response-images"),
        resend_api_key=os.getenv("RESEND_API_KEY") or None,
        email_from=os.getenv("EMAIL_FROM", "LivePoll <no-reply@localhost>"),
        site_url=os.getenv("SITE_URL", "http://localhost:8080"),
    )
