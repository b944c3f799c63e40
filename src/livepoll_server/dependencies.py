"""FastAPI dependency injection — provides DB sessions, SDK services, and caller identity.

Each request that touches the database gets a fresh ``AsyncSession`` via
``get_db()``.  The session is committed on success and rolled back on error,
matching the SDK convention where services and repository call ``flush()``
but never ``commit()``.
"""

import hmac
from dataclasses import dataclass
from typing import AsyncGenerator

from fastapi import Header, HTTPException, Query, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from livepoll_db.engine import get_session_factory
from livepoll_db.feed import ChangeFeed
from livepoll_core.accounts import AccountService
from livepoll_core.aggregation import ResultsService
from livepoll_core.display_control import DisplayControlService
from livepoll_core.errors import PersistFailed
from livepoll_core.moderation import ModerationGate
from livepoll_core.presentation import PresentationService
from livepoll_core.submission import SubmissionPipeline


# ------------------------------------------------------------------
# Database session: transaction boundary lives here
# ------------------------------------------------------------------

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async DB session; commit on success, rollback on error.

    The SDK's repository methods call ``flush()`` but never ``commit()``.
    Write endpoints finalise their own transaction with
    :func:`commit_or_fail` before returning; the commit here covers
    read-only requests and anything left over.  Committing also publishes
    the staged change-feed events.
    """
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def commit_or_fail(db: AsyncSession) -> None:
    """Commit inside a write endpoint, before the response is sent.

    Dependency teardown runs after the response and its background tasks,
    so a commit left to ``get_db`` could neither fail the request nor
    precede background work that opens its own session.

    Raises:
        PersistFailed: the commit was rejected (rolled back).
    """
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise PersistFailed(f"Could not commit transaction: {exc}") from exc


def get_db_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for work that outlives the request (background tasks)."""
    return get_session_factory()


# ------------------------------------------------------------------
# SDK services: stashed on app.state during lifespan
# ------------------------------------------------------------------

def get_feed(request: Request) -> ChangeFeed:
    return request.app.state.feed


def get_pipeline(request: Request) -> SubmissionPipeline:
    return request.app.state.pipeline


def get_gate(request: Request) -> ModerationGate:
    return request.app.state.gate


def get_presentation(request: Request) -> PresentationService:
    return request.app.state.presentation


def get_results(request: Request) -> ResultsService:
    return request.app.state.results


def get_display_control(request: Request) -> DisplayControlService:
    return request.app.state.display_control


def get_accounts(request: Request) -> AccountService:
    return request.app.state.accounts


# ------------------------------------------------------------------
# Admin key: shared secret for presenter endpoints
# ------------------------------------------------------------------

def check_admin_key(request: Request, supplied: str | None) -> None:
    """Raise 403/401 unless ``supplied`` matches ``ADMIN_API_KEY``."""
    expected: str | None = request.app.state.settings.admin_api_key
    if not expected:
        raise HTTPException(
            status_code=403,
            detail="Admin endpoints are disabled (ADMIN_API_KEY not configured)",
        )
    if not supplied:
        raise HTTPException(status_code=401, detail="X-Admin-Key header is required")
    # Constant-time comparison to prevent timing side-channels.
    if not hmac.compare_digest(supplied, expected):
        raise HTTPException(status_code=403, detail="Invalid admin key")


async def require_admin_key(
    request: Request,
    x_admin_key: str | None = Header(None, alias="X-Admin-Key"),
) -> str:
    """Validate the ``X-Admin-Key`` header."""
    check_admin_key(request, x_admin_key)
    return x_admin_key


async def require_admin_key_or_query(
    request: Request,
    x_admin_key: str | None = Header(None, alias="X-Admin-Key"),
    key: str | None = Query(None),
) -> str:
    """Header or ``?key=`` — for unload beacons, which cannot set headers."""
    supplied = x_admin_key or key
    check_admin_key(request, supplied)
    return supplied


# ------------------------------------------------------------------
# Owner identity: injected by the auth gateway
# ------------------------------------------------------------------

@dataclass(frozen=True)
class Owner:
    id: str
    email: str


async def get_owner(
    request: Request,
    x_user_id: str | None = Header(None, alias="X-User-ID"),
    x_user_email: str | None = Header(None, alias="X-User-Email"),
    x_proxy_secret: str | None = Header(None, alias="X-Proxy-Secret"),
) -> Owner:
    """Extract the authenticated event owner from gateway headers.

    Returns 401 if either header is missing.  When
    ``TRUSTED_PROXY_SECRET`` is configured, the request must also carry a
    matching ``X-Proxy-Secret`` header, proving the identity headers were
    injected by the gateway and not forged by an external client.
    """
    if not x_user_id or not x_user_email:
        raise HTTPException(
            status_code=401, detail="X-User-ID and X-User-Email headers are required",
        )

    expected_secret: str | None = request.app.state.settings.trusted_proxy_secret
    if expected_secret:
        if not x_proxy_secret:
            raise HTTPException(status_code=403, detail="X-Proxy-Secret header is required")
        if not hmac.compare_digest(x_proxy_secret, expected_secret):
            raise HTTPException(status_code=403, detail="Invalid proxy secret")

    return Owner(id=x_user_id, email=x_user_email)
