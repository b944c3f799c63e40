"""Admin endpoints — ledger and credential cleanup.

Protected by the ``X-Admin-Key`` header.  Returns 401 if missing, 403 if
wrong.
"""

from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from livepoll_db.repository import LivePollRepository
from livepoll_core.constants import RATE_LIMIT_WINDOW_SECONDS

from livepoll_server.dependencies import commit_or_fail, get_db, require_admin_key

router = APIRouter(prefix="/admin", tags=["admin"])


class CleanupResult(BaseModel):
    """Response body for cleanup operations."""
    affected_rows: int
    action: str


_repo = LivePollRepository()


@router.post("/cleanup/usage")
async def cleanup_usage(
    older_than_seconds: int = Query(RATE_LIMIT_WINDOW_SECONDS, ge=RATE_LIMIT_WINDOW_SECONDS),
    db: AsyncSession = Depends(get_db),
    _admin: str = Depends(require_admin_key),
) -> CleanupResult:
    """Drop rate-limit ledger rows that can no longer affect a decision."""
    cutoff = datetime.now(timezone.utc) - timedelta(seconds=older_than_seconds)
    affected = await _repo.purge_usage_before(db, cutoff)
    await commit_or_fail(db)
    return CleanupResult(affected_rows=affected, action="purge_usage")


@router.post("/cleanup/credentials")
async def cleanup_credentials(
    db: AsyncSession = Depends(get_db),
    _admin: str = Depends(require_admin_key),
) -> CleanupResult:
    """Drop expired or used verification codes and deletion tokens."""
    affected = await _repo.purge_spent_credentials(db, datetime.now(timezone.utc))
    await commit_or_fail(db)
    return CleanupResult(affected_rows=affected, action="purge_credentials")
