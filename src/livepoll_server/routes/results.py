"""Results endpoints — per-question display payloads, event summary, and
response maintenance.

Protected by the ``X-Admin-Key`` header.
"""

import uuid

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from livepoll_core.aggregation import ResultsService
from livepoll_core.display_control import DisplayControlService
from livepoll_core.models.display import DisplayPayload, EventSummary

from livepoll_server.dependencies import (
    commit_or_fail,
    get_db,
    get_display_control,
    get_results,
    require_admin_key,
)

router = APIRouter(prefix="/events/{event_id}", tags=["results"])


class ClearResult(BaseModel):
    """Response body for response-clearing operations."""
    affected_rows: int
    action: str


@router.get("/questions/{question_id}/display")
async def question_display(
    event_id: uuid.UUID,
    question_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    results: ResultsService = Depends(get_results),
    _admin: str = Depends(require_admin_key),
) -> DisplayPayload:
    """Chart, suppressed notice, content list, or display-off notice."""
    return await results.display(db, event_id, question_id)


@router.get("/summary")
async def event_summary(
    event_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    results: ResultsService = Depends(get_results),
    _admin: str = Depends(require_admin_key),
) -> EventSummary:
    """Unique respondents across the event and the low/high rate band."""
    return await results.summary(db, event_id)


@router.delete("/questions/{question_id}/responses")
async def clear_question_responses(
    event_id: uuid.UUID,
    question_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    control: DisplayControlService = Depends(get_display_control),
    _admin: str = Depends(require_admin_key),
) -> ClearResult:
    affected = await control.clear_question_responses(db, event_id, question_id)
    await commit_or_fail(db)
    return ClearResult(affected_rows=affected, action="clear_question_responses")


@router.delete("/responses")
async def clear_event_responses(
    event_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    control: DisplayControlService = Depends(get_display_control),
    _admin: str = Depends(require_admin_key),
) -> ClearResult:
    affected = await control.clear_event_responses(db, event_id)
    await commit_or_fail(db)
    return ClearResult(affected_rows=affected, action="clear_event_responses")
