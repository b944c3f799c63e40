"""Presentation endpoints — start/stop broadcasting and move the live question.

Protected by the ``X-Admin-Key`` header.  The unload beacon
(``/presentation/release``) also accepts the key as ``?key=`` because
``navigator.sendBeacon`` cannot set headers, and it ignores the body so
any content type works.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from livepoll_core.models.records import AdminStateInfo
from livepoll_core.presentation import Direction, PresentationService, PresenterView

from livepoll_server.dependencies import (
    commit_or_fail,
    get_db,
    get_presentation,
    require_admin_key,
    require_admin_key_or_query,
)

router = APIRouter(prefix="/events/{event_id}/presentation", tags=["presentation"])


# ------------------------------------------------------------------
# Request models
# ------------------------------------------------------------------

class StartRequest(BaseModel):
    """Body for POST .../start; defaults to the first active question."""
    question_id: Optional[uuid.UUID] = None


class NavigateRequest(BaseModel):
    """Body for POST .../navigate — exactly one of direction / question_id.

    ``from_question_id`` is the question the admin currently views; it
    anchors prev/next when the event is not presenting.
    """
    direction: Optional[Direction] = None
    question_id: Optional[uuid.UUID] = None
    from_question_id: Optional[uuid.UUID] = None

    @model_validator(mode="after")
    def _one_target(self):
        if (self.direction is None) == (self.question_id is None):
            raise ValueError("Provide exactly one of direction or question_id")
        return self


class HeartbeatResponse(BaseModel):
    presenting: bool
    admin_state: Optional[AdminStateInfo] = None


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.get("")
async def get_presentation_view(
    event_id: uuid.UUID,
    question_id: Optional[uuid.UUID] = None,
    db: AsyncSession = Depends(get_db),
    service: PresentationService = Depends(get_presentation),
    _admin: str = Depends(require_admin_key),
) -> PresenterView:
    """Current presenter view, with the cursor on ``question_id`` if given."""
    return await service.load_view(db, event_id, viewed_question_id=question_id)


@router.post("/start")
async def start_presentation(
    event_id: uuid.UUID,
    body: StartRequest | None = None,
    db: AsyncSession = Depends(get_db),
    service: PresentationService = Depends(get_presentation),
    _admin: str = Depends(require_admin_key),
) -> PresenterView:
    """Start broadcasting.  409 when the event has no active question."""
    question_id = body.question_id if body else None
    view = await service.start(db, event_id, question_id=question_id)
    await commit_or_fail(db)
    return view


@router.post("/stop")
async def stop_presentation(
    event_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    service: PresentationService = Depends(get_presentation),
    _admin: str = Depends(require_admin_key),
) -> PresenterView:
    view = await service.stop(db, event_id)
    await commit_or_fail(db)
    return view


@router.post("/navigate")
async def navigate(
    event_id: uuid.UUID,
    body: NavigateRequest,
    db: AsyncSession = Depends(get_db),
    service: PresentationService = Depends(get_presentation),
    _admin: str = Depends(require_admin_key),
) -> PresenterView:
    """Move prev/next (bounded) or jump to a question; synced while presenting."""
    view = await service.navigate(
        db,
        event_id,
        direction=body.direction,
        question_id=body.question_id,
        from_question_id=body.from_question_id,
    )
    await commit_or_fail(db)
    return view


@router.post("/heartbeat")
async def heartbeat(
    event_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    service: PresentationService = Depends(get_presentation),
    _admin: str = Depends(require_admin_key),
) -> HeartbeatResponse:
    """Touch AdminState while presenting (sent every 30 s by the console)."""
    state = await service.heartbeat(db, event_id)
    await commit_or_fail(db)
    return HeartbeatResponse(presenting=state is not None, admin_state=state)


@router.post("/release")
async def release(
    event_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    service: PresentationService = Depends(get_presentation),
    _admin: str = Depends(require_admin_key_or_query),
) -> AdminStateInfo:
    """Unload beacon: leave presentation mode if still presenting."""
    state = await service.release(db, event_id)
    await commit_or_fail(db)
    return state
