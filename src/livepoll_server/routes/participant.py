"""Participant endpoints — bootstrap a display and submit answers.

No authentication: participants are identified only by the opaque
``session_id`` their browser generated and stored.

Answers arrive as JSON (``{"session_id", "answer", "agreed_at"}``) or,
for image questions, as ``multipart/form-data`` with the same fields
plus a ``file`` part.  Moderation of free-form answers is queued as a
background task that runs after the response has been committed.
"""

import json
import uuid
from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from livepoll_db.repository import LivePollRepository
from livepoll_core.errors import NotFound, UploadFailed, UploadFailureCause, ValidationFailed
from livepoll_core.media import ImageUpload
from livepoll_core.models.question import LiveQuestion, question_from_row
from livepoll_core.models.records import AdminStateInfo, EventInfo, ResponseInfo
from livepoll_core.moderation import ModerationGate
from livepoll_core.submission import SubmissionPipeline

from livepoll_server.config import MAX_REQUEST_BYTES
from livepoll_server.dependencies import (
    commit_or_fail,
    get_db,
    get_db_factory,
    get_gate,
    get_pipeline,
)

router = APIRouter(tags=["participant"])

_repo = LivePollRepository()


# ------------------------------------------------------------------
# Request / response models
# ------------------------------------------------------------------

class LiveSnapshot(BaseModel):
    """Everything a participant display needs to start."""
    event: EventInfo
    questions: List[LiveQuestion]
    admin_state: AdminStateInfo


class SubmitRequest(BaseModel):
    """JSON body for POST .../responses."""
    session_id: str
    answer: Any = None
    agreed_at: Optional[datetime] = None


class SubmitResponse(BaseModel):
    response: ResponseInfo
    created: bool
    moderation_pending: bool


# ------------------------------------------------------------------
# Body parsing
# ------------------------------------------------------------------

def _declared_length(request: Request) -> int | None:
    """Content-Length as an int, or None when absent or malformed."""
    raw = request.headers.get("content-length")
    if raw is None or not raw.strip().isdigit():
        return None
    return int(raw)


async def _read_submission(request: Request) -> tuple[SubmitRequest, ImageUpload | None]:
    content_type = request.headers.get("content-type", "")
    if not content_type.startswith("multipart/form-data"):
        try:
            return SubmitRequest.model_validate(await request.json()), None
        except (json.JSONDecodeError, ValidationError) as exc:
            raise ValidationFailed(f"Malformed submission body: {exc}")

    declared = _declared_length(request)
    if declared is not None and declared > MAX_REQUEST_BYTES:
        raise UploadFailed(
            f"Request body of {declared} bytes exceeds {MAX_REQUEST_BYTES}",
            cause=UploadFailureCause.TOO_LARGE,
        )
    form = await request.form()
    try:
        body = SubmitRequest(
            session_id=form.get("session_id") or "",
            # Multi-choice selections travel as a JSON array string
            answer=form.get("answer"),
            agreed_at=form.get("agreed_at") or None,
        )
    except ValidationError as exc:
        raise ValidationFailed(f"Malformed submission form: {exc}")

    image = None
    upload = form.get("file")
    if upload is not None and not isinstance(upload, str):
        image = ImageUpload(
            data=await upload.read(),
            filename=upload.filename,
            content_type=upload.content_type,
        )
    return body, image


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.get("/events/{event_id}/live")
async def live_snapshot(
    event_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> LiveSnapshot:
    """Event, active questions in sort order, and the current AdminState.

    Returns 404 for an unknown or inactive event.
    """
    event = await _repo.get_event(db, event_id)
    if event is None or not event.is_active:
        raise NotFound(f"Event {event_id} not found")
    rows = await _repo.list_questions(db, event_id, active_only=True)
    state = await _repo.get_admin_state(db, event_id)
    return LiveSnapshot(
        event=EventInfo.model_validate(event),
        questions=[question_from_row(r) for r in rows],
        admin_state=(
            AdminStateInfo.model_validate(state) if state else AdminStateInfo(event_id=event_id)
        ),
    )


@router.get("/events/{event_id}/admin-state")
async def admin_state(
    event_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> AdminStateInfo:
    """Fresh AdminState snapshot (used when a display resumes from sleep)."""
    state = await _repo.get_admin_state(db, event_id)
    if state is None:
        return AdminStateInfo(event_id=event_id)
    return AdminStateInfo.model_validate(state)


@router.post("/events/{event_id}/questions/{question_id}/responses", status_code=201)
async def submit_response(
    event_id: uuid.UUID,
    question_id: uuid.UUID,
    request: Request,
    background: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    pipeline: SubmissionPipeline = Depends(get_pipeline),
    gate: ModerationGate = Depends(get_gate),
    factory: async_sessionmaker[AsyncSession] = Depends(get_db_factory),
) -> SubmitResponse:
    """Submit one answer.

    Returns 201 with the stored response.  Free-form answers come back
    ``pending``; the verdict arrives later on the ``responses`` feed.
    """
    body, image = await _read_submission(request)
    question = await pipeline.load_question(db, event_id, question_id)
    outcome = await pipeline.submit(
        db,
        question,
        session_id=body.session_id,
        answer=body.answer,
        agreed_at=body.agreed_at,
        image=image,
    )
    # Moderation reads the row from its own session
    await commit_or_fail(db)
    if outcome.needs_moderation:
        background.add_task(gate.run, factory, outcome.response.id)
    return SubmitResponse(
        response=outcome.response,
        created=outcome.created,
        moderation_pending=outcome.needs_moderation,
    )
