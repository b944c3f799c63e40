"""Display-gate endpoints — consent-gated switches, emergency stop, manual block.

Protected by the ``X-Admin-Key`` header.  Turning a gate on requires
``consent: true`` in the same request (fetch the notice text from
``GET .../display-gates/{gate}/notice`` to show the interstitial);
turning it off or pressing the emergency stop needs no confirmation.
"""

import uuid

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from livepoll_core.display_control import CONSENT_NOTICES, DisplayControlService, DisplayGate
from livepoll_core.models.records import EventInfo, ResponseInfo

from livepoll_server.dependencies import (
    commit_or_fail,
    get_db,
    get_display_control,
    require_admin_key,
)

router = APIRouter(prefix="/events/{event_id}", tags=["display"])


class GateRequest(BaseModel):
    """Body for POST .../display-gates/{gate}."""
    enabled: bool
    consent: bool = False


class ConsentNotice(BaseModel):
    gate: DisplayGate
    notice: str


@router.get("/display-gates/{gate}/notice")
async def gate_notice(
    event_id: uuid.UUID,
    gate: DisplayGate,
    _admin: str = Depends(require_admin_key),
) -> ConsentNotice:
    return ConsentNotice(gate=gate, notice=CONSENT_NOTICES[gate])


@router.post("/display-gates/{gate}")
async def set_display_gate(
    event_id: uuid.UUID,
    gate: DisplayGate,
    body: GateRequest,
    db: AsyncSession = Depends(get_db),
    control: DisplayControlService = Depends(get_display_control),
    _admin: str = Depends(require_admin_key),
) -> EventInfo:
    """Switch the text or image gate.  400 when turning on without consent."""
    event = await control.set_gate(db, event_id, gate, body.enabled, consent=body.consent)
    await commit_or_fail(db)
    return event


@router.post("/emergency-stop")
async def emergency_stop(
    event_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    control: DisplayControlService = Depends(get_display_control),
    _admin: str = Depends(require_admin_key),
) -> EventInfo:
    """Force both display gates off."""
    event = await control.emergency_stop(db, event_id)
    await commit_or_fail(db)
    return event


@router.post("/responses/{response_id}/block")
async def block_response(
    event_id: uuid.UUID,
    response_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    control: DisplayControlService = Depends(get_display_control),
    _admin: str = Depends(require_admin_key),
) -> ResponseInfo:
    response = await control.block_response(db, event_id, response_id)
    await commit_or_fail(db)
    return response
