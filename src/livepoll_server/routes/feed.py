"""WebSocket change feed — ``WS /api/v1/feed/{table}``.

Streams committed row changes as JSON messages
(``{"table", "operation", "new", "old", "committed_at"}``), one
subscription per socket:

    admin_state  ?event_id=…     public (participant displays)
    events       ?event_id=…     admin
    responses    ?question_id=…  admin

Browsers cannot set headers on a WebSocket handshake, so admin feeds take
the admin key as ``?key=``.  Delivery starts at subscription time; clients
fetch a snapshot after connecting and treat it as authoritative.
"""

import asyncio
import hmac
import logging
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from livepoll_db.feed import ChangeFeed, Subscription

router = APIRouter(tags=["feed"])

logger = logging.getLogger(__name__)

# table -> (query parameter, row column it filters on, admin only)
_FEEDS: dict[str, tuple[str, str, bool]] = {
    "admin_state": ("event_id", "event_id", False),
    "events": ("event_id", "id", True),
    "responses": ("question_id", "question_id", True),
}


def _authorized(websocket: WebSocket, key: str | None) -> bool:
    expected: str | None = websocket.app.state.settings.admin_api_key
    return bool(expected and key and hmac.compare_digest(key, expected))


async def _watch_disconnect(websocket: WebSocket, subscription: Subscription) -> None:
    """Close the subscription once the client goes away."""
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    finally:
        subscription.close()


@router.websocket("/feed/{table}")
async def feed_socket(websocket: WebSocket, table: str) -> None:
    config = _FEEDS.get(table)
    if config is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    param, column, admin_only = config

    raw_value = websocket.query_params.get(param)
    try:
        value = uuid.UUID(raw_value) if raw_value else None
    except ValueError:
        value = None
    if value is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    if admin_only and not _authorized(websocket, websocket.query_params.get("key")):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    feed: ChangeFeed = websocket.app.state.feed
    # Subscribe before accepting so nothing committed after the handshake is missed
    async with feed.subscribe(table, filters={column: value}) as subscription:
        await websocket.accept()
        watcher = asyncio.create_task(_watch_disconnect(websocket, subscription))
        try:
            async for change in subscription:
                await websocket.send_json(change.to_message())
        except WebSocketDisconnect:
            logger.debug("Feed client for %s %s disconnected", table, value)
        finally:
            watcher.cancel()
