"""In-process change feed — row-level notifications for committed writes.

The repository never publishes directly.  Each write *stages* a
``ChangeEvent`` on the SQLAlchemy session's ``info`` dict; the
``after_commit`` hook installed by :meth:`ChangeFeed.attach` publishes the
staged events in the order they were written, and ``after_rollback``
discards them.  Subscribers therefore only ever see committed state, in
commit order per row.

Delivery is at-least-once from the subscriber's point of view only while
its queue has room.  A slow subscriber whose queue overflows loses the
oldest buffered event; clients must reconcile with a fresh snapshot
(which they do on load and on visibility resume anyway).

Usage::

    feed = ChangeFeed()
    feed.attach()

    async with feed.subscribe("admin_state", filters={"event_id": eid}) as sub:
        async for change in sub:
            ...
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import event
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

# Key under which pending events live in ``Session.info``
STAGED_KEY = "livepoll_staged_changes"

_DEFAULT_QUEUE_SIZE = 256


class ChangeOperation(str, enum.Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    """One committed row change.

    ``new`` is the post-image (None for deletes); ``old`` is the pre-image
    and is only populated for deletes.
    """

    table: str
    operation: ChangeOperation
    new: dict[str, Any] | None = None
    old: dict[str, Any] | None = None
    committed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def row(self) -> dict[str, Any]:
        """Whichever image is present (post-image preferred)."""
        return self.new if self.new is not None else (self.old or {})

    def to_message(self) -> dict[str, Any]:
        """JSON-ready dict for the WebSocket surface."""
        return {
            "table": self.table,
            "operation": self.operation.value,
            "new": self.new,
            "old": self.old,
            "committed_at": self.committed_at.isoformat(),
        }


def stage_change(info: dict, change: ChangeEvent) -> None:
    """Queue ``change`` on a session's ``info`` dict until commit."""
    info.setdefault(STAGED_KEY, []).append(change)


class Subscription:
    """A filtered, bounded view of the feed.

    Iterate with ``async for``; iteration ends once :meth:`close` is called.
    """

    _CLOSED = object()

    def __init__(
        self,
        feed: ChangeFeed,
        table: str,
        operation: ChangeOperation | None = None,
        filters: dict[str, Any] | None = None,
        maxsize: int = _DEFAULT_QUEUE_SIZE,
    ) -> None:
        self._feed = feed
        self.table = table
        self.operation = operation
        # Filter values compare as strings so UUIDs match their JSON form
        self.filters = {k: str(v) for k, v in (filters or {}).items()}
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    def matches(self, change: ChangeEvent) -> bool:
        if change.table != self.table:
            return False
        if self.operation is not None and change.operation != self.operation:
            return False
        row = change.row
        return all(str(row.get(k)) == v for k, v in self.filters.items())

    def deliver(self, change: ChangeEvent) -> None:
        if self._closed:
            return
        if self._queue.full():
            dropped = self._queue.get_nowait()
            logger.warning(
                "Subscription on %s overflowed; dropped %s", self.table, dropped,
            )
        self._queue.put_nowait(change)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._feed._remove(self)
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(self._CLOSED)

    async def get(self) -> ChangeEvent:
        item = await self._queue.get()
        if item is self._CLOSED:
            raise StopAsyncIteration
        return item

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> ChangeEvent:
        return await self.get()

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()


class ChangeFeed:
    """Fan-out of committed row changes to matching subscriptions."""

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []
        self._attached = False

    # ------------------------------------------------------------------
    # Subscribe / publish
    # ------------------------------------------------------------------

    def subscribe(
        self,
        table: str,
        operation: ChangeOperation | None = None,
        filters: dict[str, Any] | None = None,
        maxsize: int = _DEFAULT_QUEUE_SIZE,
    ) -> Subscription:
        """Open a subscription for one table, optionally narrowed by
        operation and by equality filters on row columns."""
        sub = Subscription(self, table, operation, filters, maxsize)
        self._subscriptions.append(sub)
        return sub

    def publish(self, change: ChangeEvent) -> None:
        for sub in list(self._subscriptions):
            if sub.matches(change):
                sub.deliver(change)

    def _remove(self, sub: Subscription) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    # ------------------------------------------------------------------
    # Commit hooks
    # ------------------------------------------------------------------

    def publish_staged(self, session: Any) -> None:
        """Publish and clear whatever the session staged (after_commit)."""
        for change in session.info.pop(STAGED_KEY, []):
            self.publish(change)

    @staticmethod
    def discard_staged(session: Any) -> None:
        """Drop staged events of a rolled-back transaction."""
        session.info.pop(STAGED_KEY, None)

    def attach(self) -> None:
        """Install the commit/rollback hooks on every ORM session.

        ``AsyncSession`` wraps a sync ``Session`` whose ``info`` dict it
        shares, so the hooks see what the async repository staged.
        """
        if self._attached:
            return
        event.listen(Session, "after_commit", self.publish_staged)
        event.listen(Session, "after_rollback", self.discard_staged)
        self._attached = True

    def detach(self) -> None:
        if not self._attached:
            return
        event.remove(Session, "after_commit", self.publish_staged)
        event.remove(Session, "after_rollback", self.discard_staged)
        self._attached = False
        for sub in list(self._subscriptions):
            sub.close()
