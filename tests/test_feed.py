"""Change feed tests — filtering, commit/rollback hooks and overflow.

The hooks are exercised with a plain object carrying an ``info`` dict,
which is all ``publish_staged`` / ``discard_staged`` read from a session.
"""

import asyncio
import uuid
from types import SimpleNamespace

import pytest

from livepoll_db.feed import (
    STAGED_KEY,
    ChangeEvent,
    ChangeFeed,
    ChangeOperation,
    stage_change,
)


def _state_change(event_id, operation=ChangeOperation.UPDATE, presenting=True):
    return ChangeEvent(
        table="admin_state",
        operation=operation,
        new={"event_id": str(event_id), "is_presenting": presenting},
    )


# =====================================================================
# Filtering
# =====================================================================


class TestSubscriptionMatching:

    def test_filters_on_table_and_column(self):
        feed = ChangeFeed()
        eid = uuid.uuid4()
        sub = feed.subscribe("admin_state", filters={"event_id": eid})

        assert sub.matches(_state_change(eid)), "UUID filter should match its string form"
        assert not sub.matches(_state_change(uuid.uuid4())), "Other events must not match"
        other_table = ChangeEvent(table="responses", operation=ChangeOperation.INSERT,
                                  new={"event_id": str(eid)})
        assert not sub.matches(other_table)

    def test_filters_on_operation(self):
        feed = ChangeFeed()
        sub = feed.subscribe("responses", operation=ChangeOperation.INSERT)
        assert sub.matches(ChangeEvent(table="responses", operation=ChangeOperation.INSERT, new={}))
        assert not sub.matches(ChangeEvent(table="responses", operation=ChangeOperation.UPDATE, new={}))

    def test_delete_matches_on_pre_image(self):
        """Deletes carry only ``old``; filters look at whichever image exists."""
        feed = ChangeFeed()
        qid = uuid.uuid4()
        sub = feed.subscribe("responses", filters={"question_id": qid})
        change = ChangeEvent(
            table="responses", operation=ChangeOperation.DELETE, old={"question_id": str(qid)},
        )
        assert sub.matches(change)
        assert change.row == {"question_id": str(qid)}

    def test_to_message_is_json_ready(self):
        change = _state_change(uuid.uuid4())
        msg = change.to_message()
        assert msg["operation"] == "UPDATE"
        assert isinstance(msg["committed_at"], str)


# =====================================================================
# Delivery
# =====================================================================


class TestDelivery:

    @pytest.mark.asyncio
    async def test_publish_delivers_in_order(self):
        feed = ChangeFeed()
        eid = uuid.uuid4()
        sub = feed.subscribe("admin_state", filters={"event_id": eid})

        feed.publish(_state_change(eid, presenting=True))
        feed.publish(_state_change(eid, presenting=False))

        first = await sub.get()
        second = await sub.get()
        assert first.new["is_presenting"] is True
        assert second.new["is_presenting"] is False

    @pytest.mark.asyncio
    async def test_close_ends_iteration(self):
        feed = ChangeFeed()
        eid = uuid.uuid4()
        received = []

        async with feed.subscribe("admin_state") as sub:
            feed.publish(_state_change(eid))
            sub.close()
            async for change in sub:
                received.append(change)

        assert len(received) == 1
        assert feed.subscriber_count == 0, "Closed subscriptions leave the feed"

    @pytest.mark.asyncio
    async def test_overflow_drops_oldest(self):
        feed = ChangeFeed()
        eid = uuid.uuid4()
        sub = feed.subscribe("admin_state", maxsize=2)
        for presenting in (True, False, True):
            feed.publish(_state_change(eid, presenting=presenting))

        kept = [await sub.get(), await sub.get()]
        assert [c.new["is_presenting"] for c in kept] == [False, True], (
            "The oldest buffered change should be dropped on overflow"
        )

    @pytest.mark.asyncio
    async def test_iteration_waits_for_publish(self):
        feed = ChangeFeed()
        eid = uuid.uuid4()
        sub = feed.subscribe("admin_state")

        waiter = asyncio.create_task(sub.get())
        await asyncio.sleep(0)
        assert not waiter.done()
        feed.publish(_state_change(eid))
        change = await asyncio.wait_for(waiter, timeout=1)
        assert change.table == "admin_state"


# =====================================================================
# Commit hooks
# =====================================================================


class TestCommitHooks:

    def test_publish_staged_only_after_commit(self):
        feed = ChangeFeed()
        eid = uuid.uuid4()
        sub = feed.subscribe("admin_state")
        session = SimpleNamespace(info={})

        stage_change(session.info, _state_change(eid))
        assert sub._queue.qsize() == 0, "Staged changes are invisible before commit"

        feed.publish_staged(session)
        assert sub._queue.qsize() == 1
        assert STAGED_KEY not in session.info, "Staged list is cleared after publishing"

    def test_rollback_discards(self):
        feed = ChangeFeed()
        sub = feed.subscribe("admin_state")
        session = SimpleNamespace(info={})

        stage_change(session.info, _state_change(uuid.uuid4()))
        feed.discard_staged(session)
        feed.publish_staged(session)
        assert sub._queue.qsize() == 0, "Rolled-back changes are never published"

    def test_attach_detach_is_idempotent(self):
        feed = ChangeFeed()
        feed.attach()
        feed.attach()
        sub = feed.subscribe("admin_state")
        feed.detach()
        feed.detach()
        assert feed.subscriber_count == 0, "Detaching closes open subscriptions"
        assert sub._closed
