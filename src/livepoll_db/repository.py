"""Async repository for events, questions, responses and admin state.

All public methods accept an ``AsyncSession`` so the caller controls
transaction boundaries.  Methods ``flush()`` but never ``commit()``.

Every write that other clients need to observe stages a ``ChangeEvent``
on the session (see :mod:`livepoll_db.feed`); it is published only once
the caller commits.

The repository deliberately avoids business-logic validation — that
belongs in the SDK layer.
"""

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, func, literal_column, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from livepoll_db.feed import ChangeEvent, ChangeOperation, stage_change
from livepoll_db.models.account import DeletionToken, VerificationCode
from livepoll_db.models.admin_state import AdminState
from livepoll_db.models.enums import ModerationStatus
from livepoll_db.models.event import Event
from livepoll_db.models.question import Question
from livepoll_db.models.response import Response
from livepoll_db.models.usage import SubmissionUsage


def _now() -> datetime:
    return datetime.now(timezone.utc)


def dedupe_key(question_id: uuid.UUID, session_id: str) -> str:
    """Unique key of an overwrite-policy response."""
    return f"{question_id}:{session_id}"


class LivePollRepository:
    """Async read/write operations on all livepoll tables."""

    @staticmethod
    def _stage(
        db: AsyncSession,
        table: str,
        operation: ChangeOperation,
        *,
        new: dict | None = None,
        old: dict | None = None,
    ) -> None:
        stage_change(db.info, ChangeEvent(table=table, operation=operation, new=new, old=old))

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def get_event(self, db: AsyncSession, event_id: uuid.UUID) -> Event | None:
        return await db.get(Event, event_id)

    async def update_display_gates(
        self,
        db: AsyncSession,
        event: Event,
        *,
        text_enabled: bool | None = None,
        image_enabled: bool | None = None,
    ) -> Event:
        """Set one or both display gates; ``None`` leaves a gate untouched."""
        if text_enabled is not None:
            event.text_display_enabled = text_enabled
        if image_enabled is not None:
            event.image_display_enabled = image_enabled
        event.updated_at = _now()
        await db.flush()
        self._stage(db, "events", ChangeOperation.UPDATE, new=event.to_record())
        return event

    async def delete_events_by_owner(self, db: AsyncSession, owner_id: str) -> int:
        """Delete every event an owner has; questions/responses cascade."""
        rows = await self.list_events_by_owner(db, owner_id)
        for row in rows:
            old = row.to_record()
            await db.delete(row)
            self._stage(db, "events", ChangeOperation.DELETE, old=old)
        await db.flush()
        return len(rows)

    async def list_events_by_owner(self, db: AsyncSession, owner_id: str) -> list[Event]:
        stmt = (
            select(Event)
            .where(Event.owner_id == owner_id)
            .order_by(Event.created_at.desc())
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Questions
    # ------------------------------------------------------------------

    async def get_question(self, db: AsyncSession, question_id: uuid.UUID) -> Question | None:
        return await db.get(Question, question_id)

    async def list_questions(
        self,
        db: AsyncSession,
        event_id: uuid.UUID,
        *,
        active_only: bool = False,
    ) -> list[Question]:
        """Questions of an event in presentation (sort_order) order."""
        stmt = select(Question).where(Question.event_id == event_id)
        if active_only:
            stmt = stmt.where(Question.is_active.is_(True))
        stmt = stmt.order_by(Question.sort_order)
        result = await db.execute(stmt)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Responses: read
    # ------------------------------------------------------------------

    async def get_response(self, db: AsyncSession, response_id: uuid.UUID) -> Response | None:
        return await db.get(Response, response_id)

    async def list_responses_for_question(
        self, db: AsyncSession, question_id: uuid.UUID
    ) -> list[Response]:
        stmt = (
            select(Response)
            .where(Response.question_id == question_id)
            .order_by(Response.created_at)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def list_responses_for_event(
        self, db: AsyncSession, event_id: uuid.UUID
    ) -> list[Response]:
        stmt = (
            select(Response)
            .join(Question, Question.id == Response.question_id)
            .where(Question.event_id == event_id)
            .order_by(Response.created_at)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Responses: write
    # ------------------------------------------------------------------

    async def insert_response(
        self,
        db: AsyncSession,
        *,
        question_id: uuid.UUID,
        session_id: str,
        answer: str,
        moderation_status: ModerationStatus,
        policy_agreed_at: datetime | None = None,
    ) -> Response:
        """Insert an independent response row (append policy)."""
        row = Response(
            question_id=question_id,
            session_id=session_id,
            answer=answer,
            moderation_status=moderation_status,
            policy_agreed_at=policy_agreed_at,
        )
        db.add(row)
        await db.flush()
        self._stage(db, "responses", ChangeOperation.INSERT, new=row.to_record())
        return row

    async def upsert_response(
        self,
        db: AsyncSession,
        *,
        question_id: uuid.UUID,
        session_id: str,
        answer: str,
        moderation_status: ModerationStatus,
        policy_agreed_at: datetime | None = None,
    ) -> tuple[Response, bool]:
        """Insert or overwrite the single response of a (question, session).

        A single ``INSERT ... ON CONFLICT (dedupe_key) DO UPDATE`` closes the
        race between two near-simultaneous submissions from one session.
        Prior moderation scores and timestamp are cleared on overwrite so
        the new content gets re-moderated.

        Returns ``(row, created)``.
        """
        now = _now()
        values = {
            "id": uuid.uuid4(),
            "question_id": question_id,
            "session_id": session_id,
            "answer": answer,
            "dedupe_key": dedupe_key(question_id, session_id),
            "moderation_status": moderation_status.value,
            "moderation_categories": None,
            "moderation_timestamp": None,
            "policy_agreed_at": policy_agreed_at,
            "created_at": now,
            "updated_at": now,
        }
        stmt = pg_insert(Response).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Response.dedupe_key],
            set_={
                "answer": stmt.excluded.answer,
                "moderation_status": stmt.excluded.moderation_status,
                "moderation_categories": None,
                "moderation_timestamp": None,
                "policy_agreed_at": stmt.excluded.policy_agreed_at,
                "updated_at": now,
            },
        ).returning(
            Response.id,
            # xmax is 0 only for a freshly inserted tuple
            literal_column("(xmax = 0)").label("inserted"),
        )
        result = await db.execute(stmt)
        response_id, created = result.one()

        row = await db.get(Response, response_id, populate_existing=True)
        operation = ChangeOperation.INSERT if created else ChangeOperation.UPDATE
        self._stage(db, "responses", operation, new=row.to_record())
        return row, bool(created)

    async def set_moderation(
        self,
        db: AsyncSession,
        response: Response,
        *,
        status: ModerationStatus,
        categories: dict[str, Any] | None = None,
        keep_categories: bool = False,
    ) -> Response:
        """Record a moderation decision (classifier result or manual block)."""
        response.moderation_status = status
        if not keep_categories:
            response.moderation_categories = categories
        response.moderation_timestamp = _now()
        response.updated_at = _now()
        await db.flush()
        self._stage(db, "responses", ChangeOperation.UPDATE, new=response.to_record())
        return response

    async def record_verdict(
        self,
        db: AsyncSession,
        response_id: uuid.UUID,
        *,
        answer: str,
        status: ModerationStatus,
        categories: dict[str, Any] | None,
    ) -> Response | None:
        """Store a classifier verdict for the content that was classified.

        The update only matches while the row is still ``pending`` and
        still holds ``answer``.  Returns ``None`` when an admin blocked it,
        the participant resubmitted, or the row was deleted in the
        meantime; the verdict is then stale and nothing is written.
        """
        now = _now()
        stmt = (
            update(Response)
            .where(
                Response.id == response_id,
                Response.moderation_status == ModerationStatus.PENDING.value,
                Response.answer == answer,
            )
            .values(
                moderation_status=ModerationStatus(status).value,
                moderation_categories=categories,
                moderation_timestamp=now,
                updated_at=now,
            )
            .returning(Response.id)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        if result.scalar_one_or_none() is None:
            return None

        row = await db.get(Response, response_id, populate_existing=True)
        self._stage(db, "responses", ChangeOperation.UPDATE, new=row.to_record())
        return row

    async def delete_responses_for_question(
        self, db: AsyncSession, question_id: uuid.UUID
    ) -> int:
        rows = await self.list_responses_for_question(db, question_id)
        return await self._delete_responses(db, rows)

    async def delete_responses_for_event(self, db: AsyncSession, event_id: uuid.UUID) -> int:
        rows = await self.list_responses_for_event(db, event_id)
        return await self._delete_responses(db, rows)

    async def _delete_responses(self, db: AsyncSession, rows: list[Response]) -> int:
        for row in rows:
            old = row.to_record()
            await db.delete(row)
            self._stage(db, "responses", ChangeOperation.DELETE, old=old)
        await db.flush()
        return len(rows)

    # ------------------------------------------------------------------
    # Admin state
    # ------------------------------------------------------------------

    async def get_admin_state(self, db: AsyncSession, event_id: uuid.UUID) -> AdminState | None:
        stmt = select(AdminState).where(AdminState.event_id == event_id)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def save_admin_state(
        self,
        db: AsyncSession,
        event_id: uuid.UUID,
        *,
        current_question_id: uuid.UUID | None,
        is_presenting: bool,
    ) -> AdminState:
        """Upsert-by-event: update the existing row in place, else insert.

        Two admin tabs writing concurrently race here; last writer wins.
        """
        row = await self.get_admin_state(db, event_id)
        operation = ChangeOperation.UPDATE
        if row is None:
            row = AdminState(event_id=event_id)
            db.add(row)
            operation = ChangeOperation.INSERT
        row.current_question_id = current_question_id
        row.is_presenting = is_presenting
        row.updated_at = _now()
        await db.flush()
        self._stage(db, "admin_state", operation, new=row.to_record())
        return row

    async def touch_admin_state(self, db: AsyncSession, event_id: uuid.UUID) -> AdminState | None:
        """Heartbeat: bump ``updated_at`` without changing anything else."""
        row = await self.get_admin_state(db, event_id)
        if row is None:
            return None
        row.updated_at = _now()
        await db.flush()
        self._stage(db, "admin_state", ChangeOperation.UPDATE, new=row.to_record())
        return row

    # ------------------------------------------------------------------
    # Submission usage (rate limiter ledger)
    # ------------------------------------------------------------------

    async def count_usage_since(
        self,
        db: AsyncSession,
        *,
        session_id: str,
        event_id: uuid.UUID,
        since: datetime,
    ) -> int:
        stmt = select(func.count(SubmissionUsage.id)).where(
            SubmissionUsage.session_id == session_id,
            SubmissionUsage.event_id == event_id,
            SubmissionUsage.created_at > since,
        )
        result = await db.execute(stmt)
        return int(result.scalar_one())

    async def record_usage(
        self,
        db: AsyncSession,
        *,
        session_id: str,
        event_id: uuid.UUID,
        question_type: str,
        at: datetime | None = None,
    ) -> SubmissionUsage:
        row = SubmissionUsage(
            session_id=session_id,
            event_id=event_id,
            question_type=question_type,
            created_at=at or _now(),
        )
        db.add(row)
        await db.flush()
        return row

    async def purge_usage_before(self, db: AsyncSession, cutoff: datetime) -> int:
        stmt = delete(SubmissionUsage).where(SubmissionUsage.created_at < cutoff)
        result = await db.execute(stmt)
        return result.rowcount or 0

    # ------------------------------------------------------------------
    # Verification codes
    # ------------------------------------------------------------------

    async def create_verification_code(
        self,
        db: AsyncSession,
        *,
        email: str,
        code_hash: str,
        purpose: str,
        expires_at: datetime,
    ) -> VerificationCode:
        row = VerificationCode(
            email=email, code_hash=code_hash, purpose=purpose, expires_at=expires_at,
        )
        db.add(row)
        await db.flush()
        return row

    async def get_valid_verification_code(
        self,
        db: AsyncSession,
        *,
        email: str,
        code_hash: str,
        purpose: str,
        now: datetime,
    ) -> VerificationCode | None:
        stmt = (
            select(VerificationCode)
            .where(
                VerificationCode.email == email,
                VerificationCode.code_hash == code_hash,
                VerificationCode.purpose == purpose,
                VerificationCode.used_at.is_(None),
                VerificationCode.expires_at > now,
            )
            .order_by(VerificationCode.created_at.desc())
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def mark_code_used(
        self, db: AsyncSession, row: VerificationCode, *, at: datetime
    ) -> VerificationCode:
        row.used_at = at
        await db.flush()
        return row

    # ------------------------------------------------------------------
    # Account deletion tokens
    # ------------------------------------------------------------------

    async def invalidate_deletion_tokens(self, db: AsyncSession, owner_id: str) -> int:
        stmt = (
            update(DeletionToken)
            .where(DeletionToken.owner_id == owner_id, DeletionToken.used.is_(False))
            .values(used=True)
        )
        result = await db.execute(stmt)
        return result.rowcount or 0

    async def create_deletion_token(
        self,
        db: AsyncSession,
        *,
        owner_id: str,
        token_hash: str,
        expires_at: datetime,
    ) -> DeletionToken:
        row = DeletionToken(owner_id=owner_id, token_hash=token_hash, expires_at=expires_at)
        db.add(row)
        await db.flush()
        return row

    async def get_valid_deletion_token(
        self, db: AsyncSession, token_hash: str, *, now: datetime
    ) -> DeletionToken | None:
        stmt = select(DeletionToken).where(
            DeletionToken.token_hash == token_hash,
            DeletionToken.used.is_(False),
            DeletionToken.expires_at > now,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def mark_token_used(self, db: AsyncSession, row: DeletionToken) -> DeletionToken:
        row.used = True
        await db.flush()
        return row

    async def purge_spent_credentials(self, db: AsyncSession, now: datetime) -> int:
        """Delete expired or used verification codes and deletion tokens."""
        codes = await db.execute(
            delete(VerificationCode).where(
                (VerificationCode.expires_at <= now) | VerificationCode.used_at.is_not(None)
            )
        )
        tokens = await db.execute(
            delete(DeletionToken).where(
                (DeletionToken.expires_at <= now) | DeletionToken.used.is_(True)
            )
        )
        return (codes.rowcount or 0) + (tokens.rowcount or 0)
