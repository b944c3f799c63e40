"""Account side channel — verification codes and account deletion.

Two email-triggered flows:

  - Verification code: a 6-digit code, valid 10 minutes, single use, for
    registration or credential changes.
  - Account deletion: a single-use token valid 30 minutes, emailed as a
    confirmation link.  Requesting a new token invalidates older unused
    ones; redeeming it deletes every event the owner has (questions,
    responses and admin state cascade).

Only the sha256 digest of a code or token is stored; the plaintext lives
in the email alone.  Codes and tokens are created inside the caller's transaction and the
email is sent before the caller commits, so a delivery failure rolls the
new code back.
"""

from __future__ import annotations

import hashlib
import logging
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable
from urllib.parse import urlencode

from sqlalchemy.ext.asyncio import AsyncSession

from livepoll_db.models.enums import VerificationPurpose
from livepoll_db.repository import LivePollRepository

from livepoll_core.constants import (
    DELETION_TOKEN_TTL_SECONDS,
    VERIFICATION_CODE_LENGTH,
    VERIFICATION_CODE_TTL_SECONDS,
)
from livepoll_core.errors import DeliveryFailed, InvalidToken, ValidationFailed
from livepoll_core.interfaces import EmailSender
from livepoll_core.mail import EmailRenderer

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_code(length: int = VERIFICATION_CODE_LENGTH) -> str:
    return "".join(secrets.choice("0123456789") for _ in range(length))


def hash_secret(value: str) -> str:
    """Digest under which a code or token is stored and looked up."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def normalize_email(email: str) -> str:
    if not isinstance(email, str) or not _EMAIL_RE.match(email.strip()):
        raise ValidationFailed(
            f"Invalid email address: {email!r}",
            user_message="Please enter a valid email address.",
        )
    return email.strip().lower()


def parse_purpose(purpose: VerificationPurpose | str) -> VerificationPurpose:
    try:
        return VerificationPurpose(purpose)
    except ValueError:
        raise ValidationFailed(f"Unknown verification purpose: {purpose!r}")


class AccountService:
    """Args:
        mailer: delivers the emails; ``None`` raises ``DeliveryFailed``.
        site_url: public base URL used in the deletion link.
        renderer: email template renderer.
        clock: returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        mailer: EmailSender | None,
        *,
        site_url: str,
        renderer: EmailRenderer | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._mailer = mailer
        self._site_url = site_url.rstrip("/")
        self._renderer = renderer or EmailRenderer()
        self._clock = clock
        self._repo = LivePollRepository()

    # ------------------------------------------------------------------
    # Verification codes
    # ------------------------------------------------------------------

    async def request_verification_code(
        self,
        db: AsyncSession,
        *,
        email: str,
        purpose: VerificationPurpose | str,
    ) -> datetime:
        """Create and email a fresh code.  Returns its expiry time."""
        email = normalize_email(email)
        purpose = parse_purpose(purpose)

        code = generate_code()
        expires_at = self._clock() + timedelta(seconds=VERIFICATION_CODE_TTL_SECONDS)
        await self._repo.create_verification_code(
            db,
            email=email,
            code_hash=hash_secret(code),
            purpose=purpose.value,
            expires_at=expires_at,
        )
        message = self._renderer.verification_code(
            code=code,
            purpose=purpose.value,
            valid_minutes=VERIFICATION_CODE_TTL_SECONDS // 60,
        )
        await self._send(email, message)
        logger.info("Verification code (%s) sent to %s", purpose.value, email)
        return expires_at

    async def verify_code(
        self,
        db: AsyncSession,
        *,
        email: str,
        code: str,
        purpose: VerificationPurpose | str,
    ) -> None:
        """Redeem a code exactly once.

        Raises:
            InvalidToken: unknown, expired or already used code.
        """
        email = normalize_email(email)
        now = self._clock()
        row = await self._repo.get_valid_verification_code(
            db,
            email=email,
            code_hash=hash_secret(str(code).strip()),
            purpose=parse_purpose(purpose).value,
            now=now,
        )
        if row is None:
            raise InvalidToken(f"No valid verification code for {email}")
        await self._repo.mark_code_used(db, row, at=now)

    # ------------------------------------------------------------------
    # Account deletion
    # ------------------------------------------------------------------

    async def request_account_deletion(
        self, db: AsyncSession, *, owner_id: str, email: str
    ) -> datetime:
        """Issue a new deletion token and email the confirmation link.

        Older unused tokens of the owner stop working.
        """
        email = normalize_email(email)
        invalidated = await self._repo.invalidate_deletion_tokens(db, owner_id)
        if invalidated:
            logger.info("Invalidated %d earlier deletion tokens of %s", invalidated, owner_id)

        token = secrets.token_urlsafe(32)
        expires_at = self._clock() + timedelta(seconds=DELETION_TOKEN_TTL_SECONDS)
        await self._repo.create_deletion_token(
            db, owner_id=owner_id, token_hash=hash_secret(token), expires_at=expires_at,
        )
        link = self.deletion_link(token)
        message = self._renderer.account_deletion(
            link=link, valid_minutes=DELETION_TOKEN_TTL_SECONDS // 60,
        )
        await self._send(email, message)
        logger.info("Account deletion link sent for owner %s", owner_id)
        return expires_at

    def deletion_link(self, token: str) -> str:
        query = urlencode({"action": "delete-account", "token": token})
        return f"{self._site_url}/auth.html?{query}"

    async def confirm_account_deletion(self, db: AsyncSession, *, token: str) -> str:
        """Redeem a deletion token and delete the owner's events.

        Returns the owner id whose data was deleted.

        Raises:
            InvalidToken: unknown, expired or already used token.
        """
        row = await self._repo.get_valid_deletion_token(
            db, hash_secret(token), now=self._clock(),
        )
        if row is None:
            raise InvalidToken("Deletion token is invalid or expired")
        await self._repo.mark_token_used(db, row)
        deleted = await self._repo.delete_events_by_owner(db, row.owner_id)
        logger.warning("Account %s deleted: %d events removed", row.owner_id, deleted)
        return row.owner_id

    # ------------------------------------------------------------------

    async def _send(self, to: str, message) -> None:
        if self._mailer is None:
            raise DeliveryFailed("No email sender configured")
        await self._mailer.send(
            to=to, subject=message.subject, html=message.html, text=message.text,
        )
