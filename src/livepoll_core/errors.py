"""Error taxonomy for the live polling SDK.

Every error is a ``ValueError`` subclass, so callers that only know the
SDK raises ``ValueError`` for bad input keep working.  Each class carries
a stable ``code``, a ``retryable`` flag and a ``user_message`` that is
safe to show to an end user; the exception's ``str()`` may hold internal
detail and is meant for logs only.

    ValidationFailed        400  input must be fixed, nothing persisted
      ConsentRequired       400  display gate turned on without consent
    RateLimited             429  retry after the window elapses
    UploadFailed            413 / 502
    PersistFailed           503  backing store rejected the write
    NotFound                404  event / question / response vanished
    NoPresentableQuestions  409  presentation needs an active question
    InvalidToken            400  expired, used or unknown code / token
    DeliveryFailed          502  email side channel unavailable

``ClassifierUnavailable`` never leaves the moderation gate, which fails
open on it.
"""

from __future__ import annotations

import enum


class LivePollError(ValueError):
    """Base class of all SDK errors."""

    code = "livepoll_error"
    retryable = False
    user_message = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None, *, user_message: str | None = None) -> None:
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "detail": self.user_message,
            "retryable": self.retryable,
        }


class ValidationFailed(LivePollError):
    code = "validation_failed"
    user_message = "Please check your answer and try again."


class ConsentRequired(ValidationFailed):
    code = "consent_required"
    user_message = "Please confirm the content display notice before turning display on."


class RateLimited(LivePollError):
    code = "rate_limited"
    retryable = True
    user_message = "Too many submissions. Please wait a moment and try again."

    def __init__(self, message: str | None = None, *, retry_after: int | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class UploadFailureCause(str, enum.Enum):
    TOO_LARGE = "too_large"
    NETWORK = "network"
    OTHER = "other"


_UPLOAD_MESSAGES: dict[UploadFailureCause, str] = {
    UploadFailureCause.TOO_LARGE: "The image is too large. Please choose a smaller file.",
    UploadFailureCause.NETWORK: "The upload failed because of a network problem. Please try again.",
    UploadFailureCause.OTHER: "The image could not be uploaded. Please try again.",
}


class UploadFailed(LivePollError):
    code = "upload_failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        cause: UploadFailureCause = UploadFailureCause.OTHER,
    ) -> None:
        self.cause = cause
        # Oversized files never succeed on retry; transport failures might
        self.retryable = cause is not UploadFailureCause.TOO_LARGE
        super().__init__(message, user_message=_UPLOAD_MESSAGES[cause])

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["cause"] = self.cause.value
        return payload


class PersistFailed(LivePollError):
    code = "persist_failed"
    retryable = True
    user_message = "Your answer could not be saved. Please try again."


class NotFound(LivePollError):
    code = "not_found"
    user_message = "This event or question is no longer available."


class NoPresentableQuestions(LivePollError):
    code = "no_presentable_questions"
    user_message = "There are no active questions to present."


class ClassifierUnavailable(LivePollError):
    code = "classifier_unavailable"
    retryable = True


class InvalidToken(LivePollError):
    code = "invalid_token"
    user_message = "This code or link is invalid or has expired."


class DeliveryFailed(LivePollError):
    code = "delivery_failed"
    retryable = True
    user_message = "The email could not be sent. Please try again later."
