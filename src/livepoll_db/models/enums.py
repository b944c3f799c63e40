"""Database-level enumerations for events, questions and responses."""

import enum


class QuestionType(str, enum.Enum):
    """The closed set of question kinds a participant can answer.

    ``text`` and ``image`` accept free-form content and are the only types
    routed through moderation and rate limiting.
    """

    SINGLE = "single"
    MULTIPLE = "multiple"
    TEXT = "text"
    RATING = "rating"
    IMAGE = "image"

    @property
    def requires_moderation(self) -> bool:
        return self in (QuestionType.TEXT, QuestionType.IMAGE)


class DuplicatePolicy(str, enum.Enum):
    """What a second submission from the same session does.

    overwrite: replaces the session's existing response (one row per pair)
    append: adds an independent row every time
    """

    OVERWRITE = "overwrite"
    APPEND = "append"


class ModerationStatus(str, enum.Enum):
    """Lifecycle of a response's content review.

    Transitions:
        none                      (closed-form answers, never reviewed)
        pending -> approved       (classifier clean, or classifier failed open)
        pending -> blocked        (blocking category flagged)
        approved -> blocked       (manual block by an admin)
        * -> pending              (overwrite resubmission of a moderated type)
    """

    NONE = "none"
    PENDING = "pending"
    APPROVED = "approved"
    BLOCKED = "blocked"


class VerificationPurpose(str, enum.Enum):
    """Why a verification code was emailed."""

    REGISTER = "register"
    CREDENTIAL_CHANGE = "credential_change"
