"""Abstract interfaces for the external collaborators of the SDK.

These ABCs define the contract that concrete adapters must fulfil.  The
SDK ships one implementation of each under ``livepoll_core.adapters``
(OpenAI moderation, Supabase storage, Resend email) and the test-suite
ships in-memory fakes.

Typical wiring::

    classifier: ContentClassifier = OpenAIModerationClassifier(api_key)
    store: ObjectStore = SupabaseObjectStore(client, bucket="uploads")
    gate = ModerationGate(classifier)
    pipeline = SubmissionPipeline(store=store)
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import TYPE_CHECKING, AsyncIterator

from livepoll_core.models.moderation import ClassificationItem, ClassifierResult

if TYPE_CHECKING:
    from livepoll_db.feed import ChangeEvent

    from livepoll_core.media import ImageUpload
    from livepoll_core.models.question import BaseQuestion
    from livepoll_core.models.records import AdminStateInfo, EventInfo, ResponseInfo


class ContentClassifier(ABC):
    """External content-moderation classifier."""

    @abstractmethod
    async def classify(self, items: list[ClassificationItem]) -> ClassifierResult | None:
        """Classify one piece of content.

        Returns ``None`` when the classifier answered without a result.

        Raises:
            ClassifierUnavailable: on transport or parse failure.
        """
        ...


class ObjectStore(ABC):
    """Blob storage for uploaded images."""

    @abstractmethod
    async def write(self, key: str, data: bytes, content_type: str) -> str:
        """Store ``data`` under ``key``, overwriting any previous object.

        Returns the key actually written.

        Raises:
            UploadFailed: with the matching cause.
        """
        ...

    @abstractmethod
    def public_url(self, key: str) -> str:
        """Public URL of the object stored under ``key``."""
        ...


class EmailSender(ABC):
    """Transactional email side channel."""

    @abstractmethod
    async def send(self, *, to: str, subject: str, html: str, text: str) -> None:
        """Deliver one message.

        Raises:
            DeliveryFailed: when the provider rejects or cannot be reached.
        """
        ...


class LiveSource(ABC):
    """Everything a participant display reads from and writes to.

    In the browser this is the REST + change-feed surface of the server;
    in-process it is backed directly by the repository and feed.
    """

    @abstractmethod
    async def load_event(self, event_id: uuid.UUID) -> EventInfo:
        """Raises ``NotFound`` for an unknown or inactive event."""
        ...

    @abstractmethod
    async def load_questions(self, event_id: uuid.UUID) -> list[BaseQuestion]:
        """Active questions of the event in sort order."""
        ...

    @abstractmethod
    async def load_admin_state(self, event_id: uuid.UUID) -> AdminStateInfo:
        ...

    @abstractmethod
    def subscribe_admin_state(
        self, event_id: uuid.UUID
    ) -> AbstractAsyncContextManager[AsyncIterator[ChangeEvent]]:
        """Change notifications for the event's AdminState row."""
        ...

    @abstractmethod
    async def submit(
        self,
        question: BaseQuestion,
        *,
        session_id: str,
        answer: object,
        agreed_at: datetime | None = None,
        image: ImageUpload | None = None,
    ) -> ResponseInfo:
        ...
