"""ContentClassifier backed by the OpenAI moderation endpoint."""

from __future__ import annotations

import logging

from openai import APIError, AsyncOpenAI

from livepoll_core.constants import DEFAULT_MODERATION_MODEL
from livepoll_core.errors import ClassifierUnavailable
from livepoll_core.interfaces import ContentClassifier
from livepoll_core.models.moderation import ClassificationItem, ClassifierResult

logger = logging.getLogger(__name__)


def _to_input(item: ClassificationItem) -> dict:
    if item.type == "image_url":
        return {"type": "image_url", "image_url": {"url": item.content}}
    return {"type": "text", "text": item.content}


def _clean(mapping: dict) -> dict:
    # Newer categories are None for models that do not score them
    return {k: v for k, v in mapping.items() if v is not None}


class OpenAIModerationClassifier(ContentClassifier):
    """Args:
        api_key: OpenAI API key.
        model: moderation model, multimodal by default.
        timeout: per-request timeout in seconds.
        client: pre-built client (tests); overrides ``api_key``.
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        model: str = DEFAULT_MODERATION_MODEL,
        timeout: float = 10.0,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._client = client or AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self._model = model

    async def classify(self, items: list[ClassificationItem]) -> ClassifierResult | None:
        try:
            response = await self._client.moderations.create(
                model=self._model,
                input=[_to_input(item) for item in items],
            )
        except APIError as exc:
            raise ClassifierUnavailable(f"OpenAI moderation failed: {exc}") from exc

        if not response.results:
            return None
        result = response.results[0]
        # by_alias keeps the API's "hate/threatening"-style keys
        return ClassifierResult(
            flagged=bool(result.flagged),
            categories=_clean(result.categories.model_dump(by_alias=True)),
            category_scores=_clean(result.category_scores.model_dump(by_alias=True)),
        )
