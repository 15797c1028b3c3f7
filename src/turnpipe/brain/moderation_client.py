"""
brain/moderation_client.py — Content Moderation Client

Opaque adapter over a remote moderation service. One call per piece of
text; the result always covers the seven fixed categories.

Failures propagate as ServiceError subclasses. A moderation failure is
never treated as "safe".
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

import openai
from openai import AsyncOpenAI

from turnpipe.brain.openai_client import build_async_openai, translate_openai_error
from turnpipe.brain.types import ModerationCategory, ModerationResult
from turnpipe.exceptions import ServiceError
from turnpipe.observability.logger import get_logger

log = get_logger(__name__)

_DEFAULT_MODEL = "omni-moderation-latest"

# ModerationCategory → attribute name on the SDK's Categories / CategoryScores models
_SDK_ATTRS: dict[ModerationCategory, str] = {
    ModerationCategory.HATE: "hate",
    ModerationCategory.HATE_THREATENING: "hate_threatening",
    ModerationCategory.SELF_HARM: "self_harm",
    ModerationCategory.SEXUAL: "sexual",
    ModerationCategory.SEXUAL_MINORS: "sexual_minors",
    ModerationCategory.VIOLENCE: "violence",
    ModerationCategory.VIOLENCE_GRAPHIC: "violence_graphic",
}


class BaseModerationClient(ABC):
    """Abstract base for moderation service clients."""

    def __init__(self, model: str = _DEFAULT_MODEL):
        self.model = model

    @abstractmethod
    async def moderate(self, text: str) -> ModerationResult:
        """Screen `text` and return the per-category verdict."""
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} model={self.model}>"


class OpenAIModerationClient(BaseModerationClient):
    """OpenAI moderation endpoint client."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = _DEFAULT_MODEL,
        base_url: Optional[str] = None,
        organization: Optional[str] = None,
        timeout_seconds: float = 30.0,
        client: Optional[AsyncOpenAI] = None,
    ):
        super().__init__(model=model)
        self._client = client or build_async_openai(
            api_key=api_key,
            base_url=base_url,
            organization=organization,
            timeout_seconds=timeout_seconds,
        )

    async def moderate(self, text: str) -> ModerationResult:
        log.debug("moderation.request", model=self.model, chars=len(text))
        try:
            response = await self._client.moderations.create(input=text, model=self.model)
        except openai.OpenAIError as e:
            raise translate_openai_error(e, service="moderation") from e

        if not response.results:
            raise ServiceError("Moderation response contained no results", service="moderation")

        return self._from_provider_result(response.results[0])

    # ── Private helpers ───────────────────────────────────────────────────────

    def _from_provider_result(self, raw) -> ModerationResult:
        """Translate an SDK Moderation object → internal ModerationResult."""
        flags = {
            category: bool(getattr(raw.categories, attr, False))
            for category, attr in _SDK_ATTRS.items()
        }
        scores = {
            category: float(getattr(raw.category_scores, attr, 0.0) or 0.0)
            for category, attr in _SDK_ATTRS.items()
        }
        return ModerationResult(
            flagged=bool(raw.flagged),
            category_flags=flags,
            category_scores=scores,
        )
