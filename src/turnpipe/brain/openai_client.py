"""
brain/openai_client.py — OpenAI Completion Client

Sends a rendered prompt to the chat-completions API and returns the raw
text. Also works with any OpenAI-compatible endpoint (Ollama, vLLM,
LiteLLM proxy) via base_url.

translate_openai_error() is shared with the moderation client so both
remote services surface the same ServiceError hierarchy.
"""

from __future__ import annotations

from typing import Optional

import httpx
import openai
from openai import AsyncOpenAI

from turnpipe.brain.llm_client import BaseCompletionClient
from turnpipe.brain.types import CompletionSettings
from turnpipe.exceptions import (
    ServiceConnectionError,
    ServiceContextError,
    ServiceError,
    ServiceInvalidRequestError,
    ServiceRateLimitError,
)
from turnpipe.observability.logger import get_logger

log = get_logger(__name__)


def build_async_openai(
    api_key: Optional[str],
    base_url: Optional[str] = None,
    organization: Optional[str] = None,
    timeout_seconds: float = 60.0,
) -> AsyncOpenAI:
    """Construct the SDK client with an explicit httpx timeout and no SDK-level retries."""
    return AsyncOpenAI(
        api_key=api_key,
        base_url=base_url,
        organization=organization,
        max_retries=0,
        http_client=httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds)),
    )


def _retry_after(e: openai.RateLimitError) -> Optional[float]:
    raw = e.response.headers.get("retry-after") if e.response is not None else None
    try:
        return float(raw) if raw else None
    except ValueError:
        return None


def translate_openai_error(e: openai.OpenAIError, service: str) -> ServiceError:
    """Map an OpenAI SDK exception onto the ServiceError hierarchy."""
    if isinstance(e, openai.AuthenticationError):
        return ServiceConnectionError(str(e), service=service, status_code=401)
    if isinstance(e, openai.RateLimitError):
        return ServiceRateLimitError(str(e), service=service, retry_after=_retry_after(e))
    if isinstance(e, openai.BadRequestError):
        text = str(e).lower()
        if "context" in text or "too long" in text:
            return ServiceContextError(str(e), service=service, status_code=400)
        return ServiceInvalidRequestError(str(e), service=service, status_code=400)
    if isinstance(e, (openai.APIConnectionError, openai.InternalServerError)):
        return ServiceConnectionError(
            str(e), service=service, status_code=getattr(e, "status_code", None)
        )
    return ServiceError(str(e), service=service, status_code=getattr(e, "status_code", None))


class OpenAICompletionClient(BaseCompletionClient):
    """
    OpenAI chat-completions client. The rendered prompt is sent as a single
    user message; the first choice's text is returned verbatim.
    """

    def __init__(
        self,
        model: str,
        api_key: Optional[str],
        base_url: Optional[str] = None,     # None = official OpenAI endpoint
        organization: Optional[str] = None,
        timeout_seconds: float = 60.0,
        client: Optional[AsyncOpenAI] = None,
    ):
        super().__init__(model=model, api_key=api_key, base_url=base_url)
        self._client = client or build_async_openai(
            api_key=api_key,
            base_url=base_url,
            organization=organization,
            timeout_seconds=timeout_seconds,
        )

    # ── Public API ────────────────────────────────────────────────────────────

    async def complete(self, prompt_text: str, settings: CompletionSettings) -> str:
        log.debug(
            "completion.start",
            model=self.model,
            prompt_chars=len(prompt_text),
            max_tokens=settings.max_tokens,
        )

        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt_text}],
                max_tokens=settings.max_tokens,
                temperature=settings.temperature,
                top_p=settings.top_p,
            )
        except openai.OpenAIError as e:
            raise translate_openai_error(e, service="completion") from e

        if not response.choices:
            raise ServiceError("Completion response contained no choices", service="completion")

        text = response.choices[0].message.content or ""
        log.debug(
            "completion.complete",
            model=response.model,
            finish_reason=response.choices[0].finish_reason,
            output_chars=len(text),
        )
        return text

    async def health_check(self) -> bool:
        try:
            await self._client.models.list()
            return True
        except openai.OpenAIError as e:
            log.warning("completion.health_check.failed", error=str(e), error_type=type(e).__name__)
            return False
