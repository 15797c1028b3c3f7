"""
tests/unit/test_brain.py — Completion and moderation clients

Covers:
  - OpenAICompletionClient: request shape, empty content, error translation
  - OpenAIModerationClient: SDK result → ModerationResult mapping
  - RetryingCompletionClient: retries transient errors only
  - CompletionClientFactory / create_moderation_client
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from turnpipe.brain import CompletionClientFactory, create_moderation_client
from turnpipe.brain.llm_client import BaseCompletionClient, RetryingCompletionClient
from turnpipe.brain.moderation_client import OpenAIModerationClient
from turnpipe.brain.openai_client import OpenAICompletionClient, translate_openai_error
from turnpipe.brain.types import CompletionSettings, ModerationCategory
from turnpipe.exceptions import (
    ServiceConnectionError,
    ServiceContextError,
    ServiceError,
    ServiceInvalidRequestError,
    ServiceRateLimitError,
)

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _status_error(cls, status: int, message: str = "error", headers: dict | None = None):
    response = httpx.Response(status, request=_REQUEST, headers=headers or {})
    return cls(message, response=response, body=None)


def _completion_response(content="SAY hi", finish_reason="stop"):
    mock = MagicMock()
    mock.model = "gpt-4o-mini"
    mock.choices = [MagicMock()]
    mock.choices[0].message.content = content
    mock.choices[0].finish_reason = finish_reason
    return mock


# ─────────────────────────────────────────────────────────────────────────────
# Error translation
# ─────────────────────────────────────────────────────────────────────────────


class TestTranslateOpenAIError:
    def test_auth_error(self):
        err = translate_openai_error(_status_error(openai.AuthenticationError, 401), "completion")
        assert isinstance(err, ServiceConnectionError)
        assert err.status_code == 401
        assert err.service == "completion"

    def test_rate_limit_with_retry_after(self):
        raw = _status_error(openai.RateLimitError, 429, headers={"retry-after": "7"})
        err = translate_openai_error(raw, "moderation")
        assert isinstance(err, ServiceRateLimitError)
        assert err.retry_after == 7.0
        assert err.status_code == 429

    def test_rate_limit_without_retry_after(self):
        err = translate_openai_error(_status_error(openai.RateLimitError, 429), "completion")
        assert err.retry_after is None

    def test_context_length(self):
        raw = _status_error(openai.BadRequestError, 400, "This model's maximum context length is 8192 tokens")
        assert isinstance(translate_openai_error(raw, "completion"), ServiceContextError)

    def test_other_bad_request(self):
        raw = _status_error(openai.BadRequestError, 400, "temperature must be <= 2")
        assert isinstance(translate_openai_error(raw, "completion"), ServiceInvalidRequestError)

    def test_connection_error(self):
        raw = openai.APIConnectionError(request=_REQUEST)
        assert isinstance(translate_openai_error(raw, "completion"), ServiceConnectionError)

    def test_server_error(self):
        raw = _status_error(openai.InternalServerError, 500)
        err = translate_openai_error(raw, "completion")
        assert isinstance(err, ServiceConnectionError)
        assert err.status_code == 500

    def test_unmapped_status(self):
        raw = _status_error(openai.NotFoundError, 404)
        err = translate_openai_error(raw, "completion")
        assert type(err) is ServiceError
        assert err.status_code == 404


# ─────────────────────────────────────────────────────────────────────────────
# Completion client
# ─────────────────────────────────────────────────────────────────────────────


class TestOpenAICompletionClient:
    @pytest.fixture
    def client(self):
        return OpenAICompletionClient(model="gpt-4o-mini", api_key="sk-test-fake")

    @pytest.mark.asyncio
    async def test_sends_prompt_as_single_user_message(self, client):
        client._client.chat.completions.create = AsyncMock(return_value=_completion_response())
        settings = CompletionSettings(max_tokens=80, temperature=0.4, top_p=0.9)

        text = await client.complete("render me", settings)

        assert text == "SAY hi"
        client._client.chat.completions.create.assert_awaited_once_with(
            model="gpt-4o-mini",
            messages=[{"role": "user", "content": "render me"}],
            max_tokens=80,
            temperature=0.4,
            top_p=0.9,
        )

    @pytest.mark.asyncio
    async def test_none_content_becomes_empty(self, client):
        client._client.chat.completions.create = AsyncMock(return_value=_completion_response(content=None))
        assert await client.complete("x", CompletionSettings()) == ""

    @pytest.mark.asyncio
    async def test_no_choices_raises(self, client):
        response = _completion_response()
        response.choices = []
        client._client.chat.completions.create = AsyncMock(return_value=response)
        with pytest.raises(ServiceError):
            await client.complete("x", CompletionSettings())

    @pytest.mark.asyncio
    async def test_rate_limit_raises(self, client):
        client._client.chat.completions.create = AsyncMock(
            side_effect=_status_error(openai.RateLimitError, 429)
        )
        with pytest.raises(ServiceRateLimitError):
            await client.complete("x", CompletionSettings())

    @pytest.mark.asyncio
    async def test_auth_error_raises_connection_error(self, client):
        client._client.chat.completions.create = AsyncMock(
            side_effect=_status_error(openai.AuthenticationError, 401)
        )
        with pytest.raises(ServiceConnectionError):
            await client.complete("x", CompletionSettings())

    def test_injected_sdk_client_used(self):
        sdk = MagicMock()
        client = OpenAICompletionClient(model="m", api_key="k", client=sdk)
        assert client._client is sdk


# ─────────────────────────────────────────────────────────────────────────────
# Moderation client
# ─────────────────────────────────────────────────────────────────────────────


def _sdk_moderation(flagged_attr: str | None = None):
    attrs = ["hate", "hate_threatening", "self_harm", "sexual", "sexual_minors", "violence", "violence_graphic"]
    categories = SimpleNamespace(**{a: a == flagged_attr for a in attrs})
    scores = SimpleNamespace(**{a: (0.91 if a == flagged_attr else 0.02) for a in attrs})
    result = SimpleNamespace(flagged=flagged_attr is not None, categories=categories, category_scores=scores)
    return SimpleNamespace(results=[result])


class TestOpenAIModerationClient:
    @pytest.fixture
    def client(self):
        return OpenAIModerationClient(api_key="sk-test-fake")

    @pytest.mark.asyncio
    async def test_violence_mapped(self, client):
        client._client.moderations.create = AsyncMock(return_value=_sdk_moderation("violence"))

        result = await client.moderate("some text")

        client._client.moderations.create.assert_awaited_once_with(
            input="some text", model="omni-moderation-latest"
        )
        assert result.flagged is True
        assert result.flagged_categories == [ModerationCategory.VIOLENCE]
        assert result.category_scores[ModerationCategory.VIOLENCE] == pytest.approx(0.91)
        assert set(result.category_flags) == set(ModerationCategory)

    @pytest.mark.asyncio
    async def test_clean_text(self, client):
        client._client.moderations.create = AsyncMock(return_value=_sdk_moderation())
        result = await client.moderate("hello")
        assert result.flagged is False
        assert result.flagged_categories == []

    @pytest.mark.asyncio
    async def test_empty_results_raise(self, client):
        client._client.moderations.create = AsyncMock(return_value=SimpleNamespace(results=[]))
        with pytest.raises(ServiceError):
            await client.moderate("hello")

    @pytest.mark.asyncio
    async def test_sdk_error_translated(self, client):
        client._client.moderations.create = AsyncMock(
            side_effect=_status_error(openai.InternalServerError, 503)
        )
        with pytest.raises(ServiceConnectionError) as exc_info:
            await client.moderate("hello")
        assert exc_info.value.service == "moderation"


# ─────────────────────────────────────────────────────────────────────────────
# Retry wrapper
# ─────────────────────────────────────────────────────────────────────────────


class TestRetryingCompletionClient:
    def _inner(self, *side_effect) -> AsyncMock:
        inner = AsyncMock(spec=BaseCompletionClient)
        inner.model = "m"
        inner.api_key = None
        inner.base_url = None
        inner.complete = AsyncMock(side_effect=list(side_effect))
        return inner

    @pytest.mark.asyncio
    async def test_retries_connection_error_then_succeeds(self):
        inner = self._inner(ServiceConnectionError("blip"), "SAY ok")
        client = RetryingCompletionClient(inner, max_attempts=3, base_delay=0.0, max_delay=0.0)

        with patch("turnpipe.brain.llm_client.asyncio.sleep", new=AsyncMock()) as sleep:
            assert await client.complete("p", CompletionSettings()) == "SAY ok"

        assert inner.complete.await_count == 2
        sleep.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_uses_retry_after(self):
        inner = self._inner(ServiceRateLimitError("429", retry_after=4.0), "SAY ok")
        client = RetryingCompletionClient(inner, max_attempts=2, base_delay=1.0, max_delay=30.0)

        with patch("turnpipe.brain.llm_client.asyncio.sleep", new=AsyncMock()) as sleep:
            await client.complete("p", CompletionSettings())

        sleep.assert_awaited_once_with(4.0)

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        inner = self._inner(*[ServiceConnectionError("down")] * 3)
        client = RetryingCompletionClient(inner, max_attempts=3, base_delay=0.0, max_delay=0.0)

        with patch("turnpipe.brain.llm_client.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(ServiceConnectionError):
                await client.complete("p", CompletionSettings())
        assert inner.complete.await_count == 3

    @pytest.mark.asyncio
    async def test_non_transient_errors_not_retried(self):
        inner = self._inner(ServiceContextError("too long"))
        client = RetryingCompletionClient(inner, max_attempts=3)

        with pytest.raises(ServiceContextError):
            await client.complete("p", CompletionSettings())
        assert inner.complete.await_count == 1


# ─────────────────────────────────────────────────────────────────────────────
# Factories
# ─────────────────────────────────────────────────────────────────────────────


class TestCompletionClientFactory:
    def test_create_openai(self):
        client = CompletionClientFactory.create("openai", "gpt-4o-mini", api_key="sk-test")
        assert isinstance(client, OpenAICompletionClient)
        assert client.model == "gpt-4o-mini"

    def test_openai_missing_key_raises(self):
        with pytest.raises(ServiceConnectionError):
            CompletionClientFactory.create("openai", "gpt-4o-mini")

    def test_create_ollama_without_key(self):
        client = CompletionClientFactory.create("ollama", "llama3.1")
        assert isinstance(client, OpenAICompletionClient)
        assert client.base_url == "http://localhost:11434/v1"

    def test_case_insensitive_provider(self):
        client = CompletionClientFactory.create("  OpenAI ", "m", api_key="sk-test")
        assert isinstance(client, OpenAICompletionClient)

    def test_unknown_provider_raises(self):
        with pytest.raises(ValueError):
            CompletionClientFactory.create("nope", "m")

    def _settings(self, **overrides):
        from turnpipe.config.settings import Settings
        return Settings(OPENAI_API_KEY="sk-test-fake", **overrides)

    def test_from_settings_no_retry_by_default(self):
        client = CompletionClientFactory.from_settings(self._settings())
        assert isinstance(client, OpenAICompletionClient)

    def test_from_settings_wraps_when_retry_enabled(self):
        settings = self._settings(completion={"retry": {"max_attempts": 3}})
        client = CompletionClientFactory.from_settings(settings)
        assert isinstance(client, RetryingCompletionClient)
        assert isinstance(client.inner, OpenAICompletionClient)

    def test_create_moderation_client(self):
        settings = self._settings(moderation={"model": "text-moderation-stable"})
        client = create_moderation_client(settings)
        assert isinstance(client, OpenAIModerationClient)
        assert client.model == "text-moderation-stable"

    def test_moderation_client_requires_key(self):
        from turnpipe.config.settings import Settings
        with pytest.raises(ServiceConnectionError):
            create_moderation_client(Settings())
