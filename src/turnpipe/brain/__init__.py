"""
brain/__init__.py — turnpipe remote service clients
"""

from __future__ import annotations

from typing import Optional

from turnpipe.brain.llm_client import BaseCompletionClient, RetryingCompletionClient
from turnpipe.brain.moderation_client import BaseModerationClient, OpenAIModerationClient
from turnpipe.brain.types import (
    ALL_CATEGORIES,
    CompletionSettings,
    ModerationCategory,
    ModerationResult,
    Provider,
)
from turnpipe.exceptions import ServiceConnectionError

__all__ = [
    "CompletionClientFactory",
    "create_moderation_client",
    "BaseCompletionClient",
    "RetryingCompletionClient",
    "BaseModerationClient",
    "OpenAIModerationClient",
    "CompletionSettings",
    "ModerationCategory",
    "ModerationResult",
    "ALL_CATEGORIES",
    "Provider",
]

_OLLAMA_BASE_URL = "http://localhost:11434/v1"


class CompletionClientFactory:

    @staticmethod
    def create(
        provider: str,
        model: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        organization: Optional[str] = None,
        timeout_seconds: float = 60.0,
    ) -> BaseCompletionClient:

        provider = provider.lower().strip()

        if provider == Provider.OPENAI.value:
            if not api_key:
                raise ServiceConnectionError("OPENAI_API_KEY is required", service="completion")
            from turnpipe.brain.openai_client import OpenAICompletionClient
            return OpenAICompletionClient(
                model=model,
                api_key=api_key,
                base_url=base_url,
                organization=organization,
                timeout_seconds=timeout_seconds,
            )

        elif provider == Provider.OLLAMA.value:
            from turnpipe.brain.openai_client import OpenAICompletionClient
            return OpenAICompletionClient(
                model=model,
                api_key="ollama",
                base_url=base_url or _OLLAMA_BASE_URL,
                timeout_seconds=timeout_seconds,
            )

        else:
            raise ValueError(
                f"Unknown completion provider: '{provider}'. "
                f"Valid options: {', '.join(p.value for p in Provider)}"
            )

    @staticmethod
    def from_settings(settings) -> BaseCompletionClient:
        """
        Create the completion client described by settings.completion.

        The client is wrapped in RetryingCompletionClient only when
        completion.retry.max_attempts > 1:

            completion:
              provider: openai
              model: gpt-4o-mini
              retry:
                max_attempts: 3
        """
        cfg = settings.completion
        client = CompletionClientFactory.create(
            provider=cfg.provider,
            model=cfg.model,
            api_key=settings.openai_api_key,
            base_url=cfg.base_url,
            organization=settings.openai_organization,
            timeout_seconds=cfg.timeout_seconds,
        )
        if cfg.retry.max_attempts > 1:
            client = RetryingCompletionClient(
                client,
                max_attempts=cfg.retry.max_attempts,
                base_delay=cfg.retry.base_delay,
                max_delay=cfg.retry.max_delay,
            )
        return client


def create_moderation_client(settings) -> BaseModerationClient:
    """Create the moderation client described by settings.moderation."""
    cfg = settings.moderation
    if not settings.openai_api_key:
        raise ServiceConnectionError("OPENAI_API_KEY is required", service="moderation")
    return OpenAIModerationClient(
        api_key=settings.openai_api_key,
        model=cfg.model,
        base_url=cfg.endpoint,
        organization=settings.openai_organization,
        timeout_seconds=cfg.timeout_seconds,
    )
