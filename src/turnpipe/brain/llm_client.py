"""
brain/llm_client.py — Abstract Completion Client + Opt-in Retry

All completion providers must subclass BaseCompletionClient and implement
complete(). A client makes exactly one remote call per complete() and lets
every failure propagate as a ServiceError subclass.

RetryingCompletionClient wraps any client with exponential backoff. The
turn pipeline never retries by itself; the wrapper is only built when the
caller opts in through settings (completion.retry.max_attempts > 1).
"""

from __future__ import annotations

import asyncio
import contextlib
import random
from abc import ABC, abstractmethod
from typing import Iterator, Optional

from turnpipe.brain.types import CompletionSettings
from turnpipe.exceptions import (
    ServiceConnectionError,
    ServiceError,
    ServiceRateLimitError,
    TurnPipeError,
)
from turnpipe.observability.logger import get_logger

log = get_logger(__name__)


class BaseCompletionClient(ABC):
    """
    Abstract base for all completion provider clients.

    Subclasses must implement:
      - complete()     -> call the provider, return the raw completion text
      - health_check() -> verify connectivity to the provider
    """

    def __init__(self, model: str, api_key: Optional[str] = None, base_url: Optional[str] = None):
        self.model = model
        self.api_key = api_key
        self.base_url = base_url

    @abstractmethod
    async def complete(self, prompt_text: str, settings: CompletionSettings) -> str:
        """Send the rendered prompt and return the raw completion text."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Return True if the provider is reachable and the API key is valid."""
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} model={self.model}>"


# ─────────────────────────────────────────────────────────────────────────────
# RetryingCompletionClient: opt-in exponential backoff
# ─────────────────────────────────────────────────────────────────────────────


class RetryingCompletionClient(BaseCompletionClient):
    """
    Wraps a completion client with exponential backoff on transient errors.

    Retries on:
      - ServiceConnectionError  (network blip, timeout, 5xx)
      - ServiceRateLimitError   (429 / quota exceeded)

    Everything else (context overflow, invalid request, other ServiceErrors)
    propagates immediately.

    Backoff formula: min(base_delay * 2^attempt + jitter, max_delay)
    If ServiceRateLimitError carries retry_after, that value is used instead.
    """

    def __init__(
        self,
        inner: BaseCompletionClient,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
    ):
        super().__init__(model=inner.model, api_key=inner.api_key, base_url=inner.base_url)
        self._inner = inner
        self._max_attempts = max(1, max_attempts)
        self._base_delay = base_delay
        self._max_delay = max_delay

    @property
    def inner(self) -> BaseCompletionClient:
        return self._inner

    async def complete(self, prompt_text: str, settings: CompletionSettings) -> str:
        for attempt in range(self._max_attempts):
            try:
                return await self._inner.complete(prompt_text, settings)
            except (ServiceConnectionError, ServiceRateLimitError) as e:
                if attempt == self._max_attempts - 1:
                    raise

                if isinstance(e, ServiceRateLimitError) and e.retry_after:
                    delay = min(e.retry_after, self._max_delay)
                else:
                    jitter = random.uniform(0, 0.5)
                    delay = min(self._base_delay * (2 ** attempt) + jitter, self._max_delay)

                log.warning(
                    "completion.retrying",
                    attempt=attempt + 1,
                    max_attempts=self._max_attempts,
                    delay_s=round(delay, 2),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await asyncio.sleep(delay)

        raise AssertionError("unreachable")  # pragma: no cover

    async def health_check(self) -> bool:
        return await self._inner.health_check()

    def __repr__(self) -> str:
        return f"<RetryingCompletionClient inner={self._inner!r} attempts={self._max_attempts}>"


# ─────────────────────────────────────────────────────────────────────────────
# Call-site guard for injected clients
# ─────────────────────────────────────────────────────────────────────────────

@contextlib.contextmanager
def service_call(service: str) -> Iterator[None]:
    """
    Re-raise anything a remote client throws as a ServiceError.

    Injected clients are not required to translate their own failures, so a
    raw ConnectionError or httpx timeout is wrapped here. turnpipe errors
    pass through unchanged; CancelledError is not an Exception and is never
    caught.
    """
    try:
        yield
    except TurnPipeError:
        raise
    except Exception as e:
        raise ServiceError(f"{service} service failed: {type(e).__name__}: {e}", service=service) from e
