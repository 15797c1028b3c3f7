"""
exceptions.py — turnpipe Unified Error Hierarchy

All turnpipe-specific exceptions live here. Every layer of the pipeline
raises typed subclasses of TurnPipeError, never bare Exception.

Import from here, not from individual modules:
    from turnpipe.exceptions import RenderError, UnknownActionError

Hierarchy:
    TurnPipeError
    ├── RenderError
    ├── ServiceError
    │   ├── ServiceConnectionError
    │   ├── ServiceRateLimitError
    │   ├── ServiceContextError
    │   └── ServiceInvalidRequestError
    ├── PlanParseError
    └── ActionError
        ├── UnknownActionError
        └── DuplicateActionError
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from turnpipe.agent.plan import ParseFailure


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class TurnPipeError(Exception):
    """Base class for all turnpipe exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Prompt rendering
# ─────────────────────────────────────────────────────────────────────────────

class RenderError(TurnPipeError):
    """A prompt template referenced state that is not present, or could not be loaded."""

    def __init__(self, message: str, field: str = "", template: str = "") -> None:
        self.field = field
        self.template = template
        super().__init__(message)


# ─────────────────────────────────────────────────────────────────────────────
# Remote services (completion + moderation)
# ─────────────────────────────────────────────────────────────────────────────

class ServiceError(TurnPipeError):
    """Base for completion / moderation service failures."""

    def __init__(
        self,
        message: str,
        service: str = "",
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.service = service
        self.status_code = status_code


class ServiceConnectionError(ServiceError):
    """Service unreachable or authentication failed."""


class ServiceRateLimitError(ServiceError):
    """Rate limit hit on the remote service."""

    def __init__(
        self,
        message: str,
        service: str = "",
        retry_after: Optional[float] = None,
    ) -> None:
        super().__init__(message, service, status_code=429)
        self.retry_after = retry_after


class ServiceContextError(ServiceError):
    """Prompt exceeds the model context window."""


class ServiceInvalidRequestError(ServiceError):
    """Bad request: invalid parameters or unsupported feature."""


# ─────────────────────────────────────────────────────────────────────────────
# Planning
# ─────────────────────────────────────────────────────────────────────────────

class PlanParseError(TurnPipeError):
    """The completion output could not be understood as a plan."""

    def __init__(self, failure: "ParseFailure") -> None:
        self.failure = failure
        super().__init__(f"Could not understand completion output: {failure.reason}")


# ─────────────────────────────────────────────────────────────────────────────
# Actions
# ─────────────────────────────────────────────────────────────────────────────

class ActionError(TurnPipeError):
    """Base for action registry errors."""


class UnknownActionError(ActionError):
    """A DO command named an action that is not registered."""

    def __init__(self, name: str, message: str = "") -> None:
        self.name = name
        super().__init__(message or f"`{name}` action does not exist")


class DuplicateActionError(ActionError):
    """An action name is already registered and does not allow overrides."""

    def __init__(self, name: str, message: str = "") -> None:
        self.name = name
        super().__init__(
            message or f"Action {name} already exists and does not allow overrides"
        )


__all__ = [
    "TurnPipeError",
    "RenderError",
    # Services
    "ServiceError",
    "ServiceConnectionError",
    "ServiceRateLimitError",
    "ServiceContextError",
    "ServiceInvalidRequestError",
    # Planning
    "PlanParseError",
    # Actions
    "ActionError",
    "UnknownActionError",
    "DuplicateActionError",
]
