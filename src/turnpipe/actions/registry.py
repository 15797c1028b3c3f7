"""
actions/registry.py — Action Registry

Maps action names to the async handlers that execute DO commands.

Each name maps to at most one ActionEntry. Re-registering a name is only
allowed when the existing entry was registered with allow_overrides=True;
the new entry's allow_overrides value is what applies from then on.

Usage:
    registry = ActionRegistry()

    @registry.action("lookupOrder")
    async def lookup_order(state: TurnState, entities: Mapping[str, Any]) -> ActionOutcome:
        ...
        return ActionOutcome.CONTINUE

    registry.register("cancelOrder", cancel_order)
    entry = registry.get("lookupOrder")
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Union

from turnpipe.agent.turn_state import TurnState
from turnpipe.exceptions import DuplicateActionError, UnknownActionError
from turnpipe.observability.logger import get_logger

log = get_logger(__name__)


class ActionOutcome(str, Enum):
    """What the dispatcher should do after a handler returns."""
    CONTINUE = "continue"
    STOP = "stop"

    @classmethod
    def coerce(cls, value: Union["ActionOutcome", bool]) -> "ActionOutcome":
        if isinstance(value, ActionOutcome):
            return value
        if isinstance(value, bool):
            return cls.CONTINUE if value else cls.STOP
        raise TypeError(
            f"Action handlers must return ActionOutcome or bool, got {type(value).__name__}"
        )


ActionHandler = Callable[[TurnState, Mapping[str, Any]], Awaitable[Union[ActionOutcome, bool]]]


@dataclass(frozen=True)
class ActionEntry:
    name: str
    handler: ActionHandler
    allow_overrides: bool = False


class ActionRegistry:
    """
    Registry that maps action names to their handlers.

    Registration happens at startup; lookups happen during turns. Not
    designed for concurrent writes.
    """

    def __init__(self) -> None:
        self._actions: dict[str, ActionEntry] = {}

    def register(self, name: str, handler: ActionHandler, allow_overrides: bool = False) -> None:
        """Register `handler` under `name`. Raises DuplicateActionError on a protected name."""
        existing = self._actions.get(name)
        if existing is not None and not existing.allow_overrides:
            raise DuplicateActionError(name)

        self._actions[name] = ActionEntry(name=name, handler=handler, allow_overrides=allow_overrides)
        log.debug(
            "action.registered",
            action=name,
            allow_overrides=allow_overrides,
            replaced=existing is not None,
        )

    def action(self, name: str, allow_overrides: bool = False) -> Callable[[ActionHandler], ActionHandler]:
        """Decorator form of register()."""
        def decorator(fn: ActionHandler) -> ActionHandler:
            self.register(name, fn, allow_overrides=allow_overrides)
            return fn

        return decorator

    def get(self, name: str) -> ActionEntry:
        """Return the entry for `name`. Raises UnknownActionError if absent."""
        entry = self._actions.get(name)
        if entry is None:
            raise UnknownActionError(name)
        return entry

    def has(self, name: str) -> bool:
        return name in self._actions

    def names(self) -> list[str]:
        return sorted(self._actions)

    def __contains__(self, name: object) -> bool:
        return name in self._actions

    def __len__(self) -> int:
        return len(self._actions)

    def __repr__(self) -> str:
        return f"<ActionRegistry actions={self.names()}>"
