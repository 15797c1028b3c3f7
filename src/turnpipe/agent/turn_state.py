"""
agent/turn_state.py — Conversation-Scoped Turn State

One TurnState exists per conversation and is passed by reference through
every stage of a turn. It has three named scopes:

    conversation   shared by everyone in the conversation
    user           the current user's profile data
    temp           scratch values that live for a single turn

The pipeline never persists state. It only reads and writes the documented
temp keys below; everything else is opaque to it and belongs to templates
and action handlers.

Not safe for concurrent mutation; callers run at most one turn per
conversation at a time.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator, MutableMapping
from dataclasses import dataclass, field
from typing import Any, Optional

# Documented temp keys
TEMP_INPUT = "input"            # the user's utterance for this turn
TEMP_RESPONSES = "responses"    # SAY texts delivered by the built-in sink
TEMP_LAST_PLAN = "last_plan"    # the plan that was dispatched this turn


class StateScope(MutableMapping):
    """A named key-value bag. Behaves like a dict."""

    def __init__(self, name: str, values: Optional[dict[str, Any]] = None) -> None:
        self.name = name
        self._values: dict[str, Any] = dict(values or {})

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self._values[key] = value

    def __delitem__(self, key: str) -> None:
        del self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def to_dict(self) -> dict[str, Any]:
        return dict(self._values)

    def __repr__(self) -> str:
        return f"<StateScope {self.name} keys={sorted(self._values)}>"


@dataclass
class TurnState:
    """All conversation-scoped state a turn can see."""
    conversation_id: str = field(default_factory=lambda: f"conv_{uuid.uuid4().hex[:12]}")
    conversation: StateScope = field(default_factory=lambda: StateScope("conversation"))
    user: StateScope = field(default_factory=lambda: StateScope("user"))
    temp: StateScope = field(default_factory=lambda: StateScope("temp"))

    @classmethod
    def create(
        cls,
        conversation: Optional[dict[str, Any]] = None,
        user: Optional[dict[str, Any]] = None,
        temp: Optional[dict[str, Any]] = None,
        conversation_id: Optional[str] = None,
    ) -> "TurnState":
        state = cls(
            conversation=StateScope("conversation", conversation),
            user=StateScope("user", user),
            temp=StateScope("temp", temp),
        )
        if conversation_id:
            state.conversation_id = conversation_id
        return state

    def begin_turn(self, user_input: str) -> None:
        """Reset the temp scope and record the new utterance."""
        self.temp.clear()
        self.temp[TEMP_INPUT] = user_input

    @property
    def input(self) -> str:
        return self.temp.get(TEMP_INPUT, "")

    @property
    def responses(self) -> list[str]:
        return self.temp.setdefault(TEMP_RESPONSES, [])

    def scopes(self) -> dict[str, StateScope]:
        return {
            "conversation": self.conversation,
            "user": self.user,
            "temp": self.temp,
        }
