"""
agent/output.py — SAY Output Sinks

SAY commands are never looked up in the action registry; the orchestrator
hands their text to an OutputSink instead. Delivery to a real channel is the
host's job, so the built-in sink only records responses on the turn state.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from turnpipe.agent.turn_state import TurnState


@runtime_checkable
class OutputSink(Protocol):
    async def send(self, state: TurnState, text: str) -> None:
        ...


class StateOutputSink:
    """Appends every response to state.temp["responses"]."""

    async def send(self, state: TurnState, text: str) -> None:
        state.responses.append(text)
