"""
actions/defaults.py — Built-in Flagged-Content Actions

The moderator redirects flagged turns to two reserved action names. These
defaults answer the user with a short apology and stop dispatch. They are
registered with allow_overrides=True so an application can replace them
with its own handlers.
"""

from __future__ import annotations

from typing import Any, Mapping

from turnpipe.actions.registry import ActionOutcome, ActionRegistry
from turnpipe.agent.output import OutputSink
from turnpipe.agent.turn_state import TurnState
from turnpipe.safety.moderator import FLAGGED_INPUT_ACTION, FLAGGED_OUTPUT_ACTION, RESULT_ENTITY
from turnpipe.observability.logger import get_logger

log = get_logger(__name__)

DEFAULT_FLAGGED_INPUT_MESSAGE = (
    "I'm sorry, I can't help with that request. Could you rephrase it?"
)
DEFAULT_FLAGGED_OUTPUT_MESSAGE = (
    "I'm sorry, I wasn't able to put together an appropriate response. Please try again."
)


def register_default_actions(
    registry: ActionRegistry,
    sink: OutputSink,
    flagged_input_message: str = DEFAULT_FLAGGED_INPUT_MESSAGE,
    flagged_output_message: str = DEFAULT_FLAGGED_OUTPUT_MESSAGE,
) -> None:
    """Install overridable handlers for the reserved flagged-content actions."""

    def _responder(action: str, message: str):
        async def handler(state: TurnState, entities: Mapping[str, Any]) -> ActionOutcome:
            result = entities.get(RESULT_ENTITY)
            log.info(
                "action.flagged_content",
                action=action,
                categories=[c.value for c in result.flagged_categories] if result else [],
            )
            await sink.send(state, message)
            return ActionOutcome.STOP

        return handler

    registry.register(
        FLAGGED_INPUT_ACTION,
        _responder(FLAGGED_INPUT_ACTION, flagged_input_message),
        allow_overrides=True,
    )
    registry.register(
        FLAGGED_OUTPUT_ACTION,
        _responder(FLAGGED_OUTPUT_ACTION, flagged_output_message),
        allow_overrides=True,
    )
