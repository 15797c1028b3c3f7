"""
tests/unit/test_actions.py — ActionRegistry and the built-in flagged-content actions
"""

from __future__ import annotations

import pytest

from turnpipe.actions.defaults import (
    DEFAULT_FLAGGED_INPUT_MESSAGE,
    register_default_actions,
)
from turnpipe.actions.registry import ActionOutcome, ActionRegistry
from turnpipe.agent.output import StateOutputSink
from turnpipe.agent.turn_state import TurnState
from turnpipe.brain.types import ModerationCategory, ModerationResult
from turnpipe.exceptions import DuplicateActionError, UnknownActionError
from turnpipe.safety.moderator import FLAGGED_INPUT_ACTION, FLAGGED_OUTPUT_ACTION, RESULT_ENTITY


async def _continue(state, entities):
    return ActionOutcome.CONTINUE


async def _stop(state, entities):
    return ActionOutcome.STOP


def _violence_result() -> ModerationResult:
    return ModerationResult.from_mappings(
        flags={c: c == ModerationCategory.VIOLENCE for c in ModerationCategory},
        scores={c: 0.9 if c == ModerationCategory.VIOLENCE else 0.0 for c in ModerationCategory},
    )


# ─────────────────────────────────────────────────────────────────────────────
# ActionOutcome
# ─────────────────────────────────────────────────────────────────────────────


class TestActionOutcome:
    def test_enum_passes_through(self):
        assert ActionOutcome.coerce(ActionOutcome.STOP) is ActionOutcome.STOP

    def test_true_means_continue(self):
        assert ActionOutcome.coerce(True) is ActionOutcome.CONTINUE

    def test_false_means_stop(self):
        assert ActionOutcome.coerce(False) is ActionOutcome.STOP

    @pytest.mark.parametrize("value", [None, "stop", 0, 1])
    def test_other_values_rejected(self, value):
        with pytest.raises(TypeError):
            ActionOutcome.coerce(value)


# ─────────────────────────────────────────────────────────────────────────────
# Registry
# ─────────────────────────────────────────────────────────────────────────────


class TestActionRegistry:
    def test_register_and_get(self):
        registry = ActionRegistry()
        registry.register("lookupOrder", _continue)
        entry = registry.get("lookupOrder")
        assert entry.name == "lookupOrder"
        assert entry.handler is _continue
        assert entry.allow_overrides is False

    def test_has_and_contains(self):
        registry = ActionRegistry()
        registry.register("a", _continue)
        assert registry.has("a")
        assert "a" in registry
        assert not registry.has("b")
        assert len(registry) == 1

    def test_get_unknown_raises(self):
        with pytest.raises(UnknownActionError) as exc_info:
            ActionRegistry().get("nope")
        assert exc_info.value.name == "nope"
        assert str(exc_info.value) == "`nope` action does not exist"

    def test_duplicate_without_overrides_raises(self):
        registry = ActionRegistry()
        registry.register("a", _continue)
        with pytest.raises(DuplicateActionError) as exc_info:
            registry.register("a", _stop)
        assert str(exc_info.value) == "Action a already exists and does not allow overrides"
        assert registry.get("a").handler is _continue

    def test_override_allowed(self):
        registry = ActionRegistry()
        registry.register("a", _continue, allow_overrides=True)
        registry.register("a", _stop)
        assert registry.get("a").handler is _stop

    def test_new_entry_flag_applies_after_override(self):
        registry = ActionRegistry()
        registry.register("a", _continue, allow_overrides=True)
        registry.register("a", _stop, allow_overrides=False)
        with pytest.raises(DuplicateActionError):
            registry.register("a", _continue)

    def test_decorator_registers_and_returns_function(self):
        registry = ActionRegistry()

        @registry.action("greet")
        async def greet(state, entities):
            return True

        assert registry.get("greet").handler is greet

    def test_names_sorted(self):
        registry = ActionRegistry()
        registry.register("b", _continue)
        registry.register("a", _continue)
        assert registry.names() == ["a", "b"]


# ─────────────────────────────────────────────────────────────────────────────
# Default flagged-content actions
# ─────────────────────────────────────────────────────────────────────────────


class TestDefaultActions:
    def test_both_reserved_names_registered(self):
        registry = ActionRegistry()
        register_default_actions(registry, StateOutputSink())
        assert registry.has(FLAGGED_INPUT_ACTION)
        assert registry.has(FLAGGED_OUTPUT_ACTION)
        assert registry.get(FLAGGED_INPUT_ACTION).allow_overrides is True

    def test_defaults_can_be_overridden(self):
        registry = ActionRegistry()
        register_default_actions(registry, StateOutputSink())
        registry.register(FLAGGED_INPUT_ACTION, _continue)
        assert registry.get(FLAGGED_INPUT_ACTION).handler is _continue

    @pytest.mark.asyncio
    async def test_default_handler_apologises_and_stops(self):
        registry = ActionRegistry()
        register_default_actions(registry, StateOutputSink())
        state = TurnState.create()

        handler = registry.get(FLAGGED_INPUT_ACTION).handler
        outcome = await handler(state, {RESULT_ENTITY: _violence_result()})

        assert outcome is ActionOutcome.STOP
        assert state.responses == [DEFAULT_FLAGGED_INPUT_MESSAGE]

    @pytest.mark.asyncio
    async def test_custom_messages(self):
        registry = ActionRegistry()
        register_default_actions(
            registry,
            StateOutputSink(),
            flagged_input_message="in",
            flagged_output_message="out",
        )
        state = TurnState.create()
        await registry.get(FLAGGED_OUTPUT_ACTION).handler(state, {RESULT_ENTITY: _violence_result()})
        assert state.responses == ["out"]
