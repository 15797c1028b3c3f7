"""
agent/orchestrator.py — Turn Orchestrator

The heart of turnpipe. Runs one conversational turn as a strictly
sequential state machine:

    IDLE → RENDERED → INPUT_REVIEWED → PLANNED → OUTPUT_REVIEWED → DISPATCHING → DONE
                                 │                                      ▲
                                 └──── flagged input: redirect plan ────┘

Any fatal error moves the turn to ABORTED. A flagged input never reaches the
completion service: the moderator's redirect plan is dispatched directly.

Dispatch runs commands in order, one at a time. DO commands go to the
ActionRegistry; a handler returning STOP ends dispatch immediately, skipping
every remaining command. SAY commands go to the output sink.

run_turn() never raises for pipeline failures. It returns a TurnResult
whose error_kind says what went wrong; raise_for_status() re-raises the
original error. asyncio.CancelledError is always re-raised.

Usage:
    orc = TurnOrchestrator(planner, registry, moderator=moderator, prompts=prompts)
    state.begin_turn("where is my order?")
    result = await orc.run_turn(state, "chat")
    if not result.succeeded:
        ...
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from turnpipe.actions.defaults import register_default_actions
from turnpipe.actions.registry import ActionOutcome, ActionRegistry
from turnpipe.agent.output import OutputSink, StateOutputSink
from turnpipe.agent.plan import Command, ParseFailure, Plan, SayCommand
from turnpipe.agent.planner import Planner
from turnpipe.agent.prompt_renderer import PromptManager, PromptRenderer, PromptTemplate
from turnpipe.agent.turn_state import TEMP_LAST_PLAN, TurnState
from turnpipe.exceptions import (
    DuplicateActionError,
    PlanParseError,
    RenderError,
    ServiceError,
    UnknownActionError,
)
from turnpipe.observability.logger import get_logger, turn_context
from turnpipe.safety.moderator import Moderator, ModerationScope

log = get_logger(__name__)


class TurnPhase(str, Enum):
    IDLE = "idle"
    RENDERED = "rendered"
    INPUT_REVIEWED = "input_reviewed"
    PLANNED = "planned"
    OUTPUT_REVIEWED = "output_reviewed"
    DISPATCHING = "dispatching"
    DONE = "done"
    ABORTED = "aborted"


class TurnStatus(str, Enum):
    DONE = "done"
    ABORTED = "aborted"


class ErrorKind(str, Enum):
    RENDER = "render"                       # missing template data
    SERVICE = "service"                     # completion / moderation failure
    PARSE = "parse"                         # completion output not understood
    UNKNOWN_ACTION = "unknown_action"       # DO named an unregistered action
    DUPLICATE_ACTION = "duplicate_action"   # registration conflict (handler code)
    HANDLER = "handler"                     # an action handler raised


_ERROR_KINDS: tuple[tuple[type[Exception], ErrorKind], ...] = (
    (RenderError, ErrorKind.RENDER),
    (ServiceError, ErrorKind.SERVICE),
    (PlanParseError, ErrorKind.PARSE),
    (UnknownActionError, ErrorKind.UNKNOWN_ACTION),
    (DuplicateActionError, ErrorKind.DUPLICATE_ACTION),
)


def _classify(error: Exception, phase: TurnPhase) -> Optional[ErrorKind]:
    for exc_type, kind in _ERROR_KINDS:
        if isinstance(error, exc_type):
            return kind
    if phase == TurnPhase.DISPATCHING:
        return ErrorKind.HANDLER
    return None


@dataclass(frozen=True)
class TurnResult:
    """Outcome of one turn."""
    status: TurnStatus
    phases: tuple[TurnPhase, ...]
    plan: Optional[Plan] = None
    executed: tuple[Command, ...] = ()
    stopped_early: bool = False
    redirected: bool = False
    error_kind: Optional[ErrorKind] = None
    error: Optional[Exception] = None

    @property
    def succeeded(self) -> bool:
        return self.status == TurnStatus.DONE

    @property
    def final_phase(self) -> TurnPhase:
        return self.phases[-1]

    def raise_for_status(self) -> None:
        if self.error is not None:
            raise self.error


class TurnOrchestrator:
    """
    Coordinates render → review input → plan → review output → dispatch.

    Inject all dependencies via constructor; use from_settings() when wiring
    up the application.
    """

    def __init__(
        self,
        planner: Planner,
        registry: ActionRegistry,
        moderator: Optional[Moderator] = None,
        prompts: Optional[PromptManager] = None,
        renderer: Optional[PromptRenderer] = None,
        output_sink: Optional[OutputSink] = None,
    ):
        self._planner = planner
        self._registry = registry
        self._moderator = moderator
        self._prompts = prompts or PromptManager()
        self._renderer = renderer or PromptRenderer()
        self._sink: OutputSink = output_sink or StateOutputSink()

    @property
    def registry(self) -> ActionRegistry:
        return self._registry

    @property
    def output_sink(self) -> OutputSink:
        return self._sink

    # ─────────────────────────────────────────────────────────────────────────
    # Public: one turn
    # ─────────────────────────────────────────────────────────────────────────

    async def run_turn(
        self,
        state: TurnState,
        template: Union[PromptTemplate, str],
        user_input: Optional[str] = None,
    ) -> TurnResult:
        """
        Run one turn against `state`.

        `template` is a PromptTemplate or the name of one in the PromptManager.
        When `user_input` is given the temp scope is reset and the input recorded.
        """
        turn_id = f"turn_{uuid.uuid4().hex[:12]}"
        if user_input is not None:
            state.begin_turn(user_input)
        with turn_context(turn_id, state.conversation_id):
            return await self._run(state, template)

    async def _run(self, state: TurnState, template: Union[PromptTemplate, str]) -> TurnResult:
        phases: list[TurnPhase] = [TurnPhase.IDLE]
        executed: list[Command] = []
        plan: Optional[Plan] = None
        redirected = False

        def advance(phase: TurnPhase) -> None:
            phases.append(phase)
            log.debug("orchestrator.phase", phase=phase.value)

        log.info("orchestrator.turn_start", user_input=state.input)
        t0 = time.monotonic()

        try:
            tmpl = template if isinstance(template, PromptTemplate) else self._prompts.get(template)
            rendered = self._renderer.render(tmpl, state)
            advance(TurnPhase.RENDERED)

            if self._moderator is not None:
                plan = await self._moderator.review_prompt(state, rendered.text)
            advance(TurnPhase.INPUT_REVIEWED)

            if plan is not None:
                redirected = True
                log.warning("orchestrator.input_redirected", action=plan[0].action)
            else:
                parsed = await self._planner.plan(rendered)
                if isinstance(parsed, ParseFailure):
                    raise PlanParseError(parsed)
                advance(TurnPhase.PLANNED)

                plan = parsed
                if self._moderator is not None:
                    plan = await self._moderator.review_plan(state, parsed)
                    redirected = plan is not parsed
                advance(TurnPhase.OUTPUT_REVIEWED)

            advance(TurnPhase.DISPATCHING)
            state.temp[TEMP_LAST_PLAN] = plan
            stopped = await self._dispatch(state, plan, executed)
            advance(TurnPhase.DONE)

            log.info(
                "orchestrator.turn_done",
                ms=round((time.monotonic() - t0) * 1000),
                commands=len(plan),
                executed=len(executed),
                stopped_early=stopped,
                redirected=redirected,
            )
            return TurnResult(
                status=TurnStatus.DONE,
                phases=tuple(phases),
                plan=plan,
                executed=tuple(executed),
                stopped_early=stopped,
                redirected=redirected,
            )

        except asyncio.CancelledError:
            log.info("orchestrator.turn_cancelled", phase=phases[-1].value, executed=len(executed))
            raise
        except Exception as e:
            kind = _classify(e, phases[-1])
            if kind is None:
                raise
            aborted_in = phases[-1]
            phases.append(TurnPhase.ABORTED)
            log.error(
                "orchestrator.turn_aborted",
                phase=aborted_in.value,
                error_kind=kind.value,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=kind == ErrorKind.HANDLER,
            )
            return TurnResult(
                status=TurnStatus.ABORTED,
                phases=tuple(phases),
                plan=plan,
                executed=tuple(executed),
                redirected=redirected,
                error_kind=kind,
                error=e,
            )

    # ─────────────────────────────────────────────────────────────────────────
    # Dispatch
    # ─────────────────────────────────────────────────────────────────────────

    async def _dispatch(self, state: TurnState, plan: Plan, executed: list[Command]) -> bool:
        """Run commands in order. Returns True when a handler stopped dispatch."""
        for index, cmd in enumerate(plan):
            if isinstance(cmd, SayCommand):
                await self._sink.send(state, cmd.response)
                executed.append(cmd)
                continue

            entry = self._registry.get(cmd.action)
            outcome = ActionOutcome.coerce(await entry.handler(state, cmd.entities))
            executed.append(cmd)
            log.debug("orchestrator.action_done", action=cmd.action, index=index, outcome=outcome.value)

            if outcome is ActionOutcome.STOP:
                log.info(
                    "orchestrator.dispatch_stopped",
                    action=cmd.action,
                    skipped=len(plan) - index - 1,
                )
                return True
        return False

    # ─────────────────────────────────────────────────────────────────────────
    # Factory
    # ─────────────────────────────────────────────────────────────────────────

    @classmethod
    def from_settings(
        cls,
        settings,
        registry: ActionRegistry,
        output_sink: Optional[OutputSink] = None,
    ) -> "TurnOrchestrator":
        """
        Build an orchestrator from the turnpipe Settings object.

        Default flagged-content actions are registered for any reserved name
        the application has not already claimed.
        """
        from turnpipe.brain import CompletionClientFactory, create_moderation_client

        sink = output_sink or StateOutputSink()
        planner = Planner(CompletionClientFactory.from_settings(settings))
        moderator = None
        if settings.moderation.enabled:
            moderator = Moderator(
                create_moderation_client(settings),
                scope=ModerationScope(settings.moderation.scope),
            )

        defaults = ActionRegistry()
        register_default_actions(
            defaults,
            sink,
            flagged_input_message=settings.actions.flagged_input_message,
            flagged_output_message=settings.actions.flagged_output_message,
        )
        for name in defaults.names():
            if not registry.has(name):
                entry = defaults.get(name)
                registry.register(name, entry.handler, allow_overrides=entry.allow_overrides)

        return cls(
            planner=planner,
            registry=registry,
            moderator=moderator,
            prompts=PromptManager(settings.prompts.directory),
            output_sink=sink,
        )
