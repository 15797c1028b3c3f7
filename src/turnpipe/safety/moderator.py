"""
safety/moderator.py — Content Moderator

The policy gate that sits on both sides of the completion call. Every turn
passes through here twice:

  1. review_prompt()  screens the rendered prompt before planning.
                      Flagged → a redirect plan that replaces planning.
  2. review_plan()    screens the plan's user-facing text after planning.
                      Flagged → a redirect plan that replaces the plan.

The moderator never edits commands. It either accepts a plan as-is or
replaces it wholesale with a single DO of a reserved action, carrying the
ModerationResult as the "Result" entity.

Moderation service errors abort the turn; a failed moderation call is never
treated as "safe". Errors that are not already a ServiceError are wrapped in
one.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from turnpipe.agent.plan import DoCommand, Plan
from turnpipe.agent.turn_state import TurnState
from turnpipe.brain.llm_client import service_call
from turnpipe.brain.moderation_client import BaseModerationClient
from turnpipe.brain.types import ModerationResult
from turnpipe.observability.logger import get_logger

log = get_logger(__name__)

FLAGGED_INPUT_ACTION = "___FlaggedInput___"
FLAGGED_OUTPUT_ACTION = "___FlaggedOutput___"
RESULT_ENTITY = "Result"


class ModerationScope(str, Enum):
    """Which side(s) of the conversation are screened."""
    INPUT = "input"
    OUTPUT = "output"
    BOTH = "both"


INPUT_SCOPES: frozenset[ModerationScope] = frozenset({ModerationScope.INPUT, ModerationScope.BOTH})
OUTPUT_SCOPES: frozenset[ModerationScope] = frozenset({ModerationScope.OUTPUT, ModerationScope.BOTH})


def redirect_plan(action: str, result: ModerationResult) -> Plan:
    return Plan((DoCommand(action=action, entities={RESULT_ENTITY: result}),))


class Moderator:
    """
    Reviews prompts and plans against a moderation service.

    Usage:
        moderator = Moderator(OpenAIModerationClient(api_key=...), scope=ModerationScope.BOTH)
        redirect = await moderator.review_prompt(state, prompt_text)
        if redirect is None:
            plan = await planner.plan(...)
            plan = await moderator.review_plan(state, plan)
    """

    def __init__(
        self,
        client: BaseModerationClient,
        scope: ModerationScope = ModerationScope.BOTH,
    ):
        self._client = client
        self.scope = ModerationScope(scope)

    async def review_prompt(
        self,
        state: TurnState,
        prompt_text: str,
        scope: Optional[ModerationScope] = None,
    ) -> Optional[Plan]:
        """
        Screen the rendered prompt.

        Returns a single-command redirect plan when flagged, otherwise None
        ("continue normal planning"). Scope OUTPUT never calls the service.
        """
        scope = ModerationScope(scope) if scope is not None else self.scope
        if scope not in INPUT_SCOPES:
            return None

        with service_call("moderation"):
            result = await self._client.moderate(prompt_text)
        self._audit("input", scope, result, state)
        if result.flagged:
            return redirect_plan(FLAGGED_INPUT_ACTION, result)
        return None

    async def review_plan(
        self,
        state: TurnState,
        plan: Plan,
        scope: Optional[ModerationScope] = None,
    ) -> Plan:
        """
        Screen the plan's SAY text.

        Returns a single-command redirect plan when flagged, discarding the
        original entirely. Otherwise returns `plan` itself. Scope INPUT never
        calls the service.
        """
        scope = ModerationScope(scope) if scope is not None else self.scope
        if scope not in OUTPUT_SCOPES:
            return plan

        text = plan.say_text
        if not text.strip():
            log.debug("moderation.skipped", side="output", reason="plan has no user-facing text")
            return plan

        with service_call("moderation"):
            result = await self._client.moderate(text)
        self._audit("output", scope, result, state)
        if result.flagged:
            return redirect_plan(FLAGGED_OUTPUT_ACTION, result)
        return plan

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _audit(self, side: str, scope: ModerationScope, result: ModerationResult, state: TurnState) -> None:
        log_fn = log.warning if result.flagged else log.info
        log_fn(
            "moderation.decision",
            side=side,
            scope=scope.value,
            flagged=result.flagged,
            categories=[c.value for c in result.flagged_categories],
            conversation_id=state.conversation_id,
        )
