"""
agent/planner.py — Planner

Asks the completion service for a plan and parses the reply.

    rendered = renderer.render(template, state)
    result = await planner.plan(rendered)      # Plan | ParseFailure

prompt() is the same round-trip without plan parsing, for action handlers
that need a side question answered (e.g. "rewrite this backstory as JSON")
and parse the text themselves with parse_json().
"""

from __future__ import annotations

from typing import Optional, Union

from turnpipe.agent.plan import ParseFailure, Plan, PlanParser
from turnpipe.agent.prompt_renderer import PromptRenderer, PromptTemplate, RenderedPrompt
from turnpipe.agent.turn_state import TurnState
from turnpipe.brain.llm_client import BaseCompletionClient, service_call
from turnpipe.observability.logger import get_logger

log = get_logger(__name__)


class Planner:
    """Turns a rendered prompt into a Plan via the completion service."""

    def __init__(
        self,
        completion_client: BaseCompletionClient,
        parser: Optional[PlanParser] = None,
        renderer: Optional[PromptRenderer] = None,
    ):
        self._client = completion_client
        self._parser = parser or PlanParser()
        self._renderer = renderer or PromptRenderer()

    async def plan(self, rendered: RenderedPrompt) -> Union[Plan, ParseFailure]:
        log.info("planner.plan", template=rendered.template_name, prompt_chars=len(rendered.text))
        with service_call("completion"):
            raw = await self._client.complete(rendered.text, rendered.completion)
        return self._parser.parse(raw)

    async def prompt(self, state: TurnState, template: PromptTemplate) -> str:
        """Render `template` and return the raw completion text."""
        rendered = self._renderer.render(template, state)
        log.info("planner.prompt", template=template.name)
        with service_call("completion"):
            return await self._client.complete(rendered.text, rendered.completion)
