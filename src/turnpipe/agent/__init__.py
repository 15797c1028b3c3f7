"""
agent/ — turn state, prompts, plans and the planner.

The orchestrator lives in turnpipe.agent.orchestrator and is not imported
here; it depends on turnpipe.safety, which depends on this package.
"""

from turnpipe.agent.output import OutputSink, StateOutputSink
from turnpipe.agent.plan import (
    CommandType,
    DoCommand,
    ParseFailure,
    Plan,
    PlanParser,
    SayCommand,
    parse_json,
    serialize_plan,
)
from turnpipe.agent.planner import Planner
from turnpipe.agent.prompt_renderer import PromptManager, PromptRenderer, PromptTemplate, RenderedPrompt
from turnpipe.agent.turn_state import StateScope, TurnState

__all__ = [
    "CommandType",
    "DoCommand",
    "OutputSink",
    "ParseFailure",
    "Plan",
    "PlanParser",
    "Planner",
    "PromptManager",
    "PromptRenderer",
    "PromptTemplate",
    "RenderedPrompt",
    "SayCommand",
    "StateOutputSink",
    "StateScope",
    "TurnState",
    "parse_json",
    "serialize_plan",
]
