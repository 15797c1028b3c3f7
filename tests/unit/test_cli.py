"""
tests/unit/test_cli.py — Console runner helpers

The REPL loop itself needs a terminal; these tests cover argument parsing,
the console sink, slash commands and abort rendering.
"""

from __future__ import annotations

import io
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from rich.console import Console

from turnpipe.actions.registry import ActionOutcome, ActionRegistry
from turnpipe.agent.orchestrator import ErrorKind, TurnOrchestrator, TurnPhase, TurnResult, TurnStatus
from turnpipe.agent.plan import Plan, SayCommand
from turnpipe.agent.planner import Planner
from turnpipe.agent.prompt_renderer import PromptManager, PromptRenderer
from turnpipe.agent.turn_state import TEMP_LAST_PLAN, TurnState
from turnpipe.brain.llm_client import BaseCompletionClient
from turnpipe.config.settings import Settings
from turnpipe.exceptions import UnknownActionError
from turnpipe.interfaces.cli import (
    ConsoleOutputSink,
    ConsoleRunner,
    new_console_state,
    parse_args,
    register_console_actions,
    remember,
)

PROMPTS_DIR = Path(__file__).resolve().parents[2] / "prompts"


def _console() -> tuple[Console, io.StringIO]:
    buf = io.StringIO()
    return Console(file=buf, width=100, color_system=None), buf


@pytest.fixture
def runner():
    console, buf = _console()
    r = ConsoleRunner(Settings(), console=console)
    r.buf = buf
    return r


class TestParseArgs:
    def test_defaults(self):
        args = parse_args([])
        assert args.config is None
        assert args.prompt is None
        assert args.log_level is None

    def test_flags(self):
        args = parse_args(["--config", "c.yaml", "--prompt", "support", "--log-level", "DEBUG"])
        assert (args.config, args.prompt, args.log_level) == ("c.yaml", "support", "DEBUG")

    def test_bad_log_level_exits(self):
        with pytest.raises(SystemExit):
            parse_args(["--log-level", "LOUD"])


class TestConsoleOutputSink:
    @pytest.mark.asyncio
    async def test_prints_and_records(self):
        console, buf = _console()
        state = TurnState()
        await ConsoleOutputSink(console).send(state, "Hello there")
        assert "Hello there" in buf.getvalue()
        assert state.responses == ["Hello there"]


class TestConsoleRunner:
    def test_default_prompt_from_settings(self, runner):
        assert runner.prompt_name == "chat"

    def test_plan_command_without_plan(self, runner):
        runner._command("/plan")
        assert "no plan yet" in runner.buf.getvalue()

    def test_plan_command_shows_last_plan(self, runner):
        runner.state.temp[TEMP_LAST_PLAN] = Plan((SayCommand("hi"),))
        runner._command("/plan")
        assert "SAY hi" in runner.buf.getvalue()

    def test_reset_starts_new_conversation(self, runner):
        old = runner.state.conversation_id
        runner._command("/reset")
        assert runner.state.conversation_id != old

    def test_state_command(self, runner):
        runner.state.user["name"] = "Ada"
        runner._command("/state")
        assert "Ada" in runner.buf.getvalue()

    def test_unknown_command(self, runner):
        runner._command("/dance")
        assert "unknown command /dance" in runner.buf.getvalue()

    def test_aborted_turn_rendered(self, runner):
        result = TurnResult(
            status=TurnStatus.ABORTED,
            phases=(TurnPhase.IDLE, TurnPhase.ABORTED),
            error_kind=ErrorKind.UNKNOWN_ACTION,
            error=UnknownActionError("fly"),
        )
        runner._render_result(result)
        out = runner.buf.getvalue()
        assert "unknown_action" in out
        assert "`fly` action does not exist" in out

    def test_plan_command_falls_back_to_json(self, runner):
        runner.state.temp[TEMP_LAST_PLAN] = Plan((SayCommand("Options:\nDO nothing"),))
        runner._command("/plan")
        assert '"response": "Options:\\nDO nothing"' in runner.buf.getvalue()


class TestConsoleActions:
    def test_remember_registered(self, runner):
        assert runner.registry.has("remember")

    def test_app_handler_kept(self):
        registry = ActionRegistry()

        async def mine(state, entities):
            return True

        registry.register("remember", mine)
        register_console_actions(registry)
        assert registry.get("remember").handler is mine

    @pytest.mark.asyncio
    async def test_remember_appends_fact(self):
        state = new_console_state()
        outcome = await remember(state, {"fact": "  likes tea "})
        await remember(state, {})
        assert outcome is ActionOutcome.CONTINUE
        assert state.user["facts"] == ["likes tea"]

    def test_sample_prompt_renders_for_new_conversation(self):
        manager = PromptManager(PROMPTS_DIR)
        state = new_console_state()
        state.begin_turn("hello")
        rendered = PromptRenderer().render(manager.get("chat"), state)
        assert "User: hello" in rendered.text
        assert "DO remember" in rendered.text

    @pytest.mark.asyncio
    async def test_turn_with_remember_completes(self, runner):
        completion = AsyncMock(spec=BaseCompletionClient)
        completion.complete = AsyncMock(return_value='DO remember fact="has a cat"\nSAY Noted!')
        runner._orchestrator = TurnOrchestrator(
            Planner(completion),
            runner.registry,
            prompts=PromptManager(PROMPTS_DIR),
            output_sink=ConsoleOutputSink(runner.console),
        )

        await runner._turn("I have a cat")

        assert runner.state.user["facts"] == ["has a cat"]
        assert "Noted!" in runner.buf.getvalue()
