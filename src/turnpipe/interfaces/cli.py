"""
interfaces/cli.py — turnpipe Console Runner

Interactive REPL for trying a prompt template against the live pipeline.
Uses rich for terminal rendering.

Each line you type becomes state.temp["input"] and runs one full turn:
render → moderate input → complete → parse → moderate output → dispatch.
SAY output is printed as it is dispatched; aborted turns are shown in a
red panel with their error kind.

Commands:
  /plan     show the plan dispatched on the last turn
  /state    show the conversation and user scopes
  /reset    start a fresh conversation
  /help     show this help
  exit / quit / Ctrl+D

Usage:
    python -m turnpipe
    python -m turnpipe --prompt support --log-level DEBUG
    python -m turnpipe --config path/to/config.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Mapping, Optional

from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich import box

from turnpipe import __version__
from turnpipe.actions.registry import ActionOutcome, ActionRegistry
from turnpipe.agent.orchestrator import TurnOrchestrator, TurnResult
from turnpipe.agent.plan import serialize_plan
from turnpipe.agent.turn_state import TEMP_LAST_PLAN, TurnState
from turnpipe.config.settings import ConfigError, Settings, load_settings
from turnpipe.exceptions import TurnPipeError
from turnpipe.observability.logger import get_logger, setup_logging

log = get_logger(__name__)

_HELP_TEXT = """\
[bold]/plan[/]    show the plan dispatched on the last turn
[bold]/state[/]   show the conversation and user scopes
[bold]/reset[/]   start a fresh conversation
[bold]/help[/]    show this help
[bold]exit[/]     quit (or Ctrl+D)"""


# ─────────────────────────────────────────────────────────────────────────────
# Console actions
# ─────────────────────────────────────────────────────────────────────────────

USER_FACTS = "facts"


async def remember(state: TurnState, entities: Mapping[str, Any]) -> ActionOutcome:
    """DO remember fact="...": keep a fact about the user for later prompts."""
    fact = str(entities.get("fact", "")).strip()
    if fact:
        state.user.setdefault(USER_FACTS, []).append(fact)
    return ActionOutcome.CONTINUE


def register_console_actions(registry: ActionRegistry) -> None:
    """Actions the sample chat prompt tells the model about."""
    if not registry.has("remember"):
        registry.register("remember", remember)


def new_console_state() -> TurnState:
    return TurnState.create(user={USER_FACTS: []})


class ConsoleOutputSink:
    """Prints SAY text as it is dispatched and keeps it on the turn state."""

    def __init__(self, console: Console) -> None:
        self.console = console

    async def send(self, state: TurnState, text: str) -> None:
        state.responses.append(text)
        self.console.print(f"[bold cyan]bot ›[/] {text}")


class ConsoleRunner:

    def __init__(
        self,
        settings: Settings,
        prompt_name: Optional[str] = None,
        registry: Optional[ActionRegistry] = None,
        console: Optional[Console] = None,
    ) -> None:
        self.settings = settings
        self.prompt_name = prompt_name or settings.prompts.default_template
        self.console = console or Console()
        self.registry = registry if registry is not None else ActionRegistry()
        register_console_actions(self.registry)
        self.state = new_console_state()
        self._orchestrator: Optional[TurnOrchestrator] = None

    async def start(self) -> None:
        self._orchestrator = TurnOrchestrator.from_settings(
            self.settings,
            self.registry,
            output_sink=ConsoleOutputSink(self.console),
        )
        self._print_banner()
        await self._repl_loop()

    def _print_banner(self) -> None:
        cfg = self.settings
        moderation = cfg.moderation.scope if cfg.moderation.enabled else "off"
        self.console.print(
            Panel(
                f"[bold]turnpipe[/] {__version__}\n"
                f"model [cyan]{cfg.completion.provider}/{cfg.completion.model}[/]  "
                f"prompt [cyan]{self.prompt_name}[/]  moderation [cyan]{moderation}[/]\n"
                f"[dim]type /help for commands[/]",
                box=box.ROUNDED,
            )
        )

    async def _repl_loop(self) -> None:
        while True:
            try:
                user_input = await asyncio.to_thread(self.console.input, "[bold green]you ›[/] ")
            except (EOFError, KeyboardInterrupt):
                self.console.print("\n[dim]Goodbye.[/]")
                break

            user_input = user_input.strip()
            if not user_input:
                continue
            if user_input.lower() in ("exit", "quit"):
                self.console.print("[dim]Goodbye.[/]")
                break

            if user_input.startswith("/"):
                self._command(user_input)
            else:
                await self._turn(user_input)

    async def _turn(self, user_input: str) -> None:
        assert self._orchestrator is not None
        with self.console.status("[dim]thinking…[/]"):
            result = await self._orchestrator.run_turn(self.state, self.prompt_name, user_input=user_input)
        self._render_result(result)

    def _render_result(self, result: TurnResult) -> None:
        if result.succeeded:
            if result.stopped_early:
                self.console.print("[dim]dispatch stopped early[/]")
            return
        self.console.print(
            Panel(
                f"{type(result.error).__name__}: {result.error}",
                title=f"turn aborted · {result.error_kind.value}",
                border_style="red",
            )
        )

    def _command(self, raw: str) -> None:
        cmd = raw.split()[0].lower()
        if cmd == "/help":
            self.console.print(Panel(_HELP_TEXT, title="commands", box=box.ROUNDED))
        elif cmd == "/plan":
            plan = self.state.temp.get(TEMP_LAST_PLAN)
            if plan is None:
                self.console.print("[dim]no plan yet[/]")
            else:
                try:
                    text = serialize_plan(plan)
                except ValueError:
                    text = serialize_plan(plan, fmt="json")
                self.console.print(Panel(text, title="last plan"))
        elif cmd == "/state":
            self._print_state()
        elif cmd == "/reset":
            self.state = new_console_state()
            self.console.print(f"[dim]new conversation {self.state.conversation_id}[/]")
        else:
            self.console.print(f"[yellow]unknown command {cmd}; try /help[/]")

    def _print_state(self) -> None:
        table = Table(box=box.SIMPLE, show_header=True)
        table.add_column("scope")
        table.add_column("key")
        table.add_column("value")
        for scope in (self.state.conversation, self.state.user):
            for key, value in scope.items():
                table.add_row(scope.name, key, json.dumps(value, default=str))
        if not table.row_count:
            self.console.print("[dim]state is empty[/]")
            return
        self.console.print(table)


# ─────────────────────────────────────────────────────────────────────────────
# Entry point
# ─────────────────────────────────────────────────────────────────────────────

def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="turnpipe",
        description="turnpipe: moderated single-turn planning pipeline",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $TURNPIPE_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--prompt",
        default=None,
        help="Prompt template name (default: prompts.default_template from config)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace) -> Settings:
    """
    Load config, validate it fully, and set up logging.

    Exits with code 1 after printing a clear message when config.yaml holds
    invalid values or validate_all() finds cross-field problems.
    """
    try:
        settings = load_settings(args.config)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {'.'.join(str(p) for p in e['loc']) or '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(
            f"\nConfig validation failed:\n\n{problems}\n\n"
            f"Fix config/config.yaml or your .env file and restart.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except OSError as exc:
        print(f"\nFailed to load config: {type(exc).__name__}: {exc}\n", file=sys.stderr)
        sys.exit(1)

    try:
        settings.validate_all()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    log_file = setup_logging(settings.logging, level=args.log_level)
    log.debug("cli.logging_ready", log_file=str(log_file))
    return settings


def main(argv: Optional[list[str]] = None) -> int:
    load_dotenv()
    args = parse_args(argv)
    settings = bootstrap(args)

    runner = ConsoleRunner(settings, prompt_name=args.prompt)
    log.info("cli.starting", prompt=runner.prompt_name)
    try:
        asyncio.run(runner.start())
    except KeyboardInterrupt:
        log.info("cli.interrupted")
    except TurnPipeError as exc:
        runner.console.print(f"[red]{type(exc).__name__}: {exc}[/]")
        return 1
    finally:
        log.info("cli.stopped")
    return 0
