"""
agent/plan.py — Plans, Commands and the Plan Parser

A Plan is an immutable, ordered sequence of commands:

    DoCommand(action, entities)   invoke a registered action handler
    SayCommand(response)          send text to the user (no handler lookup)

PlanParser accepts two grammars from the completion service.

Text shorthand, one command per line:

    DO lookupOrder id=123 carrier="UPS Ground"
    SAY Your order is on its way.
    It should arrive Tuesday.          <- continues the SAY above

JSON, either a bare array or a plan object:

    [{"type": "DO", "action": "lookupOrder", "entities": {"id": "123"}},
     {"type": "SAY", "response": "Your order is on its way."}]

    {"type": "plan", "commands": [...]}

Malformed or unrecognised output yields a ParseFailure value, never a
partial Plan and never an exception.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, ClassVar, Iterator, Mapping, Optional, Union

from pydantic import BaseModel

from turnpipe.observability.logger import get_logger

log = get_logger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Commands
# ─────────────────────────────────────────────────────────────────────────────


class CommandType(str, Enum):
    DO = "DO"
    SAY = "SAY"


@dataclass(frozen=True)
class DoCommand:
    action: str
    entities: Mapping[str, Any] = field(default_factory=dict)

    type: ClassVar[CommandType] = CommandType.DO

    def __post_init__(self) -> None:
        object.__setattr__(self, "entities", MappingProxyType(dict(self.entities)))


@dataclass(frozen=True)
class SayCommand:
    response: str

    type: ClassVar[CommandType] = CommandType.SAY


Command = Union[DoCommand, SayCommand]


@dataclass(frozen=True)
class Plan:
    """Ordered commands for one turn. Never mutated after construction."""
    commands: tuple[Command, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "commands", tuple(self.commands))

    def __iter__(self) -> Iterator[Command]:
        return iter(self.commands)

    def __len__(self) -> int:
        return len(self.commands)

    def __getitem__(self, index: int) -> Command:
        return self.commands[index]

    @property
    def say_text(self) -> str:
        """All user-facing text in the plan, newline-joined."""
        return "\n".join(c.response for c in self.commands if isinstance(c, SayCommand))


@dataclass(frozen=True)
class ParseFailure:
    """Completion output that could not be understood as a plan."""
    reason: str
    raw: str = ""


# ─────────────────────────────────────────────────────────────────────────────
# Parser
# ─────────────────────────────────────────────────────────────────────────────

_KEYWORD = re.compile(r"^(DO|SAY)(?:\s+|$)(.*)$", re.DOTALL)
_NAME = re.compile(r"[A-Za-z_][\w.\-]*")
_ENTITY = re.compile(r'([A-Za-z_][\w.\-]*)=("(?:[^"\\]|\\.)*"|[^\s"]+)')
_BARE_VALUE = re.compile(r'^[^\s"]+$')


class _Malformed(ValueError):
    """Internal: raised while walking the input, converted to ParseFailure."""


class PlanParser:
    """Converts raw completion text into a Plan or a ParseFailure."""

    def parse(self, raw: str) -> Union[Plan, ParseFailure]:
        text = _strip_fences(raw or "")
        if not text:
            return self._fail("completion was empty", raw)

        try:
            if text[0] in "[{":
                commands = self._parse_json(text)
            else:
                commands = self._parse_text(text)
        except _Malformed as e:
            return self._fail(str(e), raw)

        if not commands:
            return self._fail("no commands found", raw)

        log.debug("plan.parsed", commands=len(commands))
        return Plan(tuple(commands))

    # ── JSON grammar ──────────────────────────────────────────────────────────

    def _parse_json(self, text: str) -> list[Command]:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise _Malformed(f"invalid JSON: {e.msg} at position {e.pos}") from e

        if isinstance(data, dict):
            if str(data.get("type", "")).lower() != "plan" or not isinstance(data.get("commands"), list):
                raise _Malformed('JSON object must be {"type": "plan", "commands": [...]}')
            items = data["commands"]
        elif isinstance(data, list):
            items = data
        else:
            raise _Malformed("JSON plan must be an array or a plan object")

        return [self._json_command(i, item) for i, item in enumerate(items)]

    def _json_command(self, index: int, item: Any) -> Command:
        if not isinstance(item, dict):
            raise _Malformed(f"command {index} is not an object")

        kind = str(item.get("type", "")).upper()
        if kind == CommandType.DO.value:
            action = item.get("action")
            if not isinstance(action, str) or not action.strip():
                raise _Malformed(f"command {index}: DO requires a non-empty 'action'")
            entities = item.get("entities", {})
            if not isinstance(entities, dict):
                raise _Malformed(f"command {index}: 'entities' must be an object")
            return DoCommand(action=action.strip(), entities=entities)

        if kind == CommandType.SAY.value:
            response = item.get("response")
            if not isinstance(response, str) or not response.strip():
                raise _Malformed(f"command {index}: SAY requires a non-empty 'response'")
            return SayCommand(response=response)

        raise _Malformed(f"command {index}: unknown type {item.get('type')!r}")

    # ── Text grammar ──────────────────────────────────────────────────────────

    def _parse_text(self, text: str) -> list[Command]:
        commands: list[Command] = []
        say_lines: Optional[list[str]] = None

        def flush_say() -> None:
            response = "\n".join(say_lines or []).strip()
            if not response:
                raise _Malformed("SAY with no text")
            commands.append(SayCommand(response=response))

        for lineno, line in enumerate(text.splitlines(), start=1):
            stripped = line.strip()
            match = _KEYWORD.match(stripped)

            if match is None:
                if say_lines is not None:
                    say_lines.append(line.rstrip())
                    continue
                if not stripped:
                    continue
                raise _Malformed(f"line {lineno}: expected DO or SAY, got {stripped[:40]!r}")

            if say_lines is not None:
                flush_say()
                say_lines = None

            keyword, rest = match.groups()
            if keyword == CommandType.DO.value:
                commands.append(self._text_do(lineno, rest))
            else:
                say_lines = [rest]

        if say_lines is not None:
            flush_say()
        return commands

    def _text_do(self, lineno: int, rest: str) -> DoCommand:
        rest = rest.strip()
        name = _NAME.match(rest)
        if name is None or (name.end() < len(rest) and not rest[name.end()].isspace()):
            raise _Malformed(f"line {lineno}: DO requires an action name")

        entities: dict[str, Any] = {}
        pos = name.end()
        while True:
            while pos < len(rest) and rest[pos].isspace():
                pos += 1
            if pos >= len(rest):
                break

            m = _ENTITY.match(rest, pos)
            if m is None or (m.end() < len(rest) and not rest[m.end()].isspace()):
                raise _Malformed(f"line {lineno}: malformed entity near {rest[pos:pos + 30]!r}")

            key, raw_value = m.groups()
            if key in entities:
                raise _Malformed(f"line {lineno}: duplicate entity {key!r}")
            if raw_value.startswith('"'):
                try:
                    entities[key] = json.loads(raw_value)
                except json.JSONDecodeError as e:
                    raise _Malformed(f"line {lineno}: bad quoted value for {key!r}") from e
            else:
                entities[key] = raw_value
            pos = m.end()

        return DoCommand(action=name.group(0), entities=entities)

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _fail(self, reason: str, raw: str) -> ParseFailure:
        log.warning("plan.parse_failed", reason=reason, raw=raw or "")
        return ParseFailure(reason=reason, raw=raw or "")


def _strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        lines = text.splitlines()
        end = len(lines) - 1 if len(lines) > 1 and lines[-1].strip() == "```" else len(lines)
        text = "\n".join(lines[1:end])
    return text.strip()


# ─────────────────────────────────────────────────────────────────────────────
# Serialisation
# ─────────────────────────────────────────────────────────────────────────────


def _json_default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Mapping):
        return dict(value)
    return str(value)


def _text_value(value: Any) -> str:
    if not isinstance(value, str):
        value = json.dumps(value, default=_json_default)
    if _BARE_VALUE.match(value):
        return value
    return json.dumps(value)


def _check_say_text(response: str) -> None:
    lines = response.split("\n")
    if (
        not response.strip()
        or response != response.lstrip()
        or response.splitlines() != lines
        or any(line != line.rstrip() for line in lines)
        or any(_KEYWORD.match(line.strip()) for line in lines[1:])
    ):
        raise ValueError(
            f"SAY text {response[:40]!r} cannot be written in the text grammar; use fmt=\"json\""
        )


def serialize_plan(plan: Plan, fmt: str = "text") -> str:
    """
    Write a plan back out in the text or JSON grammar.

    Text output round-trips string entity values exactly; other values are
    written as their JSON encoding and come back as strings. SAY text the
    text parser would read differently (surrounding whitespace, or a line
    that starts with DO or SAY) raises ValueError; the JSON grammar keeps it
    verbatim.
    """
    if fmt == "json":
        items: list[dict[str, Any]] = []
        for cmd in plan:
            if isinstance(cmd, DoCommand):
                items.append({"type": "DO", "action": cmd.action, "entities": dict(cmd.entities)})
            else:
                items.append({"type": "SAY", "response": cmd.response})
        return json.dumps(items, default=_json_default, indent=2)

    if fmt != "text":
        raise ValueError(f"Unknown plan format: {fmt!r}")

    lines: list[str] = []
    for cmd in plan:
        if isinstance(cmd, DoCommand):
            parts = [f"DO {cmd.action}"]
            for key, value in cmd.entities.items():
                if not _NAME.fullmatch(key):
                    raise ValueError(f"Entity name {key!r} cannot be written in the text grammar")
                parts.append(f"{key}={_text_value(value)}")
            lines.append(" ".join(parts))
        else:
            _check_say_text(cmd.response)
            lines.append(f"SAY {cmd.response}")
    return "\n".join(lines)


def parse_json(text: str) -> Optional[dict[str, Any]]:
    """
    Return the first JSON object embedded in free text, or None.

    For handlers that prompt the model for structured data and get prose
    wrapped around it.
    """
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            obj, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(obj, dict):
            return obj
        start = text.find("{", start + 1)
    return None
