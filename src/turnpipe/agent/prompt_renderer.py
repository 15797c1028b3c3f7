"""
agent/prompt_renderer.py — Prompt Templates + Rendering

A PromptTemplate is text with str.format placeholders that address the
turn state scopes, plus the generation parameters to use with it:

    The players are: {conversation.players}
    {user.name} says: {temp.input}

Rendering has no side effects. A placeholder that names missing state is a
RenderError, which is fatal for the turn before any remote call is made.

Templates live on disk in the layout

    <prompts_dir>/<name>/skprompt.txt
    <prompts_dir>/<name>/config.json     {"completion": {"max_tokens": 256, ...}}

and are loaded and cached by PromptManager.
"""

from __future__ import annotations

import json
import string
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from turnpipe.agent.turn_state import StateScope, TurnState
from turnpipe.brain.types import CompletionSettings
from turnpipe.exceptions import RenderError
from turnpipe.observability.logger import get_logger

log = get_logger(__name__)

_PROMPT_FILE = "skprompt.txt"
_CONFIG_FILE = "config.json"


class PromptTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    text: str
    completion: CompletionSettings = Field(default_factory=CompletionSettings)
    description: str = ""


class RenderedPrompt(BaseModel):
    """Prompt text ready for the completion service, plus its unchanged settings."""
    model_config = ConfigDict(frozen=True)

    text: str
    completion: CompletionSettings
    template_name: str = ""


# ─────────────────────────────────────────────────────────────────────────────
# Rendering
# ─────────────────────────────────────────────────────────────────────────────


class _MissingField(LookupError):
    """Internal: a placeholder addressed state that is not present."""


class _ScopeView:
    """Read-only attribute/item view over a StateScope for str.format lookups."""

    __slots__ = ("_scope",)

    def __init__(self, scope: StateScope) -> None:
        self._scope = scope

    def _lookup(self, key: str) -> Any:
        try:
            return self._scope[key]
        except KeyError:
            raise _MissingField(f"{self._scope.name}.{key}") from None

    def __getattr__(self, key: str) -> Any:
        return self._lookup(key)

    def __getitem__(self, key: str) -> Any:
        return self._lookup(key)

    def __format__(self, spec: str) -> str:
        return format(self._scope.to_dict(), spec)


class _StateFormatter(string.Formatter):

    def get_value(self, key, args, kwargs):
        if isinstance(key, int) or key not in kwargs:
            raise _MissingField(str(key))
        return kwargs[key]

    def get_field(self, field_name, args, kwargs):
        # Nested lookups below a scope ({user.profile[age]}) fail with the
        # container's own error type; all of them mean the field is absent.
        try:
            return super().get_field(field_name, args, kwargs)
        except _MissingField:
            raise
        except (KeyError, IndexError, AttributeError, TypeError):
            raise _MissingField(field_name) from None

    def format_field(self, value: Any, format_spec: str) -> str:
        if not format_spec:
            if isinstance(value, (list, tuple)):
                return ", ".join(str(v) for v in value)
            if isinstance(value, dict):
                return json.dumps(value, default=str)
        return super().format_field(value, format_spec)


class PromptRenderer:
    """Turns a template plus the current TurnState into prompt text."""

    def __init__(self) -> None:
        self._formatter = _StateFormatter()

    def render(self, template: PromptTemplate, state: TurnState) -> RenderedPrompt:
        views = {name: _ScopeView(scope) for name, scope in state.scopes().items()}
        try:
            text = self._formatter.vformat(template.text, (), views)
        except _MissingField as e:
            field = e.args[0]
            raise RenderError(
                f"Template '{template.name}' references missing state field '{field}'",
                field=field,
                template=template.name,
            ) from e
        except (ValueError, IndexError) as e:
            raise RenderError(
                f"Template '{template.name}' is malformed: {e}",
                template=template.name,
            ) from e

        log.debug("prompt.rendered", template=template.name, chars=len(text))
        return RenderedPrompt(text=text, completion=template.completion, template_name=template.name)


# ─────────────────────────────────────────────────────────────────────────────
# Template loading
# ─────────────────────────────────────────────────────────────────────────────


class PromptManager:
    """
    Named template store. Templates are added in code or loaded lazily from
    `prompts_dir` the first time they are requested.
    """

    def __init__(self, prompts_dir: Optional[str | Path] = None) -> None:
        self._dir = Path(prompts_dir) if prompts_dir else None
        self._templates: dict[str, PromptTemplate] = {}

    def add(self, template: PromptTemplate) -> None:
        self._templates[template.name] = template

    def has(self, name: str) -> bool:
        if name in self._templates:
            return True
        return self._dir is not None and (self._dir / name / _PROMPT_FILE).is_file()

    def get(self, name: str) -> PromptTemplate:
        if name not in self._templates:
            self._templates[name] = self._load(name)
        return self._templates[name]

    def _load(self, name: str) -> PromptTemplate:
        if self._dir is None:
            raise RenderError(f"Prompt '{name}' is not registered", template=name)

        folder = self._dir / name
        prompt_file = folder / _PROMPT_FILE
        if not prompt_file.is_file():
            raise RenderError(f"Prompt '{name}' not found under {self._dir}", template=name)

        text = prompt_file.read_text(encoding="utf-8")
        config: dict = {}
        config_file = folder / _CONFIG_FILE
        if config_file.is_file():
            try:
                config = json.loads(config_file.read_text(encoding="utf-8")) or {}
            except json.JSONDecodeError as e:
                raise RenderError(f"Prompt '{name}' has an invalid {_CONFIG_FILE}: {e}", template=name) from e

        try:
            template = PromptTemplate(
                name=name,
                text=text,
                completion=CompletionSettings(**config.get("completion", {})),
                description=config.get("description", ""),
            )
        except ValidationError as e:
            raise RenderError(f"Prompt '{name}' has invalid completion settings: {e}", template=name) from e

        log.info("prompt.loaded", template=name, path=str(folder))
        return template
