"""
config/settings.py — turnpipe Runtime Settings

Merges config.yaml (defaults/structure) with .env / environment (secrets).
Pydantic-powered: all fields are validated and typed.

  - Field validators reject bad values at parse time (unknown provider,
    unknown moderation scope, bad log level, non-positive timeouts)
  - validate_all() performs cross-field startup validation and raises
    ConfigError with a readable message listing every problem found
  - load_settings() respects the TURNPIPE_CONFIG env var as a fallback
    when no explicit config_path argument is given
"""

from __future__ import annotations

import os
import threading as _threading
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from turnpipe.actions.defaults import DEFAULT_FLAGGED_INPUT_MESSAGE, DEFAULT_FLAGGED_OUTPUT_MESSAGE


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(Exception):
    """Raised by validate_all() when one or more config problems are found."""


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

_VALID_PROVIDERS = {"openai", "ollama"}
_VALID_SCOPES = {"input", "output", "both"}
_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class RetryConfig(BaseModel):
    """Opt-in backoff for transient completion errors. 1 attempt = no retry."""
    max_attempts: int = 1
    base_delay: float = 1.0
    max_delay: float = 30.0

    @field_validator("max_attempts")
    @classmethod
    def _positive_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("completion.retry.max_attempts must be >= 1")
        return v


class CompletionConfig(BaseModel):
    provider: str = "openai"
    model: str = "gpt-4o-mini"
    base_url: Optional[str] = None
    timeout_seconds: float = 60.0
    retry: RetryConfig = Field(default_factory=RetryConfig)

    @field_validator("provider")
    @classmethod
    def _known_provider(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in _VALID_PROVIDERS:
            raise ValueError(
                f"completion.provider '{v}' is not supported. "
                f"Supported: {sorted(_VALID_PROVIDERS)}"
            )
        return v

    @field_validator("timeout_seconds")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("completion.timeout_seconds must be > 0")
        return v


class ModerationConfig(BaseModel):
    enabled: bool = True
    model: str = "omni-moderation-latest"
    scope: str = "both"
    endpoint: Optional[str] = None
    timeout_seconds: float = 30.0

    @field_validator("scope")
    @classmethod
    def _valid_scope(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in _VALID_SCOPES:
            raise ValueError(
                f"moderation.scope must be one of {sorted(_VALID_SCOPES)}, got '{v}'"
            )
        return v


class PromptsConfig(BaseModel):
    directory: str = "./prompts"
    default_template: str = "chat"


class ActionsConfig(BaseModel):
    flagged_input_message: str = DEFAULT_FLAGGED_INPUT_MESSAGE
    flagged_output_message: str = DEFAULT_FLAGGED_OUTPUT_MESSAGE


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 100
    backup_count: int = 5
    console_output: bool = False
    json_format: bool = True

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    turnpipe runtime settings.

    Priority (highest to lowest):
      1. Init arguments (config.yaml sections)
      2. Environment variables
      3. .env file
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    # -- Secrets from .env ---------------------------------------------------
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    openai_organization: Optional[str] = Field(default=None, alias="OPENAI_ORGANIZATION")

    # -- Structured config (from config.yaml) --------------------------------
    completion: CompletionConfig = Field(default_factory=CompletionConfig)
    moderation: ModerationConfig = Field(default_factory=ModerationConfig)
    prompts: PromptsConfig = Field(default_factory=PromptsConfig)
    actions: ActionsConfig = Field(default_factory=ActionsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("completion", mode="before")
    @classmethod
    def _coerce_completion(cls, v: Any) -> Any:
        return CompletionConfig(**v) if isinstance(v, dict) else v

    @field_validator("moderation", mode="before")
    @classmethod
    def _coerce_moderation(cls, v: Any) -> Any:
        return ModerationConfig(**v) if isinstance(v, dict) else v

    @field_validator("prompts", mode="before")
    @classmethod
    def _coerce_prompts(cls, v: Any) -> Any:
        return PromptsConfig(**v) if isinstance(v, dict) else v

    @field_validator("actions", mode="before")
    @classmethod
    def _coerce_actions(cls, v: Any) -> Any:
        return ActionsConfig(**v) if isinstance(v, dict) else v

    @field_validator("logging", mode="before")
    @classmethod
    def _coerce_logging(cls, v: Any) -> Any:
        return LoggingConfig(**v) if isinstance(v, dict) else v

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Pydantic field validators catch type/value errors at parse time; this
        method catches cross-field and runtime problems that Pydantic can't see.
        """
        errors: list[str] = []

        # ── API key for the OpenAI provider ──────────────────────────────────
        if self.completion.provider == "openai" and not self.openai_api_key:
            errors.append(
                "completion.provider 'openai' requires OPENAI_API_KEY to be set "
                "in your environment or .env file."
            )

        # ── Moderation always goes through the OpenAI endpoint ───────────────
        if self.moderation.enabled and not self.openai_api_key:
            errors.append(
                "moderation.enabled is true but OPENAI_API_KEY is not set. "
                "Set the key, or disable moderation explicitly."
            )

        # ── Retry bounds ─────────────────────────────────────────────────────
        retry = self.completion.retry
        if retry.max_delay < retry.base_delay:
            errors.append(
                f"completion.retry.max_delay ({retry.max_delay}) must be >= "
                f"base_delay ({retry.base_delay})."
            )

        # ── Prompts directory exists ─────────────────────────────────────────
        if not Path(self.prompts.directory).is_dir():
            errors.append(
                f"prompts.directory '{self.prompts.directory}' does not exist."
            )

        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nturnpipe startup failed: {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your .env file "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

_singleton: Optional[Settings] = None
_singleton_lock = _threading.Lock()

_KNOWN_SECTIONS = {"completion", "moderation", "prompts", "actions", "logging"}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. TURNPIPE_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("TURNPIPE_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings by merging config.yaml with environment variables."""
    global _singleton
    yaml_data = _load_yaml(_resolve_config_path(config_path))
    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}

    instance = Settings(**init_kwargs)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """
    Return the global Settings singleton, loading it from the default
    config path on first use.
    """
    global _singleton
    if _singleton is not None:
        return _singleton
    with _singleton_lock:
        if _singleton is None:
            _singleton = Settings(
                **{
                    k: v
                    for k, v in _load_yaml(_resolve_config_path(None)).items()
                    if k in _KNOWN_SECTIONS
                }
            )
        return _singleton
