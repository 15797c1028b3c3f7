"""
brain/types.py — turnpipe Brain Data Models

Shared types used by the completion and moderation clients, the prompt
renderer and the moderator. Providers map their native response shapes
into these types.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ─────────────────────────────────────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────────────────────────────────────


class Provider(str, Enum):
    OPENAI = "openai"
    OLLAMA = "ollama"       # OpenAI-compatible endpoint, no key required


class ModerationCategory(str, Enum):
    """The fixed category set every ModerationResult covers."""
    HATE = "hate"
    HATE_THREATENING = "hate/threatening"
    SELF_HARM = "self-harm"
    SEXUAL = "sexual"
    SEXUAL_MINORS = "sexual/minors"
    VIOLENCE = "violence"
    VIOLENCE_GRAPHIC = "violence/graphic"


ALL_CATEGORIES: frozenset[ModerationCategory] = frozenset(ModerationCategory)


# ─────────────────────────────────────────────────────────────────────────────
# Completion config
# ─────────────────────────────────────────────────────────────────────────────


class CompletionSettings(BaseModel):
    """
    Per-prompt generation parameters.
    Declared by each prompt template and passed through rendering unchanged.
    """
    model_config = ConfigDict(frozen=True)

    max_tokens: int = Field(default=256, gt=0)
    temperature: float = Field(default=0.0, ge=0.0, le=1.0)
    top_p: float = Field(default=1.0, ge=0.0, le=1.0)


# ─────────────────────────────────────────────────────────────────────────────
# Moderation result
# ─────────────────────────────────────────────────────────────────────────────


class ModerationResult(BaseModel):
    """
    Verdict for one piece of text. Produced fresh per moderation call.

    category_flags and category_scores always cover all seven categories;
    partial results are rejected at construction time.
    """
    model_config = ConfigDict(frozen=True)

    flagged: bool
    category_flags: dict[ModerationCategory, bool]
    category_scores: dict[ModerationCategory, float]

    @field_validator("category_flags", "category_scores")
    @classmethod
    def _complete_category_set(cls, v: dict) -> dict:
        missing = ALL_CATEGORIES - set(v)
        if missing:
            raise ValueError(
                f"moderation result is missing categories: "
                f"{sorted(c.value for c in missing)}"
            )
        return v

    @model_validator(mode="after")
    def _same_categories(self) -> "ModerationResult":
        if set(self.category_flags) != set(self.category_scores):
            raise ValueError("category_flags and category_scores must cover the same categories")
        return self

    @classmethod
    def from_mappings(
        cls,
        flags: Mapping[Any, bool],
        scores: Mapping[Any, float],
        flagged: Optional[bool] = None,
    ) -> "ModerationResult":
        """
        Build a result from string- or enum-keyed mappings.
        `flagged` defaults to True when any category is flagged.
        """
        category_flags = {ModerationCategory(k): bool(v) for k, v in flags.items()}
        category_scores = {ModerationCategory(k): float(v) for k, v in scores.items()}
        if flagged is None:
            flagged = any(category_flags.values())
        return cls(
            flagged=flagged,
            category_flags=category_flags,
            category_scores=category_scores,
        )

    @property
    def flagged_categories(self) -> list[ModerationCategory]:
        return [c for c in ModerationCategory if self.category_flags.get(c)]
