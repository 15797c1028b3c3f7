from turnpipe.safety.moderator import (
    FLAGGED_INPUT_ACTION,
    FLAGGED_OUTPUT_ACTION,
    INPUT_SCOPES,
    OUTPUT_SCOPES,
    RESULT_ENTITY,
    ModerationScope,
    Moderator,
)

__all__ = [
    "Moderator",
    "ModerationScope",
    "INPUT_SCOPES",
    "OUTPUT_SCOPES",
    "FLAGGED_INPUT_ACTION",
    "FLAGGED_OUTPUT_ACTION",
    "RESULT_ENTITY",
]
