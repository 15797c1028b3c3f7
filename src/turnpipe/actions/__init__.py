"""
actions/ — named action handlers for DO commands.
"""

from turnpipe.actions.defaults import register_default_actions
from turnpipe.actions.registry import ActionEntry, ActionHandler, ActionOutcome, ActionRegistry

__all__ = [
    "ActionEntry",
    "ActionHandler",
    "ActionOutcome",
    "ActionRegistry",
    "register_default_actions",
]
