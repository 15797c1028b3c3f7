"""
turnpipe — a moderated, single-turn planning pipeline for conversational bots.

    render prompt → moderate input → complete → parse plan → moderate output → dispatch
"""

__version__ = "0.1.0"
