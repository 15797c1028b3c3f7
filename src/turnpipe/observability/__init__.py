"""
observability/ — structured logging for turnpipe.
"""

from turnpipe.observability.logger import get_logger, setup_logging, turn_context

__all__ = ["get_logger", "setup_logging", "turn_context"]
