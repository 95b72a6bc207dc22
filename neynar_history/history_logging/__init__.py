"""
Structured logging for Neynar History.

JSON logs with timestamp, fid, event_type. Use get_logger() in every module.
"""

from neynar_history.history_logging.logger import bind_identity, get_logger

__all__ = ["bind_identity", "get_logger"]
