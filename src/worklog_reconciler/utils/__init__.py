"""Utility modules for worklog reconciler."""

from worklog_reconciler.utils.duration import format_hours, parse_duration
from worklog_reconciler.utils.logging import get_logger, setup_logging
from worklog_reconciler.utils.storage import StorageManager

__all__ = ["format_hours", "get_logger", "parse_duration", "setup_logging", "StorageManager"]
