"""Logging package with Rich-based progress reporting."""

from .info_log import InfoLog
from .rich_logger import QuietProgressReporter, RichProgressReporter, configure_logging

__all__ = ["InfoLog", "QuietProgressReporter", "RichProgressReporter", "configure_logging"]
