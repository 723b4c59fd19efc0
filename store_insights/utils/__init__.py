"""Utils module for the Store Insights Pipeline."""

from store_insights.utils.formatters import generate_analysis_report, save_report
from store_insights.utils.logger import LogContext, get_logger, setup_logging
from store_insights.utils.retry import (
    AppError,
    AppTimeoutError,
    ErrorHandler,
    is_retryable_error,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "LogContext",
    "generate_analysis_report",
    "save_report",
    "is_retryable_error",
    "ErrorHandler",
    "AppError",
    "AppTimeoutError",
]
