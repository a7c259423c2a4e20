"""Утилиты приложения."""

from obligation_tracker.utils.logger import setup_logging, get_logger
from obligation_tracker.utils.cache import CacheStore, WindowCatalogCache
from obligation_tracker.utils.error_handler import ErrorHandler, safe_handler
from obligation_tracker.utils.exceptions import (
    ObligationTrackerError,
    ValidationError,
    BusinessLogicError,
    DatabaseError,
    ObligationNotFoundError,
    InvalidObligationError,
    WindowNotFoundError,
    NoMatchingOccurrenceError,
    CommitConflictError,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "CacheStore",
    "WindowCatalogCache",
    "ErrorHandler",
    "safe_handler",
    "ObligationTrackerError",
    "ValidationError",
    "BusinessLogicError",
    "DatabaseError",
    "ObligationNotFoundError",
    "InvalidObligationError",
    "WindowNotFoundError",
    "NoMatchingOccurrenceError",
    "CommitConflictError",
]
