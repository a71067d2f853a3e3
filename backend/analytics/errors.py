"""
Module: errors.py
Description: Error taxonomy for the analytics engine.

Three failure kinds escape the engine; everything else (empty inputs,
zero denominators) degrades to default values instead of raising.

    AnalyticsError
    ├── InsufficientDataError   not enough history for the call
    ├── InvalidParameterError   malformed range or non-positive amount
    └── UpstreamDataError       a data source failed

Example:
    try:
        prediction = await engine.predict_spending(query)
    except InsufficientDataError as e:
        show_message(e.message)

Author: Budget Analytics Team
Created: 2025-02-10
"""

from typing import Any, Dict, Optional


class AnalyticsError(Exception):
    """Base class for all analytics engine errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context.
    """

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"details={self.details!r})"
        )


class InsufficientDataError(AnalyticsError):
    """Raised when history is below the minimum needed for a computation.

    Not retried; the message is meant to be shown to the user.
    """

    def __init__(self, message: str, *, required: int = 0, available: int = 0) -> None:
        super().__init__(message, details={"required": required, "available": available})
        self.required = required
        self.available = available


class InvalidParameterError(AnalyticsError, ValueError):
    """Raised for malformed date ranges or non-positive required amounts."""

    def __init__(self, message: str, *, parameter: Optional[str] = None, value: Any = None) -> None:
        details = {}
        if parameter is not None:
            details = {"parameter": parameter, "value": value}
        super().__init__(message, details=details)
        self.parameter = parameter


class UpstreamDataError(AnalyticsError):
    """Raised when a transaction, category or budget source fails.

    Retry policy belongs to the source, so the engine re-raises as-is.
    """

    def __init__(self, message: str, *, source: Optional[str] = None) -> None:
        super().__init__(message, details={"source": source} if source else None)
        self.source = source
