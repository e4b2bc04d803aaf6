"""Shared error codes and exceptions for the metrics engine.

Registration and mutation errors are raised synchronously at the call site.
Push failures are raised only to the caller of the push operation.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    INVALID_NAME = "INVALID_NAME"
    DUPLICATE_NAME = "DUPLICATE_NAME"
    UNREGISTERED = "UNREGISTERED"
    LABEL_MISMATCH = "LABEL_MISMATCH"
    INVALID_DELTA = "INVALID_DELTA"
    CARDINALITY_LIMIT = "CARDINALITY_LIMIT"
    ENCODE_FAILURE = "ENCODE_FAILURE"
    PUSH_FAILED = "PUSH_FAILED"
    PUSH_TIMEOUT = "PUSH_TIMEOUT"


class MetricsError(Exception):
    """Base class for all metrics engine errors."""

    code: ErrorCode = ErrorCode.INVALID_NAME

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidNameError(MetricsError, ValueError):
    """Raised for malformed metric names, label names or bucket bounds."""

    code = ErrorCode.INVALID_NAME


class DuplicateNameError(MetricsError, ValueError):
    """Raised when a name is already registered with a different definition."""

    code = ErrorCode.DUPLICATE_NAME

    def __init__(self, name: str, message: Optional[str] = None):
        self.name = name
        super().__init__(message or f"Metric {name!r} is already registered with a different definition")


class UnregisteredError(MetricsError, RuntimeError):
    """Raised when a retired (unregistered) family is used."""

    code = ErrorCode.UNREGISTERED

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Metric {name!r} has been unregistered")


class LabelMismatchError(MetricsError, ValueError):
    """Raised when supplied label names differ from the family schema."""

    code = ErrorCode.LABEL_MISMATCH


class InvalidDeltaError(MetricsError, ValueError):
    """Raised on a negative or NaN counter increment."""

    code = ErrorCode.INVALID_DELTA


class CardinalityLimitError(MetricsError, RuntimeError):
    """Raised when a family would exceed its configured series limit."""

    code = ErrorCode.CARDINALITY_LIMIT

    def __init__(self, name: str, limit: int):
        self.name = name
        self.limit = limit
        super().__init__(f"Metric {name!r} reached its limit of {limit} series")


class EncodingError(MetricsError, ValueError):
    """Raised when text cannot be represented in the exposition format."""

    code = ErrorCode.ENCODE_FAILURE


class PushFailedError(MetricsError):
    """Raised when a push gateway request fails.

    ``status_code`` is ``None`` when no HTTP response was received.
    ``timed_out`` is set when the caller's deadline expired.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: str = "",
        timed_out: bool = False,
        url: Optional[str] = None,
    ):
        self.status_code = status_code
        self.body = body
        self.timed_out = timed_out
        self.url = url
        self.code = ErrorCode.PUSH_TIMEOUT if timed_out else ErrorCode.PUSH_FAILED
        super().__init__(message)


__all__ = [
    "ErrorCode",
    "MetricsError",
    "InvalidNameError",
    "DuplicateNameError",
    "UnregisteredError",
    "LabelMismatchError",
    "InvalidDeltaError",
    "CardinalityLimitError",
    "EncodingError",
    "PushFailedError",
]
