"""
Exception hierarchy for docconfidence.

Hierarchy:
    BaseDocConfidenceError (base)
    ├── DocumentReadError           # page source unreadable, aborts the whole batch
    ├── ModelInvocationError        # a model call failed
    ├── ConfidenceCalculationError  # numeric/structural scoring failure, always recovered
    └── ConfigurationError          # invalid or unsupported settings

Scoring problems never escape the calculator; they resolve to
``ConfidenceScore.unavailable()``. ``DocumentReadError`` is the only error that
stops a field extraction batch.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional


class BaseDocConfidenceError(Exception):
    """Base exception carrying an error code and structured details."""

    default_code = "DOCCONF000"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.details: Dict[str, Any] = dict(details or {})
        self.timestamp = datetime.now(timezone.utc)

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": dict(self.details),
            "timestamp": self.timestamp.isoformat(),
        }


def _with_context(details: Optional[Dict[str, Any]], **context: Any) -> Dict[str, Any]:
    merged = dict(details or {})
    merged.update({key: value for key, value in context.items() if value is not None})
    return merged


class DocumentReadError(BaseDocConfidenceError):
    """The page source (e.g. a PDF) cannot be opened or decoded."""

    default_code = "DOCCONF100"

    def __init__(
        self,
        message: str,
        file_path: Optional[str] = None,
        page_number: Optional[int] = None,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message,
            error_code=error_code,
            details=_with_context(details, file_path=str(file_path) if file_path else None, page_number=page_number),
        )


class ModelInvocationError(BaseDocConfidenceError):
    """A call to the language model failed."""

    default_code = "DOCCONF200"

    def __init__(
        self,
        message: str,
        model_name: Optional[str] = None,
        operation: Optional[str] = None,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message,
            error_code=error_code,
            details=_with_context(details, model_name=model_name, operation=operation),
        )


class ConfidenceCalculationError(BaseDocConfidenceError):
    """Token probability data could not be turned into a score."""

    default_code = "DOCCONF300"

    def __init__(
        self,
        message: str,
        strategy: Optional[str] = None,
        token_index: Optional[int] = None,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message,
            error_code=error_code,
            details=_with_context(details, strategy=strategy, token_index=token_index),
        )


class ConfigurationError(BaseDocConfidenceError):
    """A configuration value is missing, malformed or unsupported."""

    default_code = "DOCCONF400"

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        value: Any = None,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message,
            error_code=error_code,
            details=_with_context(details, config_key=config_key, value=repr(value) if value is not None else None),
        )


__all__ = [
    "BaseDocConfidenceError",
    "ConfidenceCalculationError",
    "ConfigurationError",
    "DocumentReadError",
    "ModelInvocationError",
]
