"""Failure taxonomy for the re-ranking pipeline.

Raw failures from external calls are translated into a structured
:class:`ErrorClassification` exactly once, at the boundary where the call is
made. Everything downstream (retry decisions, fallback decisions, HTTP status
mapping) works on the classification rather than on message text.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable

DEFAULT_PROVIDER_NAMES = ("cohere",)


class ErrorType(str, Enum):
    API_ERROR = "API_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    RATE_LIMIT_ERROR = "RATE_LIMIT_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    SYSTEM_ERROR = "SYSTEM_ERROR"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True, slots=True)
class ErrorClassification:
    type: ErrorType
    severity: Severity
    retryable: bool
    fallback_required: bool


RATE_LIMIT = ErrorClassification(ErrorType.RATE_LIMIT_ERROR, Severity.MEDIUM, True, True)
TIMEOUT = ErrorClassification(ErrorType.TIMEOUT_ERROR, Severity.MEDIUM, True, True)
API = ErrorClassification(ErrorType.API_ERROR, Severity.HIGH, True, True)
NETWORK = ErrorClassification(ErrorType.NETWORK_ERROR, Severity.HIGH, True, True)
VALIDATION = ErrorClassification(ErrorType.VALIDATION_ERROR, Severity.LOW, False, False)
SYSTEM = ErrorClassification(ErrorType.SYSTEM_ERROR, Severity.CRITICAL, True, True)


def _contains_any(message: str, needles: Iterable[str]) -> bool:
    return any(needle in message for needle in needles)


def classify_message(
    message: str, provider_names: Iterable[str] = DEFAULT_PROVIDER_NAMES
) -> ErrorClassification:
    """Map free-form failure text onto the error taxonomy.

    Checks run in priority order: provider/API failures first (with rate-limit
    and timeout sub-cases), then network, then validation. Anything else is a
    critical but retryable system error.
    """
    text = message.lower()
    if "api" in text or _contains_any(text, (name.lower() for name in provider_names)):
        if _contains_any(text, ("rate limit", "429")):
            return RATE_LIMIT
        if _contains_any(text, ("timeout", "timed out")):
            return TIMEOUT
        return API
    if _contains_any(text, ("network", "connection", "fetch")):
        return NETWORK
    if _contains_any(text, ("validation", "invalid", "missing")):
        return VALIDATION
    return SYSTEM


class RerankError(Exception):
    """Base class for pipeline failures that carry a classification."""

    def __init__(self, message: str, classification: ErrorClassification | None = None):
        super().__init__(message)
        self.classification = classification


class ProviderError(RerankError):
    """Failure of an external scoring, embedding, or search call."""

    def __init__(
        self,
        message: str,
        classification: ErrorClassification | None = None,
        provider_names: Iterable[str] = DEFAULT_PROVIDER_NAMES,
    ):
        super().__init__(message, classification or classify_message(message, provider_names))


class RequestValidationError(RerankError):
    """Malformed request; surfaces as an HTTP 400 and is never retried."""

    def __init__(self, message: str):
        super().__init__(message, VALIDATION)


def parse_flag(value: Any, field_name: str) -> bool:
    """Accept only JSON booleans for request flags."""
    if not isinstance(value, bool):
        raise RequestValidationError(f"Invalid {field_name}: expected true or false")
    return value


def classify_error(
    error: BaseException, provider_names: Iterable[str] = DEFAULT_PROVIDER_NAMES
) -> ErrorClassification:
    if isinstance(error, RerankError) and error.classification is not None:
        return error.classification
    return classify_message(str(error), provider_names)
