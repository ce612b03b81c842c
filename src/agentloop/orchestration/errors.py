"""Error taxonomy for the turn driver.

Provider and stream failures end a run and are reported once through the
callback sink as a :class:`ClassifiedError`. Tool failures never reach this
module's classification path; the dispatcher turns them into text the model
can read. Cancellation is not an error.
"""

from __future__ import annotations

import json
import logging
import traceback
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

import httpx
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AuthenticationError,
    BadRequestError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
)

__all__ = [
    "ErrorKind",
    "ErrorCode",
    "ClassifiedError",
    "AgentLoopError",
    "SettingsError",
    "ProviderError",
    "StreamError",
    "DispatchCancelled",
    "ContentBlockedError",
    "classify_error",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Exceptions
# -----------------------------------------------------------------------------


class AgentLoopError(Exception):
    """Base class for errors raised by the turn driver."""


class SettingsError(AgentLoopError, ValueError):
    """Raised when run configuration fails validation."""


class ProviderError(AgentLoopError):
    """Raised when the model provider cannot produce a fragment stream."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class StreamError(AgentLoopError):
    """Raised when a fragment stream fails mid-consumption."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class ContentBlockedError(StreamError):
    """Raised when the provider ends a turn with a safety block."""

    def __init__(self, message: str = "Response was blocked due to safety policy.") -> None:
        super().__init__(message)


class DispatchCancelled(AgentLoopError):
    """Raised when a tool dispatch is requested after cancellation."""

    def __init__(self, message: str = "Tool dispatch cancelled before submission") -> None:
        super().__init__(message)


# -----------------------------------------------------------------------------
# Classified Errors
# -----------------------------------------------------------------------------


class ErrorKind(str, Enum):
    """Where a failure originated."""

    PROVIDER = "provider"
    STREAM = "stream"
    TOOL = "tool"
    LIMIT = "limit"
    CANCELLATION = "cancellation"


class ErrorCode:
    """Stable error codes surfaced to callers."""

    INVALID_API_KEY = "INVALID_API_KEY"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    CONTENT_BLOCKED = "CONTENT_BLOCKED"
    MODEL_NOT_FOUND = "MODEL_NOT_FOUND"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    NETWORK_ERROR = "NETWORK_ERROR"
    API_ERROR = "API_ERROR"
    MAX_TURNS_EXCEEDED = "MAX_TURNS_EXCEEDED"


@dataclass(slots=True, frozen=True)
class ClassifiedError:
    """A run-ending failure in a form suitable for display.

    Attributes:
        kind: Origin of the failure.
        code: Stable error code (see :class:`ErrorCode`).
        message: Short human-readable title.
        details: Longer description, usually including the original message.
        suggestion: Optional hint on how to recover.
    """

    kind: ErrorKind
    code: str
    message: str
    details: str = ""
    suggestion: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        payload: dict[str, Any] = {
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }
        if self.suggestion:
            payload["suggestion"] = self.suggestion
        return payload

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


def _extract_message(error: BaseException | Mapping[str, Any] | Any) -> tuple[str, str, str]:
    """Return ``(message, details, status)`` for any raised or returned error."""

    message = "An unexpected API error occurred"
    details = ""
    status = ""
    if isinstance(error, BaseException):
        message = str(error) or type(error).__name__
        details = "".join(traceback.format_exception_only(type(error), error)).strip()
        body = getattr(error, "body", None)
        if isinstance(body, Mapping):
            inner = body.get("error", body)
            if isinstance(inner, Mapping) and isinstance(inner.get("status"), str):
                status = inner["status"]
    elif isinstance(error, Mapping):
        inner = error.get("error")
        if isinstance(inner, Mapping) and isinstance(inner.get("message"), str):
            message = inner["message"]
            if isinstance(inner.get("status"), str):
                status = inner["status"]
        elif isinstance(error.get("message"), str):
            message = error["message"]
        try:
            details = json.dumps(error, indent=2, default=str)
        except (TypeError, ValueError):
            details = "Could not serialize the error payload."
    else:
        message = str(error)
        details = str(error)
    return message, details, status


def classify_error(error: Any, kind: ErrorKind = ErrorKind.PROVIDER) -> ClassifiedError:
    """Map an exception (or error payload) to a :class:`ClassifiedError`.

    Known openai/httpx exception types are matched first; anything else falls
    back to inspecting the message text and provider status string.

    Args:
        error: The raised exception, a provider error payload, or any value.
        kind: Failure origin recorded on the result.

    Returns:
        The classified error.
    """
    if isinstance(error, (ProviderError, StreamError)) and error.cause is not None:
        classified = classify_error(error.cause, kind)
        LOGGER.debug("Classified wrapped %s as %s", type(error.cause).__name__, classified.code)
        return classified

    message, details, status = _extract_message(error)
    lower_message = message.lower()
    lower_status = status.lower()

    if (
        isinstance(error, (AuthenticationError, PermissionDeniedError))
        or "api key not valid" in lower_message
        or "api key not found" in lower_message
        or "incorrect api key" in lower_message
        or lower_status == "permission_denied"
    ):
        return ClassifiedError(
            kind=kind,
            code=ErrorCode.INVALID_API_KEY,
            message="Invalid or Missing API Key",
            details="The API key is missing, invalid, or has expired.",
            suggestion="Check the configured api_key or the AGENTLOOP_API_KEY environment variable.",
        )

    if (
        isinstance(error, RateLimitError)
        or lower_status == "resource_exhausted"
        or "429" in lower_message
        or "rate limit" in lower_message
    ):
        return ClassifiedError(
            kind=kind,
            code=ErrorCode.RATE_LIMIT_EXCEEDED,
            message="API Rate Limit Exceeded",
            details=f"Too many requests or quota exceeded. Original error: {message}",
            suggestion="Wait before retrying, or check the plan and billing details of the account.",
        )

    if (
        isinstance(error, ContentBlockedError)
        or "response was blocked" in lower_message
        or "safety policy" in lower_message
    ):
        return ClassifiedError(
            kind=kind,
            code=ErrorCode.CONTENT_BLOCKED,
            message="Response Blocked by Safety Filter",
            details="The model's response was blocked due to the safety policy.",
            suggestion="Rephrase the request.",
        )

    if (
        isinstance(error, NotFoundError)
        or lower_status == "not_found"
        or "404" in lower_message
        or "model not found" in lower_message
    ):
        return ClassifiedError(
            kind=kind,
            code=ErrorCode.MODEL_NOT_FOUND,
            message="Model Not Found",
            details=f"The requested model could not be found. Original error: {message}",
            suggestion="Check the model name and that the account has access to it.",
        )

    if (
        isinstance(error, BadRequestError)
        or lower_status == "invalid_argument"
        or "400" in lower_message
        or "bad request" in lower_message
    ):
        return ClassifiedError(
            kind=kind,
            code=ErrorCode.INVALID_ARGUMENT,
            message="Invalid Request Sent",
            details=f"The request was malformed or contained invalid parameters. Details: {message}",
        )

    if (
        isinstance(error, (APIConnectionError, APITimeoutError, httpx.TransportError, ConnectionError))
        or "failed to fetch" in lower_message
    ):
        return ClassifiedError(
            kind=kind,
            code=ErrorCode.NETWORK_ERROR,
            message="Network Error",
            details=f"A network problem occurred. Original error: {details or message}",
            suggestion="Check the connection and the configured base_url.",
        )

    if isinstance(error, APIStatusError):
        details = f"HTTP {error.status_code}: {details}"

    return ClassifiedError(kind=kind, code=ErrorCode.API_ERROR, message=message, details=details)
