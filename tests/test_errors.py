"""Tests for orchestration/errors.py."""

from __future__ import annotations

import httpx
import openai
import pytest

from agentloop.orchestration.errors import (
    ClassifiedError,
    ContentBlockedError,
    ErrorCode,
    ErrorKind,
    ProviderError,
    StreamError,
    classify_error,
)

_REQUEST = httpx.Request("POST", "https://api.example.test/v1/chat/completions")


def _response(status: int) -> httpx.Response:
    return httpx.Response(status, request=_REQUEST)


class TestClassifyOpenAIErrors:
    """Known openai/httpx exception types map to fixed codes."""

    def test_authentication(self) -> None:
        error = openai.AuthenticationError("unauthorized", response=_response(401), body=None)
        classified = classify_error(error)
        assert classified.code == ErrorCode.INVALID_API_KEY
        assert classified.kind is ErrorKind.PROVIDER
        assert classified.suggestion

    def test_permission_denied(self) -> None:
        error = openai.PermissionDeniedError("forbidden", response=_response(403), body=None)
        assert classify_error(error).code == ErrorCode.INVALID_API_KEY

    def test_rate_limit(self) -> None:
        error = openai.RateLimitError("slow down", response=_response(429), body=None)
        classified = classify_error(error)
        assert classified.code == ErrorCode.RATE_LIMIT_EXCEEDED
        assert "slow down" in classified.details

    def test_not_found(self) -> None:
        error = openai.NotFoundError("no such model", response=_response(404), body=None)
        assert classify_error(error).code == ErrorCode.MODEL_NOT_FOUND

    def test_bad_request(self) -> None:
        error = openai.BadRequestError("invalid temperature", response=_response(400), body=None)
        assert classify_error(error).code == ErrorCode.INVALID_ARGUMENT

    def test_connection_error(self) -> None:
        error = openai.APIConnectionError(request=_REQUEST)
        assert classify_error(error).code == ErrorCode.NETWORK_ERROR

    def test_timeout(self) -> None:
        error = openai.APITimeoutError(request=_REQUEST)
        assert classify_error(error).code == ErrorCode.NETWORK_ERROR

    def test_httpx_transport_error(self) -> None:
        assert classify_error(httpx.ConnectError("refused")).code == ErrorCode.NETWORK_ERROR

    def test_server_error_falls_back_to_api_error(self) -> None:
        error = openai.InternalServerError("server exploded", response=_response(500), body=None)
        classified = classify_error(error)
        assert classified.code == ErrorCode.API_ERROR
        assert classified.details.startswith("HTTP 500:")


class TestClassifyByMessage:
    """Unknown exception types are classified from their text."""

    @pytest.mark.parametrize(
        ("message", "code"),
        [
            ("API key not valid. Please pass a valid API key.", ErrorCode.INVALID_API_KEY),
            ("Incorrect API key provided", ErrorCode.INVALID_API_KEY),
            ("HTTP 429 Too Many Requests", ErrorCode.RATE_LIMIT_EXCEEDED),
            ("rate limit reached for requests", ErrorCode.RATE_LIMIT_EXCEEDED),
            ("Model not found: gpt-99", ErrorCode.MODEL_NOT_FOUND),
            ("400 Bad Request", ErrorCode.INVALID_ARGUMENT),
            ("Failed to fetch", ErrorCode.NETWORK_ERROR),
            ("something odd happened", ErrorCode.API_ERROR),
        ],
    )
    def test_message_heuristics(self, message: str, code: str) -> None:
        assert classify_error(RuntimeError(message)).code == code

    def test_empty_message_uses_type_name(self) -> None:
        classified = classify_error(RuntimeError())
        assert classified.code == ErrorCode.API_ERROR
        assert classified.message == "RuntimeError"

    def test_content_blocked(self) -> None:
        classified = classify_error(ContentBlockedError(), ErrorKind.STREAM)
        assert classified.code == ErrorCode.CONTENT_BLOCKED
        assert classified.kind is ErrorKind.STREAM

    def test_builtin_connection_error(self) -> None:
        assert classify_error(ConnectionResetError("reset")).code == ErrorCode.NETWORK_ERROR


class TestClassifyPayloads:
    """Provider error payloads are classified by message and status."""

    def test_status_resource_exhausted(self) -> None:
        payload = {"error": {"message": "Quota used up", "status": "RESOURCE_EXHAUSTED"}}
        classified = classify_error(payload)
        assert classified.code == ErrorCode.RATE_LIMIT_EXCEEDED
        assert "Quota used up" in classified.details

    def test_status_not_found(self) -> None:
        payload = {"error": {"message": "Unknown", "status": "NOT_FOUND"}}
        assert classify_error(payload).code == ErrorCode.MODEL_NOT_FOUND

    def test_status_invalid_argument(self) -> None:
        payload = {"error": {"message": "Bad field", "status": "INVALID_ARGUMENT"}}
        assert classify_error(payload).code == ErrorCode.INVALID_ARGUMENT

    def test_plain_message_payload(self) -> None:
        classified = classify_error({"message": "mystery"})
        assert classified.code == ErrorCode.API_ERROR
        assert classified.message == "mystery"

    def test_non_exception_value(self) -> None:
        classified = classify_error("totally unexpected")
        assert classified.code == ErrorCode.API_ERROR
        assert classified.message == "totally unexpected"


class TestWrappedErrors:
    """ProviderError and StreamError are classified by their cause."""

    def test_provider_error_cause(self) -> None:
        cause = openai.RateLimitError("slow down", response=_response(429), body=None)
        error = ProviderError("request failed", cause=cause)
        assert classify_error(error).code == ErrorCode.RATE_LIMIT_EXCEEDED

    def test_stream_error_cause_keeps_kind(self) -> None:
        error = StreamError("stream broke", cause=httpx.ReadError("eof"))
        classified = classify_error(error, ErrorKind.STREAM)
        assert classified.code == ErrorCode.NETWORK_ERROR
        assert classified.kind is ErrorKind.STREAM

    def test_provider_error_without_cause(self) -> None:
        classified = classify_error(ProviderError("provider returned junk"))
        assert classified.code == ErrorCode.API_ERROR
        assert classified.message == "provider returned junk"


class TestClassifiedError:
    """Tests for ClassifiedError."""

    def test_str(self) -> None:
        error = ClassifiedError(kind=ErrorKind.PROVIDER, code="API_ERROR", message="Boom")
        assert str(error) == "[API_ERROR] Boom"

    def test_to_dict_omits_empty_suggestion(self) -> None:
        error = ClassifiedError(kind=ErrorKind.STREAM, code="NETWORK_ERROR", message="Network Error")
        assert error.to_dict() == {
            "kind": "stream",
            "code": "NETWORK_ERROR",
            "message": "Network Error",
            "details": "",
        }

    def test_to_dict_with_suggestion(self) -> None:
        error = ClassifiedError(
            kind=ErrorKind.LIMIT,
            code=ErrorCode.MAX_TURNS_EXCEEDED,
            message="Turn Limit Reached",
            suggestion="Raise max_turns",
        )
        assert error.to_dict()["suggestion"] == "Raise max_turns"
