"""Classified transport errors for AI backends.

Raw failures (connection refused, deadline expiry, non-2xx responses) are
classified once, at the transport boundary, into the taxonomy below so that
callers never inspect HTTP status codes themselves.

Exception Hierarchy:
    - AIServiceError: Base class, carries ``code`` and optional ``status``
    - ServiceUnavailableError: Connection refused / DNS failure
    - RequestTimeoutError: Attempt cancelled at its deadline
    - RateLimitExceededError: HTTP 429, carries ``retry_after``
    - AuthenticationFailedError: HTTP 401/403
    - BadRequestError: HTTP 400, carries provider error ``details``
    - InternalServiceError: HTTP >= 500
    - ErrorResponseDetectedError: 2xx body that is really a backend error
    - RequestBlackoutError: Fingerprint inside a blackout window
    - ProviderHTTPError: Raw non-2xx response before classification
"""

from __future__ import annotations

import logging
from enum import StrEnum
from http import HTTPStatus
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class ErrorCode(StrEnum):
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    REQUEST_TIMEOUT = "REQUEST_TIMEOUT"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    AUTH_FAILED = "AUTH_FAILED"
    INVALID_REQUEST = "INVALID_REQUEST"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    ERROR_RESPONSE = "ERROR_RESPONSE"
    IN_BLACKOUT = "IN_BLACKOUT"
    HTTP_ERROR = "HTTP_ERROR"


BLACKOUT_CODES = frozenset({ErrorCode.RATE_LIMIT_EXCEEDED, ErrorCode.INTERNAL_ERROR})
"""Codes that indicate provider-side trouble and start a blackout window."""


class AIServiceError(Exception):
    """Base class for classified AI backend failures.

    Attributes:
        code: Classified error code.
        status: HTTP status that caused the error, if any.
        details: Provider error payload, if any.
        retry_after: Backend-suggested wait in seconds, if any.
    """

    code: ErrorCode = ErrorCode.HTTP_ERROR

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        details: Any = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.details = details
        self.retry_after = retry_after

    @property
    def triggers_blackout(self) -> bool:
        return self.code in BLACKOUT_CODES or self.status == HTTPStatus.INTERNAL_SERVER_ERROR


class ServiceUnavailableError(AIServiceError):
    code = ErrorCode.SERVICE_UNAVAILABLE


class RequestTimeoutError(AIServiceError):
    code = ErrorCode.REQUEST_TIMEOUT


class RateLimitExceededError(AIServiceError):
    code = ErrorCode.RATE_LIMIT_EXCEEDED


class AuthenticationFailedError(AIServiceError):
    code = ErrorCode.AUTH_FAILED


class BadRequestError(AIServiceError):
    code = ErrorCode.INVALID_REQUEST


class InternalServiceError(AIServiceError):
    code = ErrorCode.INTERNAL_ERROR


class ErrorResponseDetectedError(AIServiceError):
    code = ErrorCode.ERROR_RESPONSE


class RequestBlackoutError(AIServiceError):
    code = ErrorCode.IN_BLACKOUT


class ProviderHTTPError(AIServiceError):
    """Non-2xx response as received, before classification.

    Attributes:
        body: Parsed JSON body when the response was JSON, else raw text.
        headers: Response headers.
    """

    code = ErrorCode.HTTP_ERROR

    def __init__(
        self,
        status: int,
        reason: str,
        body: Any = None,
        headers: httpx.Headers | None = None,
    ) -> None:
        super().__init__(f"HTTP {status}: {reason}", status=status, details=body)
        self.body = body
        self.headers = headers or httpx.Headers()

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status < 500

    @classmethod
    def from_response(cls, response: httpx.Response) -> ProviderHTTPError:
        try:
            body: Any = response.json()
        except ValueError:
            body = response.text
        return cls(response.status_code, response.reason_phrase, body, response.headers)


def _retry_after_seconds(error: ProviderHTTPError) -> float | None:
    body = error.body if isinstance(error.body, dict) else {}
    for value in (body.get("retry_after"), error.headers.get("retry-after")):
        if value is None:
            continue
        try:
            return float(value)
        except (TypeError, ValueError):
            logger.debug("Ignoring unparseable retry-after value %r", value)
    return None


def _provider_error_detail(body: Any) -> Any:
    if isinstance(body, dict):
        return body.get("error")
    return None


def classify_error(error: BaseException) -> BaseException:
    """Map a raw transport failure onto the classified taxonomy.

    Args:
        error: Exception raised while talking to the backend.

    Returns:
        A classified AIServiceError chained to ``error`` (``__cause__``), or
        ``error`` itself when it is already classified or is not a transport
        failure this module knows about.
    """
    match error:
        case AIServiceError() if not isinstance(error, ProviderHTTPError):
            return error
        case httpx.ConnectError():
            classified: AIServiceError = ServiceUnavailableError("AI service is unavailable")
        case TimeoutError() | httpx.TimeoutException():
            classified = RequestTimeoutError("AI service request timed out")
        case ProviderHTTPError(status=HTTPStatus.TOO_MANY_REQUESTS):
            classified = RateLimitExceededError(
                "AI service rate limit exceeded",
                status=error.status,
                retry_after=_retry_after_seconds(error),
            )
        case ProviderHTTPError(status=HTTPStatus.UNAUTHORIZED | HTTPStatus.FORBIDDEN):
            classified = AuthenticationFailedError(
                "AI service authentication failed", status=error.status
            )
        case ProviderHTTPError(status=HTTPStatus.BAD_REQUEST):
            detail = _provider_error_detail(error.body)
            message = "Invalid request to AI service"
            if isinstance(detail, dict) and detail.get("message"):
                message = str(detail["message"])
            classified = BadRequestError(message, status=error.status, details=detail)
        case ProviderHTTPError() if error.status >= HTTPStatus.INTERNAL_SERVER_ERROR:
            classified = InternalServiceError(
                "AI service internal error", status=error.status, details=error.body
            )
        case _:
            return error
    classified.__cause__ = error
    return classified


__all__ = [
    "BLACKOUT_CODES",
    "AIServiceError",
    "AuthenticationFailedError",
    "BadRequestError",
    "ErrorCode",
    "ErrorResponseDetectedError",
    "InternalServiceError",
    "ProviderHTTPError",
    "RateLimitExceededError",
    "RequestBlackoutError",
    "RequestTimeoutError",
    "ServiceUnavailableError",
    "classify_error",
]
