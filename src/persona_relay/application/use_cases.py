"""Use cases for Persona Relay.

This module defines the application use case that drives a Request aggregate
through its lifecycle around a call to the AI backend. The transport retries
physical attempts on its own; the use case records the outcome of each
logical send on the aggregate and lets callers retry at that level.

Design Principles:
    - Dependency Inversion: Depend on interfaces (Protocols), not implementations
    - Single Responsibility: Lifecycle bookkeeping only, no wire formats
    - Error propagation: Every failure is recorded and then re-raised

Key Use Cases:
    - SendRequestUseCase: Send a request and record the outcome
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from persona_relay.domain.exceptions import InvalidStateTransitionError
from persona_relay.domain.request import RequestStatus

if TYPE_CHECKING:
    from persona_relay.application.interfaces import (
        AIServiceInterface,
        RequestLoggerInterface,
        RequestRepositoryInterface,
    )
    from persona_relay.domain.request import Request
    from persona_relay.domain.value_objects import Content

logger = logging.getLogger(__name__)

PERMANENT_ERROR_CODES = frozenset({"AUTH_FAILED", "INVALID_REQUEST"})
"""Error codes for which resending the same request cannot succeed."""

RATE_LIMIT_CODES = frozenset({"RATE_LIMIT_EXCEEDED", "IN_BLACKOUT"})
"""Error codes that carry a time-limited ``retry_after`` window."""

SENDABLE_STATUSES = frozenset({RequestStatus.PENDING, RequestStatus.RETRYING})


class SendRequestUseCase:
    """Use case for sending one Request to the AI backend.

    Orchestrates the lifecycle of a request: marks it sent, awaits the
    service, records the response or the failure (including rate limits),
    persists the new events and logs the outcome.

    Attributes:
        _service: AI service implementing AIServiceInterface.
        _repository: Optional request repository.
        _logger: Optional structured request logger.
        _sleep: Coroutine used to wait out retry delays.
    """

    def __init__(
        self,
        service: AIServiceInterface,
        repository: RequestRepositoryInterface | None = None,
        logger: RequestLoggerInterface | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        """Initialize the use case.

        Args:
            service: Transport used to reach the backend.
            repository: Stores the request after every recorded outcome.
                None skips persistence.
            logger: Structured request logger. None skips structured logs.
            sleep: Retry delay coroutine. None uses asyncio.sleep.
        """
        self._service = service
        self._repository = repository
        self._logger = logger
        self._sleep = sleep or asyncio.sleep

    async def execute(self, request: Request) -> Content:
        """Send ``request`` and record the outcome on it.

        A blackout window left by an earlier failure of the same
        fingerprint is waited out before the attempt is counted, so
        ``attempts`` only counts sends that reach the transport.

        Args:
            request: A pending or retrying Request.

        Returns:
            The response Content, also stored on the request.

        Raises:
            InvalidStateTransitionError: If the request cannot be sent from
                its current state.
            Exception: Whatever the service raised, after it was recorded
                with ``record_failure``.
        """
        if request.status in SENDABLE_STATUSES:
            await self._wait_out_blackout(request)
        request.mark_sent()
        start_time = time.perf_counter()

        try:
            response = await self._service.send_request(request)
        except Exception as exc:
            code = str(getattr(exc, "code", None) or "UNKNOWN")
            if code in RATE_LIMIT_CODES:
                request.record_rate_limit(getattr(exc, "retry_after", None))
            request.record_failure(exc, can_retry=code not in PERMANENT_ERROR_CODES)
            await self._save(request)
            self._log(request, start_time, status="error", error=exc, code=code)
            raise

        request.record_response(response)
        await self._save(request)
        self._log(request, start_time, status="success")
        return response

    async def retry(self, request: Request, delay: float = 0.0) -> Content:
        """Schedule another attempt of a failed request and execute it.

        Args:
            request: A failed request for which ``can_retry()`` is True.
            delay: Seconds to wait before the new attempt. Any blackout
                still running after the delay is waited out as well.

        Raises:
            InvalidStateTransitionError: If the request cannot be retried.
        """
        if not request.can_retry():
            raise InvalidStateTransitionError(
                f"Request {request.id} cannot be retried (status={request.status}, "
                f"attempts={request.attempts})"
            )
        request.schedule_retry(delay)
        await self._save(request)
        if delay > 0:
            await self._sleep(delay)
        return await self.execute(request)

    async def _wait_out_blackout(self, request: Request) -> None:
        remaining = self._service.blackout_remaining(request)
        if remaining > 0:
            logger.info("Request %s waits %.1fs for a blackout window to end", request.id, remaining)
            await self._sleep(remaining)

    async def _save(self, request: Request) -> None:
        if self._repository is not None:
            await self._repository.save(request)

    def _log(
        self,
        request: Request,
        start_time: float,
        *,
        status: str,
        error: BaseException | None = None,
        code: str | None = None,
    ) -> None:
        latency_ms = (time.perf_counter() - start_time) * 1000
        if error is not None:
            logger.warning("Request %s attempt %s failed: %s", request.id, request.attempts, error)
        if self._logger is None:
            return
        data: dict[str, Any] = {
            "event": "request_lifecycle",
            "operation": "send",
            "status": status,
            "request_id": request.id,
            "personality_id": str(request.personality_id),
            "model": request.model.path if request.model else None,
            "attempt": request.attempts,
            "request_status": str(request.status),
            "latency_ms": round(latency_ms, 3),
        }
        if error is not None:
            data["error_type"] = type(error).__name__
            data["error_code"] = code
            data["error_message"] = str(error)
        self._logger.log_request(data)


__all__ = ["PERMANENT_ERROR_CODES", "SendRequestUseCase"]
