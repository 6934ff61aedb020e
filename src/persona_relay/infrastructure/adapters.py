"""Infrastructure adapters implementing application layer interfaces.

This module provides adapter implementations that wrap concrete infrastructure
components to satisfy the protocols defined in the application layer.

Key Adapters:
    - RequestLoggerAdapter: Wraps structured logging for RequestLoggerInterface
    - InMemoryRequestRepository: Event store for RequestRepositoryInterface
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from persona_relay.domain.request import Request
from persona_relay.domain.value_objects import RequestId
from persona_relay.telemetry.structured_logging import log_request_event

if TYPE_CHECKING:
    from persona_relay.domain.events import DomainEvent


class RequestLoggerAdapter:
    """Adapter that wraps structured logging to implement RequestLoggerInterface.

    This is a static adapter - no instance state is maintained. All logging
    is delegated to the global log_request_event function.
    """

    @staticmethod
    def log_request(data: dict[str, Any]) -> None:
        """Log a request event with structured data.

        Args:
            data: Dictionary with request event data. Required keys:
                - event: Event type identifier (e.g., "request_lifecycle")
                - status: Outcome ("success" or "error")
                - request_id: Request identifier for tracing
            Optional keys may include operation, model, attempt, latency_ms,
            error_type, error_code and error_message.
        """
        log_request_event(data)


class InMemoryRequestRepository:
    """Process-local event store for Request aggregates.

    ``save`` appends the request's uncommitted events to its stream and marks
    them committed; ``load`` rebuilds a Request by replaying the stream.
    """

    def __init__(self) -> None:
        self._streams: dict[str, list[DomainEvent]] = {}
        self._lock = asyncio.Lock()

    async def save(self, request: Request) -> None:
        async with self._lock:
            stream = self._streams.setdefault(request.id, [])
            stream.extend(request.get_uncommitted_events())
            request.mark_events_as_committed()

    async def load(self, request_id: str) -> Request | None:
        """Rebuild the request stored under ``request_id``.

        Returns:
            A Request with no uncommitted events, or None if nothing was saved
            under that id.
        """
        async with self._lock:
            stream = list(self._streams.get(request_id, ()))
        if not stream:
            return None
        request = Request(RequestId(request_id))
        request.load_from_history(stream)
        return request

    def get_events(self, request_id: str) -> list[DomainEvent]:
        return list(self._streams.get(request_id, ()))

    def __len__(self) -> int:
        return len(self._streams)


__all__ = ["InMemoryRequestRepository", "RequestLoggerAdapter"]
