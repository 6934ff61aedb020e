"""Interfaces (Protocols) for application layer dependencies.

The application layer depends on these protocols, not on the HTTP adapter or
any storage backend, so use cases can be driven by fakes in tests.

Key Interfaces:
    - AIServiceInterface: Sends a Request and returns response Content
    - RequestRepositoryInterface: Stores a request after its events change
    - RequestLoggerInterface: Structured request logging
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from persona_relay.domain.request import Request
    from persona_relay.domain.value_objects import Content


class AIServiceInterface(Protocol):
    """Protocol for AI backend transports.

    ``HttpAIServiceAdapter`` is the production implementation.
    """

    async def send_request(self, request: Request) -> Content:
        """Send ``request`` and return the backend's answer.

        Raises:
            Exception: Classified transport errors carrying a ``code``
                attribute, or unclassified errors passed through unchanged.
        """
        ...

    def blackout_remaining(self, request: Request) -> float:
        """Seconds before ``request`` may be sent again, 0.0 if it may be sent now."""
        ...

    async def check_health(self) -> bool:
        """Return True if the backend is reachable. Never raises."""
        ...

    def get_stats(self) -> dict[str, Any]:
        ...


class RequestRepositoryInterface(Protocol):
    """Protocol for request history storage.

    Implementations persist ``request.get_uncommitted_events()`` and then
    call ``request.mark_events_as_committed()``.
    """

    async def save(self, request: Request) -> None:
        ...


class RequestLoggerInterface(Protocol):
    """Protocol for structured request logging."""

    def log_request(self, data: dict[str, Any]) -> None:
        """Log a request event.

        Args:
            data: Event payload with at least ``event``, ``status`` and
                ``request_id``.
        """
        ...


__all__ = ["AIServiceInterface", "RequestLoggerInterface", "RequestRepositoryInterface"]
