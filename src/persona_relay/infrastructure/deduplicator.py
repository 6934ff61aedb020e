"""In-flight request coalescing and blackout tracking.

This module provides ``RequestDeduplicator``, which makes sure at most one
outbound call is in flight per request fingerprint and suppresses calls for
a fingerprint whose last call ended in provider-side trouble.

Key Features:
    - Coalescing: Callers with the same fingerprint share one pending handle
    - In-flight safety: A pending entry lives until its handle completes;
      ``pending_ttl`` only flags handles that run suspiciously long
    - Blackout windows: Failed fingerprints fail fast for ``blackout_duration``
    - Statistics: Pending and blackout counts for monitoring

Concurrency:
    Built for a single asyncio event loop. ``check_duplicate`` and
    ``register_pending`` never suspend, so a check followed by a registration
    in the same coroutine step is atomic with respect to other tasks. Guard
    the instance with a lock before sharing it across threads.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from cachetools import TTLCache

from persona_relay.infrastructure.errors import RequestBlackoutError

logger = logging.getLogger(__name__)

DEFAULT_PENDING_TTL = 30.0
DEFAULT_BLACKOUT_DURATION = 60.0
DEFAULT_MAX_ENTRIES = 10_000


@dataclass(slots=True, frozen=True)
class FingerprintContext:
    """Who asked and where, as far as deduplication is concerned.

    Attributes:
        user_id: Requesting user id. None for anonymous callers.
        conversation_id: Conversation id. None outside a conversation.
        model: Target model path. Ignored when the deduplicator was built
            with ``include_model=False``.
    """

    user_id: str | None = None
    conversation_id: str | None = None
    model: str | None = None


class RequestDeduplicator:
    """Coalesces identical concurrent requests and tracks blackout windows.

    Attributes:
        pending_ttl: Seconds after which a still-running handle is reported
            as overdue by ``sweep``. Running handles are never dropped.
        blackout_duration: Seconds a failed fingerprint fails fast.
        include_model: Whether the model path is part of the fingerprint.
        _pending: Fingerprint -> (pending future, registration time).
        _blackouts: Fingerprint -> blackout start time, with TTL expiry.
    """

    def __init__(
        self,
        pending_ttl: float = DEFAULT_PENDING_TTL,
        blackout_duration: float = DEFAULT_BLACKOUT_DURATION,
        *,
        timer: Callable[[], float] = time.monotonic,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        include_model: bool = True,
    ) -> None:
        """Initialize the deduplicator.

        Args:
            pending_ttl: Age in seconds at which a running handle is logged
                as overdue.
            blackout_duration: Length of a blackout window in seconds.
            timer: Monotonic clock. Injected by tests to move time forward.
            max_entries: Upper bound on blackout entries; least recently used
                entries are evicted beyond it.
            include_model: Include the model path in fingerprints so requests
                for different models never coalesce.
        """
        self.pending_ttl = pending_ttl
        self.blackout_duration = blackout_duration
        self.include_model = include_model
        self._timer = timer
        self._pending: dict[str, tuple[asyncio.Future[Any], float]] = {}
        self._blackouts: TTLCache[str, float] = TTLCache(
            maxsize=max_entries, ttl=blackout_duration, timer=timer
        )

    def fingerprint(
        self,
        personality: str,
        content: str,
        context: FingerprintContext | None = None,
    ) -> str:
        """Compute the deduplication key.

        Returns:
            SHA-256 hex digest of personality, content, user, conversation
            and (optionally) model.
        """
        ctx = context or FingerprintContext()
        parts = [personality, content, ctx.user_id, ctx.conversation_id]
        if self.include_model:
            parts.append(ctx.model)
        return hashlib.sha256(json.dumps(parts).encode()).hexdigest()

    def check_duplicate(
        self,
        personality: str,
        content: str,
        context: FingerprintContext | None = None,
    ) -> asyncio.Future[Any] | None:
        """Return the in-flight handle for this fingerprint, if any.

        A handle that has not completed is returned no matter how long it
        has been running, so a fingerprint never has two calls in flight.

        Returns:
            The pending future to await instead of issuing a new call, or
            None when no call is in flight.

        Raises:
            RequestBlackoutError: If the fingerprint is inside a blackout
                window. No network call should be attempted.
        """
        key = self.fingerprint(personality, content, context)
        remaining = self._remaining(key)
        if remaining > 0:
            logger.warning(
                "Request for personality %s is in blackout for another %.1fs",
                personality,
                remaining,
            )
            raise RequestBlackoutError(
                f"Requests for personality {personality} are in blackout after a recent failure",
                retry_after=remaining,
            )

        entry = self._pending.get(key)
        if entry is not None and not entry[0].done():
            logger.info("Coalescing duplicate request for personality %s", personality)
            return entry[0]
        return None

    def register_pending(
        self,
        personality: str,
        content: str,
        context: FingerprintContext | None,
        handle: asyncio.Future[Any],
    ) -> None:
        """Record ``handle`` as the in-flight call for this fingerprint.

        The entry is dropped as soon as the handle completes.
        """
        key = self.fingerprint(personality, content, context)
        self._pending[key] = (handle, self._timer())
        handle.add_done_callback(lambda done: self._release(key, done))

    def _release(self, key: str, handle: asyncio.Future[Any]) -> None:
        entry = self._pending.get(key)
        if entry is not None and entry[0] is handle:
            del self._pending[key]

    def _remaining(self, key: str) -> float:
        started = self._blackouts.get(key)
        if started is None:
            return 0.0
        return max(self.blackout_duration - (self._timer() - started), 0.0)

    def mark_failed(
        self,
        personality: str,
        content: str,
        context: FingerprintContext | None = None,
    ) -> None:
        """Start a blackout window for this fingerprint."""
        key = self.fingerprint(personality, content, context)
        self._blackouts[key] = self._timer()
        logger.warning(
            "Blackout of %.0fs started for personality %s", self.blackout_duration, personality
        )

    def blackout_remaining(
        self,
        personality: str,
        content: str,
        context: FingerprintContext | None = None,
    ) -> float:
        """Seconds left in this fingerprint's blackout window, 0.0 if none."""
        return self._remaining(self.fingerprint(personality, content, context))

    def is_in_blackout(
        self,
        personality: str,
        content: str,
        context: FingerprintContext | None = None,
    ) -> bool:
        return self.blackout_remaining(personality, content, context) > 0

    def sweep(self) -> None:
        """Evict expired blackouts and completed pending entries.

        Handles still running after ``pending_ttl`` seconds stay registered
        and are logged as overdue.
        """
        self._blackouts.expire()
        now = self._timer()
        for key, (handle, registered_at) in list(self._pending.items()):
            if handle.done():
                del self._pending[key]
            elif now - registered_at > self.pending_ttl:
                logger.warning(
                    "Pending request %s... still running after %.1fs", key[:12], now - registered_at
                )

    def clear(self) -> None:
        self._pending.clear()
        self._blackouts.clear()

    def get_stats(self) -> dict[str, Any]:
        """Get deduplicator statistics.

        Returns:
            Dictionary with live pending and blackout counts plus the
            configured durations.
        """
        self.sweep()
        return {
            "pending_requests": len(self._pending),
            "blackout_periods": len(self._blackouts),
            "pending_ttl": self.pending_ttl,
            "blackout_duration": self.blackout_duration,
        }


__all__ = ["FingerprintContext", "RequestDeduplicator"]
