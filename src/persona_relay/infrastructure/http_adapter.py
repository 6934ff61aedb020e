"""HTTP transport adapter for AI backends.

This module provides ``HttpAIServiceAdapter``, the only component that talks
to an AI backend over the network. It shields the rest of the system from
provider wire formats and transient failures.

Key behaviors:
    - Deduplication: Identical concurrent requests share one network call
    - Blackout: Provider-side failures make the fingerprint fail fast
    - Retry: Exponential backoff via tenacity, never for 4xx responses
    - Timeout: Each attempt is cancelled at its deadline
    - Translation: Injected TransformPair maps Request <-> wire JSON
    - Classification: Failures leave as classified AIServiceError subclasses

Concurrency:
    Runs on a single asyncio event loop. The duplicate check and the pending
    registration happen before the first suspension point of
    ``send_request``, so at most one call per fingerprint is ever in flight.
    Timeouts are per attempt: a request may take up to
    ``max_retries * timeout`` plus backoff delays.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import json
import logging
import time
import types
from collections.abc import Awaitable, Callable
from dataclasses import replace
from http import HTTPStatus
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    before_log,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from persona_relay.domain.request import Request
from persona_relay.domain.value_objects import Content
from persona_relay.infrastructure.deduplicator import FingerprintContext, RequestDeduplicator
from persona_relay.infrastructure.errors import (
    AIServiceError,
    ErrorResponseDetectedError,
    ProviderHTTPError,
    classify_error,
)
from persona_relay.infrastructure.transforms import (
    RequestTransform,
    ResponseTransform,
    WireRequest,
    generic_request_transform,
    generic_response_transform,
    is_error_response,
)
from persona_relay.telemetry.structured_logging import log_request_event

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]

PLACEHOLDER_MODELS = frozenset({"default", "default-model"})
"""Wire model names that stand for "whatever the backend default is"."""


def _is_retryable(exc: BaseException) -> bool:
    """Client errors (4xx) are never retried; everything else is."""
    return not (isinstance(exc, ProviderHTTPError) and exc.is_client_error)


class HttpAIServiceAdapter:
    """Sends Request aggregates to an AI backend and returns domain Content.

    Attributes:
        base_url: Backend base URL without trailing slash.
        headers: Headers sent with every request (auth headers live here).
        timeout: Per-attempt timeout in seconds.
        max_retries: Maximum attempts per request (first attempt included).
        retry_delay: Initial backoff delay in seconds, doubled each retry.
        deduplicator: Coalescing and blackout coordinator.
        transform_request: Request -> WireRequest function.
        transform_response: Decoded JSON -> Content function.

    Lifecycle:
        An httpx.AsyncClient is created lazily unless one is injected. Call
        ``aclose()`` or use ``async with`` to release a client the adapter
        created itself; injected clients are left to their owner.
    """

    def __init__(
        self,
        base_url: str | None,
        *,
        headers: dict[str, str] | None = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        max_retry_delay: float = 60.0,
        transform_request: RequestTransform | None = None,
        transform_response: ResponseTransform | None = None,
        client: httpx.AsyncClient | None = None,
        sleep: SleepFunc | None = None,
        deduplicator: RequestDeduplicator | None = None,
        health_timeout: float = 5.0,
        health_path: str = "/health",
        reject_error_responses: bool = False,
        default_model: str | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            base_url: Backend base URL, e.g. "https://api.example.com".
            headers: Default headers merged into every request.
            timeout: Per-attempt timeout in seconds. Must be positive.
            max_retries: Maximum attempts per request. Must be >= 1.
            retry_delay: Initial backoff delay in seconds.
            max_retry_delay: Upper bound for a single backoff delay.
            transform_request: Provider request transform. None uses the
                generic chat-completions transform.
            transform_response: Provider response transform. None uses the
                generic shape-detecting transform.
            client: Pre-built httpx.AsyncClient (tests inject one backed by
                httpx.MockTransport).
            sleep: Backoff sleep coroutine. None uses asyncio.sleep.
            deduplicator: Shared deduplicator. None creates a private one with
                default windows.
            health_timeout: Health check timeout in seconds.
            health_path: Path of the health endpoint.
            reject_error_responses: Treat 2xx bodies that look like backend
                error text as failures.
            default_model: Vendor model identifier substituted when a
                transform emits a placeholder model name.

        Raises:
            ValueError: If base_url is missing or a numeric setting is out of range.
        """
        if not base_url:
            raise ValueError("AI service base URL is required")
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        if max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {max_retries}")

        self.base_url = base_url.rstrip("/")
        self.headers = dict(headers or {})
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self.health_timeout = health_timeout
        self.health_path = health_path
        self.reject_error_responses = reject_error_responses
        self.default_model = default_model

        # Anti-corruption layer
        self.transform_request = transform_request or generic_request_transform
        self.transform_response = transform_response or generic_response_transform

        self.deduplicator = deduplicator or RequestDeduplicator()

        self._client = client
        self._owns_client = client is None
        self._sleep: SleepFunc = sleep or asyncio.sleep

        self._request_count = 0
        self._error_count = 0
        self._last_health_check: bool | None = None

    async def __aenter__(self) -> HttpAIServiceAdapter:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=min(self.timeout, 5.0))
            )
            self._owns_client = True
        return self._client

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    @staticmethod
    def _fingerprint_inputs(request: Request) -> tuple[str, str, FingerprintContext]:
        personality = str(request.personality_id) if request.personality_id else "default"
        prompt_parts: list[Any] = [request.content.to_json() if request.content else None]
        if request.referenced_content is not None:
            prompt_parts.append(request.referenced_content.to_json())
        prompt = json.dumps(prompt_parts, sort_keys=True)
        context = FingerprintContext(
            user_id=str(request.user_id) if request.user_id else None,
            conversation_id=request.conversation_id,
            model=request.model.path if request.model else None,
        )
        return personality, prompt, context

    def blackout_remaining(self, request: Request) -> float:
        """Seconds until ``request`` may reach the backend again, 0.0 if now."""
        personality, prompt, context = self._fingerprint_inputs(request)
        return self.deduplicator.blackout_remaining(personality, prompt, context)

    async def send_request(self, request: Request) -> Content:
        """Send a request and return the backend's answer as Content.

        Identical concurrent requests (same personality, content, user,
        conversation and model) share a single network call and all observe
        the same result or the same error.

        Args:
            request: The Request aggregate to send. It is read, not mutated;
                lifecycle bookkeeping belongs to the caller.

        Returns:
            Response Content produced by the response transform.

        Raises:
            TypeError: If request is not a Request, or the response transform
                does not return Content.
            RequestBlackoutError: If the fingerprint is in a blackout window.
            AIServiceError: Classified transport failure (timeout, 4xx, 5xx,
                connection refused, ...) after retries are exhausted.
        """
        if not isinstance(request, Request):
            raise TypeError("Request must be an instance of Request")

        personality, prompt, context = self._fingerprint_inputs(request)

        existing = self.deduplicator.check_duplicate(personality, prompt, context)
        if existing is not None:
            logger.info("Returning in-flight result for duplicate request %s", request.id)
            return await asyncio.shield(existing)

        task = asyncio.ensure_future(self._execute_request(request))
        self.deduplicator.register_pending(personality, prompt, context, task)
        task.add_done_callback(
            functools.partial(self._report_outcome, personality, prompt, context)
        )
        return await asyncio.shield(task)

    def _report_outcome(
        self,
        personality: str,
        prompt: str,
        context: FingerprintContext,
        task: asyncio.Future[Content],
    ) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if isinstance(error, AIServiceError) and error.triggers_blackout:
            self.deduplicator.mark_failed(personality, prompt, context)

    async def _execute_request(self, request: Request) -> Content:
        logger.info("Sending request %s", request.id)
        self._request_count += 1
        start_time = time.perf_counter()

        try:
            wire = self.transform_request(request)
            if inspect.isawaitable(wire):
                wire = await wire
            if self.default_model and wire.payload.get("model") in PLACEHOLDER_MODELS:
                wire = replace(wire, payload={**wire.payload, "model": self.default_model})

            data = await self._make_request_with_retry(wire, request.id)

            content = self.transform_response(data)
            if inspect.isawaitable(content):
                content = await content
            if not isinstance(content, Content):
                raise TypeError("Transform response must return a Content instance")

            if self.reject_error_responses and is_error_response(content.get_text()):
                raise ErrorResponseDetectedError("AI service returned an error message as content")
        except Exception as exc:
            self._error_count += 1
            classified = classify_error(exc)
            latency_ms = (time.perf_counter() - start_time) * 1000
            logger.error("Request %s failed: %s", request.id, classified)
            log_request_event(
                {
                    "event": "ai_request",
                    "operation": "send_request",
                    "status": "error",
                    "request_id": request.id,
                    "latency_ms": round(latency_ms, 3),
                    "error_type": type(classified).__name__,
                    "error_code": str(getattr(classified, "code", "UNKNOWN")),
                    "error_message": str(classified),
                }
            )
            if classified is exc:
                raise
            raise classified from exc

        latency_ms = (time.perf_counter() - start_time) * 1000
        logger.info("Request %s completed successfully in %.1fms", request.id, latency_ms)
        log_request_event(
            {
                "event": "ai_request",
                "operation": "send_request",
                "status": "success",
                "request_id": request.id,
                "model": request.model.path if request.model else None,
                "latency_ms": round(latency_ms, 3),
            }
        )
        return content

    async def _make_request_with_retry(self, wire: WireRequest, request_id: str) -> Any:
        """POST ``wire`` with up to ``max_retries`` attempts.

        Backoff before attempt ``n + 1`` is ``retry_delay * 2 ** (n - 1)``.
        4xx responses stop immediately; the last attempt's error is re-raised
        as is.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.retry_delay, max=self.max_retry_delay),
            retry=retry_if_exception(_is_retryable),
            sleep=self._sleep,
            before=before_log(logger, logging.DEBUG),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return await retrying(self._attempt, wire, request_id)

    async def _attempt(self, wire: WireRequest, request_id: str) -> Any:
        client = self._ensure_client()
        headers = {"Content-Type": "application/json", **self.headers, **wire.headers}

        try:
            async with asyncio.timeout(self.timeout):
                response = await client.post(
                    f"{self.base_url}{wire.endpoint}",
                    headers=headers,
                    json=wire.payload,
                )
        except TimeoutError as exc:
            raise TimeoutError(f"Request timed out after {self.timeout}s") from exc

        if not response.is_success:
            raise ProviderHTTPError.from_response(response)

        if not response.content:
            raise ValueError("Empty response from AI service")
        data = response.json()
        if not data:
            raise ValueError("Empty response from AI service")
        logger.debug("Request %s received HTTP %s", request_id, response.status_code)
        return data

    # ------------------------------------------------------------------
    # Health and statistics
    # ------------------------------------------------------------------

    async def check_health(self) -> bool:
        """Check whether the backend answers its health endpoint.

        Returns:
            True if GET ``{base_url}{health_path}`` returns HTTP 200 within
            ``health_timeout`` seconds, False otherwise. Never raises.
        """
        try:
            client = self._ensure_client()
            async with asyncio.timeout(self.health_timeout):
                response = await client.get(
                    f"{self.base_url}{self.health_path}", headers=self.headers
                )
            self._last_health_check = response.status_code == HTTPStatus.OK
        except Exception as exc:
            logger.warning("Health check failed: %s", exc)
            self._last_health_check = False
        return self._last_health_check

    def get_stats(self) -> dict[str, Any]:
        return {
            "base_url": self.base_url,
            "timeout": self.timeout,
            "max_retries": self.max_retries,
            "healthy": self._last_health_check,
            "request_count": self._request_count,
            "error_count": self._error_count,
            "error_rate": self._error_count / self._request_count if self._request_count else 0.0,
            "deduplicator": self.deduplicator.get_stats(),
        }


__all__ = ["HttpAIServiceAdapter"]
