"""
Pytest configuration and fixtures for Persona Relay tests.
"""

import asyncio
import os
import sys
import tempfile
from pathlib import Path

import httpx
import pytest

SRC_ROOT = Path(__file__).resolve().parents[1] / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

# Structured request logs must not land in the source tree during tests.
os.environ.setdefault("PERSONA_RELAY_LOG_DIR", tempfile.mkdtemp(prefix="persona-relay-logs-"))

from persona_relay.core.config import get_settings
from persona_relay.domain import Content, Model, ModelCapabilities, PersonalityId, Request, UserId
from persona_relay.infrastructure.deduplicator import RequestDeduplicator
from persona_relay.infrastructure.http_adapter import HttpAIServiceAdapter

BASE_URL = "https://ai.test"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class MockBackend:
    """Scriptable AI backend served through httpx.MockTransport.

    ``responses`` is consumed one entry per call; the last entry repeats.
    Entries are httpx.Response objects, exceptions to raise, or callables
    taking the request and returning either.
    """

    def __init__(self, *responses, delay: float = 0.0):
        self.responses = list(responses) or [
            httpx.Response(200, json={"choices": [{"message": {"content": "Hello there"}}]})
        ]
        self.delay = delay
        self.requests: list[httpx.Request] = []
        self.raised: list[BaseException] = []
        self.transport = httpx.MockTransport(self.handle)

    @property
    def calls(self) -> int:
        return len([r for r in self.requests if r.method == "POST"])

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        index = min(len(self.requests) - 1, len(self.responses) - 1)
        outcome = self.responses[index]
        if callable(outcome) and not isinstance(outcome, httpx.Response):
            outcome = outcome(request)
        if isinstance(outcome, BaseException):
            self.raised.append(outcome)
            raise outcome
        # Fresh copy so a scripted response can be served more than once.
        return httpx.Response(
            outcome.status_code, headers=outcome.headers, content=outcome.content
        )


def connect_error(request: httpx.Request) -> httpx.ConnectError:
    """Fresh ConnectError per call so each attempt's error is distinct."""
    return httpx.ConnectError("Connection refused", request=request)


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recording_sleep():
    """Backoff sleep that records requested delays without waiting."""
    delays: list[float] = []

    async def _sleep(seconds: float) -> None:
        delays.append(seconds)
        await asyncio.sleep(0)

    _sleep.delays = delays
    return _sleep


@pytest.fixture
def make_request():
    """Factory for valid text requests."""

    def _make(
        text: str = "Hello",
        *,
        user: str = "user-1",
        personality: str = "friendly-bot",
        model: Model | None = None,
        content: Content | None = None,
        **kwargs,
    ) -> Request:
        return Request.create(
            user_id=UserId(user),
            personality_id=PersonalityId(personality),
            content=content or Content.from_text(text),
            model=model,
            **kwargs,
        )

    return _make


@pytest.fixture
def vision_model():
    return Model(
        name="vision",
        path="vision-large",
        capabilities=ModelCapabilities(supports_images=True),
    )


@pytest.fixture
def make_adapter(recording_sleep, clock):
    """Factory for adapters talking to a MockBackend with a fake clock."""

    def _make(backend: MockBackend, **kwargs) -> HttpAIServiceAdapter:
        kwargs.setdefault("sleep", recording_sleep)
        kwargs.setdefault("deduplicator", RequestDeduplicator(timer=clock))
        kwargs.setdefault("retry_delay", 0.1)
        return HttpAIServiceAdapter(
            BASE_URL,
            client=httpx.AsyncClient(transport=backend.transport),
            **kwargs,
        )

    return _make
