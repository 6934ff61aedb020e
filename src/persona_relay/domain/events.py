"""Domain events recorded by the Request aggregate.

Each lifecycle method of ``Request`` emits exactly one of these events, and
the aggregate's state is obtained only by folding them in order. Events are
frozen dataclasses so a history can be replayed or inspected without any
risk of it changing underneath the aggregate.

Key Events:
    - RequestCreated: Request accepted with its content and model
    - RequestSent: A physical attempt was dispatched
    - ResponseReceived: The backend answered with content
    - RequestFailed: The current attempt failed
    - RequestRetried: Another attempt was scheduled
    - RequestRateLimited: The backend asked us to slow down
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from persona_relay.domain.value_objects import Content, Model, PersonalityId, UserId


def utc_now() -> datetime:
    return datetime.now(UTC)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(slots=True, frozen=True)
class RequestError:
    """Failure descriptor stored on a failed request.

    Attributes:
        message: Human-readable failure message.
        code: Classified error code, "UNKNOWN" when the error carried none.
        can_retry: Whether a later attempt may succeed.
    """

    message: str
    code: str = "UNKNOWN"
    can_retry: bool = True

    def to_json(self) -> dict[str, Any]:
        return {"message": self.message, "code": self.code, "can_retry": self.can_retry}


@dataclass(slots=True, frozen=True)
class DomainEvent:
    """Base class for request events.

    Attributes:
        aggregate_id: Id of the request the event belongs to.
        event_id: Unique id of this event (keyword-only, generated).
        occurred_at: When the event was recorded (keyword-only, generated).
    """

    aggregate_id: str
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex, kw_only=True)
    occurred_at: datetime = field(default_factory=utc_now, kw_only=True)

    @property
    def event_type(self) -> str:
        return type(self).__name__

    def payload(self) -> dict[str, Any]:
        return {}

    def to_json(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "event_id": self.event_id,
            "aggregate_id": self.aggregate_id,
            "occurred_at": self.occurred_at.isoformat(),
            "payload": self.payload(),
        }


@dataclass(slots=True, frozen=True)
class RequestCreated(DomainEvent):
    user_id: UserId
    personality_id: PersonalityId
    content: Content
    model: Model
    created_at: datetime
    referenced_content: Content | None = None
    conversation_id: str | None = None

    def payload(self) -> dict[str, Any]:
        return {
            "request_id": self.aggregate_id,
            "user_id": str(self.user_id),
            "personality_id": str(self.personality_id),
            "conversation_id": self.conversation_id,
            "content": self.content.to_json(),
            "referenced_content": (
                self.referenced_content.to_json() if self.referenced_content else None
            ),
            "model": self.model.to_json(),
            "created_at": _iso(self.created_at),
        }


@dataclass(slots=True, frozen=True)
class RequestSent(DomainEvent):
    sent_at: datetime
    attempt: int

    def payload(self) -> dict[str, Any]:
        return {"sent_at": _iso(self.sent_at), "attempt": self.attempt}


@dataclass(slots=True, frozen=True)
class ResponseReceived(DomainEvent):
    response: Content
    completed_at: datetime

    def payload(self) -> dict[str, Any]:
        return {"response": self.response.to_json(), "completed_at": _iso(self.completed_at)}


@dataclass(slots=True, frozen=True)
class RequestFailed(DomainEvent):
    error: RequestError
    failed_at: datetime

    def payload(self) -> dict[str, Any]:
        return {"error": self.error.to_json(), "failed_at": _iso(self.failed_at)}


@dataclass(slots=True, frozen=True)
class RequestRetried(DomainEvent):
    retry_at: datetime
    attempt: int

    def payload(self) -> dict[str, Any]:
        return {"retry_at": _iso(self.retry_at), "attempt": self.attempt}


@dataclass(slots=True, frozen=True)
class RequestRateLimited(DomainEvent):
    rate_limited_at: datetime
    retry_after: float | None = None

    def payload(self) -> dict[str, Any]:
        return {"rate_limited_at": _iso(self.rate_limited_at), "retry_after": self.retry_after}


__all__ = [
    "DomainEvent",
    "RequestCreated",
    "RequestError",
    "RequestFailed",
    "RequestRateLimited",
    "RequestRetried",
    "RequestSent",
    "ResponseReceived",
    "utc_now",
]
