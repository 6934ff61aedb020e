"""The Request aggregate and its lifecycle state machine.

A ``Request`` is one logical ask of an AI backend. It may span several
physical attempts, so sending is separated from creation and every attempt
is recorded against the same ``RequestId``.

The aggregate keeps no hidden mutable fields. Its state is a frozen
``RequestState`` obtained by folding the event log through the pure function
``apply_event(state, event) -> state``; lifecycle methods validate the
transition, build exactly one event and fold it in.

State machine::

    pending ──mark_sent──> sent ──record_response──> completed
                            │
                            ├──record_failure──> failed ──schedule_retry──> retrying
                            │                                                 │
                            └──record_rate_limit──> rate_limited              └──mark_sent──> sent

``failed`` is terminal once ``attempts`` reaches MAX_ATTEMPTS or the error
is marked non-retryable.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

from persona_relay.domain.events import (
    DomainEvent,
    RequestCreated,
    RequestError,
    RequestFailed,
    RequestRateLimited,
    RequestRetried,
    RequestSent,
    ResponseReceived,
    utc_now,
)
from persona_relay.domain.exceptions import (
    IncompatibleContentError,
    InvalidContentError,
    InvalidRequestError,
    InvalidStateTransitionError,
    MaxRetriesExceededError,
)
from persona_relay.domain.value_objects import Content, Model, PersonalityId, RequestId, UserId

MAX_ATTEMPTS = 3
"""Maximum number of physical attempts for one logical request."""


class RequestStatus(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"
    RATE_LIMITED = "rate_limited"


@dataclass(slots=True, frozen=True)
class RequestState:
    """Snapshot of a request derived from its event log."""

    request_id: str
    status: RequestStatus = RequestStatus.PENDING
    user_id: UserId | None = None
    personality_id: PersonalityId | None = None
    conversation_id: str | None = None
    content: Content | None = None
    referenced_content: Content | None = None
    model: Model | None = None
    response: Content | None = None
    attempts: int = 0
    error: RequestError | None = None
    retry_after: float | None = None
    created_at: datetime | None = None
    sent_at: datetime | None = None
    completed_at: datetime | None = None


def apply_event(state: RequestState, event: DomainEvent) -> RequestState:
    """Return the state that results from applying ``event`` to ``state``.

    Pure function: validation of whether the transition is allowed happens in
    the aggregate before the event is created, so replaying a stored history
    never rejects.

    Raises:
        TypeError: If ``event`` is not a known request event.
    """
    match event:
        case RequestCreated():
            return replace(
                state,
                status=RequestStatus.PENDING,
                user_id=event.user_id,
                personality_id=event.personality_id,
                conversation_id=event.conversation_id,
                content=event.content,
                referenced_content=event.referenced_content,
                model=event.model,
                created_at=event.created_at,
            )
        case RequestSent():
            return replace(
                state,
                status=RequestStatus.SENT,
                attempts=event.attempt,
                sent_at=event.sent_at,
            )
        case ResponseReceived():
            return replace(
                state,
                status=RequestStatus.COMPLETED,
                response=event.response,
                completed_at=event.completed_at,
            )
        case RequestFailed():
            return replace(state, status=RequestStatus.FAILED, error=event.error)
        case RequestRetried():
            return replace(state, status=RequestStatus.RETRYING)
        case RequestRateLimited():
            return replace(state, status=RequestStatus.RATE_LIMITED, retry_after=event.retry_after)
        case _:
            raise TypeError(f"Unknown request event: {type(event).__name__}")


class Request:
    """Aggregate root for one AI request, identified by its RequestId.

    Build new requests with ``Request.create``. A bare ``Request(request_id)``
    is an empty shell meant to be rebuilt with ``load_from_history``.

    Attributes:
        request_id: The RequestId value object.
        id: String form of the request id.
        version: Number of events applied so far.

    Note:
        The aggregate references the user and personality by id only; it owns
        its content, model and response values.
    """

    __slots__ = ("_history", "_request_id", "_state", "_uncommitted")

    def __init__(self, request_id: RequestId) -> None:
        if not isinstance(request_id, RequestId):
            raise InvalidRequestError("Request must be created with RequestId")
        self._request_id = request_id
        self._state = RequestState(request_id=str(request_id))
        self._history: list[DomainEvent] = []
        self._uncommitted: list[DomainEvent] = []

    @classmethod
    def create(
        cls,
        *,
        user_id: UserId,
        personality_id: PersonalityId,
        content: Content,
        model: Model | None = None,
        referenced_content: Content | None = None,
        conversation_id: str | None = None,
    ) -> Request:
        """Create a pending request after validating every input.

        Args:
            user_id: Requesting user.
            personality_id: Target personality.
            content: What is being asked.
            model: Target model. None uses ``Model.create_default()``.
            referenced_content: Quoted/replied-to content, if any.
            conversation_id: Conversation the request belongs to, if any.

        Returns:
            A new Request holding a single uncommitted RequestCreated event.

        Raises:
            InvalidRequestError: If any input has the wrong type.
            IncompatibleContentError: If the model cannot accept the content.
                Raised before any event is recorded.
        """
        if not isinstance(user_id, UserId):
            raise InvalidRequestError("Invalid UserId")
        if not isinstance(personality_id, PersonalityId):
            raise InvalidRequestError("Invalid PersonalityId")
        if not isinstance(content, Content):
            raise InvalidRequestError("Invalid Content")
        if referenced_content is not None and not isinstance(referenced_content, Content):
            raise InvalidRequestError("Invalid referenced Content")
        if model is None:
            model = Model.create_default()
        elif not isinstance(model, Model):
            raise InvalidRequestError("Invalid Model")
        if not model.is_compatible_with(content):
            raise IncompatibleContentError("Content not compatible with model capabilities")

        request_id = RequestId.create()
        request = cls(request_id)
        request._record(
            RequestCreated(
                str(request_id),
                user_id=user_id,
                personality_id=personality_id,
                conversation_id=conversation_id,
                content=content,
                referenced_content=referenced_content,
                model=model,
                created_at=utc_now(),
            )
        )
        return request

    # -- lifecycle ---------------------------------------------------------

    def mark_sent(self) -> None:
        if self.status not in (RequestStatus.PENDING, RequestStatus.RETRYING):
            raise InvalidStateTransitionError("Can only send pending or retrying requests")
        self._record(RequestSent(self.id, sent_at=utc_now(), attempt=self.attempts + 1))

    def record_response(self, content: Content) -> None:
        if not isinstance(content, Content):
            raise InvalidContentError("Invalid response content")
        if self.status != RequestStatus.SENT:
            raise InvalidStateTransitionError("Can only record response for sent requests")
        self._record(ResponseReceived(self.id, response=content, completed_at=utc_now()))

    def record_failure(self, error: BaseException | str, can_retry: bool = True) -> None:
        """Record that the current attempt failed.

        Args:
            error: The failure. Its ``code`` attribute, when present, becomes
                the stored code; otherwise "UNKNOWN" is stored.
            can_retry: False marks the failure as permanent.
        """
        if self.status in (RequestStatus.COMPLETED, RequestStatus.FAILED):
            raise InvalidStateTransitionError("Cannot fail completed or failed request")
        code = getattr(error, "code", None)
        descriptor = RequestError(
            message=str(error),
            code=str(code) if code else "UNKNOWN",
            can_retry=can_retry,
        )
        self._record(RequestFailed(self.id, error=descriptor, failed_at=utc_now()))

    def schedule_retry(self, delay: float) -> None:
        """Move a failed request to ``retrying``; ``delay`` is in seconds."""
        if self.status != RequestStatus.FAILED:
            raise InvalidStateTransitionError("Can only retry failed requests")
        if self.attempts >= MAX_ATTEMPTS:
            raise MaxRetriesExceededError("Maximum retry attempts exceeded")
        retry_at = utc_now() + timedelta(seconds=delay)
        self._record(RequestRetried(self.id, retry_at=retry_at, attempt=self.attempts))

    def record_rate_limit(self, retry_after: float | None = None) -> None:
        # Informational only: attempts is left untouched.
        if self.status == RequestStatus.COMPLETED:
            raise InvalidStateTransitionError("Cannot rate limit a completed request")
        self._record(
            RequestRateLimited(self.id, rate_limited_at=utc_now(), retry_after=retry_after)
        )

    def can_retry(self) -> bool:
        return (
            self.status == RequestStatus.FAILED
            and self.attempts < MAX_ATTEMPTS
            and self.error is not None
            and self.error.can_retry
        )

    def get_response_time(self) -> float | None:
        """Seconds between the last send and completion, or None."""
        if self.sent_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.sent_at).total_seconds()

    # -- event sourcing ----------------------------------------------------

    def _record(self, event: DomainEvent) -> None:
        self._state = apply_event(self._state, event)
        self._history.append(event)
        self._uncommitted.append(event)

    def load_from_history(self, events: list[DomainEvent]) -> None:
        """Rebuild state by replaying stored events (they stay committed)."""
        for event in events:
            if event.aggregate_id != self.id:
                raise InvalidRequestError(
                    f"Event {event.event_type} belongs to {event.aggregate_id}, not {self.id}"
                )
            self._state = apply_event(self._state, event)
            self._history.append(event)

    def get_uncommitted_events(self) -> list[DomainEvent]:
        return list(self._uncommitted)

    def mark_events_as_committed(self) -> None:
        self._uncommitted.clear()

    @property
    def events(self) -> tuple[DomainEvent, ...]:
        return tuple(self._history)

    # -- state accessors ---------------------------------------------------

    @property
    def id(self) -> str:
        return str(self._request_id)

    @property
    def request_id(self) -> RequestId:
        return self._request_id

    @property
    def version(self) -> int:
        return len(self._history)

    @property
    def state(self) -> RequestState:
        return self._state

    @property
    def status(self) -> RequestStatus:
        return self._state.status

    @property
    def user_id(self) -> UserId | None:
        return self._state.user_id

    @property
    def personality_id(self) -> PersonalityId | None:
        return self._state.personality_id

    @property
    def conversation_id(self) -> str | None:
        return self._state.conversation_id

    @property
    def content(self) -> Content | None:
        return self._state.content

    @property
    def referenced_content(self) -> Content | None:
        return self._state.referenced_content

    @property
    def model(self) -> Model | None:
        return self._state.model

    @property
    def response(self) -> Content | None:
        return self._state.response

    @property
    def attempts(self) -> int:
        return self._state.attempts

    @property
    def error(self) -> RequestError | None:
        return self._state.error

    @property
    def created_at(self) -> datetime | None:
        return self._state.created_at

    @property
    def sent_at(self) -> datetime | None:
        return self._state.sent_at

    @property
    def completed_at(self) -> datetime | None:
        return self._state.completed_at

    def to_json(self) -> dict[str, Any]:
        state = self._state
        return {
            "id": self.id,
            "user_id": str(state.user_id) if state.user_id else None,
            "personality_id": str(state.personality_id) if state.personality_id else None,
            "conversation_id": state.conversation_id,
            "content": state.content.to_json() if state.content else None,
            "referenced_content": (
                state.referenced_content.to_json() if state.referenced_content else None
            ),
            "model": state.model.to_json() if state.model else None,
            "response": state.response.to_json() if state.response else None,
            "status": str(state.status),
            "attempts": state.attempts,
            "error": state.error.to_json() if state.error else None,
            "created_at": state.created_at.isoformat() if state.created_at else None,
            "sent_at": state.sent_at.isoformat() if state.sent_at else None,
            "completed_at": state.completed_at.isoformat() if state.completed_at else None,
            "version": self.version,
        }

    def __repr__(self) -> str:
        return f"Request(id={self.id!r}, status={self.status.value!r}, attempts={self.attempts})"


__all__ = ["MAX_ATTEMPTS", "Request", "RequestState", "RequestStatus", "apply_event"]
