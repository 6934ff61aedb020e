"""Domain layer for Persona Relay.

This package contains the request aggregate, its events, and the content and
model value objects, with no dependencies on HTTP clients, configuration or
any other outer layer.
"""

from persona_relay.domain.events import (
    DomainEvent,
    RequestCreated,
    RequestError,
    RequestFailed,
    RequestRateLimited,
    RequestRetried,
    RequestSent,
    ResponseReceived,
)
from persona_relay.domain.exceptions import (
    DomainError,
    IncompatibleContentError,
    InvalidContentError,
    InvalidModelError,
    InvalidRequestError,
    InvalidStateTransitionError,
    MaxRetriesExceededError,
)
from persona_relay.domain.request import (
    MAX_ATTEMPTS,
    Request,
    RequestState,
    RequestStatus,
    apply_event,
)
from persona_relay.domain.value_objects import (
    Content,
    ContentItem,
    Model,
    ModelCapabilities,
    PersonalityId,
    RequestId,
    UserId,
)

__all__ = [
    "MAX_ATTEMPTS",
    "Content",
    "ContentItem",
    "DomainError",
    "DomainEvent",
    "IncompatibleContentError",
    "InvalidContentError",
    "InvalidModelError",
    "InvalidRequestError",
    "InvalidStateTransitionError",
    "MaxRetriesExceededError",
    "Model",
    "ModelCapabilities",
    "PersonalityId",
    "Request",
    "RequestCreated",
    "RequestError",
    "RequestFailed",
    "RequestId",
    "RequestRateLimited",
    "RequestRetried",
    "RequestSent",
    "RequestState",
    "RequestStatus",
    "ResponseReceived",
    "UserId",
    "apply_event",
]
