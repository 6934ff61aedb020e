"""Infrastructure layer for Persona Relay.

Contains the HTTP transport adapter, its provider transforms, the request
deduplicator, the classified error taxonomy and the adapter factory.
"""

from persona_relay.infrastructure.adapters import InMemoryRequestRepository, RequestLoggerAdapter
from persona_relay.infrastructure.deduplicator import FingerprintContext, RequestDeduplicator
from persona_relay.infrastructure.errors import (
    AIServiceError,
    AuthenticationFailedError,
    BadRequestError,
    ErrorCode,
    ErrorResponseDetectedError,
    InternalServiceError,
    ProviderHTTPError,
    RateLimitExceededError,
    RequestBlackoutError,
    RequestTimeoutError,
    ServiceUnavailableError,
    classify_error,
)
from persona_relay.infrastructure.factory import AIServiceAdapterFactory
from persona_relay.infrastructure.http_adapter import HttpAIServiceAdapter
from persona_relay.infrastructure.transforms import (
    ANTHROPIC,
    GENERIC,
    OPENAI,
    TransformPair,
    WireRequest,
)

__all__ = [
    "ANTHROPIC",
    "GENERIC",
    "OPENAI",
    "AIServiceAdapterFactory",
    "AIServiceError",
    "AuthenticationFailedError",
    "BadRequestError",
    "ErrorCode",
    "ErrorResponseDetectedError",
    "FingerprintContext",
    "HttpAIServiceAdapter",
    "InMemoryRequestRepository",
    "InternalServiceError",
    "ProviderHTTPError",
    "RateLimitExceededError",
    "RequestBlackoutError",
    "RequestDeduplicator",
    "RequestLoggerAdapter",
    "RequestTimeoutError",
    "ServiceUnavailableError",
    "TransformPair",
    "WireRequest",
    "classify_error",
]
