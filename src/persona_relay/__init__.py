"""Persona Relay - resilient, provider-agnostic AI request transport."""

from persona_relay.application import SendRequestUseCase
from persona_relay.core import AIServiceSettings, get_settings
from persona_relay.domain import (
    Content,
    Model,
    ModelCapabilities,
    PersonalityId,
    Request,
    RequestId,
    RequestStatus,
    UserId,
)
from persona_relay.infrastructure import (
    AIServiceAdapterFactory,
    AIServiceError,
    HttpAIServiceAdapter,
    RequestBlackoutError,
    RequestDeduplicator,
)

__all__ = [
    "AIServiceAdapterFactory",
    "AIServiceError",
    "AIServiceSettings",
    "Content",
    "HttpAIServiceAdapter",
    "Model",
    "ModelCapabilities",
    "PersonalityId",
    "Request",
    "RequestBlackoutError",
    "RequestDeduplicator",
    "RequestId",
    "RequestStatus",
    "SendRequestUseCase",
    "UserId",
    "get_settings",
]
