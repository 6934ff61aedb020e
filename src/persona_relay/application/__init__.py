"""Application layer for Persona Relay.

This package contains the use case that drives a Request aggregate through
its lifecycle. It depends only on the domain layer and defines interfaces
(protocols) for infrastructure dependencies.
"""

from persona_relay.application.interfaces import (
    AIServiceInterface,
    RequestLoggerInterface,
    RequestRepositoryInterface,
)
from persona_relay.application.use_cases import PERMANENT_ERROR_CODES, SendRequestUseCase

__all__ = [
    "PERMANENT_ERROR_CODES",
    "AIServiceInterface",
    "RequestLoggerInterface",
    "RequestRepositoryInterface",
    "SendRequestUseCase",
]
