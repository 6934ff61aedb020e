"""Domain exceptions for Persona Relay.

This module defines pure domain exceptions with no framework dependencies.
These exceptions represent business rule violations raised while building
content values or driving a request through its lifecycle.

Design Principles:
    - Framework-agnostic: No httpx, pydantic, or other framework deps
    - Domain-focused: Represent business rule violations, not transport errors
    - Hierarchical: All domain exceptions inherit from DomainError

Exception Hierarchy:
    - DomainError: Base exception for all domain errors
    - InvalidContentError: Content item shape or type violations
    - InvalidModelError: Model descriptor violations
    - InvalidRequestError: Invalid inputs to Request.create
    - IncompatibleContentError: Content uses a modality the model lacks
    - InvalidStateTransitionError: Lifecycle method called from the wrong state
    - MaxRetriesExceededError: Retry requested after the attempt ceiling
"""


class DomainError(Exception):
    """Base exception for all domain errors.

    Catching DomainError catches every business rule violation, which is
    how callers separate programming errors in request handling from
    transport failures (see ``persona_relay.infrastructure.errors``).
    """


class InvalidContentError(DomainError):
    """Raised when a content item has an unknown kind or malformed shape."""


class InvalidModelError(DomainError):
    """Raised when a model descriptor violates its invariants."""


class InvalidRequestError(DomainError):
    """Raised when Request.create receives values of the wrong type."""


class IncompatibleContentError(InvalidRequestError):
    """Raised when content needs a capability the target model does not have."""


class InvalidStateTransitionError(DomainError):
    """Raised when a lifecycle method is called from a state that forbids it.

    This is a programming error in the caller and is never retried.
    """


class MaxRetriesExceededError(InvalidStateTransitionError):
    """Raised when a retry is scheduled after the attempt ceiling is reached."""
