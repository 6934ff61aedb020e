"""Telemetry utilities (structured request logging)."""

from persona_relay.telemetry.structured_logging import REQUEST_LOGGER, log_request_event

__all__ = ["REQUEST_LOGGER", "log_request_event"]
