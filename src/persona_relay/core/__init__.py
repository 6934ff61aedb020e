"""Core configuration for Persona Relay."""

from persona_relay.core.config import AIServiceSettings, get_settings

__all__ = ["AIServiceSettings", "get_settings"]
