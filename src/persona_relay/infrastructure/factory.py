"""Factory building provider-specific HTTP adapters.

``AIServiceAdapterFactory`` pairs an ``HttpAIServiceAdapter`` with the
transform pair and authentication headers of a provider. The rest of the
system only ever sees domain ``Content``/``Model`` values, whichever vendor
sits behind the adapter.

Usage:
    adapter = AIServiceAdapterFactory.create(
        provider="anthropic",
        base_url="https://api.anthropic.com",
        api_key="...",
        options={"timeout": 60.0},
    )

    # or, from AI_* environment variables
    adapter = AIServiceAdapterFactory.create_from_env()
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any, ClassVar

from persona_relay.core.config import AIServiceSettings, get_settings
from persona_relay.infrastructure.deduplicator import RequestDeduplicator
from persona_relay.infrastructure.http_adapter import HttpAIServiceAdapter
from persona_relay.infrastructure.transforms import ANTHROPIC, OPENAI, TransformPair

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"

HeaderBuilder = Callable[[str | None], dict[str, str]]


def _bearer_headers(api_key: str | None) -> dict[str, str]:
    return {"Authorization": f"Bearer {api_key}"} if api_key else {}


def _anthropic_headers(api_key: str | None) -> dict[str, str]:
    headers = {"anthropic-version": ANTHROPIC_VERSION}
    if api_key:
        headers["x-api-key"] = api_key
    return headers


class AIServiceAdapterFactory:
    """Builds HttpAIServiceAdapter instances per provider.

    Providers are looked up in a registry mapping a name to its transform
    pair and authentication header builder. ``register_provider`` adds new
    providers without touching the adapter.
    """

    _providers: ClassVar[dict[str, tuple[TransformPair | None, HeaderBuilder]]] = {
        "generic": (None, _bearer_headers),
        "openai": (OPENAI, _bearer_headers),
        "anthropic": (ANTHROPIC, _anthropic_headers),
    }
    _aliases: ClassVar[dict[str, str]] = {
        "openai-compatible": "openai",
        "anthropic-compatible": "anthropic",
    }

    @classmethod
    def register_provider(
        cls,
        name: str,
        transforms: TransformPair,
        header_builder: HeaderBuilder = _bearer_headers,
    ) -> None:
        """Make ``name`` available to ``create``."""
        cls._providers[name.strip().lower()] = (transforms, header_builder)

    @classmethod
    def supported_providers(cls) -> list[str]:
        return sorted([*cls._providers, *cls._aliases])

    @classmethod
    def _resolve(cls, provider: str) -> tuple[TransformPair | None, HeaderBuilder]:
        name = provider.strip().lower()
        name = cls._aliases.get(name, name)
        try:
            return cls._providers[name]
        except KeyError:
            msg = (
                f"Unsupported AI provider: {provider}. "
                f"Supported: {', '.join(cls.supported_providers())}"
            )
            raise ValueError(msg) from None

    @classmethod
    def create(
        cls,
        *,
        provider: str = "generic",
        base_url: str | None,
        api_key: str | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> HttpAIServiceAdapter:
        """Build an adapter for ``provider``.

        Args:
            provider: Provider name or alias ("generic", "openai",
                "openai-compatible", "anthropic", "anthropic-compatible").
            base_url: Backend base URL.
            api_key: API key placed in the provider's auth header. None sends
                no auth header.
            options: Extra HttpAIServiceAdapter keyword arguments (timeout,
                max_retries, retry_delay, headers, client, deduplicator, ...).
                Explicit ``transform_request``/``transform_response`` override
                the provider's pair.

        Returns:
            Configured HttpAIServiceAdapter.

        Raises:
            ValueError: If the provider is unknown or base_url is missing.
        """
        transforms, header_builder = cls._resolve(provider)
        kwargs = dict(options or {})
        headers = {**header_builder(api_key), **kwargs.pop("headers", {})}

        if transforms is not None:
            kwargs.setdefault("transform_request", transforms.request)
            kwargs.setdefault("transform_response", transforms.response)

        logger.info("Creating %s AI service adapter for %s", provider, base_url)
        return HttpAIServiceAdapter(base_url, headers=headers, **kwargs)

    @classmethod
    def create_from_env(
        cls,
        settings: AIServiceSettings | None = None,
        **options: Any,
    ) -> HttpAIServiceAdapter:
        """Build an adapter from ``AI_*`` environment settings.

        Args:
            settings: Settings to use. None loads the cached settings.
            **options: Extra adapter keyword arguments (e.g. ``client``).

        Raises:
            ValueError: If AI_SERVICE_URL is not set or the provider is unknown.
        """
        cfg = settings or get_settings()
        if not cfg.service_url:
            raise ValueError("AI_SERVICE_URL environment variable is required")

        deduplicator = options.pop(
            "deduplicator",
            RequestDeduplicator(
                pending_ttl=cfg.pending_ttl,
                blackout_duration=cfg.blackout_duration,
                include_model=cfg.include_model_in_fingerprint,
            ),
        )
        adapter_options: dict[str, Any] = {
            "timeout": cfg.timeout,
            "max_retries": cfg.max_retries,
            "retry_delay": cfg.retry_delay,
            "health_timeout": cfg.health_timeout,
            "default_model": cfg.default_model,
            "deduplicator": deduplicator,
            **options,
        }
        return cls.create(
            provider=cfg.provider,
            base_url=cfg.service_url,
            api_key=cfg.api_key.get_secret_value() if cfg.api_key else None,
            options=adapter_options,
        )


__all__ = ["AIServiceAdapterFactory"]
