"""Provider selection by name."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from parley.errors import ValidationError
from parley.llm.claude import AnthropicProvider
from parley.llm.openrouter import OpenRouterProvider

if TYPE_CHECKING:
    from parley.config import Settings
    from parley.llm.base import LLMProvider
    from parley.llm.models import ModelCatalog

logger = logging.getLogger(__name__)

FALLBACK_PROVIDER = "openrouter"


class ProviderRegistry:
    """Holds the configured LLM backends, keyed by name."""

    def __init__(self, providers: list[LLMProvider], default: str = FALLBACK_PROVIDER) -> None:
        self._providers: dict[str, LLMProvider] = {}
        for provider in providers:
            if provider.name in self._providers:
                msg = f"Provider '{provider.name}' is already registered"
                raise ValueError(msg)
            self._providers[provider.name] = provider

        if default not in self._providers:
            logger.warning("Unknown default provider '%s', using %s", default, FALLBACK_PROVIDER)
            default = FALLBACK_PROVIDER
        self._default = default

    @property
    def default_name(self) -> str:
        return self._default

    @property
    def names(self) -> list[str]:
        return list(self._providers)

    def get(self, name: str | None = None) -> LLMProvider:
        """Return the named provider, or the default when *name* is empty.

        Raises ``ValidationError`` for an unknown name.
        """
        key = name or self._default
        provider = self._providers.get(key)
        if provider is None:
            msg = f"unknown provider '{key}'; expected one of: {', '.join(self._providers)}"
            raise ValidationError(msg)
        return provider

    async def aclose(self) -> None:
        for provider in self._providers.values():
            aclose = getattr(provider, "aclose", None)
            if aclose is not None:
                await aclose()


def build_providers(settings: Settings, catalog: ModelCatalog) -> ProviderRegistry:
    """Create every supported backend from settings."""
    providers: list[LLMProvider] = [
        OpenRouterProvider(settings, catalog),
        AnthropicProvider(settings, catalog),
    ]
    registry = ProviderRegistry(providers, default=settings.default_provider)
    logger.info("LLM providers: %s (default=%s)", ", ".join(registry.names), registry.default_name)
    return registry
