"""Tests for provider registry and construction."""

import pytest

from parley.config import Settings
from parley.errors import ValidationError
from parley.llm.claude import AnthropicProvider
from parley.llm.factory import ProviderRegistry, build_providers
from parley.llm.openrouter import OpenRouterProvider


class _Named:
    def __init__(self, name: str) -> None:
        self.name = name
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True


def test_get_by_name_and_default() -> None:
    a, b = _Named("openrouter"), _Named("anthropic")
    registry = ProviderRegistry([a, b], default="anthropic")

    assert registry.get("openrouter") is a
    assert registry.get() is b
    assert registry.get("") is b
    assert registry.names == ["openrouter", "anthropic"]


def test_unknown_name_is_validation_error() -> None:
    registry = ProviderRegistry([_Named("openrouter")])
    with pytest.raises(ValidationError, match="unknown provider 'genkit'"):
        registry.get("genkit")


def test_unknown_default_falls_back_to_openrouter() -> None:
    registry = ProviderRegistry([_Named("openrouter"), _Named("anthropic")], default="bogus")
    assert registry.default_name == "openrouter"


def test_duplicate_names_rejected() -> None:
    with pytest.raises(ValueError):
        ProviderRegistry([_Named("openrouter"), _Named("openrouter")])


async def test_aclose_closes_every_provider() -> None:
    a, b = _Named("openrouter"), _Named("anthropic")
    await ProviderRegistry([a, b]).aclose()
    assert a.closed and b.closed


async def test_build_providers(catalog) -> None:
    registry = build_providers(Settings(default_provider="anthropic"), catalog)
    try:
        assert isinstance(registry.get("openrouter"), OpenRouterProvider)
        assert isinstance(registry.get("anthropic"), AnthropicProvider)
        assert registry.default_name == "anthropic"
    finally:
        await registry.aclose()
