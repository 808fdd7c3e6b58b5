"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from parley.config import Settings
from parley.corpus import ReferenceCorpus
from parley.errors import CostLookupError
from parley.llm.base import GenerationCost
from parley.llm.factory import ProviderRegistry
from parley.llm.models import ModelCatalog, ModelInfo
from parley.llm.stream import StreamChunk, StreamMetadata, Usage
from parley.storage import ChatStore

DEFAULT_MODEL = "test/model-a"


class FakeProvider:
    """In-memory LLM backend that records every call."""

    name = "fake"

    def __init__(self) -> None:
        self.chunks: list[StreamChunk] = [
            StreamChunk(content="Hello"),
            StreamChunk(content=" there"),
            StreamChunk(
                metadata=StreamMetadata(
                    generation_id="gen-1",
                    usage=Usage(prompt_tokens=10, completion_tokens=5, total_tokens=15),
                )
            ),
        ]
        self.stream_error: Exception | None = None
        self.summary_text = "A short summary."
        self.summarize_error: Exception | None = None
        self.cost: GenerationCost | None = None
        self.stream_calls: list[dict[str, Any]] = []
        self.summarize_calls: list[dict[str, Any]] = []
        self.cost_calls: list[str] = []

    def default_model(self) -> str:
        return DEFAULT_MODEL

    async def stream_chat(
        self,
        messages,
        *,
        system_prompt,
        response_format="text",
        model=None,
        temperature=None,
    ):
        self.stream_calls.append(
            {
                "messages": list(messages),
                "system_prompt": system_prompt,
                "response_format": response_format,
                "model": model,
                "temperature": temperature,
            }
        )
        for chunk in self.chunks:
            yield chunk
        if self.stream_error is not None:
            raise self.stream_error

    async def summarize(self, messages, *, prompt, model=None, temperature=None) -> str:
        self.summarize_calls.append(
            {"messages": list(messages), "prompt": prompt, "model": model, "temperature": temperature}
        )
        if self.summarize_error is not None:
            raise self.summarize_error
        return self.summary_text

    async def fetch_cost(self, generation_id: str) -> GenerationCost:
        self.cost_calls.append(generation_id)
        if self.cost is None:
            raise CostLookupError("failed after 3 attempts: generation not found yet (status 404)")
        return self.cost


@pytest.fixture
def config() -> Settings:
    return Settings(openrouter_api_key="test-key", cost_lookup_base_delay=0.0)


@pytest.fixture
def store(tmp_path: Path) -> ChatStore:
    """Create a ChatStore backed by a temp database."""
    return ChatStore(db_path=tmp_path / "test.db")


@pytest.fixture
def catalog() -> ModelCatalog:
    return ModelCatalog(
        [
            ModelInfo(id=DEFAULT_MODEL, name="Model A", provider="test", tier="free", backend="fake"),
            ModelInfo(id="test/model-b", name="Model B", provider="test", tier="paid", backend="fake"),
            ModelInfo(id="other/model-c", name="Model C", provider="other", tier="paid"),
        ]
    )


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def providers(fake_provider: FakeProvider) -> ProviderRegistry:
    return ProviderRegistry([fake_provider], default="fake")


@pytest.fixture
def corpus() -> ReferenceCorpus:
    return ReferenceCorpus("abcdefghij" * 10, "Test Corpus")
