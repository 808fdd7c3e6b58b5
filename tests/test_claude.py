"""Tests for the Anthropic provider with a mocked SDK client."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import pytest

from parley.errors import CostLookupError, UpstreamError
from parley.llm.claude import AnthropicProvider, render_transcript


class _FakeStream:
    """Stands in for the SDK's MessageStream context manager."""

    def __init__(self, texts: list[str], input_tokens: int = 7, output_tokens: int = 3) -> None:
        self._texts = texts
        self._final = SimpleNamespace(
            usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens)
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    @property
    def text_stream(self):
        async def _gen():
            for text in self._texts:
                yield text

        return _gen()

    async def get_final_message(self):
        return self._final


def _client(stream: _FakeStream | None = None) -> MagicMock:
    client = MagicMock()
    client.messages.stream = MagicMock(return_value=stream or _FakeStream(["Hi", "", " there"]))
    client.messages.create = AsyncMock(
        return_value=SimpleNamespace(content=[SimpleNamespace(text="Summary.")])
    )
    return client


def _connection_error() -> anthropic.APIConnectionError:
    return anthropic.APIConnectionError(request=httpx.Request("POST", "https://api.anthropic.com"))


async def test_stream_yields_content_then_usage_only_metadata(config, catalog) -> None:
    provider = AnthropicProvider(config, catalog, client=_client())

    chunks = [c async for c in provider.stream_chat([{"role": "user", "content": "Hi"}], system_prompt="sys")]

    assert [c.content for c in chunks[:-1]] == ["Hi", " there"]
    metadata = chunks[-1].metadata
    assert metadata.generation_id is None
    assert metadata.usage.prompt_tokens == 7
    assert metadata.usage.completion_tokens == 3
    assert metadata.usage.total_tokens == 10


async def test_stream_kwargs_without_temperature(config, catalog) -> None:
    client = _client()
    provider = AnthropicProvider(config, catalog, client=client)

    [c async for c in provider.stream_chat([{"role": "user", "content": "Hi"}], system_prompt="sys")]

    kwargs = client.messages.stream.call_args.kwargs
    assert kwargs["model"] == config.anthropic_default_model
    assert kwargs["system"] == "sys"
    assert kwargs["messages"] == [{"role": "user", "content": "Hi"}]
    assert kwargs["top_p"] == 0.9
    assert kwargs["top_k"] == 40
    assert "temperature" not in kwargs


async def test_stream_kwargs_with_temperature_drop_top_p(config, catalog) -> None:
    client = _client()
    provider = AnthropicProvider(config, catalog, client=client)

    [
        c
        async for c in provider.stream_chat(
            [{"role": "user", "content": "Hi"}],
            system_prompt="sys",
            response_format="xml",
            model="test/model-b",
            temperature=0.5,
        )
    ]

    kwargs = client.messages.stream.call_args.kwargs
    assert kwargs["model"] == "test/model-b"
    assert kwargs["temperature"] == 0.5
    assert kwargs["top_k"] == 20
    assert "top_p" not in kwargs


async def test_stream_api_error_becomes_upstream_error(config, catalog) -> None:
    client = _client()
    client.messages.stream.side_effect = _connection_error()
    provider = AnthropicProvider(config, catalog, client=client)

    with pytest.raises(UpstreamError, match="Anthropic API error"):
        [c async for c in provider.stream_chat([{"role": "user", "content": "Hi"}], system_prompt="sys")]


async def test_summarize_sends_single_transcript_turn(config, catalog) -> None:
    client = _client()
    provider = AnthropicProvider(config, catalog, client=client)

    result = await provider.summarize(
        [
            {"role": "assistant", "content": "Previous summary:\nold"},
            {"role": "user", "content": "next"},
        ],
        prompt="Summarize.",
    )

    assert result == "Summary."
    kwargs = client.messages.create.call_args.kwargs
    assert kwargs["system"] == "Summarize."
    assert len(kwargs["messages"]) == 1
    assert kwargs["messages"][0]["role"] == "user"
    assert "<assistant>Previous summary:\nold</assistant>" in kwargs["messages"][0]["content"]


async def test_summarize_api_error(config, catalog) -> None:
    client = _client()
    client.messages.create.side_effect = _connection_error()
    provider = AnthropicProvider(config, catalog, client=client)

    with pytest.raises(UpstreamError):
        await provider.summarize([{"role": "user", "content": "x"}], prompt="p")


async def test_summarize_empty_content(config, catalog) -> None:
    client = _client()
    client.messages.create.return_value = SimpleNamespace(content=[])
    provider = AnthropicProvider(config, catalog, client=client)

    with pytest.raises(UpstreamError, match="no response"):
        await provider.summarize([{"role": "user", "content": "x"}], prompt="p")


async def test_fetch_cost_unsupported(config, catalog) -> None:
    provider = AnthropicProvider(config, catalog, client=_client())
    with pytest.raises(CostLookupError):
        await provider.fetch_cost("anything")


def test_render_transcript() -> None:
    text = render_transcript([{"role": "user", "content": "a"}, {"role": "assistant", "content": "b"}])
    assert text == "<conversation>\n<user>a</user>\n<assistant>b</assistant>\n</conversation>"
