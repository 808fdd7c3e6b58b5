"""Tests for system directive assembly and history selection."""

from unittest.mock import AsyncMock

from parley.corpus import ReferenceCorpus
from parley.errors import PersistenceError
from parley.llm.prompt import build_system_prompt, select_history
from parley.storage import ChatStore, Conversation, Message, Summary
from parley.storage.models import make_id

SCHEMA = '{"type": "object", "properties": {"answer": {"type": "string"}}}'


def _conversation(fmt: str = "text", schema: str = "") -> Conversation:
    return Conversation(id="c1", user_id="u1", title="T", response_format=fmt, response_schema=schema)


def _summary(content: str = "We talked about cats.") -> Summary:
    return Summary(id="s1", conversation_id="c1", content=content, cutoff_message_id="m1")


# -- build_system_prompt -------------------------------------------------------


class TestBuildSystemPrompt:
    def test_text_uses_default_prompt(self, config):
        assert build_system_prompt(_conversation(), config) == "You are a helpful assistant."

    def test_text_appends_custom_prompt(self, config):
        result = build_system_prompt(_conversation(), config, custom_prompt="Answer in French.")
        assert result == "You are a helpful assistant.\n\nAnswer in French."

    def test_structured_replaces_directive(self, config):
        result = build_system_prompt(
            _conversation("json", SCHEMA), config, custom_prompt="Be chatty."
        )
        assert SCHEMA in result
        assert "JSON" in result
        assert "code fences" in result
        assert "Be chatty." not in result
        assert "You are a helpful assistant." not in result

    def test_xml_directive(self, config):
        result = build_system_prompt(_conversation("xml", "<answer/>"), config)
        assert "XML" in result
        assert "<answer/>" in result

    def test_summary_is_prepended(self, config):
        result = build_system_prompt(_conversation(), config, summary=_summary())
        assert result == (
            "Previous conversation summary:\nWe talked about cats.\n\nYou are a helpful assistant."
        )

    def test_summary_prepended_to_structured(self, config):
        result = build_system_prompt(_conversation("json", SCHEMA), config, summary=_summary())
        assert result.startswith("Previous conversation summary:\nWe talked about cats.\n\n")
        assert SCHEMA in result

    def test_corpus_is_appended_last(self, config, corpus):
        result = build_system_prompt(
            _conversation(), config, summary=_summary(), corpus=corpus, corpus_percent=10
        )
        assert result.endswith("\n\nContext (Test Corpus):\nabcdefghij")
        assert result.startswith("Previous conversation summary:")

    def test_corpus_zero_percent_means_whole(self, config, corpus):
        result = build_system_prompt(_conversation(), config, corpus=corpus, corpus_percent=0)
        assert result.endswith(corpus.text)

    def test_corpus_not_requested(self, config, corpus):
        result = build_system_prompt(_conversation(), config, corpus=corpus)
        assert "Context (" not in result

    def test_empty_corpus_leaves_directive_unchanged(self, config):
        result = build_system_prompt(
            _conversation(), config, corpus=ReferenceCorpus("", "Empty"), corpus_percent=50
        )
        assert result == "You are a helpful assistant."

    def test_missing_corpus_leaves_directive_unchanged(self, config):
        result = build_system_prompt(_conversation(), config, corpus_percent=50)
        assert result == "You are a helpful assistant."


# -- select_history ------------------------------------------------------------


async def _seed(store: ChatStore, count: int) -> tuple[Conversation, list[Message]]:
    conv = await store.create_conversation("u1", "T")
    messages = []
    for i in range(count):
        role = "user" if i % 2 == 0 else "assistant"
        messages.append(
            await store.add_message(
                Message(id=make_id(), conversation_id=conv.id, role=role, content=f"m{i}")
            )
        )
    return conv, messages


async def test_select_history_without_summary(store: ChatStore) -> None:
    conv, _ = await _seed(store, 3)

    summary, history = await select_history(store, conv.id)

    assert summary is None
    assert [m.content for m in history] == ["m0", "m1", "m2"]


async def test_select_history_after_cutoff(store: ChatStore) -> None:
    conv, msgs = await _seed(store, 4)
    created = await store.create_summary(conv.id, "summary", msgs[1].id)

    summary, history = await select_history(store, conv.id)

    assert summary.id == created.id
    assert [m.content for m in history] == ["m2", "m3"]
    active = await store.get_active_summary(conv.id)
    assert active.usage_count == 1


async def test_select_history_unset_cutoff_is_empty(store: ChatStore) -> None:
    conv, _ = await _seed(store, 2)
    await store.create_summary(conv.id, "summary", None)

    summary, history = await select_history(store, conv.id)

    assert summary is not None
    assert history == []


async def test_select_history_increment_failure_is_logged(caplog) -> None:
    summary = _summary()
    store = AsyncMock()
    store.get_active_summary.return_value = summary
    store.get_messages_after.return_value = []
    store.increment_summary_usage.side_effect = PersistenceError("database is locked")

    result, history = await select_history(store, "c1")

    assert result is summary
    assert history == []
    assert "Failed to increment usage count" in caplog.text
