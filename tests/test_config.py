"""Tests for Settings configuration model."""

from pathlib import Path

import pydantic
import pytest

from parley.config import DEFAULT_SUMMARIZATION_PROMPT, Settings


class TestSamplingFor:
    def test_text_uses_text_sampling(self):
        s = Settings()
        assert s.sampling_for("text") == (0.9, 40)

    def test_json_uses_structured_sampling(self):
        s = Settings()
        assert s.sampling_for("json") == (0.8, 20)

    def test_xml_uses_structured_sampling(self):
        s = Settings()
        assert s.sampling_for("xml") == (0.8, 20)

    def test_overrides(self):
        s = Settings(structured_top_p=0.5, structured_top_k=5)
        assert s.sampling_for("json") == (0.5, 5)


class TestDefaults:
    def test_default_provider(self):
        assert Settings().default_provider == "openrouter"

    def test_default_openrouter_base_url(self):
        assert Settings().openrouter_base_url == "https://openrouter.ai/api/v1"

    def test_require_parameters_on(self):
        assert Settings().require_parameters is True

    def test_default_summary_reuse_limit(self):
        assert Settings().summary_reuse_limit == 2

    def test_default_title_length(self):
        assert Settings().title_max_chars == 100

    def test_default_cost_lookup_retries(self):
        s = Settings()
        assert s.cost_lookup_attempts == 3
        assert s.cost_lookup_base_delay == 0.5

    def test_default_database_path(self):
        assert Settings().database_path == Path("data/parley.db")

    def test_default_summarization_prompt(self):
        assert Settings().summarization_prompt == DEFAULT_SUMMARIZATION_PROMPT

    def test_default_user_id_header(self):
        assert Settings().user_id_header == "X-User-Id"


class TestImmutability:
    def test_settings_are_frozen(self):
        s = Settings()
        with pytest.raises(pydantic.ValidationError):
            s.summary_reuse_limit = 5
