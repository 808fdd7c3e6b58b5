"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SUMMARIZATION_PROMPT = """\
You are a conversation summarizer. Your task is to create a concise summary of the conversation provided.

Instructions:
1. Capture the main topics discussed
2. Note key decisions or conclusions
3. Preserve important context needed for future messages, including any action items or next steps
4. Keep the summary brief but informative
5. Use clear, neutral language

Provide only the summary, without any preamble or additional commentary."""


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Parley configuration. All values come from environment variables.

    Built once at startup and handed to each component's constructor;
    instances are frozen.
    """

    # OpenRouter
    openrouter_api_key: str = Field(default="")
    openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1")
    openrouter_referer: str = Field(default="http://localhost:3000")
    openrouter_title: str = Field(default="Parley")
    require_parameters: bool = Field(default=True)
    request_timeout: float = Field(default=120.0)

    # Anthropic
    anthropic_api_key: str = Field(default="")
    anthropic_default_model: str = Field(default="claude-haiku-4-5-20251001")
    anthropic_max_tokens: int = Field(default=4096)

    # Provider selection ("openrouter" or "anthropic")
    default_provider: str = Field(default="openrouter")

    # Prompts and sampling
    default_system_prompt: str = Field(default="You are a helpful assistant.")
    summarization_prompt: str = Field(default=DEFAULT_SUMMARIZATION_PROMPT)
    text_top_p: float = Field(default=0.9)
    text_top_k: int = Field(default=40)
    structured_top_p: float = Field(default=0.8)
    structured_top_k: int = Field(default=20)

    # Conversation
    title_max_chars: int = Field(default=100)
    summary_reuse_limit: int = Field(default=2)

    # Model catalog
    models_config_path: Path = Field(default=Path("config/models.json"))

    # Reference corpus (optional system-prompt injection)
    reference_corpus_path: Path = Field(default=Path("data/reference_corpus.txt"))
    reference_corpus_label: str = Field(default="War and Peace by Leo Tolstoy")

    # Database
    database_path: Path = Field(default=Path("data/parley.db"))

    # Cost reconciliation
    cost_lookup_attempts: int = Field(default=3)
    cost_lookup_base_delay: float = Field(default=0.5)

    # Streaming
    stream_queue_size: int = Field(default=64)

    # HTTP server
    server_host: str = Field(default="0.0.0.0")
    server_port: int = Field(default=8080)
    user_id_header: str = Field(default="X-User-Id")

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(
        env_file=_env_file(),
        env_file_encoding="utf-8",
        frozen=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    def sampling_for(self, response_format: str) -> tuple[float, int]:
        """Return ``(top_p, top_k)`` for a response format."""
        if response_format in ("json", "xml"):
            return self.structured_top_p, self.structured_top_k
        return self.text_top_p, self.text_top_k


settings = Settings()
