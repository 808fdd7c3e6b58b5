"""Parley server entry point."""

import asyncio
import logging

from parley.chat.service import ChatService
from parley.config import Settings, settings
from parley.corpus import ReferenceCorpus
from parley.llm.factory import build_providers
from parley.llm.models import ModelCatalog
from parley.server.app import ParleyServer, create_web_app
from parley.storage import ChatStore
from parley.summary.service import SummaryService

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)


async def serve(config: Settings) -> None:
    """Wire up the services and serve until cancelled."""
    catalog = ModelCatalog.load(config.models_config_path)
    corpus = ReferenceCorpus.load(config.reference_corpus_path, config.reference_corpus_label)
    store = ChatStore(config.database_path)
    providers = build_providers(config, catalog)

    chat = ChatService(config, store, catalog, providers, corpus)
    summaries = SummaryService(config, store, catalog, providers)
    server = ParleyServer(
        create_web_app(config, chat, summaries, catalog),
        config.server_host,
        config.server_port,
    )

    await server.start()
    try:
        await asyncio.Event().wait()
    finally:
        await server.stop()
        await chat.drain()
        await providers.aclose()


def main() -> None:
    """Start the HTTP server with settings from the environment."""
    if not settings.openrouter_api_key:
        logger.warning("OPENROUTER_API_KEY is empty, OpenRouter requests will fail")
    logger.info("Starting Parley on %s:%d...", settings.server_host, settings.server_port)
    try:
        asyncio.run(serve(settings))
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
