"""Model catalog loaded from a JSON config file."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from pydantic import BaseModel, TypeAdapter

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

# Used when the catalog file lists no models at all.
FALLBACK_MODEL = "meta-llama/llama-3.3-8b-instruct:free"


class ModelInfo(BaseModel):
    """One selectable model."""

    id: str
    name: str
    provider: str = ""
    tier: str = ""
    # Registry name of the provider that serves this id.
    backend: str = "openrouter"


_MODEL_LIST = TypeAdapter(list[ModelInfo])


class ModelCatalog:
    """The set of models callers may request.

    The first entry in the file is the default model.
    """

    def __init__(self, models: list[ModelInfo] | None = None) -> None:
        self._models = list(models or [])
        self._ids = {m.id for m in self._models}

    @classmethod
    def load(cls, path: Path) -> ModelCatalog:
        """Read a JSON array of ``{id, name, provider, tier, backend}`` objects.

        Raises ``FileNotFoundError`` or ``ValueError`` for a missing or
        malformed file.
        """
        raw = json.loads(path.read_text(encoding="utf-8"))
        catalog = cls(_MODEL_LIST.validate_python(raw))
        logger.info(
            "Loaded %d model(s) from %s (default=%s)",
            len(catalog.models),
            path,
            catalog.default_model(),
        )
        return catalog

    @property
    def models(self) -> list[ModelInfo]:
        return list(self._models)

    def is_valid(self, model_id: str) -> bool:
        return model_id in self._ids

    def backend_of(self, model_id: str) -> str | None:
        for model in self._models:
            if model.id == model_id:
                return model.backend
        return None

    def default_model(self) -> str:
        if not self._models:
            return FALLBACK_MODEL
        return self._models[0].id
