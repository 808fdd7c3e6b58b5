"""Reference corpus that can be injected into the system directive."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


def clamp_percent(percent: int) -> int:
    """Map any value outside [1, 100] to 100."""
    if percent < 1 or percent > 100:
        return 100
    return percent


class ReferenceCorpus:
    """Immutable text loaded once at startup and shared across requests."""

    def __init__(self, text: str = "", label: str = "") -> None:
        self._text = text
        self._label = label

    @classmethod
    def load(cls, path: Path, label: str = "") -> ReferenceCorpus:
        """Read the corpus file. A missing file gives an empty corpus."""
        if not path.exists():
            logger.warning("Reference corpus not found at %s", path)
            return cls("", label)
        text = path.read_text(encoding="utf-8")
        logger.info("Loaded reference corpus from %s (%d chars)", path, len(text))
        return cls(text, label)

    @property
    def text(self) -> str:
        return self._text

    @property
    def label(self) -> str:
        return self._label

    def __len__(self) -> int:
        return len(self._text)

    def slice(self, percent: int) -> str:
        """Return the leading ``floor(len * percent / 100)`` characters."""
        percent = clamp_percent(percent)
        return self._text[: len(self._text) * percent // 100]
