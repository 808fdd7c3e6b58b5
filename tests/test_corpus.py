"""Tests for the reference corpus."""

from pathlib import Path

import pytest

from parley.corpus import ReferenceCorpus, clamp_percent


@pytest.mark.parametrize(("percent", "expected"), [(0, 100), (101, 100), (-5, 100), (1, 1), (50, 50), (100, 100)])
def test_clamp_percent(percent: int, expected: int) -> None:
    assert clamp_percent(percent) == expected


def test_slice_half_is_floor() -> None:
    corpus = ReferenceCorpus("x" * 101, "Label")
    assert len(corpus.slice(50)) == 50


def test_slice_out_of_range_is_whole_text() -> None:
    corpus = ReferenceCorpus("abcdefghij", "Label")
    assert corpus.slice(0) == "abcdefghij"
    assert corpus.slice(101) == "abcdefghij"


def test_slice_is_prefix() -> None:
    corpus = ReferenceCorpus("abcdefghij", "Label")
    assert corpus.slice(30) == "abc"


def test_slice_counts_characters_not_bytes() -> None:
    corpus = ReferenceCorpus("жжжж", "Label")
    assert corpus.slice(50) == "жж"


def test_load_reads_file(tmp_path: Path) -> None:
    path = tmp_path / "corpus.txt"
    path.write_text("Well, Prince, so Genoa and Lucca", encoding="utf-8")

    corpus = ReferenceCorpus.load(path, "War and Peace")

    assert corpus.text.startswith("Well, Prince")
    assert corpus.label == "War and Peace"
    assert len(corpus) == 32


def test_load_missing_file_is_empty(tmp_path: Path) -> None:
    corpus = ReferenceCorpus.load(tmp_path / "missing.txt", "Label")
    assert len(corpus) == 0
    assert corpus.slice(100) == ""
