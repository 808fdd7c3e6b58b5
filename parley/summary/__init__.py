"""Conversation summarization."""

from parley.summary.service import SummaryResult, SummaryService

__all__ = ["SummaryResult", "SummaryService"]
