"""Parley: multi-turn LLM chat with server-held history and summarization."""
