"""LLM providers, streaming, cost reconciliation and prompt assembly."""
