"""Daily summary, narrative and LLM helpers."""
