"""LLM access — provider calls (litellm) and per-model token counting."""
