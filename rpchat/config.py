"""Configuration for the rpchat service."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings


def _default_db_path() -> str:
    return str(Path.home() / ".rpchat" / "rpchat.db")


class Settings(BaseSettings):
    """Environment-based configuration (prefix RPCHAT_)."""

    # ── Service ─────────────────────────────────────────────────────────
    host: str = "127.0.0.1"
    port: int = 8095

    # ── Storage ─────────────────────────────────────────────────────────
    db_path: str = _default_db_path()

    # ── LLM provider ────────────────────────────────────────────────────
    # litellm model string, e.g. "ollama/llama3.1" or "openai/gpt-4o-mini"
    default_model: str = "ollama/llama3.1"
    llm_api_base: str | None = None
    llm_timeout_s: float = 120.0
    max_reply_tokens: int = 512
    temperature: float = 0.8
    regenerate_temperature: float = 1.0

    # Context window size (tokens) of default_model
    token_limit: int = 8192

    # ── Prompt ──────────────────────────────────────────────────────────
    prompt_variant: str = "markdown"
    jailbreak: str = ""

    # ── Logging ─────────────────────────────────────────────────────────
    log_level: str = "INFO"

    model_config = {"env_prefix": "RPCHAT_", "case_sensitive": False}


settings = Settings()
