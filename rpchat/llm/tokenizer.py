"""Per-model token counting.

Models tiktoken knows (OpenAI family) get exact BPE counts. Everything else
(local Ollama models, Anthropic, ...) gets the chars/4 estimate. Budget
conformance only has to hold under whichever counter is used for a model.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Protocol

import tiktoken

logger = logging.getLogger(__name__)

# chars/4 is rough but consistent
CHARS_PER_TOKEN = 4


class Tokenizer(Protocol):
    def count_tokens(self, text: str) -> int: ...


class TiktokenTokenizer:
    """Exact counts via a tiktoken encoding. Encoding loads on first use."""

    def __init__(self, encoding_name: str):
        self.encoding_name = encoding_name
        self._encoding: tiktoken.Encoding | None = None

    def count_tokens(self, text: str) -> int:
        if not text:
            return 0
        if self._encoding is None:
            self._encoding = tiktoken.get_encoding(self.encoding_name)
        return len(self._encoding.encode(text, disallowed_special=()))


class ApproximateTokenizer:
    """Character-based estimate for models without a local tokenizer."""

    def __init__(self, chars_per_token: int = CHARS_PER_TOKEN):
        self.chars_per_token = chars_per_token

    def count_tokens(self, text: str) -> int:
        if not text:
            return 0
        return -(-len(text) // self.chars_per_token)  # ceil


def _bare_model_name(model: str) -> str:
    """Strip the litellm provider prefix: 'openai/gpt-4o' -> 'gpt-4o'."""
    return model.split("/", 1)[1] if "/" in model else model


@lru_cache(maxsize=32)
def get_tokenizer(model: str) -> Tokenizer:
    """Return the tokenizer for a litellm model string."""
    name = _bare_model_name(model)
    try:
        encoding_name = tiktoken.encoding_name_for_model(name)
    except KeyError:
        logger.info("TOKENIZER | model=%s | using chars/%d estimate", model, CHARS_PER_TOKEN)
        return ApproximateTokenizer()
    logger.info("TOKENIZER | model=%s | using tiktoken (%s)", model, encoding_name)
    return TiktokenTokenizer(encoding_name)


def count_tokens(model: str, text: str) -> int:
    """Count tokens of text under model's tokenizer."""
    return get_tokenizer(model).count_tokens(text)
