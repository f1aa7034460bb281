"""Tests for per-model tokenizer selection. No encoding is downloaded."""

from __future__ import annotations


class TestTokenizerSelection:

    def test_local_model_uses_estimate(self):
        from rpchat.llm.tokenizer import ApproximateTokenizer, get_tokenizer
        assert isinstance(get_tokenizer("ollama/llama3.1"), ApproximateTokenizer)

    def test_openai_model_uses_tiktoken_lazily(self):
        from rpchat.llm.tokenizer import TiktokenTokenizer, get_tokenizer
        tokenizer = get_tokenizer("openai/gpt-4o")
        assert isinstance(tokenizer, TiktokenTokenizer)
        assert tokenizer.encoding_name == "o200k_base"
        assert tokenizer._encoding is None

    def test_cached_per_model(self):
        from rpchat.llm.tokenizer import get_tokenizer
        assert get_tokenizer("ollama/mistral") is get_tokenizer("ollama/mistral")

    def test_provider_prefix_stripped(self):
        from rpchat.llm.tokenizer import _bare_model_name
        assert _bare_model_name("openai/gpt-4o-mini") == "gpt-4o-mini"
        assert _bare_model_name("gpt-4") == "gpt-4"


class TestApproximateTokenizer:

    def test_rounds_up(self):
        from rpchat.llm.tokenizer import ApproximateTokenizer
        tokenizer = ApproximateTokenizer()
        assert tokenizer.count_tokens("") == 0
        assert tokenizer.count_tokens("abcd") == 1
        assert tokenizer.count_tokens("abcde") == 2

    def test_count_tokens_by_model(self):
        from rpchat.llm.tokenizer import count_tokens
        assert count_tokens("ollama/test-model", "x" * 40) == 10

    def test_empty_text_skips_encoding(self):
        from rpchat.llm.tokenizer import TiktokenTokenizer
        tokenizer = TiktokenTokenizer("cl100k_base")
        assert tokenizer.count_tokens("") == 0
        assert tokenizer._encoding is None
