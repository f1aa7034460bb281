"""Tests for the litellm provider wrapper (litellm.acompletion is patched)."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest


def _response(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _messages():
    from rpchat.models import ProviderMessage, Role
    return [ProviderMessage(role=Role.USER, content="Hello")]


class TestLLMProvider:

    def test_generate_sends_system_first(self, monkeypatch):
        from rpchat.config import settings
        from rpchat.llm.provider import LLMProvider
        captured = {}

        async def fake_acompletion(**kwargs):
            captured.update(kwargs)
            return _response("  Hi there.  ")

        monkeypatch.setattr("rpchat.llm.provider.litellm.acompletion", fake_acompletion)

        reply = asyncio.run(LLMProvider().generate("SYSTEM", _messages(), model="ollama/x"))

        assert reply == "Hi there."
        assert captured["model"] == "ollama/x"
        assert captured["temperature"] == settings.temperature
        assert captured["messages"] == [
            {"role": "system", "content": "SYSTEM"},
            {"role": "user", "content": "Hello"},
        ]

    def test_regenerate_uses_its_temperature(self, monkeypatch):
        from rpchat.config import settings
        from rpchat.llm.provider import LLMProvider
        captured = {}

        async def fake_acompletion(**kwargs):
            captured.update(kwargs)
            return _response("Another take.")

        monkeypatch.setattr("rpchat.llm.provider.litellm.acompletion", fake_acompletion)
        asyncio.run(LLMProvider().regenerate("S", _messages()))
        assert captured["temperature"] == settings.regenerate_temperature
        assert captured["model"] == settings.default_model

    def test_call_failure_becomes_provider_error(self, monkeypatch):
        from rpchat.errors import ProviderError
        from rpchat.llm.provider import LLMProvider

        async def fake_acompletion(**kwargs):
            raise TimeoutError("read timed out")

        monkeypatch.setattr("rpchat.llm.provider.litellm.acompletion", fake_acompletion)
        with pytest.raises(ProviderError) as exc:
            asyncio.run(LLMProvider().generate("S", _messages()))
        assert isinstance(exc.value.__cause__, TimeoutError)

    @pytest.mark.parametrize("response", [_response(None), _response("   "), SimpleNamespace(choices=[])])
    def test_empty_or_malformed_reply(self, monkeypatch, response):
        from rpchat.errors import ProviderError
        from rpchat.llm.provider import LLMProvider

        async def fake_acompletion(**kwargs):
            return response

        monkeypatch.setattr("rpchat.llm.provider.litellm.acompletion", fake_acompletion)
        with pytest.raises(ProviderError):
            asyncio.run(LLMProvider().generate("S", _messages()))
