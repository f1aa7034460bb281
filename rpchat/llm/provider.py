"""LLM provider using litellm.

Works with local Ollama models and any cloud provider litellm supports.
No retries here: a failed call surfaces as ProviderError and the caller
decides what to do.
"""

from __future__ import annotations

import logging

import litellm

from rpchat.config import settings
from rpchat.errors import ProviderError
from rpchat.models import Context, ProviderMessage

logger = logging.getLogger(__name__)


class LLMProvider:
    """Unified chat-completion provider.

    generate() is used for fresh replies, regenerate() for alternative
    candidates of an existing reply (sampled at regenerate_temperature).
    """

    async def generate(
        self,
        system: str,
        messages: list[ProviderMessage],
        *,
        model: str | None = None,
    ) -> str:
        return await self._completion(
            Context(system=system, messages=messages),
            model=model or settings.default_model,
            temperature=settings.temperature,
        )

    async def regenerate(
        self,
        system: str,
        messages: list[ProviderMessage],
        *,
        model: str | None = None,
    ) -> str:
        return await self._completion(
            Context(system=system, messages=messages),
            model=model or settings.default_model,
            temperature=settings.regenerate_temperature,
        )

    async def _completion(self, context: Context, model: str, temperature: float) -> str:
        kwargs: dict = {
            "model": model,
            "messages": context.to_llm_messages(),
            "temperature": temperature,
            "max_tokens": settings.max_reply_tokens,
            "timeout": settings.llm_timeout_s,
        }
        if settings.llm_api_base:
            kwargs["api_base"] = settings.llm_api_base

        logger.info(
            "LLM call: model=%s, messages=%d, temperature=%.2f",
            model, len(context.messages), temperature,
        )

        try:
            response = await litellm.acompletion(**kwargs)
        except Exception as e:
            logger.warning("LLM_CALL_FAILED | model=%s | %s", model, e)
            raise ProviderError(f"Provider call failed for model {model}: {e}") from e

        content = _extract_content(response)
        if not content:
            logger.warning("LLM_EMPTY_REPLY | model=%s", model)
            raise ProviderError(f"Provider returned an empty reply for model {model}")

        logger.info("LLM call complete: model=%s, %d chars", model, len(content))
        return content


def _extract_content(response) -> str:
    """Pull the reply text out of a litellm response; '' when malformed."""
    try:
        content = response.choices[0].message.content
    except (AttributeError, IndexError, TypeError):
        return ""
    return (content or "").strip()


# Singleton
llm_provider = LLMProvider()
