from __future__ import annotations
import asyncio
import os
from typing import Any, Dict, List, Optional

import anthropic
from loguru import logger
from openai import AsyncOpenAI

from .errors import ProviderError


async def _with_retries(fn, retries: int = 2, base_delay: float = 0.5):
    last_exc = None
    for i in range(retries + 1):
        try:
            return await fn()
        except Exception as e:  # pragma: no cover - network variability
            last_exc = e
            if i == retries:
                break
            delay = base_delay * (2 ** i)
            logger.warning("provider call failed ({}); retrying in {:.1f}s", e, delay)
            await asyncio.sleep(delay)
    raise last_exc  # type: ignore


class AIProvider:
    """Chat completion over a list of {role, content} messages."""
    name = "base"
    default_model = ""

    def __init__(self, model: Optional[str] = None, retries: int = 2):
        self.model = model or self.default_model
        self.retries = retries

    async def complete(self, messages: List[Dict[str, str]], *, model: Optional[str] = None,
                       temperature: float = 0.7, max_tokens: int = 1000) -> str:
        raise NotImplementedError


class OpenAIProvider(AIProvider):
    name = "openai"
    default_model = "gpt-4o"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, retries: int = 2, client: Any = None):
        super().__init__(model or os.getenv("HIVELANG_AI_MODEL"), retries)
        key = api_key or os.getenv("OPENAI_API_KEY")
        if client is None and not key:
            raise ProviderError("OPENAI_API_KEY not set")
        self.client = client or AsyncOpenAI(api_key=key)

    async def complete(self, messages, *, model=None, temperature=0.7, max_tokens=1000) -> str:
        async def call():
            resp = await self.client.chat.completions.create(
                model=model or self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
            return resp.choices[0].message.content or ""
        try:
            return await _with_retries(call, self.retries)
        except Exception as e:
            raise ProviderError(f"openai request failed: {e}") from e


class AnthropicProvider(AIProvider):
    name = "anthropic"
    default_model = "claude-3-5-sonnet-latest"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, retries: int = 2, client: Any = None):
        super().__init__(model or os.getenv("HIVELANG_ANTHROPIC_MODEL"), retries)
        key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if client is None and not key:
            raise ProviderError("ANTHROPIC_API_KEY not set")
        self.client = client or anthropic.AsyncAnthropic(api_key=key)

    async def complete(self, messages, *, model=None, temperature=0.7, max_tokens=1000) -> str:
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        chat = [{"role": m["role"], "content": m["content"]} for m in messages if m["role"] != "system"]

        async def call():
            kwargs: Dict[str, Any] = dict(
                model=model or self.model,
                max_tokens=max_tokens,
                temperature=temperature,
                messages=chat,
            )
            if system:
                kwargs["system"] = system
            resp = await self.client.messages.create(**kwargs)
            return "".join(getattr(block, "text", "") for block in resp.content)
        try:
            return await _with_retries(call, self.retries)
        except Exception as e:
            raise ProviderError(f"anthropic request failed: {e}") from e


PROVIDERS = {"openai": OpenAIProvider, "anthropic": AnthropicProvider}


def select_provider(preferred: str = "auto", model: Optional[str] = None) -> Optional[AIProvider]:
    """Explicit choice, else the first provider with an API key in the environment."""
    if preferred != "auto":
        cls = PROVIDERS.get(preferred)
        if cls is None:
            raise ProviderError(f"unknown provider '{preferred}'")
        return cls(model=model)
    if os.getenv("OPENAI_API_KEY"):
        return OpenAIProvider(model=model)
    if os.getenv("ANTHROPIC_API_KEY"):
        return AnthropicProvider(model=model)
    logger.info("no AI provider configured")
    return None


class DryRunProvider(AIProvider):
    """Offline stand-in for --dry-run: echoes the last user message."""
    name = "dry-run"
    default_model = "dry-run"

    async def complete(self, messages, *, model=None, temperature=0.7, max_tokens=1000) -> str:
        last = next((m["content"] for m in reversed(messages) if m["role"] == "user"), "")
        return f"[dry-run] {last}"
