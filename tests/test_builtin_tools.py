"""Builtin tools and the providers behind ai.respond."""
import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from hivelang.ai_providers import AnthropicProvider, DryRunProvider, OpenAIProvider, select_provider
from hivelang.api import load
from hivelang.builtin_tools import default_registry
from hivelang.errors import ProviderError
from hivelang.runtime import ReActEngine

from conftest import FakeProvider


def test_default_registry_contents():
    assert default_registry().names() == ["memory.remember", "memory.recall", "memory.append"]
    with_ai = default_registry(DryRunProvider())
    assert "ai.respond" in with_ai
    assert with_ai.get("general.respond").name == "ai.respond"
    assert with_ai.frozen


def test_memory_tools(context):
    reg = default_registry()

    async def scenario():
        await reg.get("memory.remember").invoke({"key": "color", "value": "blue"}, context)
        recalled = await reg.get("memory.recall").invoke({"key": "color"}, context)
        missing = await reg.get("memory.recall").invoke({"key": "size"}, context)
        await reg.get("memory.append").invoke({"key": "tags", "value": "x"}, context)
        return recalled, missing, await context.shared_memory.get("tags")

    recalled, missing, tags = asyncio.run(scenario())
    assert recalled.output == "blue"
    assert recalled.data == {"value": "blue"}
    assert missing.success is False
    assert tags == ["x"]


def test_respond_program_speaks_and_records_history(context):
    provider = FakeProvider("Hi there!")
    registry = default_registry(provider)
    program = load('@bot G\n@trigger on_message\n  respond with ai\n    context: "Be warm."\n', registry)
    result = asyncio.run(ReActEngine(registry).run_program(program, context, input="hello"))
    assert result.success
    assert result.output == ["Hi there!"]
    sent = provider.calls[0]["messages"]
    assert sent[1]["content"] == "Be warm.\n\nhello"
    assert asyncio.run(context.shared_memory.get("history")) == [{"role": "assistant", "content": "Hi there!"}]


def test_respond_needs_some_prompt(context):
    tool = default_registry(FakeProvider()).get("ai.respond")
    result = asyncio.run(tool.invoke({}, context))
    assert result.success is False
    assert result.output == "Missing prompt"


def test_openai_provider_uses_chat_completions():
    client = MagicMock()
    reply = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="pong"))])
    client.chat.completions.create = AsyncMock(return_value=reply)
    provider = OpenAIProvider(client=client, model="gpt-test")
    text = asyncio.run(provider.complete([{"role": "user", "content": "ping"}], temperature=0.2))
    assert text == "pong"
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-test"
    assert kwargs["temperature"] == 0.2


def test_anthropic_provider_separates_system_prompt():
    client = MagicMock()
    client.messages.create = AsyncMock(return_value=SimpleNamespace(content=[SimpleNamespace(text="ok")]))
    provider = AnthropicProvider(client=client)
    messages = [{"role": "system", "content": "rules"}, {"role": "user", "content": "hi"}]
    assert asyncio.run(provider.complete(messages)) == "ok"
    kwargs = client.messages.create.call_args.kwargs
    assert kwargs["system"] == "rules"
    assert kwargs["messages"] == [{"role": "user", "content": "hi"}]


def test_provider_errors_are_wrapped():
    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=RuntimeError("rate limited"))
    provider = OpenAIProvider(client=client, retries=0)
    with pytest.raises(ProviderError, match="rate limited"):
        asyncio.run(provider.complete([{"role": "user", "content": "x"}]))


def test_select_provider(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    assert select_provider() is None
    with pytest.raises(ProviderError, match="unknown provider"):
        select_provider("mystery")
    with pytest.raises(ProviderError, match="OPENAI_API_KEY not set"):
        select_provider("openai")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")
    assert isinstance(select_provider(), AnthropicProvider)
