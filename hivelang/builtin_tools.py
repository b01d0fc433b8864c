"""Tools every bot can use: an AI reply and shared-memory access."""

from __future__ import annotations
from typing import Any, Optional

from pydantic import BaseModel, Field

from .program import stringify
from .tools import ToolContext, ToolDescriptor, ToolRegistry, ToolResult, tool

DEFAULT_RESPOND_SYSTEM = "You are a helpful assistant."


class RespondInput(BaseModel):
    message: Optional[str] = Field(default=None, description="The user's message")
    prompt: Optional[str] = Field(default=None, description="Extra instruction for this reply")
    context: Optional[str] = Field(default=None, description="Background the reply should use")
    system: Optional[str] = None


class KeyValueInput(BaseModel):
    key: str
    value: Any = None


class KeyInput(BaseModel):
    key: str


def respond_tool(provider, name: str = "ai.respond", temperature: float = 0.7) -> ToolDescriptor:
    """LLM reply tool; each reply is appended to the run's ``history`` memory key."""

    async def run(payload: RespondInput, ctx: ToolContext) -> ToolResult:
        parts = [p for p in (payload.context, payload.prompt, payload.message) if p]
        if not parts:
            return ToolResult(success=False, output="Missing prompt")
        system = payload.system or ctx.metadata.extra.get("system_prompt") or DEFAULT_RESPOND_SYSTEM
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": "\n\n".join(parts)},
        ]
        text = await provider.complete(messages, temperature=temperature)
        await ctx.shared_memory.append("history", {"role": "assistant", "content": text})
        return ToolResult(success=True, output=text, data={"response": text})

    return ToolDescriptor(
        name=name,
        capability="general.respond",
        description="Reply to the user with the language model",
        input_schema=RespondInput,
        run=run,
    )


@tool("memory.remember", capability="memory.write", schema=KeyValueInput)
async def remember(payload: KeyValueInput, ctx: ToolContext) -> ToolResult:
    """Store a value under a key in this run's memory."""
    await ctx.shared_memory.set(payload.key, payload.value)
    return ToolResult(success=True, output=f"Stored {payload.key}")


@tool("memory.recall", capability="memory.read", schema=KeyInput)
async def recall(payload: KeyInput, ctx: ToolContext) -> ToolResult:
    """Read the value stored under a key."""
    value = await ctx.shared_memory.get(payload.key)
    if value is None:
        return ToolResult(success=False, output=f"Nothing stored under '{payload.key}'")
    return ToolResult(success=True, output=stringify(value), data={"value": value})


@tool("memory.append", capability="memory.append", schema=KeyValueInput)
async def append(payload: KeyValueInput, ctx: ToolContext) -> ToolResult:
    """Add a value to the list stored under a key."""
    await ctx.shared_memory.append(payload.key, payload.value)
    return ToolResult(success=True, output=f"Appended to {payload.key}")


MEMORY_TOOLS = (remember, recall, append)


def default_registry(provider=None, temperature: float = 0.7) -> ToolRegistry:
    """Frozen registry of the builtin tools; ``ai.respond`` only when a provider is given."""
    registry = ToolRegistry(MEMORY_TOOLS)
    if provider is not None:
        registry.register(respond_tool(provider, temperature=temperature))
    return registry.freeze()
