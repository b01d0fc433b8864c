"""
Test configuration and fixtures for the HiveLang test suite.
"""
import asyncio
import sys
from pathlib import Path
from typing import List

import pytest
from pydantic import BaseModel

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from hivelang.config import Settings
from hivelang.decisions import Decision, DecisionSource, ToolAction
from hivelang.memory import MemoryStore
from hivelang.tools import ToolContext, ToolRegistry, ToolResult, tool


class EchoInput(BaseModel):
    text: str


class AddInput(BaseModel):
    a: int
    b: int


class LookupInput(BaseModel):
    email: str
    verbose: bool = False


@tool("echo", capability="text.echo", schema=EchoInput)
async def echo(payload: EchoInput, ctx: ToolContext) -> ToolResult:
    """Return the text unchanged."""
    return ToolResult(success=True, output=payload.text)


@tool("math.add", capability="math", schema=AddInput)
async def add(payload: AddInput, ctx: ToolContext):
    """Add two integers."""
    total = payload.a + payload.b
    return {"success": True, "output": str(total), "data": {"sum": total}}


@tool("crm.lookup", capability="crm.read", schema=LookupInput)
async def lookup(payload: LookupInput, ctx: ToolContext) -> ToolResult:
    """Find a customer by email."""
    vip = payload.email.endswith("@vip.example")
    return ToolResult(success=True, output=f"customer {payload.email}", data={"vip": vip, "name": "Ada"})


@tool("flaky")
async def flaky(payload, ctx: ToolContext) -> ToolResult:
    raise RuntimeError("boom")


@tool("broken")
async def broken(payload, ctx: ToolContext) -> ToolResult:
    return ToolResult(success=False, output="service unavailable")


@tool("slow")
async def slow(payload, ctx: ToolContext) -> ToolResult:
    await asyncio.sleep(5)
    return ToolResult(success=True, output="too late")


@tool("legacy.notify", deprecated=True)
async def legacy_notify(payload, ctx: ToolContext) -> ToolResult:
    return ToolResult(success=True, output="sent")


FAKE_TOOLS = (echo, add, lookup, flaky, broken, slow, legacy_notify)


class ScriptedSource(DecisionSource):
    """Replays a fixed list of decisions; records every request it sees."""

    def __init__(self, decisions: List[Decision]):
        self.decisions = list(decisions)
        self.requests = []

    async def decide(self, request):
        self.requests.append(request)
        if not self.decisions:
            return Decision("nothing left", final_answer="done")
        return self.decisions.pop(0)


class LoopingSource(DecisionSource):
    """Never answers: picks the same tool forever."""

    def __init__(self, tool_name: str = "echo", tool_input=None):
        self.tool_name = tool_name
        self.tool_input = tool_input if tool_input is not None else {"text": "again"}
        self.calls = 0

    async def decide(self, request):
        self.calls += 1
        return Decision(f"try {self.calls}", ToolAction(self.tool_name, dict(self.tool_input)))


class FakeProvider:
    """Stands in for an AI provider; returns scripted replies in order."""

    name = "fake"

    def __init__(self, *replies: str):
        self.replies = list(replies)
        self.calls = []

    async def complete(self, messages, *, model=None, temperature=0.7, max_tokens=1000) -> str:
        self.calls.append({"messages": messages, "model": model, "temperature": temperature})
        return self.replies.pop(0) if self.replies else "Final Answer: ok"


@pytest.fixture
def registry() -> ToolRegistry:
    """Frozen registry with the fake tools."""
    return ToolRegistry(FAKE_TOOLS).freeze()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def context(store) -> ToolContext:
    return ToolContext.create(bot_id="test-bot", run_id="run-1", user_id="user-1", store=store)


@pytest.fixture
def settings() -> Settings:
    """Settings with a short tool timeout so timeout tests stay fast."""
    return Settings(step_timeout_s=0.2)


@pytest.fixture
def examples_dir() -> Path:
    return Path(__file__).resolve().parents[1] / "examples"
