"""Decisions and the sources that produce them.

The engine asks a :class:`DecisionSource` for exactly one :class:`Decision`
per Reasoning cycle. :class:`LLMDecisionSource` drives a chat model with the
Thought / Action / Action Input / Final Answer text protocol.
"""

from __future__ import annotations
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from loguru import logger

from .schemas import ReActStep
from .tools import ToolContext, ToolDescriptor


@dataclass(frozen=True)
class ToolAction:
    tool: str
    input: Dict[str, Any] = field(default_factory=dict)
    binding: Optional[str] = None
    speak: bool = False

@dataclass(frozen=True)
class SayAction:
    text: str

@dataclass(frozen=True)
class AssignAction:
    name: str
    value: Any

Action = Union[ToolAction, SayAction, AssignAction]


@dataclass(frozen=True)
class Decision:
    thought: str = ""
    action: Optional[Action] = None
    final_answer: Optional[str] = None


@dataclass(frozen=True)
class DecisionRequest:
    task: str
    tools: Tuple[ToolDescriptor, ...]
    trace: Tuple[ReActStep, ...]
    context: ToolContext
    outputs: Tuple[str, ...] = ()
    system_prompt: Optional[str] = None
    temperature: Optional[float] = None


class DecisionSource:
    async def decide(self, request: DecisionRequest) -> Decision:
        raise NotImplementedError


DEFAULT_SYSTEM_PROMPT = """You are a capable assistant that solves tasks step by step using tools.

Answer in exactly this format:

Thought: what you are thinking about the next step
Action: the tool name to use (exactly one of the available tools)
Action Input: the tool input as a JSON object

You will then receive:
Observation: the result of the tool

Repeat Thought / Action / Action Input as needed. When you know the answer, reply:

Thought: I know the final answer
Final Answer: the answer to the original task

Rules:
- Use only the tools listed in the task.
- Action Input must be valid JSON.
- Give a Final Answer as soon as you can."""

FORMAT_REMINDER = (
    "Invalid format. Reply with 'Thought:', 'Action:' and 'Action Input:' lines, "
    "or with 'Final Answer:'."
)

_SECTION_NAMES = ("Thought", "Action Input", "Action", "Observation", "Final Answer")
_TOOL_NAME = re.compile(r"^[A-Za-z0-9_.\-]+")
_ACTION_PREFIX = re.compile(r"^(?:use|call|execute|to)\s+", re.IGNORECASE)
_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


def extract_section(text: str, name: str) -> Optional[str]:
    others = "|".join(re.escape(n) for n in _SECTION_NAMES)
    pattern = rf"(?:^|\n)\s*{re.escape(name)}:\s*(.*?)(?=\n\s*(?:{others}):|\Z)"
    match = re.search(pattern, text, re.S)
    return match.group(1).strip() if match else None


def clean_action(raw: str) -> str:
    name = raw.strip().replace("*", "").replace("`", "").strip()
    name = _ACTION_PREFIX.sub("", name).strip()
    match = _TOOL_NAME.match(name)
    return match.group(0) if match else name


def parse_action_input(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    text = _FENCE.sub("", raw.strip()).strip()
    try:
        value = json.loads(text)
    except ValueError:
        return {"prompt": raw.strip()}
    return value if isinstance(value, dict) else {"input": value}


def parse_react_output(text: str) -> Decision:
    """Turn one model reply into a Decision; neither action nor answer means malformed."""
    thought = extract_section(text, "Thought") or ""
    final = extract_section(text, "Final Answer")
    if final is not None:
        return Decision(thought=thought, final_answer=final)
    action = extract_section(text, "Action")
    if action:
        tool = clean_action(action)
        return Decision(thought=thought, action=ToolAction(tool, parse_action_input(extract_section(text, "Action Input"))))
    return Decision(thought=thought or text.strip())


def _describe_tools(tools: Tuple[ToolDescriptor, ...]) -> str:
    if not tools:
        return "(no tools available)"
    lines = []
    for t in tools:
        props = t.input_schema.model_json_schema().get("properties", {})
        fields = ", ".join(f"{k}: {v.get('type', 'any')}" for k, v in props.items())
        lines.append(f"- {t.name}: {t.description} (input: {{{fields}}})")
    return "\n".join(lines)


class LLMDecisionSource(DecisionSource):
    """Asks a chat model for the next step. Rebuilds the conversation from the trace each cycle."""

    def __init__(self, provider, model: Optional[str] = None, temperature: float = 0.7,
                 system_prompt: Optional[str] = None, max_tokens: int = 1000):
        self.provider = provider
        self.model = model
        self.temperature = temperature
        self.system_prompt = system_prompt
        self.max_tokens = max_tokens

    def build_messages(self, request: DecisionRequest) -> List[Dict[str, str]]:
        system = request.system_prompt or self.system_prompt or DEFAULT_SYSTEM_PROMPT
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": f"Task: {request.task}\n\nAvailable tools:\n{_describe_tools(request.tools)}\n\nBegin!"},
        ]
        for step in request.trace:
            said = f"Thought: {step.thought}"
            if step.action is not None:
                said += f"\nAction: {step.action.tool}\nAction Input: {json.dumps(step.action.input, default=str)}"
            messages.append({"role": "assistant", "content": said})
            messages.append({"role": "user", "content": f"Observation: {step.observation or ''}"})
        return messages

    async def decide(self, request: DecisionRequest) -> Decision:
        temperature = request.temperature if request.temperature is not None else self.temperature
        text = await self.provider.complete(
            self.build_messages(request), model=self.model, temperature=temperature, max_tokens=self.max_tokens,
        )
        logger.debug("model replied with {} chars", len(text or ""))
        return parse_react_output(text or "")
