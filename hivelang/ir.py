from __future__ import annotations
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .ast import Condition, Expr, render_condition, render_expr
from .lexer import SourcePosition

# -------- HiveLang executable steps ---------

class StepType(str, Enum):
    SAY = "say"
    TOOL_CALL = "tool_call"
    ASSIGN = "assign"
    BRANCH = "branch"

@dataclass
class SayPayload:
    text: Expr

@dataclass
class ToolCallPayload:
    tool: str
    args: Dict[str, Expr] = field(default_factory=dict)
    binding: Optional[str] = None
    speak: bool = False

@dataclass
class AssignPayload:
    name: str
    value: Expr

@dataclass
class BranchPayload:
    condition: Condition
    then_steps: List['Step'] = field(default_factory=list)
    else_steps: List['Step'] = field(default_factory=list)

Payload = Union[SayPayload, ToolCallPayload, AssignPayload, BranchPayload]

@dataclass
class Step:
    type: StepType
    payload: Payload
    position: Optional[SourcePosition] = None

    def describe(self) -> str:
        p = self.payload
        if isinstance(p, SayPayload):
            return f"say {render_expr(p.text)}"
        if isinstance(p, ToolCallPayload):
            args = ", ".join(f"{k}: {render_expr(v)}" for k, v in p.args.items())
            text = f"call {p.tool}({args})"
            if p.binding:
                text += f" as {p.binding}"
            if p.speak:
                text += " and say the result"
            return text
        if isinstance(p, AssignPayload):
            return f"set {p.name} = {render_expr(p.value)}"
        if isinstance(p, BranchPayload):
            return f"if {render_condition(p.condition)}"
        return self.type.value

    def to_dict(self) -> Dict[str, Any]:
        if isinstance(self.payload, BranchPayload):
            payload: Dict[str, Any] = {
                "condition": asdict(self.payload.condition),
                "then_steps": [s.to_dict() for s in self.payload.then_steps],
                "else_steps": [s.to_dict() for s in self.payload.else_steps],
            }
        else:
            payload = asdict(self.payload)
        return {
            "type": self.type.value,
            "payload": payload,
            "sourcePosition": asdict(self.position) if self.position else None,
        }

@dataclass
class BotInfo:
    name: Optional[str] = None
    description: Optional[str] = None
    model: Optional[str] = None
    capabilities: List[str] = field(default_factory=list)

@dataclass
class CompiledProgram:
    bot: BotInfo
    steps: List[Step] = field(default_factory=list)  # default trigger
    triggers: Dict[str, List[Step]] = field(default_factory=dict)

    @property
    def default_event(self) -> Optional[str]:
        return next(iter(self.triggers), None)

    def for_event(self, event: Optional[str] = None) -> Optional[List[Step]]:
        if event is None:
            return self.steps
        return self.triggers.get(event)

    def summary(self) -> List[str]:
        """Human-readable outline of every trigger, one line per step."""
        lines: List[str] = []

        def walk(steps: List[Step], depth: int) -> None:
            for step in steps:
                lines.append("  " * depth + step.describe())
                if isinstance(step.payload, BranchPayload):
                    walk(step.payload.then_steps, depth + 1)
                    if step.payload.else_steps:
                        lines.append("  " * depth + "else")
                        walk(step.payload.else_steps, depth + 1)

        for event, steps in self.triggers.items():
            lines.append(f"on {event}:")
            walk(steps, 1)
        return lines

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bot": asdict(self.bot),
            "steps": [s.to_dict() for s in self.steps],
            "triggers": {event: [s.to_dict() for s in steps] for event, steps in self.triggers.items()},
        }
