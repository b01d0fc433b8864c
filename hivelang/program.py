"""Running compiled steps through the ReAct engine.

:class:`ProgramPolicy` is a DecisionSource whose decisions come from a
compiled step list instead of a model: each say / assign / tool_call step
becomes one Decision, branch steps are resolved while reasoning.
"""

from __future__ import annotations
import json
from typing import Any, List, Optional

from .ast import Comparison, Concatenation, Condition, Expr, FieldAccess, Junction, Literal, Negation, Truthiness, VariableRef
from .decisions import AssignAction, Decision, DecisionRequest, DecisionSource, SayAction, ToolAction
from .ir import AssignPayload, BranchPayload, SayPayload, Step, ToolCallPayload
from .memory import SharedMemory


class Scope:
    """Variable lookup for one evaluation: ``input`` is the run input, everything else is shared memory."""

    def __init__(self, input_value: Any, memory: SharedMemory):
        self.input = input_value
        self.memory = memory

    async def lookup(self, name: str) -> Any:
        if name == "input":
            return self.input
        return await self.memory.get(name)


def stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def _field(value: Any, name: str) -> Any:
    if value is None:
        return None
    if isinstance(value, dict):
        return value.get(name)
    if name == "length" and isinstance(value, (list, str)):
        return len(value)
    return None


async def evaluate(expr: Expr, scope: Scope) -> Any:
    if isinstance(expr, Literal):
        return expr.value
    if isinstance(expr, VariableRef):
        return await scope.lookup(expr.name)
    if isinstance(expr, FieldAccess):
        return _field(await evaluate(expr.target, scope), expr.name)
    if isinstance(expr, Concatenation):
        parts = [stringify(await evaluate(p, scope)) for p in expr.parts]
        return "".join(parts)
    raise TypeError(f"not an expression: {expr!r}")


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def loose_equals(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return left is None and right is None
    if isinstance(left, bool) or isinstance(right, bool):
        return stringify(left) == stringify(right)
    a, b = _number(left), _number(right)
    if a is not None and b is not None and (not isinstance(left, str) or not isinstance(right, str)):
        return a == b
    if type(left) is not type(right) and (isinstance(left, str) or isinstance(right, str)):
        return stringify(left) == stringify(right)
    return left == right


def contains(haystack: Any, needle: Any) -> bool:
    """Case-insensitive substring test; membership for lists and dict keys."""
    if haystack is None:
        return False
    target = stringify(needle).lower()
    if isinstance(haystack, list):
        return any(stringify(item).lower() == target for item in haystack)
    if isinstance(haystack, dict):
        return any(str(key).lower() == target for key in haystack)
    return target in stringify(haystack).lower()


def _order(op: str, left: Any, right: Any) -> bool:
    a, b = _number(left), _number(right)
    if a is None or b is None:
        if isinstance(left, str) and isinstance(right, str):
            a, b = left, right
        else:
            return False
    if op == "<":
        return a < b
    if op == ">":
        return a > b
    if op == "<=":
        return a <= b
    return a >= b


async def test(cond: Condition, scope: Scope) -> bool:
    if isinstance(cond, Truthiness):
        return bool(await evaluate(cond.expr, scope))
    if isinstance(cond, Negation):
        return not await test(cond.operand, scope)
    if isinstance(cond, Junction):
        if cond.op == "and":
            return await test(cond.left, scope) and await test(cond.right, scope)
        return await test(cond.left, scope) or await test(cond.right, scope)
    if isinstance(cond, Comparison):
        left = await evaluate(cond.left, scope)
        right = await evaluate(cond.right, scope)
        if cond.op == "==":
            return loose_equals(left, right)
        if cond.op == "!=":
            return not loose_equals(left, right)
        if cond.op == "contains":
            return contains(left, right)
        return _order(cond.op, left, right)
    raise TypeError(f"not a condition: {cond!r}")


class ProgramPolicy(DecisionSource):
    """Walks compiled steps, one Decision per non-branch step. Single use."""

    def __init__(self, steps: List[Step]):
        self._frames: List[List[Any]] = [[steps, 0]]

    async def decide(self, request: DecisionRequest) -> Decision:
        scope = Scope(request.task, request.context.shared_memory)
        while self._frames:
            frame = self._frames[-1]
            steps, index = frame
            if index >= len(steps):
                self._frames.pop()
                continue
            frame[1] = index + 1
            step = steps[index]
            payload = step.payload

            if isinstance(payload, BranchPayload):
                chosen = payload.then_steps if await test(payload.condition, scope) else payload.else_steps
                if chosen:
                    self._frames.append([chosen, 0])
                continue

            where = f"line {step.position.line}: " if step.position else ""
            thought = where + step.describe()
            if isinstance(payload, SayPayload):
                return Decision(thought, SayAction(stringify(await evaluate(payload.text, scope))))
            if isinstance(payload, AssignPayload):
                return Decision(thought, AssignAction(payload.name, await evaluate(payload.value, scope)))
            if isinstance(payload, ToolCallPayload):
                args = {name: await evaluate(expr, scope) for name, expr in payload.args.items()}
                return Decision(thought, ToolAction(payload.tool, args, payload.binding, payload.speak))

        return Decision("all steps done", final_answer="\n".join(request.outputs))
