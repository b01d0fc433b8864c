from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Union

from .lexer import SourcePosition

# -------- expressions ---------

@dataclass
class Literal:
    value: Any
    kind: str = field(default="literal", init=False)

@dataclass
class VariableRef:
    name: str
    kind: str = field(default="variable", init=False)

@dataclass
class FieldAccess:
    target: 'Expr'
    name: str
    kind: str = field(default="field", init=False)

@dataclass
class Concatenation:
    parts: List['Expr'] = field(default_factory=list)
    kind: str = field(default="concat", init=False)

Expr = Union[Literal, VariableRef, FieldAccess, Concatenation]

# -------- conditions ---------

@dataclass
class Comparison:
    left: Expr
    op: str  # '==', '!=', '<', '>', '<=', '>=', 'contains'
    right: Expr
    kind: str = field(default="compare", init=False)

@dataclass
class Truthiness:
    expr: Expr
    kind: str = field(default="truthy", init=False)

@dataclass
class Negation:
    operand: 'Condition'
    kind: str = field(default="not", init=False)

@dataclass
class Junction:
    op: str  # 'and' | 'or'
    left: 'Condition'
    right: 'Condition'
    kind: str = field(default="junction", init=False)

Condition = Union[Comparison, Truthiness, Negation, Junction]

# -------- statements ---------

@dataclass
class Say:
    text: Expr
    position: Optional[SourcePosition] = None

@dataclass
class Call:
    tool: str
    args: Dict[str, Expr] = field(default_factory=dict)
    binding: Optional[str] = None
    speak: bool = False  # 'respond with' also says the tool output
    position: Optional[SourcePosition] = None

@dataclass
class Assign:
    name: str
    value: Expr
    position: Optional[SourcePosition] = None

@dataclass
class Conditional:
    condition: Condition
    then_block: List['Statement'] = field(default_factory=list)
    else_block: Optional[List['Statement']] = None
    position: Optional[SourcePosition] = None

Statement = Union[Say, Call, Assign, Conditional]

@dataclass
class TriggerBlock:
    event: str
    statements: List[Statement] = field(default_factory=list)
    position: Optional[SourcePosition] = None

@dataclass
class ProgramAST:
    bot_name: Optional[str] = None
    description: Optional[str] = None
    model: Optional[str] = None
    capabilities: List[str] = field(default_factory=list)
    triggers: List[TriggerBlock] = field(default_factory=list)
    surface: str = "directive"  # 'directive' | 'block' (deprecated)
    position: Optional[SourcePosition] = None

    def trigger(self, event: Optional[str] = None) -> Optional[TriggerBlock]:
        if event is None:
            return self.triggers[0] if self.triggers else None
        return next((t for t in self.triggers if t.event == event), None)


# -------- walkers ---------

def expr_refs(expr: Expr) -> Iterator[str]:
    """Yield the root variable names an expression reads, in source order."""
    if isinstance(expr, VariableRef):
        yield expr.name
    elif isinstance(expr, FieldAccess):
        yield from expr_refs(expr.target)
    elif isinstance(expr, Concatenation):
        for part in expr.parts:
            yield from expr_refs(part)


def condition_refs(cond: Condition) -> Iterator[str]:
    if isinstance(cond, Comparison):
        yield from expr_refs(cond.left)
        yield from expr_refs(cond.right)
    elif isinstance(cond, Truthiness):
        yield from expr_refs(cond.expr)
    elif isinstance(cond, Negation):
        yield from condition_refs(cond.operand)
    elif isinstance(cond, Junction):
        yield from condition_refs(cond.left)
        yield from condition_refs(cond.right)


def statement_refs(stmt: Statement) -> Iterator[str]:
    """Names read by the statement itself (not by nested blocks)."""
    if isinstance(stmt, Say):
        yield from expr_refs(stmt.text)
    elif isinstance(stmt, Call):
        for value in stmt.args.values():
            yield from expr_refs(value)
    elif isinstance(stmt, Assign):
        yield from expr_refs(stmt.value)
    elif isinstance(stmt, Conditional):
        yield from condition_refs(stmt.condition)


def statement_binds(stmt: Statement) -> Optional[str]:
    if isinstance(stmt, Call):
        return stmt.binding
    if isinstance(stmt, Assign):
        return stmt.name
    return None


def render_expr(expr: Expr) -> str:
    """Source-like text for an expression, used in step summaries."""
    if isinstance(expr, Literal):
        if isinstance(expr.value, str):
            escaped = expr.value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
            return f'"{escaped}"'
        if expr.value is None:
            return "null"
        if isinstance(expr.value, bool):
            return "true" if expr.value else "false"
        return str(expr.value)
    if isinstance(expr, VariableRef):
        return expr.name
    if isinstance(expr, FieldAccess):
        return f"{render_expr(expr.target)}.{expr.name}"
    if isinstance(expr, Concatenation):
        return " + ".join(render_expr(p) for p in expr.parts)
    return repr(expr)


def render_condition(cond: Condition) -> str:
    if isinstance(cond, Comparison):
        return f"{render_expr(cond.left)} {cond.op} {render_expr(cond.right)}"
    if isinstance(cond, Truthiness):
        return render_expr(cond.expr)
    if isinstance(cond, Negation):
        return f"not {render_condition(cond.operand)}"
    if isinstance(cond, Junction):
        return f"{render_condition(cond.left)} {cond.op} {render_condition(cond.right)}"
    return repr(cond)
