from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from .ast import (
    Assign, Call, Conditional, Literal, ProgramAST, Statement, statement_refs,
)
from .errors import Diagnostic
from .graph import binding_graph, unused_bindings
from .lexer import SourcePosition
from .tools import ToolDescriptor, ToolRegistry

WELL_KNOWN_VARIABLES = ("input", "result")


@dataclass
class ValidationResult:
    diagnostics: List[Diagnostic] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not any(d.is_error for d in self.diagnostics)

    @property
    def errors(self) -> List[str]:
        return [str(d) for d in self.diagnostics if d.is_error]

    @property
    def warnings(self) -> List[str]:
        return [str(d) for d in self.diagnostics if not d.is_error]

    def to_dict(self) -> Dict[str, Any]:
        return {"valid": self.valid, "errors": self.errors, "warnings": self.warnings}


def _type_label(annotation: Any) -> str:
    return getattr(annotation, "__name__", None) or str(annotation).replace("typing.", "")


class SemanticAnalyzer:
    """Checks a parsed program against the tools it may call:
    - unknown tools and missing required arguments (errors)
    - literal arguments that do not fit the tool's input schema (errors)
    - duplicate ``as`` bindings in one block (warnings)
    - variable references with no earlier binding in scope (errors)

    Read-only: never mutates the program and never runs a tool. With
    ``tools=None`` the tool checks are skipped.
    """

    def __init__(self, program: ProgramAST,
                 tools: Optional[Union[ToolRegistry, Iterable[ToolDescriptor]]] = None):
        self.program = program
        if tools is None or isinstance(tools, ToolRegistry):
            self.registry = tools
        else:
            self.registry = ToolRegistry()
            for descriptor in tools:
                self.registry.register(descriptor, replace=True)
        self.diagnostics: List[Diagnostic] = []

    def _report(self, severity: str, message: str, position: Optional[SourcePosition], code: str) -> None:
        line = position.line if position else None
        column = position.column if position else None
        self.diagnostics.append(Diagnostic(severity, message, line, column, code))

    def analyze(self) -> ValidationResult:
        program = self.program
        if program.surface == "block":
            self._report("warning", "block-style 'bot ... end' syntax is deprecated; use @bot / @trigger directives",
                         program.position, "deprecated_syntax")

        if self.registry is not None:
            for capability in program.capabilities:
                if capability not in self.registry.capabilities() and self.registry.get(capability) is None:
                    self._report("warning", f"capability '{capability}' is not provided by any available tool",
                                 program.position, "capability")

        for trigger in program.triggers:
            if not trigger.statements:
                self._report("warning", f"trigger '{trigger.event}' has no statements", trigger.position, "empty_trigger")
            self._check_block(trigger.statements, [set(WELL_KNOWN_VARIABLES)])

        graph = binding_graph(program)
        for node in unused_bindings(graph):
            stmt = graph.nodes[node]["statement"]
            self._report("warning", f"binding '{stmt.binding}' is never used", stmt.position, "unused_binding")

        return ValidationResult(self.diagnostics)

    def _check_block(self, block: List[Statement], scopes: List[Set[str]]) -> None:
        captured: Dict[str, SourcePosition] = {}
        for stmt in block:
            if isinstance(stmt, Call):
                self._check_call(stmt)
                if stmt.binding is not None:
                    if stmt.binding in captured:
                        first = captured[stmt.binding]
                        self._report("warning",
                                     f"binding '{stmt.binding}' already captured at line {first.line} in this block; last write wins",
                                     stmt.position, "duplicate_binding")
                    captured[stmt.binding] = stmt.position or SourcePosition(0, 0)
            self._check_refs(stmt, scopes)

            if isinstance(stmt, Conditional):
                self._check_block(stmt.then_block, scopes + [set()])
                if stmt.else_block is not None:
                    self._check_block(stmt.else_block, scopes + [set()])
            elif isinstance(stmt, Call) and stmt.binding is not None:
                scopes[-1].add(stmt.binding)
            elif isinstance(stmt, Assign):
                scopes[-1].add(stmt.name)

    def _check_refs(self, stmt: Statement, scopes: List[Set[str]]) -> None:
        reported: Set[str] = set()
        for name in statement_refs(stmt):
            if name in reported or any(name in scope for scope in scopes):
                continue
            reported.add(name)
            self._report("error", f"unresolved reference '{name}'", stmt.position, "unresolved_reference")

    def _check_call(self, call: Call) -> None:
        if self.registry is None:
            return
        descriptor = self.registry.get(call.tool)
        if descriptor is None:
            self._report("error", f"unknown tool '{call.tool}'", call.position, "unknown_tool")
            return
        for name in descriptor.required_fields():
            if name not in call.args:
                self._report("error", f"missing required argument '{name}' for {call.tool}",
                             call.position, "missing_argument")
        fields = descriptor.input_schema.model_fields
        for name, expr in call.args.items():
            if name not in fields:
                if not descriptor.accepts_extra():
                    self._report("warning", f"unknown argument '{name}' for {call.tool}", call.position, "unknown_argument")
                continue
            if isinstance(expr, Literal):
                annotation = fields[name].annotation
                try:
                    TypeAdapter(annotation).validate_python(expr.value, strict=True)
                except PydanticValidationError:
                    self._report("error",
                                 f"type mismatch for argument '{name}' of {call.tool}: expected {_type_label(annotation)}, "
                                 f"got {type(expr.value).__name__}",
                                 call.position, "type_mismatch")
        if descriptor.deprecated:
            self._report("warning", f"tool '{call.tool}' is deprecated", call.position, "deprecated_tool")


def validate(program: ProgramAST,
             available_tools: Optional[Union[ToolRegistry, Iterable[ToolDescriptor]]] = None) -> ValidationResult:
    return SemanticAnalyzer(program, available_tools).analyze()
