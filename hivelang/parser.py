from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from lark import Lark, Token as LarkToken, Transformer
from lark.exceptions import UnexpectedInput, VisitError
from loguru import logger

from .ast import (
    Assign, Call, Comparison, Concatenation, Conditional, FieldAccess, Junction,
    Literal, Negation, ProgramAST, Say, Statement, TriggerBlock, Truthiness, VariableRef,
)
from .errors import Diagnostic
from .lexer import SourcePosition, Token, TokenKind, tokenize

GRAMMAR_PATH = Path(__file__).with_name("grammar.lark")

MAX_ERRORS = 100
DEFAULT_TRIGGER = "on_message"
DIRECTIVES = ("bot", "description", "model", "capability", "trigger")

# keywords that only open a line
LINE_KEYWORDS = {
    "bot": "_BOT", "description": "_DESCRIPTION", "model": "_MODEL", "on": "_ON",
    "if": "_IF", "else": "_ELSE", "end": "_END", "say": "_SAY", "call": "_CALL",
    "respond": "_RESPOND", "set": "_SET",
}
INLINE_KEYWORDS = {
    "then": "_THEN", "as": "_AS", "with": "_WITH", "to": "_TO", "true": "_TRUE",
    "false": "_FALSE", "null": "_NULL", "and": "_AND", "or": "_OR", "not": "_NOT",
    "contains": "COMPARE",
}
SYMBOL_TERMINALS = {
    "(": "_LPAR", ")": "_RPAR", "{": "_LBRACE", "}": "_RBRACE", ",": "_COMMA",
    ":": "_COLON", ".": "_DOT", "=": "_EQ", "+": "_PLUS",
    "==": "COMPARE", "!=": "COMPARE", "<=": "COMPARE", ">=": "COMPARE", "<": "COMPARE", ">": "COMPARE",
}
_LABELS = {
    "NAME": "identifier", "STRING": "string", "NUMBER": "number", "DIRECTIVE": "directive",
    "COMPARE": "comparison", "$END": "end of line",
}
_LABELS.update({t: f"'{s}'" for s, t in SYMBOL_TERMINALS.items() if t != "COMPARE"})
_LABELS.update({t: f"'{k}'" for k, t in {**LINE_KEYWORDS, **INLINE_KEYWORDS}.items() if t != "COMPARE"})

_parser = None

def _load_parser() -> Lark:
    global _parser
    if _parser is None:
        grammar = GRAMMAR_PATH.read_text(encoding="utf-8")
        _parser = Lark(grammar, start="start", parser="lalr", lexer="basic", maybe_placeholders=True)
    return _parser


@dataclass
class ParseResult:
    program: Optional[ProgramAST]
    diagnostics: List[Diagnostic] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.program is not None and not any(d.is_error for d in self.diagnostics)

    @property
    def errors(self) -> List[str]:
        return [str(d) for d in self.diagnostics if d.is_error]

    @property
    def warnings(self) -> List[str]:
        return [str(d) for d in self.diagnostics if not d.is_error]


@dataclass
class _Line:
    kind: str
    value: Any
    position: SourcePosition


class _TooManyErrors(Exception):
    pass


def _split_lines(tokens: Iterable[Token]) -> List[List[Token]]:
    lines: List[List[Token]] = []
    current: List[Token] = []
    for tok in tokens:
        if tok.kind in (TokenKind.NEWLINE, TokenKind.EOF):
            if current:
                lines.append(current)
            current = []
            if tok.kind is TokenKind.EOF:
                break
        else:
            current.append(tok)
    if current:
        lines.append(current)
    return lines


def _lark_type(line: Sequence[Token], i: int) -> str:
    tok = line[i]
    if tok.kind is TokenKind.DIRECTIVE:
        return "DIRECTIVE"
    if tok.kind is TokenKind.STRING:
        return "STRING"
    if tok.kind is TokenKind.NUMBER:
        return "NUMBER"
    if tok.kind is TokenKind.SYMBOL:
        return SYMBOL_TERMINALS[tok.value]

    prev = line[i - 1] if i > 0 else None
    nxt = line[i + 1] if i + 1 < len(line) else None
    # field names, tool segments and argument keys are never keywords
    if prev is not None and prev.kind is TokenKind.SYMBOL and prev.value == ".":
        return "NAME"
    if nxt is not None and nxt.kind is TokenKind.SYMBOL and nxt.value == ":":
        return "NAME"
    if i == 0:
        if tok.value in LINE_KEYWORDS and not (nxt is not None and nxt.value == "="):
            return LINE_KEYWORDS[tok.value]
        return "NAME"
    return INLINE_KEYWORDS.get(tok.value, "NAME")


def _to_lark(line: Sequence[Token]) -> List[LarkToken]:
    return [
        LarkToken(_lark_type(line, i), tok.value, line=tok.line, column=tok.column)
        for i, tok in enumerate(line)
    ]


def _number(text: str) -> Union[int, float]:
    return float(text) if "." in text else int(text)


class LineBuilder(Transformer):
    """Turns one line's parse tree into a ``(kind, value)`` pair."""

    # line forms
    def directive(self, items):
        name, arg = items[0], items[1] if len(items) > 1 else None
        return ("directive", (str(name), None if arg is None else str(arg)))

    def dotted_name(self, items):
        return ".".join(str(t) for t in items)

    def bot_header(self, items):
        return ("bot", str(items[0]))

    def description_line(self, items):
        return ("description", str(items[0]))

    def model_line(self, items):
        return ("model", str(items[0]))

    def on_header(self, items):
        name, label = items[0], items[1] if len(items) > 1 else None
        return ("on", str(label) if label is not None else str(name))

    def if_header(self, items):
        return ("if", items[0])

    def else_line(self, items):
        return ("else", None)

    def end_line(self, items):
        return ("end", None)

    def say_stmt(self, items):
        return ("statement", Say(items[0]))

    def call_stmt(self, items):
        tool, args, binding = items[0], items[1], items[2]
        return ("call", (tool, args or [], None if binding is None else str(binding), False))

    def respond_stmt(self, items):
        provider, binding = items[0], items[1]
        return ("call", (f"{provider}.respond", [], None if binding is None else str(binding), True))

    def set_stmt(self, items):
        return ("statement", Assign(str(items[0]), items[1]))

    def option_line(self, items):
        return ("option", (items[0], items[1]))

    def arg_list(self, items):
        return [item for item in items if item is not None]

    def arg(self, items):
        return (items[0], items[1])

    # conditions
    def comparison(self, items):
        left, op, right = items[0], items[1], items[2]
        if op is None:
            return Truthiness(left)
        return Comparison(left, str(op), right)

    def either(self, items):
        return Junction("or", items[0], items[1])

    def both(self, items):
        return Junction("and", items[0], items[1])

    def negate(self, items):
        return Negation(items[0])

    # expressions
    def concatenation(self, items):
        parts = []
        for item in items:
            if isinstance(item, Concatenation):
                parts.extend(item.parts)
            else:
                parts.append(item)
        return Concatenation(parts)

    def field_access(self, items):
        return FieldAccess(items[0], str(items[1]))

    def string(self, items):
        return Literal(str(items[0]))

    def number(self, items):
        return Literal(_number(str(items[0])))

    def variable(self, items):
        return VariableRef(str(items[0]))

    def true(self, items):
        return Literal(True)

    def false(self, items):
        return Literal(False)

    def null(self, items):
        return Literal(None)


class Parser:
    """Recursive descent over lines; each line is parsed by the lark grammar.

    Errors are collected as diagnostics and parsing resumes at the next line.
    """

    def __init__(self, tokens: Sequence[Token]):
        self.lines = _split_lines(tokens)
        self.index = 0
        self._pending: Optional[_Line] = None
        self.diagnostics: List[Diagnostic] = []
        self.program = ProgramAST()
        self._directives_seen: Dict[str, SourcePosition] = {}

    # ----- diagnostics -----

    def _error(self, message: str, position: Optional[SourcePosition], code: str = "parse") -> None:
        line = position.line if position else None
        column = position.column if position else None
        self.diagnostics.append(Diagnostic("error", message, line, column, code))
        if sum(1 for d in self.diagnostics if d.is_error) >= MAX_ERRORS:
            raise _TooManyErrors()

    def _describe(self, exc: UnexpectedInput, raw: Sequence[Token]) -> Tuple[str, SourcePosition]:
        token = getattr(exc, "token", None)
        if token is None or token.type == "$END":
            last = raw[-1]
            return f"unexpected end of line after {last.value!r}", last.position
        shown = "string" if token.type == "STRING" else repr(str(token))
        message = f"unexpected {shown}"
        expected = sorted(_LABELS.get(t, t) for t in (getattr(exc, "expected", None) or ()))
        if expected and len(expected) <= 6:
            message += f" (expected {', '.join(expected)})"
        position = SourcePosition(token.line or raw[0].line, token.column or raw[0].column)
        return message, position

    # ----- line reading -----

    def _read(self, raw: List[Token]) -> Optional[_Line]:
        bad = next((t for t in raw if t.kind is TokenKind.UNKNOWN), None)
        if bad is not None:
            if bad.value.startswith('"'):
                self._error("unterminated string literal", bad.position, "lex")
            else:
                self._error(f"unexpected character {bad.value!r}", bad.position, "lex")
            return None
        try:
            interactive = _load_parser().parse_interactive()
            lark_tokens = _to_lark(raw)
            for tok in lark_tokens:
                interactive.feed_token(tok)
            tree = interactive.feed_eof(lark_tokens[-1])
        except UnexpectedInput as exc:
            message, position = self._describe(exc, raw)
            self._error(message, position)
            return None
        try:
            kind, value = LineBuilder().transform(tree)
        except VisitError as exc:
            self._error(f"malformed line: {exc.orig_exc}", raw[0].position)
            return None
        return _Line(kind, value, raw[0].position)

    def _peek(self) -> Optional[_Line]:
        while self._pending is None and self.index < len(self.lines):
            raw = self.lines[self.index]
            self.index += 1
            self._pending = self._read(raw)
        return self._pending

    def _take(self) -> Optional[_Line]:
        line = self._peek()
        self._pending = None
        return line

    # ----- grammar -----

    def parse(self) -> ParseResult:
        if not self.lines:
            self.diagnostics.append(Diagnostic("error", "empty program", 1, 1, "parse"))
            return ParseResult(None, self.diagnostics)
        self.program.position = self.lines[0][0].position
        try:
            self._program()
        except _TooManyErrors:
            logger.debug("parser stopped after {} errors", MAX_ERRORS)
            return ParseResult(self.program, self.diagnostics)

        if not self.program.bot_name:
            self._error("missing bot name (expected '@bot NAME')", self.program.position)
        if not self.program.triggers:
            self._error("program has no trigger block (expected '@trigger on_message')", self.program.position)
        return ParseResult(self.program, self.diagnostics)

    def _program(self) -> None:
        while True:
            line = self._take()
            if line is None:
                return
            if line.kind == "directive":
                self._directive(line)
            elif line.kind == "bot":
                self._bot_block(line)
            elif line.kind == "on":
                self._error(f"'on {line.value}' outside a bot block", line.position)
                self._trigger(line, line.value, require_end=True)
            else:
                self._stray(line)

    def _stray(self, line: _Line) -> None:
        if line.kind == "end":
            self._error("unmatched 'end'", line.position)
        elif line.kind == "else":
            self._error("'else' without matching 'if'", line.position)
        elif line.kind in ("description", "model"):
            self._error(f"'{line.kind}' is only allowed inside a bot block", line.position)
        elif line.kind == "directive":
            self._error(f"directive @{line.value[0]} is not allowed inside a block", line.position)
        elif line.kind == "bot":
            self._error("nested 'bot' block", line.position)
        else:
            self._error("statement outside a trigger block", line.position)
            if line.kind == "if":
                self._conditional(line)

    def _once(self, name: str, position: SourcePosition) -> bool:
        if name in self._directives_seen:
            first = self._directives_seen[name]
            self._error(f"'{name}' may appear only once (first set at line {first.line})", position)
            return False
        self._directives_seen[name] = position
        return True

    def _directive(self, line: _Line) -> None:
        name, arg = line.value
        if name not in DIRECTIVES:
            self._error(f"unknown directive @{name}", line.position)
            return
        if name == "trigger":
            self._trigger(line, arg or DEFAULT_TRIGGER, require_end=False)
            return
        if arg is None:
            self._error(f"@{name} requires a value", line.position)
            return
        if name == "capability":
            self.program.capabilities.append(arg)
            return
        if not self._once(name, line.position):
            return
        if name == "bot":
            self.program.bot_name = arg
        elif name == "description":
            self.program.description = arg
        elif name == "model":
            self.program.model = arg

    def _bot_block(self, line: _Line) -> None:
        if self._once("bot", line.position):
            self.program.bot_name = line.value
        self.program.surface = "block"
        while True:
            inner = self._take()
            if inner is None:
                self._error(f"missing 'end' for 'bot' opened at line {line.position.line}", line.position)
                return
            if inner.kind == "end":
                return
            if inner.kind in ("description", "model"):
                if self._once(inner.kind, inner.position):
                    setattr(self.program, inner.kind, inner.value)
            elif inner.kind == "on":
                self._trigger(inner, inner.value, require_end=True)
            else:
                self._stray(inner)

    def _trigger(self, line: _Line, event: str, require_end: bool) -> None:
        statements, term = self._block(("end",))
        if require_end and term != "end":
            self._error(f"missing 'end' for 'on {event}' opened at line {line.position.line}", line.position)
        if self.program.trigger(event) is not None:
            self._error(f"duplicate trigger '{event}'", line.position)
            return
        self.program.triggers.append(TriggerBlock(event, statements, line.position))

    def _block(self, closers: Tuple[str, ...]) -> Tuple[List[Statement], Optional[str]]:
        statements: List[Statement] = []
        while True:
            line = self._peek()
            if line is None:
                return statements, None
            if line.kind in ("directive", "bot", "on"):
                return statements, line.kind
            self._take()
            if line.kind in closers:
                return statements, line.kind
            if line.kind == "if":
                statements.append(self._conditional(line))
            elif line.kind == "statement":
                line.value.position = line.position
                statements.append(line.value)
            elif line.kind == "call":
                statements.append(self._call(line))
            elif line.kind == "option":
                self._option(line, statements)
            else:
                self._stray(line)

    def _conditional(self, line: _Line) -> Conditional:
        then_block, term = self._block(("else", "end"))
        else_block = None
        if term == "else":
            else_block, term = self._block(("end",))
        if term != "end":
            self._error(f"missing 'end' for 'if' opened at line {line.position.line}", line.position)
        return Conditional(line.value, then_block, else_block, line.position)

    def _call(self, line: _Line) -> Call:
        tool, pairs, binding, speak = line.value
        call = Call(tool, {}, binding, speak, line.position)
        if speak:
            # respond replies to the run input unless a message line overrides it
            call.args["message"] = VariableRef("input")
        for name_tok, expr in pairs:
            self._add_arg(call, name_tok, expr)
        return call

    def _add_arg(self, call: Call, name_tok: LarkToken, expr) -> None:
        name = str(name_tok)
        if name in call.args:
            position = SourcePosition(name_tok.line, name_tok.column) if name_tok.line else call.position
            self._error(f"duplicate argument '{name}' for {call.tool}", position)
            return
        call.args[name] = expr

    def _option(self, line: _Line, statements: List[Statement]) -> None:
        if not statements or not isinstance(statements[-1], Call):
            self._error(f"argument '{line.value[0]}' does not follow a call", line.position)
            return
        target = statements[-1]
        if target.speak and str(line.value[0]) == "message":
            target.args["message"] = line.value[1]
            return
        self._add_arg(statements[-1], *line.value)


def parse(source: Union[str, Path, Sequence[Token]]) -> ParseResult:
    """Parse a token sequence (or source text / a .hive path) into a ProgramAST.

    Never raises on malformed input; problems are returned as diagnostics.
    """
    if isinstance(source, Path):
        tokens = tokenize(source.read_text(encoding="utf-8"))
    elif isinstance(source, str):
        tokens = tokenize(source)
    else:
        tokens = list(source)
    return Parser(tokens).parse()
