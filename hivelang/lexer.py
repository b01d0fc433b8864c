"""HiveLang tokenizer.

``tokenize`` is total: any character it does not understand becomes an
``unknown`` token carrying its position, and the parser reports it.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from .errors import LexError


class TokenKind(str, Enum):
    DIRECTIVE = "directive"
    IDENTIFIER = "identifier"
    STRING = "string"
    NUMBER = "number"
    SYMBOL = "symbol"
    NEWLINE = "newline"
    EOF = "eof"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class SourcePosition:
    line: int
    column: int

    def __str__(self) -> str:
        return f"{self.line}:{self.column}"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    value: str
    position: SourcePosition

    @property
    def line(self) -> int:
        return self.position.line

    @property
    def column(self) -> int:
        return self.position.column


# longest first
SYMBOLS = ("==", "!=", "<=", ">=", "(", ")", "{", "}", ",", ":", ".", "=", "+", "<", ">")

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", '"': '"', "\\": "\\"}

_OPENERS = "({"
_CLOSERS = ")}"


def _is_ident_start(ch: str) -> bool:
    return ch.isalpha() or ch in "_$"


def _is_ident_part(ch: str) -> bool:
    return ch.isalnum() or ch in "_$"


class Lexer:
    def __init__(self, source: str):
        self.src = source.replace("\r\n", "\n").replace("\r", "\n")
        self.pos = 0
        self.line = 1
        self.col = 1
        self.depth = 0
        self.tokens: List[Token] = []

    def _peek(self, offset: int = 0) -> str:
        i = self.pos + offset
        return self.src[i] if i < len(self.src) else ""

    def _advance(self) -> str:
        ch = self.src[self.pos]
        self.pos += 1
        if ch == "\n":
            self.line += 1
            self.col = 1
        else:
            self.col += 1
        return ch

    def _emit(self, kind: TokenKind, value: str, at: SourcePosition) -> None:
        self.tokens.append(Token(kind, value, at))

    def _at_line_start(self) -> bool:
        return not self.tokens or self.tokens[-1].kind is TokenKind.NEWLINE

    def _newline(self, at: SourcePosition) -> None:
        # blank lines collapse into one separator
        if self.tokens and self.tokens[-1].kind is not TokenKind.NEWLINE:
            self._emit(TokenKind.NEWLINE, "\n", at)

    def run(self) -> List[Token]:
        while self.pos < len(self.src):
            ch = self._peek()
            at = SourcePosition(self.line, self.col)

            if ch == "\n":
                self._advance()
                if self.depth == 0:
                    self._newline(at)
                continue
            if ch in " \t\f\v":
                self._advance()
                continue
            if ch == "#" or (ch == "/" and self._peek(1) == "/"):
                while self.pos < len(self.src) and self._peek() != "\n":
                    self._advance()
                continue
            if ch == "@" and self._at_line_start() and _is_ident_start(self._peek(1)):
                self._advance()
                name = self._read_while(_is_ident_part)
                self._emit(TokenKind.DIRECTIVE, name, at)
                continue
            if ch == '"':
                self._read_string(at)
                continue
            if ch.isdigit():
                self._read_number(at)
                continue
            if _is_ident_start(ch):
                self._emit(TokenKind.IDENTIFIER, self._read_while(_is_ident_part), at)
                continue

            symbol = next((s for s in SYMBOLS if self.src.startswith(s, self.pos)), None)
            if symbol is not None:
                for _ in symbol:
                    self._advance()
                if symbol in _OPENERS:
                    self.depth += 1
                elif symbol in _CLOSERS and self.depth > 0:
                    self.depth -= 1
                self._emit(TokenKind.SYMBOL, symbol, at)
                continue

            self._advance()
            self._emit(TokenKind.UNKNOWN, ch, at)

        end = SourcePosition(self.line, self.col)
        self._newline(end)
        self._emit(TokenKind.EOF, "", end)
        return self.tokens

    def _read_while(self, pred) -> str:
        start = self.pos
        while self.pos < len(self.src) and pred(self._peek()):
            self._advance()
        return self.src[start:self.pos]

    def _read_number(self, at: SourcePosition) -> None:
        text = self._read_while(str.isdigit)
        if self._peek() == "." and self._peek(1).isdigit():
            text += self._advance()
            text += self._read_while(str.isdigit)
        self._emit(TokenKind.NUMBER, text, at)

    def _read_string(self, at: SourcePosition) -> None:
        start = self.pos
        self._advance()  # opening quote
        chars: List[str] = []
        while self.pos < len(self.src):
            ch = self._peek()
            if ch == "\n":
                break
            self._advance()
            if ch == '"':
                self._emit(TokenKind.STRING, "".join(chars), at)
                return
            if ch == "\\" and self.pos < len(self.src) and self._peek() != "\n":
                esc = self._advance()
                chars.append(_ESCAPES.get(esc, esc))
                continue
            chars.append(ch)
        # unterminated: hand the raw text to the parser as one unknown token
        self._emit(TokenKind.UNKNOWN, self.src[start:self.pos], at)


def tokenize(source: str, strict: bool = False) -> List[Token]:
    """Split HiveLang source into tokens, ending with NEWLINE and EOF.

    With ``strict=True`` the first unknown token raises :class:`LexError`
    instead of being passed on.
    """
    tokens = Lexer(source).run()
    if strict:
        bad: Optional[Token] = next((t for t in tokens if t.kind is TokenKind.UNKNOWN), None)
        if bad is not None:
            raise LexError(f"line {bad.line}:{bad.column}: unexpected character {bad.value!r}")
    return tokens
