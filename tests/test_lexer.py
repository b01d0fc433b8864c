"""Tokenizer tests for HiveLang."""
import pytest

from hivelang.errors import LexError
from hivelang.lexer import TokenKind, tokenize


def kinds(tokens):
    return [t.kind for t in tokens]


def values(tokens):
    return [t.value for t in tokens if t.kind not in (TokenKind.NEWLINE, TokenKind.EOF)]


def test_directive_only_at_line_start():
    tokens = tokenize('@bot Greeter\nsay "a@b"\n')
    assert tokens[0].kind is TokenKind.DIRECTIVE
    assert tokens[0].value == "bot"
    assert tokens[1].kind is TokenKind.IDENTIFIER
    # '@' inside a string is just text
    assert tokens[4].kind is TokenKind.STRING
    assert tokens[4].value == "a@b"


def test_call_statement_tokens():
    tokens = tokenize('call crm.lookup(email: input, limit: 3) as customer')
    assert values(tokens) == [
        "call", "crm", ".", "lookup", "(", "email", ":", "input", ",", "limit", ":", "3", ")", "as", "customer",
    ]
    assert tokens[11].kind is TokenKind.NUMBER
    assert kinds(tokens)[-2:] == [TokenKind.NEWLINE, TokenKind.EOF]


def test_string_escapes():
    tokens = tokenize(r'say "she said \"hi\"\n"')
    assert tokens[1].value == 'she said "hi"\n'


def test_positions_are_one_based():
    tokens = tokenize('@bot A\n  say "x"')
    say = tokens[3]
    assert say.value == "say"
    assert (say.line, say.column) == (2, 3)


def test_blank_lines_and_comments_collapse():
    tokens = tokenize("# header\n\n\nsay 1 // trailing\n\n")
    assert kinds(tokens) == [TokenKind.IDENTIFIER, TokenKind.NUMBER, TokenKind.NEWLINE, TokenKind.EOF]


def test_newlines_ignored_inside_parentheses():
    tokens = tokenize("call a.b(\n  x: 1,\n  y: 2\n)\n")
    newlines = [t for t in tokens if t.kind is TokenKind.NEWLINE]
    assert len(newlines) == 1


def test_multi_character_symbols():
    tokens = tokenize("if a >= 2 and b != c")
    assert ">=" in values(tokens)
    assert "!=" in values(tokens)


def test_decimal_number():
    tokens = tokenize("x = 3.25")
    assert tokens[2].kind is TokenKind.NUMBER
    assert tokens[2].value == "3.25"


def test_unknown_character_is_a_token_not_an_error():
    tokens = tokenize("say ~")
    bad = [t for t in tokens if t.kind is TokenKind.UNKNOWN]
    assert len(bad) == 1
    assert bad[0].value == "~"
    assert bad[0].column == 5


def test_unterminated_string_becomes_unknown():
    tokens = tokenize('say "open\nsay "closed"')
    assert tokens[1].kind is TokenKind.UNKNOWN
    assert tokens[1].value == '"open'
    assert tokens[4].kind is TokenKind.STRING


def test_strict_mode_raises():
    with pytest.raises(LexError, match="unexpected character"):
        tokenize("say %", strict=True)


def test_tokenize_is_idempotent():
    src = '@bot A\n@trigger on_message\n  call x.y(a: "1") as r\n  say r.output\nend\n'
    assert tokenize(src) == tokenize(src)


def test_crlf_line_endings():
    assert values(tokenize("say 1\r\nsay 2\r\n")) == values(tokenize("say 1\nsay 2\n"))
