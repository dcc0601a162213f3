from dataclasses import replace
from typing import TYPE_CHECKING, Iterator, NoReturn, cast

from ppstream.diag import UNTERMINATED_COMMENT, UNTERMINATED_LITERAL
from ppstream.tokens import SourceLocation, Token, TokenKind

if TYPE_CHECKING:
    from ppstream.diag import DiagnosticInfo, DiagnosticSink

PUNCTUATORS: tuple[str, ...] = (
    "...",
    ">>=",
    "<<=",
    "->",
    "++",
    "--",
    "&&",
    "||",
    "<=",
    ">=",
    "==",
    "!=",
    "+=",
    "-=",
    "*=",
    "/=",
    "%=",
    "&=",
    "|=",
    "^=",
    "<<",
    ">>",
    "##",
    "[",
    "]",
    "(",
    ")",
    "{",
    "}",
    ".",
    "&",
    "*",
    "+",
    "-",
    "~",
    "!",
    "/",
    "%",
    "<",
    ">",
    "^",
    "|",
    "?",
    ":",
    ";",
    "=",
    ",",
    "#",
)

PUNCTUATORS_SORTED: tuple[str, ...] = cast(
    tuple[str, ...], tuple(sorted(PUNCTUATORS, key=len, reverse=True))
)

_WHITESPACE = " \t\v\f"


class LexerError(ValueError):
    def __init__(self, message: str, line: int, column: int) -> None:
        super().__init__(f"{message} at {line}:{column}")
        self.line = line
        self.column = column


def translate_source(source: str) -> tuple[str, list[tuple[int, int]]]:
    """Normalize newlines and splice continued lines.

    Returns the spliced text together with the original line and column of
    every character that survives, so tokens keep their physical location.
    """
    source = source.replace("\r\n", "\n").replace("\r", "\n")
    out: list[str] = []
    positions: list[tuple[int, int]] = []
    line = 1
    column = 1
    i = 0
    length = len(source)
    while i < length:
        ch = source[i]
        if ch == "\\" and i + 1 < length and source[i + 1] == "\n":
            i += 2
            line += 1
            column = 1
            continue
        out.append(ch)
        positions.append((line, column))
        if ch == "\n":
            line += 1
            column = 1
        else:
            column += 1
        i += 1
    positions.append((line, column))
    return "".join(out), positions


def lex(source: str, *, filename: str = "<input>") -> list[Token]:
    return Lexer(source, filename=filename).tokenize()


def lex_text(
    text: str, location: SourceLocation, *, sink: "DiagnosticSink | None" = None
) -> list[Token]:
    """Re-lex synthesized text, placing every resulting token at ``location``."""
    lexed = Lexer(text, filename=location.filename, sink=sink).tokenize()
    tokens: list[Token] = []
    for token in lexed:
        if token.kind in {TokenKind.EOF, TokenKind.NEWLINE}:
            continue
        kind = TokenKind.PUNCTUATOR if token.kind is TokenKind.DIRECTIVE else token.kind
        tokens.append(
            replace(token, kind=kind, location=location, leading_space=bool(tokens) and token.leading_space)
        )
    return tokens


class Lexer:
    def __init__(
        self,
        source: str,
        *,
        filename: str = "<input>",
        sink: "DiagnosticSink | None" = None,
    ) -> None:
        self._source, self._positions = translate_source(source)
        self._length = len(self._source)
        self._index = 0
        self._filename = filename
        self._sink = sink

    @property
    def filename(self) -> str:
        return self._filename

    def tokenize(self) -> list[Token]:
        return list(self.tokens())

    def tokens(self) -> Iterator[Token]:
        at_line_start = True
        while True:
            leading_space = self._skip_whitespace_and_comments()
            location = self._location()
            if self._eof():
                yield Token.end_of_input(location)
                return
            if self._peek() == "\n":
                self._advance()
                at_line_start = True
                yield Token(TokenKind.NEWLINE, "\n", location, leading_space)
                continue
            token = self._read_token(location, leading_space or at_line_start)
            if at_line_start and token.is_punctuator("#"):
                token = replace(token, kind=TokenKind.DIRECTIVE)
            at_line_start = False
            yield token

    def _read_token(self, location: SourceLocation, leading_space: bool) -> Token:
        literal = self._maybe_read_literal()
        if literal is not None:
            kind, lexeme = literal
            return Token(kind, lexeme, location, leading_space)
        if self._is_number_start():
            return Token(TokenKind.PP_NUMBER, self._read_pp_number(), location, leading_space)
        if self._is_identifier_start():
            return Token(TokenKind.IDENT, self._read_identifier(), location, leading_space)
        punct = self._read_punctuator()
        if punct is not None:
            return Token(TokenKind.PUNCTUATOR, punct, location, leading_space)
        return Token(TokenKind.OTHER, self._advance(), location, leading_space)

    def _location(self) -> SourceLocation:
        line, column = self._positions[self._index]
        return SourceLocation(self._filename, line, column)

    def _peek(self, offset: int = 0) -> str:
        index = self._index + offset
        if index >= self._length:
            return ""
        return self._source[index]

    def _advance(self) -> str:
        if self._index >= self._length:
            return ""
        ch = self._source[self._index]
        self._index += 1
        return ch

    def _eof(self) -> bool:
        return self._index >= self._length

    def _skip_whitespace_and_comments(self) -> bool:
        skipped = False
        while not self._eof():
            ch = self._peek()
            if ch in _WHITESPACE:
                self._advance()
                skipped = True
                continue
            if ch == "/" and self._peek(1) == "/":
                while not self._eof() and self._peek() != "\n":
                    self._advance()
                skipped = True
                continue
            if ch == "/" and self._peek(1) == "*":
                location = self._location()
                self._advance()
                self._advance()
                while not self._eof():
                    if self._peek() == "*" and self._peek(1) == "/":
                        self._advance()
                        self._advance()
                        break
                    self._advance()
                else:
                    self._error(UNTERMINATED_COMMENT, location, "Unterminated block comment")
                skipped = True
                continue
            break
        return skipped

    def _is_identifier_start(self) -> bool:
        ch = self._peek()
        return ch == "_" or ch.isalpha()

    def _read_identifier(self) -> str:
        start = self._index
        self._advance()
        while not self._eof():
            ch = self._peek()
            if ch == "_" or ch.isalpha() or ch.isdigit():
                self._advance()
                continue
            break
        return self._source[start : self._index]

    def _maybe_read_literal(self) -> tuple[TokenKind, str] | None:
        start = self._index
        ch = self._peek()
        if ch in {'"', "'"}:
            return self._read_quoted(start)
        if ch == "u" and self._peek(1) == "8" and self._peek(2) in {'"', "'"}:
            self._advance()
            self._advance()
            return self._read_quoted(start)
        if ch in {"u", "U", "L"} and self._peek(1) in {'"', "'"}:
            self._advance()
            return self._read_quoted(start)
        return None

    def _read_quoted(self, start: int) -> tuple[TokenKind, str]:
        location = self._location()
        quote = self._advance()
        if quote == '"':
            kind, description = TokenKind.STRING_LITERAL, "string literal"
        else:
            kind, description = TokenKind.CHAR_CONST, "character constant"
        while not self._eof():
            ch = self._peek()
            if ch == "\n":
                break
            self._advance()
            if ch == quote:
                return kind, self._source[start : self._index]
            if ch == "\\" and self._peek() not in {"", "\n"}:
                self._advance()
        self._error(
            UNTERMINATED_LITERAL,
            location,
            f"Unterminated {description}",
            description,
        )
        return kind, self._source[start : self._index]

    def _is_number_start(self) -> bool:
        ch = self._peek()
        if ch.isdigit():
            return True
        return ch == "." and self._peek(1).isdigit()

    def _read_pp_number(self) -> str:
        start = self._index
        self._advance()
        while not self._eof():
            ch = self._peek()
            next_ch = self._peek(1)
            if ch in {"e", "E", "p", "P"} and next_ch in {"+", "-"}:
                self._advance()
                self._advance()
                continue
            if ch.isdigit() or ch == "." or ch == "_" or ch.isalpha():
                self._advance()
                continue
            break
        return self._source[start : self._index]

    def _read_punctuator(self) -> str | None:
        for punct in PUNCTUATORS_SORTED:
            if self._source.startswith(punct, self._index):
                self._index += len(punct)
                return punct
        return None

    def _error(
        self,
        info: "DiagnosticInfo",
        location: SourceLocation,
        message: str,
        *args: object,
    ) -> None:
        if self._sink is None:
            _raise_lexer_error(message, location)
        self._sink.diagnose(location, info, *args)


def _raise_lexer_error(message: str, location: SourceLocation) -> NoReturn:
    raise LexerError(message, location.line, location.column)
