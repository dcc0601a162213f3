from dataclasses import dataclass, replace
from enum import Enum, auto


class TokenKind(Enum):
    IDENT = auto()
    PP_NUMBER = auto()
    CHAR_CONST = auto()
    STRING_LITERAL = auto()
    PUNCTUATOR = auto()
    OTHER = auto()
    DIRECTIVE = auto()
    NEWLINE = auto()
    EOF = auto()


@dataclass(frozen=True)
class SourceLocation:
    filename: str
    line: int
    column: int

    def __str__(self) -> str:
        return f"{self.filename}:{self.line}:{self.column}"


UNKNOWN_LOCATION = SourceLocation("<unknown>", 0, 0)


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    lexeme: str
    location: SourceLocation
    leading_space: bool = False

    @property
    def line(self) -> int:
        return self.location.line

    @property
    def column(self) -> int:
        return self.location.column

    @property
    def is_eof(self) -> bool:
        return self.kind is TokenKind.EOF

    def is_punctuator(self, text: str) -> bool:
        return self.kind is TokenKind.PUNCTUATOR and self.lexeme == text

    def relocated(self, location: SourceLocation) -> "Token":
        return replace(self, location=location)

    def with_leading_space(self, leading_space: bool) -> "Token":
        if leading_space == self.leading_space:
            return self
        return replace(self, leading_space=leading_space)

    @classmethod
    def end_of_input(cls, location: SourceLocation) -> "Token":
        return cls(TokenKind.EOF, "", location)


def spell_tokens(tokens: "list[Token] | tuple[Token, ...]") -> str:
    """Join lexemes, keeping a single space wherever the source had whitespace."""
    parts: list[str] = []
    for token in tokens:
        if token.kind in {TokenKind.EOF, TokenKind.NEWLINE}:
            continue
        if parts and token.leading_space:
            parts.append(" ")
        parts.append(token.lexeme)
    return "".join(parts)
