from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Iterator, Sequence

from ppstream.diag import InternalError
from ppstream.tokens import UNKNOWN_LOCATION, SourceLocation, Token, TokenKind

if TYPE_CHECKING:
    from ppstream.invocation import MacroInvocation
    from ppstream.lexer import Lexer


class TokenStream(ABC):
    """A pull-based token source with one token of lookahead.

    Past the end of its input a stream keeps returning an EOF token.
    """

    def __init__(self) -> None:
        self.parent: TokenStream | None = None

    @property
    def first_busy_invocation(self) -> "MacroInvocation | None":
        return None

    @abstractmethod
    def read_token(self) -> Token:
        raise NotImplementedError

    @abstractmethod
    def peek_token(self) -> Token:
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        raise NotImplementedError

    def peek_kind(self) -> TokenKind:
        return self.peek_token().kind

    def at_end(self) -> bool:
        return self.peek_token().is_eof


class PretokenizedStream(TokenStream):
    """Replays a slice of an existing token sequence."""

    def __init__(
        self,
        tokens: Sequence[Token],
        begin: int = 0,
        end: int | None = None,
        *,
        end_location: SourceLocation | None = None,
        busy: "MacroInvocation | None" = None,
    ) -> None:
        super().__init__()
        self._tokens = tokens
        self._cursor = begin
        self._end = len(tokens) if end is None else end
        if not 0 <= begin <= self._end <= len(tokens):
            raise InternalError(f"Token span [{begin}, {end}) is out of range")
        if end_location is None:
            if self._end > 0:
                end_location = tokens[self._end - 1].location
            else:
                end_location = UNKNOWN_LOCATION
        self._end_token = Token.end_of_input(end_location)
        self._busy = busy

    @property
    def first_busy_invocation(self) -> "MacroInvocation | None":
        return self._busy

    def read_token(self) -> Token:
        if self._cursor >= self._end:
            return self._end_token
        token = self._tokens[self._cursor]
        self._cursor += 1
        return token

    def peek_token(self) -> Token:
        if self._cursor >= self._end:
            return self._end_token
        return self._tokens[self._cursor]

    def close(self) -> None:
        self._cursor = self._end


class SingleUseStream(PretokenizedStream):
    """Owns a short token list that is replayed exactly once."""

    def __init__(self, tokens: Sequence[Token], *, end_location: SourceLocation | None = None) -> None:
        super().__init__(tuple(tokens), end_location=end_location)


class LexerStream(TokenStream):
    def __init__(self, lexer: "Lexer") -> None:
        super().__init__()
        self._lexer = lexer
        self._source: Iterator[Token] | None = lexer.tokens()
        self._lookahead = self._pull()
        self._last_line = 0
        self._line_map: tuple[int, int, str | None] | None = None

    @property
    def filename(self) -> str:
        return self._lexer.filename

    def _pull(self) -> Token:
        if self._source is None:
            return self._lookahead
        token = next(self._source)
        if token.is_eof:
            self._source = None
        return token

    def read_token(self) -> Token:
        token = self._lookahead
        if not token.is_eof:
            self._lookahead = self._pull()
        self._last_line = token.line
        return self._presumed(token)

    def peek_token(self) -> Token:
        return self._presumed(self._lookahead)

    def close(self) -> None:
        if self._source is not None:
            self._source.close()
            self._source = None
        self._lookahead = Token.end_of_input(self._lookahead.location)

    def renumber_following_lines(self, first_line: int, filename: str | None = None) -> None:
        """Give the line after the last token read the number ``first_line``."""
        if filename is None and self._line_map is not None:
            filename = self._line_map[2]
        self._line_map = (self._last_line, first_line, filename)

    def _presumed(self, token: Token) -> Token:
        if self._line_map is None:
            return token
        after_line, first_line, filename = self._line_map
        if token.line <= after_line:
            return token
        location = token.location
        return token.relocated(
            SourceLocation(
                filename or location.filename,
                first_line + token.line - after_line - 1,
                location.column,
            )
        )


class StreamStack:
    """Reads from the top-most stream, falling back to parents at EOF.

    Exhausted streams are left in place: the top only moves down when a read
    runs past it, so the stream that produced the last token stays visible.
    """

    def __init__(self) -> None:
        self._top: TokenStream | None = None

    @property
    def top(self) -> TokenStream:
        if self._top is None:
            raise InternalError("Stream stack is empty")
        return self._top

    @property
    def is_empty(self) -> bool:
        return self._top is None

    def push(self, stream: TokenStream) -> None:
        stream.parent = self._top
        self._top = stream

    def pop(self) -> TokenStream:
        stream = self.top
        self._top = stream.parent
        return stream

    def pop_all(self) -> None:
        self._top = None

    def read_token(self) -> Token:
        stream = self.top
        while True:
            token = stream.read_token()
            if not token.is_eof or stream.parent is None:
                return token
            stream = stream.parent
            self._top = stream

    def peek_token(self) -> Token:
        stream = self.top
        while True:
            token = stream.peek_token()
            if not token.is_eof or stream.parent is None:
                return token
            stream = stream.parent

    def peek_kind(self) -> TokenKind:
        return self.peek_token().kind

    def next_stream(self) -> TokenStream:
        """Return the stream the next read will be served from."""
        stream = self.top
        while stream.parent is not None and stream.at_end():
            stream = stream.parent
        return stream

    def skip_newlines(self) -> None:
        while self.peek_kind() is TokenKind.NEWLINE:
            self.read_token()

    def __iter__(self) -> Iterator[TokenStream]:
        stream = self._top
        while stream is not None:
            yield stream
            stream = stream.parent
