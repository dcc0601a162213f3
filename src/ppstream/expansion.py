import logging
from dataclasses import dataclass, field

from ppstream.arena import TextArena
from ppstream.diag import (
    UNTERMINATED_MACRO_INVOCATION,
    WRONG_NUMBER_OF_ARGUMENTS,
    DiagnosticSink,
)
from ppstream.invocation import ArgSpan, MacroInvocation, is_busy
from ppstream.macros import MacroDefinition, MacroTable
from ppstream.streams import SingleUseStream, StreamStack, TokenStream
from ppstream.tokens import Token, TokenKind

_LOGGER = logging.getLogger(__name__)


@dataclass
class _ArgumentList:
    tokens: list[Token] = field(default_factory=list)
    spans: list[ArgSpan] = field(default_factory=list)
    closing: Token | None = None


class ExpansionStream(TokenStream):
    """Macro-expands the tokens of a base stream.

    ``read_token``/``peek_token`` expand macro invocations as they are met;
    ``read_raw_token``/``peek_raw_token`` see the tokens exactly as they come.
    """

    def __init__(
        self,
        base: TokenStream,
        *,
        macros: MacroTable,
        sink: DiagnosticSink,
        arena: TextArena,
        initiating_token: Token | None = None,
    ) -> None:
        super().__init__()
        self.macros = macros
        self.sink = sink
        self.arena = arena
        self._base = base
        self._inherited_initiating_token = initiating_token
        self._initiating_token = initiating_token
        self._unexpandable: Token | None = None
        self._streams = StreamStack()
        self._streams.push(base)
        self._lookahead = self._streams.read_token()

    @property
    def base(self) -> TokenStream:
        return self._base

    @property
    def initiating_token(self) -> Token | None:
        return self._initiating_token

    def wrap(self, base: TokenStream, initiating_token: Token | None) -> "ExpansionStream":
        return ExpansionStream(
            base,
            macros=self.macros,
            sink=self.sink,
            arena=self.arena,
            initiating_token=initiating_token,
        )

    def read_token(self) -> Token:
        self._maybe_begin_macro_invocation()
        return self.read_raw_token()

    def peek_token(self) -> Token:
        self._maybe_begin_macro_invocation()
        return self._lookahead

    def read_raw_token(self) -> Token:
        token = self._lookahead
        if not token.is_eof:
            self._unexpandable = None
            self._lookahead = self._streams.read_token()
        return token

    def peek_raw_token(self) -> Token:
        return self._lookahead

    def close(self) -> None:
        for stream in self._streams:
            stream.close()
        self._lookahead = Token.end_of_input(self._lookahead.location)

    def _maybe_begin_macro_invocation(self) -> None:
        while True:
            token = self._lookahead
            if token.kind is not TokenKind.IDENT or token is self._unexpandable:
                return
            definition = self.macros.lookup(token.lexeme)
            if definition is None:
                return
            active = self._streams.top
            if is_busy(definition, active.first_busy_invocation):
                return
            from_base = active is self._base
            if from_base and self._inherited_initiating_token is None:
                self._initiating_token = token

            if not definition.is_function_like:
                invocation = MacroInvocation(
                    self,
                    definition,
                    token,
                    self._initiating_token,
                    initiates_expansion=from_base,
                )
                invocation.prime(self._busy_after_name())
                self._push_invocation(invocation)
                continue

            self._streams.skip_newlines()
            if not self._streams.peek_token().is_punctuator("("):
                _LOGGER.debug("Not expanding function macro %s", definition.name)
                return
            left_paren = self._streams.read_token()
            arguments = self._parse_arguments()
            if arguments.closing is None:
                self.sink.diagnose(token, UNTERMINATED_MACRO_INVOCATION, definition.name)
                self._unexpandable = token
                self._replay([left_paren, *arguments.tokens])
                return
            if not self._check_argument_count(definition, token, arguments):
                self._lookahead = self._streams.read_token()
                continue
            invocation = MacroInvocation(
                self,
                definition,
                token,
                self._initiating_token,
                arg_tokens=arguments.tokens,
                args=arguments.spans,
                initiates_expansion=from_base,
            )
            # The stream that produced the closing paren still encloses the
            # arguments, so its invocations stay busy.
            invocation.prime(self._streams.top.first_busy_invocation)
            self._push_invocation(invocation)

    def _parse_arguments(self) -> _ArgumentList:
        arguments = _ArgumentList()
        tokens = arguments.tokens
        begin = 0
        depth = 0
        while True:
            token = self._streams.peek_token()
            if token.is_eof or token.kind is TokenKind.DIRECTIVE:
                return arguments
            self._streams.read_token()
            if token.kind is TokenKind.NEWLINE:
                continue
            if depth == 0 and token.is_punctuator(")"):
                arguments.spans.append((begin, len(tokens)))
                arguments.closing = token
                return arguments
            if depth == 0 and token.is_punctuator(","):
                arguments.spans.append((begin, len(tokens)))
                tokens.append(token)
                begin = len(tokens)
                continue
            if token.is_punctuator("("):
                depth += 1
            elif token.is_punctuator(")"):
                depth -= 1
            tokens.append(token)

    def _check_argument_count(
        self, definition: MacroDefinition, name_token: Token, arguments: _ArgumentList
    ) -> bool:
        spans = arguments.spans
        if definition.param_count == 0 and len(spans) == 1 and spans[0][0] == spans[0][1]:
            spans.clear()
        arg_count = len(spans)
        if definition.is_variadic:
            required = definition.param_count - 1
            if arg_count >= required:
                return True
        else:
            required = definition.param_count
            if arg_count == required:
                return True
        self.sink.diagnose(name_token, WRONG_NUMBER_OF_ARGUMENTS, definition.name, required, arg_count)
        return False

    def _busy_after_name(self) -> MacroInvocation | None:
        top = self._streams.top
        # A finished expansion that began at the base stream no longer guards
        # the tokens that follow its last one.
        if isinstance(top, MacroInvocation) and top.initiates_expansion and top.at_end():
            self._streams.pop()
            top = self._streams.top
        return top.first_busy_invocation

    def _push_invocation(self, invocation: MacroInvocation) -> None:
        self._streams.push(invocation)
        self._lookahead = self._streams.read_token()

    def _replay(self, tokens: list[Token]) -> None:
        if tokens:
            self._streams.push(SingleUseStream(tokens, end_location=tokens[-1].location))
