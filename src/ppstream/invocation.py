import logging
from typing import TYPE_CHECKING, Sequence

from ppstream.diag import INVALID_TOKEN_PASTE_RESULT, InternalError
from ppstream.lexer import lex_text
from ppstream.macros import MacroDefinition, Op, Opcode
from ppstream.streams import PretokenizedStream, SingleUseStream, StreamStack, TokenStream
from ppstream.tokens import Token, TokenKind

if TYPE_CHECKING:
    from ppstream.expansion import ExpansionStream

_LOGGER = logging.getLogger(__name__)

ArgSpan = tuple[int, int]


def is_busy(definition: MacroDefinition, invocation: "MacroInvocation | None") -> bool:
    """Report whether ``definition`` is being expanded somewhere along the chain."""
    while invocation is not None:
        if invocation.definition is definition:
            return True
        invocation = invocation.next_busy
    return False


def busy_chain(invocation: "MacroInvocation | None") -> list[str]:
    names = []
    while invocation is not None:
        names.append(invocation.definition.name)
        invocation = invocation.next_busy
    return names


def stringize_tokens(tokens: Sequence[Token]) -> str:
    parts = ['"']
    for index, token in enumerate(tokens):
        if token.kind in {TokenKind.NEWLINE, TokenKind.EOF}:
            continue
        if index and token.leading_space:
            parts.append(" ")
        parts.append(token.lexeme.replace("\\", "\\\\").replace('"', '\\"'))
    parts.append('"')
    return "".join(parts)


def quote_path(path: str) -> str:
    escaped = path.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class MacroInvocation(TokenStream):
    """Plays back one expansion of a macro definition.

    Playback walks the compiled ops of the definition, keeping a private stack
    of sub-streams for the op currently being replayed.
    """

    def __init__(
        self,
        expander: "ExpansionStream",
        definition: MacroDefinition,
        name_token: Token,
        initiating_token: Token | None,
        *,
        arg_tokens: Sequence[Token] = (),
        args: Sequence[ArgSpan] = (),
        initiates_expansion: bool = False,
    ) -> None:
        super().__init__()
        self.definition = definition
        self.name_token = name_token
        self.initiating_token = initiating_token
        self.initiates_expansion = initiates_expansion
        self.next_busy: MacroInvocation | None = None
        self._expander = expander
        self._arg_tokens = tuple(arg_tokens)
        self._args = tuple(args)
        self._op_index = 0
        self._op_streams = StreamStack()
        self._end_token = Token.end_of_input(name_token.location)
        self._lookahead = self._end_token
        self._closed = False

    @property
    def first_busy_invocation(self) -> "MacroInvocation":
        return self

    @property
    def arg_count(self) -> int:
        return len(self._args)

    def prime(self, next_busy: "MacroInvocation | None") -> None:
        self.next_busy = next_busy
        self._op_index = 0
        _LOGGER.debug("Expanding macro %s (busy: %s)", self.definition.name, busy_chain(next_busy))
        self._init_current_op_stream()
        self._lookahead = self._read_impl()

    def read_token(self) -> Token:
        token = self._lookahead
        if not token.is_eof:
            self._lookahead = self._read_impl()
        return token

    def peek_token(self) -> Token:
        return self._lookahead

    def close(self) -> None:
        self._closed = True
        self._op_streams.pop_all()
        self._op_index = len(self.definition.ops)
        self._lookahead = self._end_token

    def arg_tokens(self, param_index: int) -> tuple[Token, ...]:
        begin, end = self._arg_span(param_index)
        return self._arg_tokens[begin:end]

    def _arg_span(self, param_index: int) -> ArgSpan:
        definition = self.definition
        if definition.is_variadic and param_index == definition.param_count - 1:
            last = len(self._args) - 1
            if param_index > last:
                end = self._args[last][1] if self._args else 0
                return end, end
            return self._args[param_index][0], self._args[last][1]
        if param_index >= len(self._args):
            raise InternalError(
                f"Macro '{definition.name}' has no argument for parameter {param_index}"
            )
        return self._args[param_index]

    def _read_impl(self) -> Token:
        if self._closed:
            return self._end_token
        ops = self.definition.ops
        token = self._op_streams.read_token()
        token_op_index = self._op_index
        while True:
            if not self._op_streams.peek_token().is_eof:
                if token.is_eof:
                    raise InternalError("Macro playback lost a token between ops")
                return token
            next_index = self._op_index + 1
            if next_index >= len(ops):
                return token
            self._op_streams.pop_all()
            self._op_index = next_index
            op = ops[next_index]
            if op.opcode is not Opcode.TOKEN_PASTE:
                self._init_current_op_stream()
                if token.is_eof:
                    token = self._op_streams.read_token()
                    token_op_index = self._op_index
                continue

            left_is_operand = token_op_index == next_index - 1 and not token.is_eof
            paste_token = self.definition.tokens[op.operand0]
            operands = []
            if left_is_operand:
                operands.append(token)
            self._op_index += 1
            self._init_current_op_stream()
            right = self._op_streams.read_token()
            if not right.is_eof:
                operands.append(right)
            pasted = self._paste(operands, paste_token)
            if pasted:
                first = token if left_is_operand else right
                pasted[0] = pasted[0].with_leading_space(first.leading_space)
            self._op_streams.push(SingleUseStream(pasted, end_location=paste_token.location))
            if left_is_operand or token.is_eof:
                token = self._op_streams.read_token()
                token_op_index = self._op_index

    def _paste(self, operands: list[Token], paste_token: Token) -> list[Token]:
        text = "".join(operand.lexeme for operand in operands)
        if not text:
            return []
        expander = self._expander
        pasted = lex_text(expander.arena.allocate(text), paste_token.location, sink=expander.sink)
        if len(pasted) != 1:
            expander.sink.diagnose(paste_token, INVALID_TOKEN_PASTE_RESULT, text)
        if not pasted:
            # Text such as "//" lexes to a comment; keep the operands as written.
            return [operand.relocated(paste_token.location) for operand in operands]
        return pasted

    def _init_current_op_stream(self) -> None:
        definition = self.definition
        op = definition.ops[self._op_index]
        opcode = op.opcode
        if opcode is Opcode.RAW_SPAN:
            self._op_streams.push(
                PretokenizedStream(
                    definition.tokens,
                    op.operand0,
                    op.operand1,
                    end_location=definition.end_location,
                )
            )
        elif opcode is Opcode.UNEXPANDED_PARAM:
            self._op_streams.push(self._arg_stream(op))
        elif opcode is Opcode.EXPANDED_PARAM:
            self._op_streams.push(
                self._expander.wrap(self._arg_stream(op, busy=self.next_busy), self.initiating_token)
            )
        elif opcode is Opcode.STRINGIZED_PARAM:
            text = stringize_tokens(self.arg_tokens(op.operand1))
            self._push_synthesized(TokenKind.STRING_LITERAL, text, definition.tokens[op.operand0])
        elif opcode is Opcode.BUILTIN_LINE:
            origin = self._initiating_origin()
            self._push_synthesized(TokenKind.PP_NUMBER, str(origin.line), self.name_token)
        elif opcode is Opcode.BUILTIN_FILE:
            origin = self._initiating_origin()
            self._push_synthesized(
                TokenKind.STRING_LITERAL, quote_path(origin.location.filename), self.name_token
            )
        else:
            raise InternalError(f"Cannot start playback at op {opcode.name}")

    def _arg_stream(self, op: Op, *, busy: "MacroInvocation | None" = None) -> PretokenizedStream:
        begin, end = self._arg_span(op.operand1)
        return PretokenizedStream(
            self._arg_tokens,
            begin,
            end,
            end_location=self.name_token.location,
            busy=busy,
        )

    def _initiating_origin(self) -> Token:
        if self.initiating_token is None:
            raise InternalError(f"Builtin macro '{self.definition.name}' has no initiating token")
        return self.initiating_token

    def _push_synthesized(self, kind: TokenKind, text: str, origin: Token) -> None:
        token = Token(
            kind,
            self._expander.arena.allocate(text),
            origin.location,
            origin.leading_space,
        )
        self._op_streams.push(SingleUseStream((token,), end_location=origin.location))
