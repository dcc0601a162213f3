import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Iterator, Sequence

from ppstream.diag import (
    EXPECTED_PARAMETER_AFTER_STRINGIZE,
    TOKEN_PASTE_AT_END,
    TOKEN_PASTE_AT_START,
    DiagnosticSink,
    InternalError,
)
from ppstream.tokens import SourceLocation, Token, TokenKind, spell_tokens

_LOGGER = logging.getLogger(__name__)

VA_ARGS = "__VA_ARGS__"
_BUILTIN_LOCATION = SourceLocation("<built-in>", 0, 0)


class MacroFlavor(Enum):
    OBJECT_LIKE = auto()
    FUNCTION_LIKE = auto()
    BUILTIN_OBJECT_LIKE = auto()


class Opcode(Enum):
    RAW_SPAN = auto()
    EXPANDED_PARAM = auto()
    UNEXPANDED_PARAM = auto()
    STRINGIZED_PARAM = auto()
    TOKEN_PASTE = auto()
    BUILTIN_LINE = auto()
    BUILTIN_FILE = auto()


_PARAM_OPCODES = frozenset(
    {Opcode.EXPANDED_PARAM, Opcode.UNEXPANDED_PARAM, Opcode.STRINGIZED_PARAM}
)


@dataclass(frozen=True)
class Op:
    """One step of a compiled macro body.

    ``RAW_SPAN`` covers body tokens ``[operand0, operand1)``. Parameter ops
    keep the index of the body token that named the parameter in
    ``operand0`` and the parameter index in ``operand1``. ``TOKEN_PASTE``
    keeps the index of its ``##`` token in ``operand0``.
    """

    opcode: Opcode
    operand0: int = 0
    operand1: int = 0

    @property
    def is_param(self) -> bool:
        return self.opcode in _PARAM_OPCODES


@dataclass(frozen=True)
class MacroParam:
    name: str
    location: SourceLocation
    is_variadic: bool = False


@dataclass(eq=False)
class MacroDefinition:
    flavor: MacroFlavor
    name: str
    tokens: tuple[Token, ...]
    ops: tuple[Op, ...]
    params: tuple[MacroParam, ...] = ()
    name_token: Token | None = None
    end_location: SourceLocation = field(default=_BUILTIN_LOCATION)

    def __post_init__(self) -> None:
        if not self.ops:
            raise InternalError(f"Macro '{self.name}' compiled to no ops")
        for param in self.params[:-1]:
            if param.is_variadic:
                raise InternalError(f"Variadic parameter '{param.name}' is not last")

    @property
    def is_builtin(self) -> bool:
        return self.flavor is MacroFlavor.BUILTIN_OBJECT_LIKE

    @property
    def is_function_like(self) -> bool:
        return self.flavor is MacroFlavor.FUNCTION_LIKE

    @property
    def is_variadic(self) -> bool:
        return bool(self.params) and self.params[-1].is_variadic

    @property
    def param_count(self) -> int:
        return len(self.params)

    @property
    def location(self) -> SourceLocation:
        if self.name_token is None:
            return _BUILTIN_LOCATION
        return self.name_token.location

    def is_equivalent(self, other: "MacroDefinition") -> bool:
        if self.flavor is not other.flavor:
            return False
        if [(p.name, p.is_variadic) for p in self.params] != [
            (p.name, p.is_variadic) for p in other.params
        ]:
            return False
        if len(self.tokens) != len(other.tokens):
            return False
        for index, (left, right) in enumerate(zip(self.tokens, other.tokens)):
            if left.lexeme != right.lexeme:
                return False
            if index and left.leading_space != right.leading_space:
                return False
        return True

    def signature(self) -> str:
        if not self.is_function_like:
            return self.name
        params = []
        for param in self.params:
            if param.is_variadic:
                params.append("..." if param.name == VA_ARGS else f"{param.name}...")
            else:
                params.append(param.name)
        return f"{self.name}({','.join(params)})"

    def describe(self) -> str:
        if self.is_builtin:
            return f"{self.name}=<builtin>"
        return f"{self.signature()}={spell_tokens(self.tokens)}"


def compile_macro_ops(
    tokens: Sequence[Token],
    param_indices: dict[str, int],
    *,
    function_like: bool,
    sink: DiagnosticSink,
) -> tuple[Op, ...]:
    ops: list[Op] = []
    span_begin = 0
    cursor = 0
    count = len(tokens)
    while True:
        span_end = cursor
        token_index = cursor
        if token_index >= count:
            if span_begin != span_end or not ops:
                ops.append(Op(Opcode.RAW_SPAN, span_begin, span_end))
            break
        token = tokens[token_index]
        cursor += 1
        if token.kind is TokenKind.IDENT and token.lexeme in param_indices:
            new_op = Op(Opcode.EXPANDED_PARAM, token_index, param_indices[token.lexeme])
        elif function_like and token.is_punctuator("#"):
            if cursor >= count:
                sink.diagnose(token, EXPECTED_PARAMETER_AFTER_STRINGIZE)
                continue
            name_token = tokens[cursor]
            if name_token.kind is not TokenKind.IDENT or name_token.lexeme not in param_indices:
                sink.diagnose(token, EXPECTED_PARAMETER_AFTER_STRINGIZE)
                continue
            cursor += 1
            new_op = Op(Opcode.STRINGIZED_PARAM, token_index, param_indices[name_token.lexeme])
        elif token.is_punctuator("##"):
            if not ops and span_begin == span_end:
                sink.diagnose(token, TOKEN_PASTE_AT_START)
                span_begin = cursor
                continue
            if cursor >= count:
                sink.diagnose(token, TOKEN_PASTE_AT_END)
                if span_begin != span_end or not ops:
                    ops.append(Op(Opcode.RAW_SPAN, span_begin, span_end))
                break
            if span_begin == span_end and ops[-1].opcode is Opcode.TOKEN_PASTE:
                # a ## ## b pastes once
                span_begin = cursor
                continue
            new_op = Op(Opcode.TOKEN_PASTE, token_index)
        else:
            continue
        if span_begin != span_end:
            ops.append(Op(Opcode.RAW_SPAN, span_begin, span_end))
        ops.append(new_op)
        span_begin = cursor

    # Paste operands are never macro-expanded before pasting.
    for index in range(1, len(ops) - 1):
        if ops[index].opcode is not Opcode.TOKEN_PASTE:
            continue
        for neighbor in (index - 1, index + 1):
            op = ops[neighbor]
            if op.opcode is Opcode.EXPANDED_PARAM:
                ops[neighbor] = Op(Opcode.UNEXPANDED_PARAM, op.operand0, op.operand1)
    return tuple(ops)


def build_macro(
    name_token: Token,
    params: Sequence[MacroParam] | None,
    body: Sequence[Token],
    *,
    end_location: SourceLocation,
    sink: DiagnosticSink,
) -> MacroDefinition:
    """Compile a ``#define`` body; ``params`` is None for object-like macros."""
    param_indices: dict[str, int] = {}
    for index, param in enumerate(params or ()):
        param_indices.setdefault(param.name, index)
    function_like = params is not None
    ops = compile_macro_ops(body, param_indices, function_like=function_like, sink=sink)
    return MacroDefinition(
        MacroFlavor.FUNCTION_LIKE if function_like else MacroFlavor.OBJECT_LIKE,
        name_token.lexeme,
        tuple(body),
        ops,
        tuple(params or ()),
        name_token,
        end_location,
    )


def builtin_macros() -> tuple[MacroDefinition, ...]:
    return (
        MacroDefinition(
            MacroFlavor.BUILTIN_OBJECT_LIKE, "__LINE__", (), (Op(Opcode.BUILTIN_LINE),)
        ),
        MacroDefinition(
            MacroFlavor.BUILTIN_OBJECT_LIKE, "__FILE__", (), (Op(Opcode.BUILTIN_FILE),)
        ),
    )


class MacroTable:
    """Macro definitions visible to one preprocessing run."""

    def __init__(self, definitions: Sequence[MacroDefinition] = ()) -> None:
        self._macros: dict[str, MacroDefinition] = {}
        for definition in definitions:
            self._macros[definition.name] = definition

    def lookup(self, name: str) -> MacroDefinition | None:
        return self._macros.get(name)

    def define(self, definition: MacroDefinition) -> MacroDefinition | None:
        previous = self._macros.get(definition.name)
        self._macros[definition.name] = definition
        _LOGGER.debug("Defining %s", definition.describe())
        return previous

    def undefine(self, name: str) -> MacroDefinition | None:
        _LOGGER.debug("Undefining %s", name)
        return self._macros.pop(name, None)

    def __contains__(self, name: object) -> bool:
        return name in self._macros

    def __len__(self) -> int:
        return len(self._macros)

    def __iter__(self) -> Iterator[MacroDefinition]:
        for name in sorted(self._macros):
            yield self._macros[name]

    def describe(self, *, include_builtins: bool = False) -> tuple[str, ...]:
        return tuple(
            definition.describe()
            for definition in self
            if include_builtins or not definition.is_builtin
        )
