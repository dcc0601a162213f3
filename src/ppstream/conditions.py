import re
from dataclasses import dataclass
from typing import Sequence

from ppstream.tokens import Token, TokenKind

_PP_INT_RE = re.compile(
    r"^(?:0[xX][0-9A-Fa-f]+|[0-9]+)(?:[uU](?:ll|LL|[lL])?|(?:ll|LL|[lL])[uU]?)?$"
)
_UINT64_MASK = (1 << 64) - 1
_INT64_SIGN = 1 << 63
_SIMPLE_CHAR_ESCAPES = {
    "n": 10,
    "t": 9,
    "r": 13,
    "a": 7,
    "b": 8,
    "f": 12,
    "v": 11,
    "0": 0,
    "\\": 92,
    "'": 39,
    '"': 34,
    "?": 63,
}

# Binary operators by precedence, loosest first.
_BINARY_LEVELS: tuple[tuple[str, ...], ...] = (
    ("||",),
    ("&&",),
    ("|",),
    ("^",),
    ("&",),
    ("==", "!="),
    ("<", "<=", ">", ">="),
    ("<<", ">>"),
    ("+", "-"),
    ("*", "/", "%"),
)


class ConditionError(ValueError):
    def __init__(self, message: str, token: Token | None = None) -> None:
        super().__init__(message)
        self.token = token


@dataclass
class ConditionalFrame:
    directive: Token
    parent_active: bool
    active: bool
    branch_taken: bool
    saw_else: bool = False


def parse_pp_integer_literal(text: str) -> int | None:
    if _PP_INT_RE.fullmatch(text) is None:
        return None
    index = len(text)
    while index > 0 and text[index - 1] in "uUlL":
        index -= 1
    digits = text[:index]
    if digits.startswith(("0x", "0X")):
        return int(digits, 16)
    if digits.startswith("0") and len(digits) > 1:
        if any(ch not in "01234567" for ch in digits):
            return None
        return int(digits, 8)
    return int(digits, 10)


def _is_unsigned_literal(text: str) -> bool:
    return any(ch in "uU" for ch in text)


def _parse_char_constant(text: str) -> int | None:
    body = text
    while body and body[0] in "uUL8":
        body = body[1:]
    if len(body) < 3 or body[0] != "'" or body[-1] != "'":
        return None
    inner = body[1:-1]
    if inner.startswith("\\"):
        escape = inner[1:]
        if escape in _SIMPLE_CHAR_ESCAPES:
            return _SIMPLE_CHAR_ESCAPES[escape]
        if escape.startswith("x"):
            return int(escape[1:], 16) if escape[1:] else None
        if escape and all(ch in "01234567" for ch in escape):
            return int(escape, 8)
        return None
    if len(inner) != 1:
        return None
    return ord(inner)


@dataclass(frozen=True)
class _PPValue:
    value: int
    is_unsigned: bool = False

    def as_unsigned(self) -> int:
        return self.value & _UINT64_MASK

    def normalize(self) -> "_PPValue":
        if self.is_unsigned:
            return _PPValue(self.value & _UINT64_MASK, True)
        wrapped = self.value & _UINT64_MASK
        if wrapped & _INT64_SIGN:
            wrapped -= 1 << 64
        return _PPValue(wrapped)


def evaluate_condition(tokens: Sequence[Token]) -> int:
    """Evaluate a fully expanded ``#if`` expression.

    ``defined`` must already have been resolved; identifiers that remain
    evaluate to 0.
    """
    tokens = [token for token in tokens if token.kind not in {TokenKind.NEWLINE, TokenKind.EOF}]
    if not tokens:
        raise ConditionError("missing expression")
    parser = _ConditionParser(tokens)
    value = parser.parse_conditional()
    if not parser.at_end():
        raise ConditionError(f"unexpected token '{parser.peek_text()}'", parser.peek())
    return value.value


class _ConditionParser:
    def __init__(self, tokens: list[Token]) -> None:
        self._tokens = tokens
        self._index = 0
        self._unevaluated = 0

    def at_end(self) -> bool:
        return self._index >= len(self._tokens)

    def peek(self) -> Token | None:
        if self.at_end():
            return None
        return self._tokens[self._index]

    def peek_text(self) -> str:
        token = self.peek()
        return "" if token is None else token.lexeme

    def _accept(self, *texts: str) -> str | None:
        token = self.peek()
        if token is not None and token.kind is TokenKind.PUNCTUATOR and token.lexeme in texts:
            self._index += 1
            return token.lexeme
        return None

    def _expect(self, text: str) -> None:
        if self._accept(text) is None:
            found = self.peek_text() or "end of expression"
            raise ConditionError(f"expected '{text}' before '{found}'", self.peek())

    def parse_conditional(self) -> _PPValue:
        condition = self._parse_binary(0)
        if self._accept("?") is None:
            return condition
        when_true = self._parse_branch(evaluated=bool(condition.value))
        self._expect(":")
        when_false = self._parse_branch(evaluated=not condition.value)
        is_unsigned = when_true.is_unsigned or when_false.is_unsigned
        chosen = when_true if condition.value else when_false
        return _PPValue(chosen.value, is_unsigned).normalize()

    def _parse_branch(self, *, evaluated: bool) -> _PPValue:
        if evaluated:
            return self.parse_conditional()
        self._unevaluated += 1
        try:
            return self.parse_conditional()
        finally:
            self._unevaluated -= 1

    def _parse_binary(self, level: int) -> _PPValue:
        if level >= len(_BINARY_LEVELS):
            return self._parse_unary()
        left = self._parse_binary(level + 1)
        while True:
            op = self._accept(*_BINARY_LEVELS[level])
            if op is None:
                return left
            if op == "&&":
                right = self._parse_operand(level + 1, evaluated=bool(left.value))
                left = _PPValue(int(bool(left.value) and bool(right.value)))
                continue
            if op == "||":
                right = self._parse_operand(level + 1, evaluated=not left.value)
                left = _PPValue(int(bool(left.value) or bool(right.value)))
                continue
            right = self._parse_binary(level + 1)
            left = _apply_binary(op, left, right, checked=self._unevaluated == 0)

    def _parse_operand(self, level: int, *, evaluated: bool) -> _PPValue:
        if evaluated:
            return self._parse_binary(level)
        self._unevaluated += 1
        try:
            return self._parse_binary(level)
        finally:
            self._unevaluated -= 1

    def _parse_unary(self) -> _PPValue:
        op = self._accept("!", "~", "-", "+")
        if op is None:
            return self._parse_primary()
        operand = self._parse_unary()
        if op == "!":
            return _PPValue(0 if operand.value else 1)
        if op == "+":
            return operand.normalize()
        if op == "-":
            return _PPValue(-operand.value, operand.is_unsigned).normalize()
        return _PPValue(~operand.value, operand.is_unsigned).normalize()

    def _parse_primary(self) -> _PPValue:
        token = self.peek()
        if token is None:
            raise ConditionError("expected value in expression")
        if self._accept("(") is not None:
            value = self.parse_conditional()
            self._expect(")")
            return value
        self._index += 1
        if token.kind is TokenKind.PP_NUMBER:
            value = parse_pp_integer_literal(token.lexeme)
            if value is None:
                raise ConditionError(f"invalid integer constant '{token.lexeme}'", token)
            return _PPValue(value, _is_unsigned_literal(token.lexeme)).normalize()
        if token.kind is TokenKind.CHAR_CONST:
            value = _parse_char_constant(token.lexeme)
            if value is None:
                raise ConditionError(f"invalid character constant {token.lexeme}", token)
            return _PPValue(value)
        if token.kind is TokenKind.IDENT:
            return _PPValue(0)
        raise ConditionError(f"token '{token.lexeme}' is not valid in expressions", token)


def _apply_binary(op: str, left: _PPValue, right: _PPValue, *, checked: bool = True) -> _PPValue:
    is_unsigned = left.is_unsigned or right.is_unsigned
    left_value = left.as_unsigned() if is_unsigned else left.value
    right_value = right.as_unsigned() if is_unsigned else right.value
    if op in {"/", "%"} and right_value == 0:
        if checked:
            raise ConditionError("division by zero in preprocessor expression")
        return _PPValue(0, is_unsigned)
    if op == "==":
        return _PPValue(int(left_value == right_value))
    if op == "!=":
        return _PPValue(int(left_value != right_value))
    if op == "<":
        return _PPValue(int(left_value < right_value))
    if op == "<=":
        return _PPValue(int(left_value <= right_value))
    if op == ">":
        return _PPValue(int(left_value > right_value))
    if op == ">=":
        return _PPValue(int(left_value >= right_value))
    if op == "+":
        value = left_value + right_value
    elif op == "-":
        value = left_value - right_value
    elif op == "*":
        value = left_value * right_value
    elif op == "/":
        value = abs(left_value) // abs(right_value)
        if (left_value < 0) != (right_value < 0):
            value = -value
    elif op == "%":
        value = abs(left_value) % abs(right_value)
        if left_value < 0:
            value = -value
    elif op == "<<":
        value = left_value << (right_value & 63)
    elif op == ">>":
        value = left_value >> (right_value & 63)
    elif op == "|":
        value = left_value | right_value
    elif op == "&":
        value = left_value & right_value
    elif op == "^":
        value = left_value ^ right_value
    else:
        raise ConditionError(f"unsupported operator '{op}'")
    return _PPValue(value, is_unsigned).normalize()
