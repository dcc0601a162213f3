import unittest

from tests import _bootstrap  # noqa: F401
from ppstream.conditions import ConditionError, evaluate_condition, parse_pp_integer_literal
from ppstream.lexer import lex_text
from ppstream.tokens import SourceLocation

LOC = SourceLocation("c.c", 1, 1)


def _eval(text: str) -> int:
    return evaluate_condition(lex_text(text, LOC))


class EvaluateConditionTests(unittest.TestCase):
    def test_arithmetic_precedence(self) -> None:
        self.assertEqual(_eval("1 + 2 * 3"), 7)
        self.assertEqual(_eval("(1 + 2) * 3"), 9)
        self.assertEqual(_eval("1 << 3 + 1"), 16)
        self.assertEqual(_eval("0x10 | 1 ^ 3 & 2"), 19)

    def test_division_truncates_toward_zero(self) -> None:
        self.assertEqual(_eval("10 / 3"), 3)
        self.assertEqual(_eval("-7 / 2"), -3)
        self.assertEqual(_eval("-7 % 2"), -1)

    def test_logical_and_comparison(self) -> None:
        self.assertEqual(_eval("0 || 1 && 0"), 0)
        self.assertEqual(_eval("!0 && 3 >= 3"), 1)
        self.assertEqual(_eval("1 != 1"), 0)

    def test_ternary(self) -> None:
        self.assertEqual(_eval("1 ? 2 : 3"), 2)
        self.assertEqual(_eval("0 ? 2 : 0 ? 4 : 5"), 5)

    def test_literals(self) -> None:
        self.assertEqual(_eval("010"), 8)
        self.assertEqual(_eval("0x1Fu"), 31)
        self.assertEqual(_eval("'A'"), 65)
        self.assertEqual(_eval("'\\n'"), 10)
        self.assertEqual(_eval("'\\x41'"), 65)

    def test_unsigned_arithmetic(self) -> None:
        self.assertEqual(_eval("-1 < 0"), 1)
        self.assertEqual(_eval("-1 < 0u"), 0)
        self.assertEqual(_eval("~0u == 0xFFFFFFFFFFFFFFFF"), 1)

    def test_signed_overflow_wraps(self) -> None:
        self.assertEqual(_eval("0x7FFFFFFFFFFFFFFF + 1"), -(1 << 63))

    def test_identifiers_are_zero(self) -> None:
        self.assertEqual(_eval("foo + 1"), 1)

    def test_unevaluated_operands_may_divide_by_zero(self) -> None:
        self.assertEqual(_eval("0 && (1 / 0)"), 0)
        self.assertEqual(_eval("1 || 1 % 0"), 1)
        self.assertEqual(_eval("0 ? 1 / 0 : 2"), 2)

    def test_division_by_zero(self) -> None:
        with self.assertRaises(ConditionError):
            _eval("1 / 0")

    def test_malformed_expressions(self) -> None:
        for text in ("", "1 +", "(1", "1 2", "1.5", '"s"', "1 ? 2", "+"):
            with self.subTest(text=text):
                with self.assertRaises(ConditionError):
                    _eval(text)

    def test_error_points_at_offending_token(self) -> None:
        with self.assertRaises(ConditionError) as context:
            _eval("1 2")
        self.assertEqual(context.exception.token.lexeme, "2")


class IntegerLiteralTests(unittest.TestCase):
    def test_parse(self) -> None:
        self.assertEqual(parse_pp_integer_literal("123u"), 123)
        self.assertEqual(parse_pp_integer_literal("0x1Fll"), 31)
        self.assertEqual(parse_pp_integer_literal("0777"), 511)
        self.assertEqual(parse_pp_integer_literal("0"), 0)

    def test_reject(self) -> None:
        for text in ("08", "1.0", "1e3", "12ab", "0x"):
            with self.subTest(text=text):
                self.assertIsNone(parse_pp_integer_literal(text))


if __name__ == "__main__":
    unittest.main()
