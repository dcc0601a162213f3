import unittest

from tests import _bootstrap  # noqa: F401
from ppstream.diag import DiagnosticSink, InternalError
from ppstream.lexer import lex_text
from ppstream.macros import (
    VA_ARGS,
    MacroDefinition,
    MacroFlavor,
    MacroParam,
    MacroTable,
    Op,
    Opcode,
    build_macro,
    builtin_macros,
    compile_macro_ops,
)
from ppstream.tokens import SourceLocation, Token, TokenKind

LOC = SourceLocation("m.c", 1, 1)


def _name(text: str) -> Token:
    return Token(TokenKind.IDENT, text, LOC)


def _params(*names: str) -> list[MacroParam]:
    params = []
    for name in names:
        if name.endswith("..."):
            params.append(MacroParam(name[:-3] or VA_ARGS, LOC, True))
        else:
            params.append(MacroParam(name, LOC))
    return params


def _define(name: str, params, body: str, sink: DiagnosticSink | None = None) -> MacroDefinition:
    return build_macro(
        _name(name),
        params,
        lex_text(body, LOC),
        end_location=LOC,
        sink=sink or DiagnosticSink(),
    )


class CompileMacroOpsTests(unittest.TestCase):
    def _compile(self, body: str, params=(), *, function_like: bool = True, sink=None):
        indices = {name: index for index, name in enumerate(params)}
        return compile_macro_ops(
            lex_text(body, LOC),
            indices,
            function_like=function_like,
            sink=sink or DiagnosticSink(),
        )

    def test_object_like_body_is_one_raw_span(self) -> None:
        ops = self._compile("A B C", function_like=False)
        self.assertEqual(ops, (Op(Opcode.RAW_SPAN, 0, 3),))

    def test_empty_body_still_has_an_op(self) -> None:
        self.assertEqual(self._compile("", function_like=False), (Op(Opcode.RAW_SPAN, 0, 0),))

    def test_parameters_split_raw_spans(self) -> None:
        ops = self._compile("x + y", ("x", "y"))
        self.assertEqual(
            ops,
            (
                Op(Opcode.EXPANDED_PARAM, 0, 0),
                Op(Opcode.RAW_SPAN, 1, 2),
                Op(Opcode.EXPANDED_PARAM, 2, 1),
            ),
        )

    def test_stringize(self) -> None:
        ops = self._compile("[ # x ]", ("x",))
        self.assertEqual(
            ops,
            (
                Op(Opcode.RAW_SPAN, 0, 1),
                Op(Opcode.STRINGIZED_PARAM, 1, 0),
                Op(Opcode.RAW_SPAN, 3, 4),
            ),
        )

    def test_hash_is_plain_in_object_like_body(self) -> None:
        ops = self._compile("# x", ("x",), function_like=False)
        self.assertEqual(ops, (Op(Opcode.RAW_SPAN, 0, 1), Op(Opcode.EXPANDED_PARAM, 1, 0)))

    def test_stringize_requires_parameter(self) -> None:
        sink = DiagnosticSink()
        self._compile("# y", ("x",), sink=sink)
        self.assertEqual(sink.codes(), ["PPS-PP-0208"])

    def test_paste_operands_are_not_expanded(self) -> None:
        ops = self._compile("a ## b", ("a", "b"))
        self.assertEqual(
            ops,
            (
                Op(Opcode.UNEXPANDED_PARAM, 0, 0),
                Op(Opcode.TOKEN_PASTE, 1),
                Op(Opcode.UNEXPANDED_PARAM, 2, 1),
            ),
        )

    def test_paste_between_raw_tokens(self) -> None:
        ops = self._compile("x ## y", ())
        self.assertEqual(
            ops,
            (Op(Opcode.RAW_SPAN, 0, 1), Op(Opcode.TOKEN_PASTE, 1), Op(Opcode.RAW_SPAN, 2, 3)),
        )

    def test_repeated_paste_operators_merge(self) -> None:
        ops = self._compile("x ## ## y", ("x", "y"))
        self.assertEqual(
            ops,
            (
                Op(Opcode.UNEXPANDED_PARAM, 0, 0),
                Op(Opcode.TOKEN_PASTE, 1),
                Op(Opcode.UNEXPANDED_PARAM, 3, 1),
            ),
        )

    def test_paste_at_either_end_is_diagnosed_and_dropped(self) -> None:
        sink = DiagnosticSink()
        ops = self._compile("## a", (), sink=sink)
        self.assertEqual(ops, (Op(Opcode.RAW_SPAN, 1, 2),))
        ops = self._compile("a ##", (), sink=sink)
        self.assertEqual(ops, (Op(Opcode.RAW_SPAN, 0, 1),))
        self.assertEqual(sink.codes(), ["PPS-PP-0209", "PPS-PP-0210"])


class MacroDefinitionTests(unittest.TestCase):
    def test_object_like(self) -> None:
        definition = _define("A", None, "1 + 2")
        self.assertEqual(definition.flavor, MacroFlavor.OBJECT_LIKE)
        self.assertFalse(definition.is_function_like)
        self.assertEqual(definition.signature(), "A")
        self.assertEqual(definition.describe(), "A=1 + 2")
        self.assertEqual(definition.location, LOC)

    def test_function_like_signature(self) -> None:
        definition = _define("F", _params("a", "..."), "a")
        self.assertTrue(definition.is_function_like)
        self.assertTrue(definition.is_variadic)
        self.assertEqual(definition.param_count, 2)
        self.assertEqual(definition.signature(), "F(a,...)")
        named = _define("G", _params("rest..."), "rest")
        self.assertEqual(named.signature(), "G(rest...)")

    def test_equivalence_ignores_leading_whitespace_only(self) -> None:
        base = _define("A", None, "1 + 2")
        self.assertTrue(base.is_equivalent(_define("A", None, "1 + 2")))
        self.assertFalse(base.is_equivalent(_define("A", None, "1+2")))
        self.assertFalse(base.is_equivalent(_define("A", _params(), "1 + 2")))
        self.assertFalse(_define("F", _params("x"), "x").is_equivalent(_define("F", _params("y"), "y")))

    def test_definition_requires_ops(self) -> None:
        with self.assertRaises(InternalError):
            MacroDefinition(MacroFlavor.OBJECT_LIKE, "A", (), ())

    def test_variadic_parameter_must_be_last(self) -> None:
        with self.assertRaises(InternalError):
            MacroDefinition(
                MacroFlavor.FUNCTION_LIKE,
                "F",
                (),
                (Op(Opcode.RAW_SPAN),),
                tuple(_params("...", "x")),
            )

    def test_builtins(self) -> None:
        line, file = builtin_macros()
        self.assertEqual((line.name, file.name), ("__LINE__", "__FILE__"))
        self.assertTrue(line.is_builtin)
        self.assertEqual(line.ops, (Op(Opcode.BUILTIN_LINE),))
        self.assertEqual(file.describe(), "__FILE__=<builtin>")


class MacroTableTests(unittest.TestCase):
    def test_define_lookup_undefine(self) -> None:
        table = MacroTable(builtin_macros())
        first = _define("B", None, "1")
        self.assertIsNone(table.define(first))
        second = _define("B", None, "2")
        self.assertIs(table.define(second), first)
        self.assertIs(table.lookup("B"), second)
        self.assertIn("B", table)
        self.assertIs(table.undefine("B"), second)
        self.assertIsNone(table.lookup("B"))
        self.assertIsNone(table.undefine("B"))

    def test_describe_is_sorted_and_hides_builtins(self) -> None:
        table = MacroTable(builtin_macros())
        table.define(_define("Z", None, "z"))
        table.define(_define("A", _params("x"), "x"))
        self.assertEqual(len(table), 4)
        self.assertEqual(table.describe(), ("A(x)=x", "Z=z"))
        self.assertEqual(
            table.describe(include_builtins=True),
            ("A(x)=x", "Z=z", "__FILE__=<builtin>", "__LINE__=<builtin>"),
        )

    def test_define_logs(self) -> None:
        table = MacroTable()
        with self.assertLogs("ppstream.macros", level="DEBUG") as logs:
            table.define(_define("A", None, "1"))
            table.undefine("A")
        self.assertEqual(len(logs.records), 2)
        self.assertIn("Defining A=1", logs.output[0])
        self.assertIn("Undefining A", logs.output[1])


if __name__ == "__main__":
    unittest.main()
