import unittest

from tests import _bootstrap  # noqa: F401
from ppstream.options import (
    PreprocessorOptions,
    command_line_source,
    normalize_options,
    parse_cli_define,
)


class PreprocessorOptionsTests(unittest.TestCase):
    def test_defaults(self) -> None:
        options = PreprocessorOptions()
        self.assertEqual(options.include_dirs, ())
        self.assertEqual(options.defines, ())
        self.assertEqual(options.undefs, ())
        self.assertEqual(options.diag_format, "human")
        self.assertFalse(options.warn_as_error)
        self.assertEqual(options.max_include_depth, 200)
        self.assertEqual(options.error_limit, 0)

    def test_invalid_diag_format(self) -> None:
        with self.assertRaises(ValueError):
            PreprocessorOptions(diag_format="xml")  # type: ignore[arg-type]

    def test_invalid_limits(self) -> None:
        with self.assertRaises(ValueError):
            PreprocessorOptions(max_include_depth=0)
        with self.assertRaises(ValueError):
            PreprocessorOptions(error_limit=-1)

    def test_invalid_defines_and_undefs(self) -> None:
        with self.assertRaises(ValueError):
            PreprocessorOptions(defines=("1BAD=2",))
        with self.assertRaises(ValueError):
            PreprocessorOptions(undefs=("F(x)",))

    def test_normalize_options(self) -> None:
        normalized = normalize_options(None)
        self.assertEqual(normalized, PreprocessorOptions())
        options = PreprocessorOptions(warn_as_error=True)
        self.assertIs(normalize_options(options), options)


class CommandLineDefineTests(unittest.TestCase):
    def test_parse_cli_define(self) -> None:
        self.assertEqual(parse_cli_define("A"), ("A", "1"))
        self.assertEqual(parse_cli_define("A="), ("A", ""))
        self.assertEqual(parse_cli_define("F(x)=x+1"), ("F(x)", "x+1"))
        self.assertEqual(parse_cli_define("EQ=a=b"), ("EQ", "a=b"))

    def test_command_line_source(self) -> None:
        options = PreprocessorOptions(defines=("A=2", "B"), undefs=("C",))
        self.assertEqual(command_line_source(options), "#define A 2\n#define B 1\n#undef C\n")
        self.assertEqual(command_line_source(PreprocessorOptions()), "")


if __name__ == "__main__":
    unittest.main()
