import unittest

from tests import _bootstrap  # noqa: F401
from ppstream.diag import DiagnosticSink, Severity
from ppstream.lexer import Lexer, LexerError, lex, lex_text, translate_source
from ppstream.tokens import SourceLocation, TokenKind


def _lexemes(tokens):
    return [token.lexeme for token in tokens if token.kind is not TokenKind.EOF]


class LexerTests(unittest.TestCase):
    def test_simple_declaration(self) -> None:
        tokens = lex("int x = 42;")
        self.assertEqual(
            [token.kind for token in tokens],
            [
                TokenKind.IDENT,
                TokenKind.IDENT,
                TokenKind.PUNCTUATOR,
                TokenKind.PP_NUMBER,
                TokenKind.PUNCTUATOR,
                TokenKind.EOF,
            ],
        )
        self.assertEqual(_lexemes(tokens), ["int", "x", "=", "42", ";"])

    def test_eof_repeats_location_of_end(self) -> None:
        tokens = lex("a\n")
        self.assertTrue(tokens[-1].is_eof)
        self.assertEqual((tokens[-1].line, tokens[-1].column), (2, 1))

    def test_directive_hash_only_at_line_start(self) -> None:
        tokens = lex("#define X\n  # if\na # b\n")
        self.assertEqual(
            [token.kind for token in tokens],
            [
                TokenKind.DIRECTIVE,
                TokenKind.IDENT,
                TokenKind.IDENT,
                TokenKind.NEWLINE,
                TokenKind.DIRECTIVE,
                TokenKind.IDENT,
                TokenKind.NEWLINE,
                TokenKind.IDENT,
                TokenKind.PUNCTUATOR,
                TokenKind.IDENT,
                TokenKind.NEWLINE,
                TokenKind.EOF,
            ],
        )

    def test_leading_space_tracks_whitespace_and_comments(self) -> None:
        tokens = lex("a b/**/c(d")
        self.assertEqual(
            [(token.lexeme, token.leading_space) for token in tokens[:-1]],
            [("a", True), ("b", True), ("c", True), ("(", False), ("d", False)],
        )

    def test_line_comment_is_whitespace(self) -> None:
        self.assertEqual(_lexemes(lex("a // b c\nd")), ["a", "\n", "d"])

    def test_line_splice_keeps_physical_locations(self) -> None:
        tokens = lex("ab\\\ncd ef")
        self.assertEqual(_lexemes(tokens), ["abcd", "ef"])
        self.assertEqual((tokens[0].line, tokens[0].column), (1, 1))
        self.assertEqual((tokens[1].line, tokens[1].column), (2, 4))

    def test_carriage_returns_are_normalized(self) -> None:
        tokens = lex("a\r\nb\rc")
        self.assertEqual(_lexemes(tokens), ["a", "\n", "b", "\n", "c"])
        self.assertEqual(tokens[4].line, 3)

    def test_translate_source_maps_positions(self) -> None:
        text, positions = translate_source("x\\\ny")
        self.assertEqual(text, "xy")
        self.assertEqual(positions, [(1, 1), (2, 1), (2, 2)])

    def test_pp_numbers(self) -> None:
        tokens = lex("1e+5 0x1p-3 .5f 12ab")
        self.assertEqual(_lexemes(tokens), ["1e+5", "0x1p-3", ".5f", "12ab"])
        self.assertTrue(all(token.kind is TokenKind.PP_NUMBER for token in tokens[:-1]))

    def test_punctuators_use_longest_match(self) -> None:
        self.assertEqual(_lexemes(lex("a<<=b...c##d->e")), ["a", "<<=", "b", "...", "c", "##", "d", "->", "e"])

    def test_string_and_character_literals(self) -> None:
        tokens = lex("\"a\\\"b\" 'c' L\"w\" u8\"x\" U'y'")
        self.assertEqual(_lexemes(tokens), ['"a\\"b"', "'c'", 'L"w"', 'u8"x"', "U'y'"])
        self.assertEqual(
            [token.kind for token in tokens[:-1]],
            [
                TokenKind.STRING_LITERAL,
                TokenKind.CHAR_CONST,
                TokenKind.STRING_LITERAL,
                TokenKind.STRING_LITERAL,
                TokenKind.CHAR_CONST,
            ],
        )

    def test_stray_characters_become_other_tokens(self) -> None:
        tokens = lex("a @ $")
        self.assertEqual([token.kind for token in tokens[1:3]], [TokenKind.OTHER, TokenKind.OTHER])

    def test_unterminated_literal_raises_without_sink(self) -> None:
        with self.assertRaises(LexerError) as context:
            lex('x = "abc\n')
        self.assertEqual((context.exception.line, context.exception.column), (1, 5))

    def test_unterminated_literal_is_diagnosed_with_sink(self) -> None:
        sink = DiagnosticSink()
        tokens = Lexer('x = "abc\ny', filename="t.c", sink=sink).tokenize()
        self.assertEqual(_lexemes(tokens), ["x", "=", '"abc', "\n", "y"])
        self.assertEqual(sink.codes(), ["PPS-LX-0401"])
        self.assertEqual(sink.diagnostics[0].severity, Severity.WARNING)
        self.assertIn("string literal", sink.diagnostics[0].message)

    def test_unterminated_comment_is_an_error(self) -> None:
        sink = DiagnosticSink()
        tokens = Lexer("a /* b", sink=sink).tokenize()
        self.assertEqual(_lexemes(tokens), ["a"])
        self.assertEqual(sink.codes(), ["PPS-LX-0402"])
        self.assertTrue(sink.has_errors)

    def test_tokens_is_lazy(self) -> None:
        stream = Lexer("a b").tokens()
        self.assertEqual(next(stream).lexeme, "a")
        self.assertEqual(next(stream).lexeme, "b")
        self.assertTrue(next(stream).is_eof)

    def test_lex_text_relocates_tokens(self) -> None:
        location = SourceLocation("m.c", 7, 3)
        tokens = lex_text("+- x", location)
        self.assertEqual(_lexemes(tokens), ["+", "-", "x"])
        self.assertTrue(all(token.location == location for token in tokens))
        self.assertEqual([token.leading_space for token in tokens], [False, False, True])

    def test_lex_text_never_produces_directives(self) -> None:
        tokens = lex_text("#", SourceLocation("m.c", 1, 1))
        self.assertEqual(tokens[0].kind, TokenKind.PUNCTUATOR)


if __name__ == "__main__":
    unittest.main()
