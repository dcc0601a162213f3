import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, NamedTuple

from ppstream.arena import TextArena
from ppstream.conditions import ConditionalFrame, ConditionError, evaluate_condition
from ppstream.diag import (
    BUILTIN_MACRO_REDEFINITION,
    BUILTIN_MACRO_UNDEFINITION,
    DIRECTIVE_AFTER_ELSE,
    DIRECTIVE_WITHOUT_IF,
    DUPLICATE_MACRO_PARAMETER,
    END_OF_FILE_IN_CONDITIONAL,
    EXPECTED_DIRECTIVE_NAME,
    EXPECTED_TOKEN_IN_DIRECTIVE,
    EXPECTED_TOKEN_IN_MACRO_PARAMETERS,
    INCLUDE_NOT_FOUND,
    INCLUDE_READ_ERROR,
    INCLUDE_TOO_DEEP,
    INVALID_IF_EXPRESSION,
    INVALID_LINE_NUMBER,
    MACRO_REDEFINITION,
    SEE_DIRECTIVE,
    SEE_PREVIOUS_DEFINITION,
    TOO_MANY_ERRORS,
    UNEXPECTED_TOKENS_AFTER_DIRECTIVE,
    UNKNOWN_DIRECTIVE,
    USER_ERROR,
    USER_WARNING,
    VARIADIC_PARAMETER_NOT_LAST,
    Diagnostic,
    DiagnosticError,
    DiagnosticSink,
    first_error,
    format_diagnostics,
)
from ppstream.expansion import ExpansionStream
from ppstream.includes import FileSystemIncludeSystem, IncludeSystem
from ppstream.lexer import Lexer
from ppstream.macros import VA_ARGS, MacroParam, MacroTable, build_macro, builtin_macros
from ppstream.options import DiagFormat, PreprocessorOptions, command_line_source, normalize_options
from ppstream.streams import LexerStream, PretokenizedStream
from ppstream.tokens import UNKNOWN_LOCATION, Token, TokenKind, spell_tokens

_LOGGER = logging.getLogger(__name__)

COMMAND_LINE_FILENAME = "<command-line>"
_END_OF_LINE = frozenset({TokenKind.NEWLINE, TokenKind.EOF})


@dataclass(frozen=True)
class PreprocessResult:
    tokens: tuple[Token, ...]
    diagnostics: tuple[Diagnostic, ...]
    include_trace: tuple[str, ...]
    macro_table: tuple[str, ...]
    diag_format: DiagFormat = "human"

    @property
    def text(self) -> str:
        return spell_tokens(self.tokens)

    @property
    def lexemes(self) -> list[str]:
        return [token.lexeme for token in self.tokens if not token.is_eof]

    @property
    def has_errors(self) -> bool:
        return first_error(self.diagnostics) is not None

    def format_diagnostics(self) -> str:
        return format_diagnostics(self.diagnostics, self.diag_format)

    def raise_for_errors(self) -> None:
        diagnostic = first_error(self.diagnostics)
        if diagnostic is not None:
            raise DiagnosticError(diagnostic)


class InputFile:
    """One open source file: its lexer, its expansion stream and its #if state."""

    def __init__(self, path: str, lexer_stream: LexerStream, expansion: ExpansionStream) -> None:
        self.path = path
        self.lexer_stream = lexer_stream
        self.expansion = expansion
        self.parent: InputFile | None = None
        self.conditionals: list[ConditionalFrame] = []

    @property
    def is_skipping(self) -> bool:
        return bool(self.conditionals) and not self.conditionals[-1].active


class _DirectiveContext:
    def __init__(self, file: InputFile, name_token: Token) -> None:
        self.file = file
        self.name_token = name_token
        self.quiet = file.is_skipping
        self.parse_error = False
        self.end_checked = False

    @property
    def name(self) -> str:
        return self.name_token.lexeme

    def peek(self) -> Token:
        return self.file.expansion.peek_raw_token()

    def at_end_of_line(self) -> bool:
        return self.peek().kind in _END_OF_LINE

    def advance(self) -> Token:
        if self.at_end_of_line():
            return self.peek()
        return self.file.expansion.read_raw_token()

    def skip_to_end_of_line(self) -> None:
        while not self.at_end_of_line():
            self.file.expansion.read_raw_token()

    def rest_of_line(self) -> list[Token]:
        tokens = []
        while not self.at_end_of_line():
            tokens.append(self.file.expansion.read_raw_token())
        return tokens


class _Directive(NamedTuple):
    handler: Callable[["Preprocessor", _DirectiveContext], None]
    process_when_skipping: bool = False


def _format_include_trace(
    source: str,
    line: int,
    include_name: str,
    include_path: str,
    is_angled: bool,
) -> str:
    delim_open, delim_close = ("<", ">") if is_angled else ('"', '"')
    return f"{source}:{line}: #include {delim_open}{include_name}{delim_close} -> {include_path}"


def _format_include_reference(include_name: str, is_angled: bool) -> str:
    if is_angled:
        return f"<{include_name}>"
    return f'"{include_name}"'


class Preprocessor:
    """Reads fully preprocessed tokens from a stack of input files.

    A caller-supplied ``sink`` decides warning severity on its own. Passing
    one together with ``options.warn_as_error`` requires a sink that was
    created with ``warn_as_error=True``.
    """

    def __init__(
        self,
        options: PreprocessorOptions | None = None,
        *,
        include_system: IncludeSystem | None = None,
        sink: DiagnosticSink | None = None,
    ) -> None:
        self._options = normalize_options(options)
        if sink is None:
            sink = DiagnosticSink(warn_as_error=self._options.warn_as_error)
        elif self._options.warn_as_error and not sink.warn_as_error:
            raise ValueError("warn_as_error must be set on the supplied diagnostic sink")
        self.sink = sink
        self.arena = TextArena()
        self.macros = MacroTable(builtin_macros())
        self.include_trace: list[str] = []
        if include_system is None:
            include_system = FileSystemIncludeSystem(self._options.include_dirs)
        self._include_system = include_system
        self._current: InputFile | None = None
        self._depth = 0
        self._pragma_once_paths: set[str] = set()
        self._end_token = Token.end_of_input(UNKNOWN_LOCATION)
        self._peeked: Token | None = None
        self._started = False
        self._stopped = False

    @property
    def options(self) -> PreprocessorOptions:
        return self._options

    @property
    def current_file(self) -> InputFile | None:
        return self._current

    def push_source(self, source: str, filename: str = "<input>") -> None:
        self._push_input_file(source, filename)
        if not self._started:
            self._started = True
            command_line = command_line_source(self._options)
            if command_line:
                self._push_input_file(command_line, COMMAND_LINE_FILENAME)

    def push_path(self, path: str | Path) -> None:
        resolved = Path(path)
        self.push_source(resolved.read_text(encoding="utf-8"), str(resolved))

    def read_token(self) -> Token:
        if self._peeked is not None:
            token, self._peeked = self._peeked, None
            return token
        return self._read_token()

    def peek_token(self) -> Token:
        if self._peeked is None:
            self._peeked = self._read_token()
        return self._peeked

    def read_all_tokens(self) -> list[Token]:
        tokens = []
        while True:
            token = self.read_token()
            tokens.append(token)
            if token.is_eof:
                return tokens

    def close(self) -> None:
        while self._current is not None:
            file = self._current
            file.expansion.close()
            self._end_token = file.expansion.peek_raw_token()
            self._current = file.parent
        self._depth = 0

    def _read_token(self) -> Token:
        while True:
            if self._error_limit_reached():
                self._stop()
            file = self._current
            if file is None:
                return self._end_token
            expansion = file.expansion
            token = expansion.peek_raw_token()
            if token.is_eof:
                self._pop_input_file()
                continue
            if token.kind is TokenKind.DIRECTIVE:
                self._handle_directive()
                continue
            if token.kind is TokenKind.NEWLINE or file.is_skipping:
                expansion.read_raw_token()
                continue
            token = expansion.peek_token()
            if token.kind in {TokenKind.EOF, TokenKind.NEWLINE, TokenKind.DIRECTIVE}:
                continue
            return expansion.read_raw_token()

    def _error_limit_reached(self) -> bool:
        limit = self._options.error_limit
        return bool(limit) and not self._stopped and self.sink.error_count >= limit

    def _stop(self) -> None:
        self._stopped = True
        if self._current is not None:
            self.sink.diagnose(self._current.expansion.peek_raw_token(), TOO_MANY_ERRORS)
        self.close()

    def _push_input_file(self, source: str, path: str) -> None:
        lexer_stream = LexerStream(Lexer(source, filename=path, sink=self.sink))
        expansion = ExpansionStream(
            lexer_stream, macros=self.macros, sink=self.sink, arena=self.arena
        )
        file = InputFile(path, lexer_stream, expansion)
        file.parent = self._current
        self._current = file
        self._depth += 1

    def _pop_input_file(self) -> None:
        file = self._current
        if file is None:
            return
        end_token = file.expansion.peek_raw_token()
        for frame in reversed(file.conditionals):
            self.sink.diagnose(end_token, END_OF_FILE_IN_CONDITIONAL)
            self.sink.diagnose(frame.directive, SEE_DIRECTIVE, frame.directive.lexeme)
        file.conditionals.clear()
        self._current = file.parent
        self._depth -= 1
        if self._current is None:
            self._end_token = end_token

    def _handle_directive(self) -> None:
        file = self._current
        assert file is not None
        expansion = file.expansion
        expansion.read_raw_token()
        name_token = expansion.peek_raw_token()
        if name_token.kind in _END_OF_LINE:
            return
        context = _DirectiveContext(file, name_token)
        if name_token.kind is not TokenKind.IDENT:
            if not context.quiet:
                self.sink.diagnose(name_token, EXPECTED_DIRECTIVE_NAME)
            context.skip_to_end_of_line()
            return
        directive = _DIRECTIVES.get(name_token.lexeme)
        if context.quiet and (directive is None or not directive.process_when_skipping):
            context.skip_to_end_of_line()
            return
        if directive is None:
            self.sink.diagnose(name_token, UNKNOWN_DIRECTIVE, name_token.lexeme)
            context.skip_to_end_of_line()
            return
        expansion.read_raw_token()
        directive.handler(self, context)
        self._expect_end_of_directive(context)

    def _expect_end_of_directive(self, context: _DirectiveContext) -> None:
        if context.end_checked:
            return
        context.end_checked = True
        if not context.at_end_of_line():
            if not context.parse_error and not context.quiet:
                self.sink.diagnose(context.peek(), UNEXPECTED_TOKENS_AFTER_DIRECTIVE, context.name)
            context.skip_to_end_of_line()
        if context.peek().kind is TokenKind.NEWLINE:
            context.file.expansion.read_raw_token()

    def _expect_raw(
        self, context: _DirectiveContext, kind: TokenKind, expected: str
    ) -> Token | None:
        token = context.peek()
        if token.kind is not kind:
            if not context.parse_error:
                self.sink.diagnose(token, EXPECTED_TOKEN_IN_DIRECTIVE, expected, context.name)
            context.parse_error = True
            return None
        return context.advance()

    def _expand_tokens(self, tokens: list[Token], end_token: Token) -> list[Token]:
        stream = ExpansionStream(
            PretokenizedStream(tokens, end_location=end_token.location),
            macros=self.macros,
            sink=self.sink,
            arena=self.arena,
        )
        expanded = []
        while True:
            token = stream.read_token()
            if token.is_eof:
                return expanded
            expanded.append(token)

    def _handle_define(self, context: _DirectiveContext) -> None:
        name_token = self._expect_raw(context, TokenKind.IDENT, "macro name")
        if name_token is None:
            return
        name = name_token.lexeme
        params: list[MacroParam] | None = None
        open_paren = context.peek()
        if open_paren.is_punctuator("(") and not open_paren.leading_space:
            context.advance()
            params = self._parse_macro_parameters(context)
            if params is None:
                return
        body = context.rest_of_line()
        previous = self.macros.lookup(name)
        if previous is not None and previous.is_builtin:
            self.sink.diagnose(name_token, BUILTIN_MACRO_REDEFINITION, name)
            return
        definition = build_macro(
            name_token, params, body, end_location=context.peek().location, sink=self.sink
        )
        if previous is not None and not previous.is_equivalent(definition):
            self.sink.diagnose(name_token, MACRO_REDEFINITION, name)
            if previous.name_token is not None:
                self.sink.diagnose(previous.name_token, SEE_PREVIOUS_DEFINITION, name)
        self.macros.define(definition)

    def _parse_macro_parameters(self, context: _DirectiveContext) -> list[MacroParam] | None:
        params: list[MacroParam] = []
        if context.peek().is_punctuator(")"):
            context.advance()
            return params
        seen: set[str] = set()
        while True:
            token = context.peek()
            name_token: Token | None = None
            if token.kind is TokenKind.IDENT:
                name_token = context.advance()
            elif not token.is_punctuator("..."):
                self.sink.diagnose(token, EXPECTED_TOKEN_IN_MACRO_PARAMETERS, "parameter name")
                context.parse_error = True
                return None
            is_variadic = False
            if context.peek().is_punctuator("..."):
                context.advance()
                is_variadic = True
            name = VA_ARGS if name_token is None else name_token.lexeme
            location = token.location
            if name in seen:
                self.sink.diagnose(location, DUPLICATE_MACRO_PARAMETER, name)
            seen.add(name)
            params.append(MacroParam(name, location, is_variadic))
            separator = context.peek()
            if separator.is_punctuator(")"):
                context.advance()
                break
            if not separator.is_punctuator(","):
                self.sink.diagnose(separator, EXPECTED_TOKEN_IN_MACRO_PARAMETERS, "',' or ')'")
                context.parse_error = True
                return None
            context.advance()
        for index, param in enumerate(params[:-1]):
            if param.is_variadic:
                self.sink.diagnose(param.location, VARIADIC_PARAMETER_NOT_LAST, param.name)
                params[index] = MacroParam(param.name, param.location)
        return params

    def _handle_undef(self, context: _DirectiveContext) -> None:
        name_token = self._expect_raw(context, TokenKind.IDENT, "macro name")
        if name_token is None:
            return
        previous = self.macros.lookup(name_token.lexeme)
        if previous is not None and previous.is_builtin:
            self.sink.diagnose(name_token, BUILTIN_MACRO_UNDEFINITION, name_token.lexeme)
            return
        self.macros.undefine(name_token.lexeme)

    def _handle_include(self, context: _DirectiveContext) -> None:
        directive_token = context.name_token
        operand = self._parse_include_operand(context)
        self._expect_end_of_directive(context)
        if operand is None:
            return
        include_name, is_angled = operand
        includer = context.file.path
        include_path = self._include_system.resolve(
            include_name, is_angled=is_angled, includer=includer
        )
        if include_path is None:
            self.sink.diagnose(
                directive_token,
                INCLUDE_NOT_FOUND,
                _format_include_reference(include_name, is_angled),
            )
            return
        if include_path in self._pragma_once_paths:
            return
        if self._depth > self._options.max_include_depth:
            self.sink.diagnose(directive_token, INCLUDE_TOO_DEEP, self._options.max_include_depth)
            return
        try:
            include_source = self._include_system.read(include_path)
        except OSError as error:
            self.sink.diagnose(directive_token, INCLUDE_READ_ERROR, include_name, error)
            return
        self.include_trace.append(
            _format_include_trace(
                includer, directive_token.line, include_name, include_path, is_angled
            )
        )
        _LOGGER.debug("Including %s", include_path)
        self._push_input_file(include_source, include_path)

    def _parse_include_operand(self, context: _DirectiveContext) -> tuple[str, bool] | None:
        tokens = context.rest_of_line()
        if tokens and tokens[0].kind is TokenKind.IDENT:
            tokens = self._expand_tokens(tokens, context.peek())
        if tokens and tokens[0].kind is TokenKind.STRING_LITERAL and tokens[0].lexeme.startswith('"'):
            if len(tokens) > 1 and not context.parse_error:
                self.sink.diagnose(tokens[1], UNEXPECTED_TOKENS_AFTER_DIRECTIVE, context.name)
            return tokens[0].lexeme[1:-1], False
        if tokens and tokens[0].is_punctuator("<"):
            for index, token in enumerate(tokens[1:], start=1):
                if token.is_punctuator(">"):
                    name = spell_tokens(tokens[1:index])
                    if index + 1 < len(tokens):
                        self.sink.diagnose(
                            tokens[index + 1], UNEXPECTED_TOKENS_AFTER_DIRECTIVE, context.name
                        )
                    return name, True
            self.sink.diagnose(tokens[-1], EXPECTED_TOKEN_IN_DIRECTIVE, "'>'", context.name)
            context.parse_error = True
            return None
        where = tokens[0] if tokens else context.peek()
        self.sink.diagnose(
            where, EXPECTED_TOKEN_IN_DIRECTIVE, '"FILENAME" or <FILENAME>', context.name
        )
        context.parse_error = True
        return None

    def _evaluate_line(self, context: _DirectiveContext) -> bool:
        tokens = context.rest_of_line()
        end_token = context.peek()
        try:
            resolved = self._resolve_defined(tokens)
            return evaluate_condition(self._expand_tokens(resolved, end_token)) != 0
        except ConditionError as error:
            where = error.token or (tokens[0] if tokens else context.name_token)
            self.sink.diagnose(where, INVALID_IF_EXPRESSION, context.name, error)
            return False

    def _resolve_defined(self, tokens: list[Token]) -> list[Token]:
        resolved: list[Token] = []
        index = 0
        count = len(tokens)
        while index < count:
            token = tokens[index]
            if token.kind is not TokenKind.IDENT or token.lexeme != "defined":
                resolved.append(token)
                index += 1
                continue
            index += 1
            has_paren = index < count and tokens[index].is_punctuator("(")
            if has_paren:
                index += 1
            if index >= count or tokens[index].kind is not TokenKind.IDENT:
                raise ConditionError("macro name missing after 'defined'", token)
            value = "1" if tokens[index].lexeme in self.macros else "0"
            index += 1
            if has_paren:
                if index >= count or not tokens[index].is_punctuator(")"):
                    raise ConditionError("missing ')' after 'defined'", token)
                index += 1
            resolved.append(
                Token(TokenKind.PP_NUMBER, value, token.location, token.leading_space)
            )
        return resolved

    def _begin_conditional(self, context: _DirectiveContext, enabled: bool) -> None:
        parent_active = not context.quiet
        active = parent_active and enabled
        context.file.conditionals.append(
            ConditionalFrame(context.name_token, parent_active, active, active)
        )

    def _handle_if(self, context: _DirectiveContext) -> None:
        if context.quiet:
            context.skip_to_end_of_line()
            self._begin_conditional(context, False)
            return
        self._begin_conditional(context, self._evaluate_line(context))

    def _handle_ifdef(self, context: _DirectiveContext) -> None:
        self._handle_ifdef_common(context, expected=True)

    def _handle_ifndef(self, context: _DirectiveContext) -> None:
        self._handle_ifdef_common(context, expected=False)

    def _handle_ifdef_common(self, context: _DirectiveContext, *, expected: bool) -> None:
        if context.quiet:
            context.skip_to_end_of_line()
            self._begin_conditional(context, False)
            return
        name_token = self._expect_raw(context, TokenKind.IDENT, "macro name")
        if name_token is None:
            self._begin_conditional(context, False)
            return
        self._begin_conditional(context, (name_token.lexeme in self.macros) == expected)

    def _current_frame(self, context: _DirectiveContext) -> ConditionalFrame | None:
        conditionals = context.file.conditionals
        if not conditionals:
            self.sink.diagnose(context.name_token, DIRECTIVE_WITHOUT_IF, context.name)
            context.parse_error = True
            context.skip_to_end_of_line()
            return None
        return conditionals[-1]

    def _handle_elif(self, context: _DirectiveContext) -> None:
        frame = self._current_frame(context)
        if frame is None:
            return
        context.quiet = not frame.parent_active
        if frame.saw_else:
            self.sink.diagnose(context.name_token, DIRECTIVE_AFTER_ELSE, context.name)
            context.parse_error = True
        if frame.saw_else or not frame.parent_active or frame.branch_taken:
            frame.active = False
            context.skip_to_end_of_line()
            return
        frame.active = self._evaluate_line(context)
        frame.branch_taken = frame.active

    def _handle_else(self, context: _DirectiveContext) -> None:
        frame = self._current_frame(context)
        if frame is None:
            return
        context.quiet = not frame.parent_active
        if frame.saw_else:
            self.sink.diagnose(context.name_token, DIRECTIVE_AFTER_ELSE, context.name)
            frame.active = False
            return
        frame.saw_else = True
        frame.active = frame.parent_active and not frame.branch_taken
        frame.branch_taken = True

    def _handle_endif(self, context: _DirectiveContext) -> None:
        frame = self._current_frame(context)
        if frame is None:
            return
        context.quiet = not frame.parent_active
        context.file.conditionals.pop()

    def _handle_error(self, context: _DirectiveContext) -> None:
        self.sink.diagnose(context.name_token, USER_ERROR, spell_tokens(context.rest_of_line()))

    def _handle_warning(self, context: _DirectiveContext) -> None:
        self.sink.diagnose(context.name_token, USER_WARNING, spell_tokens(context.rest_of_line()))

    def _handle_line(self, context: _DirectiveContext) -> None:
        tokens = context.rest_of_line()
        if tokens and tokens[0].kind is TokenKind.IDENT:
            tokens = self._expand_tokens(tokens, context.peek())
        if not tokens or tokens[0].kind is not TokenKind.PP_NUMBER or not tokens[0].lexeme.isdigit():
            found = tokens[0].lexeme if tokens else ""
            self.sink.diagnose(tokens[0] if tokens else context.name_token, INVALID_LINE_NUMBER, found)
            context.parse_error = True
            return
        line = int(tokens[0].lexeme)
        if line <= 0:
            self.sink.diagnose(tokens[0], INVALID_LINE_NUMBER, tokens[0].lexeme)
            context.parse_error = True
            return
        filename = None
        if len(tokens) > 1:
            if tokens[1].kind is not TokenKind.STRING_LITERAL or not tokens[1].lexeme.startswith('"'):
                self.sink.diagnose(tokens[1], EXPECTED_TOKEN_IN_DIRECTIVE, "file name", context.name)
                context.parse_error = True
                return
            filename = tokens[1].lexeme[1:-1]
            if len(tokens) > 2:
                self.sink.diagnose(tokens[2], UNEXPECTED_TOKENS_AFTER_DIRECTIVE, context.name)
        context.file.lexer_stream.renumber_following_lines(line, filename)

    def _handle_pragma(self, context: _DirectiveContext) -> None:
        token = context.peek()
        if token.kind is TokenKind.IDENT and token.lexeme == "once":
            context.advance()
            self._pragma_once_paths.add(context.file.path)
            return
        # Unknown pragmas are ignored.
        context.skip_to_end_of_line()


_DIRECTIVES: dict[str, _Directive] = {
    "define": _Directive(Preprocessor._handle_define),
    "undef": _Directive(Preprocessor._handle_undef),
    "include": _Directive(Preprocessor._handle_include),
    "if": _Directive(Preprocessor._handle_if, True),
    "ifdef": _Directive(Preprocessor._handle_ifdef, True),
    "ifndef": _Directive(Preprocessor._handle_ifndef, True),
    "elif": _Directive(Preprocessor._handle_elif, True),
    "else": _Directive(Preprocessor._handle_else, True),
    "endif": _Directive(Preprocessor._handle_endif, True),
    "error": _Directive(Preprocessor._handle_error),
    "warning": _Directive(Preprocessor._handle_warning),
    "line": _Directive(Preprocessor._handle_line),
    "pragma": _Directive(Preprocessor._handle_pragma),
}


def preprocess_source(
    source: str,
    *,
    filename: str = "<input>",
    options: PreprocessorOptions | None = None,
    include_system: IncludeSystem | None = None,
    strict: bool = False,
) -> PreprocessResult:
    processor = Preprocessor(options, include_system=include_system)
    processor.push_source(source, filename)
    tokens = processor.read_all_tokens()
    result = PreprocessResult(
        tuple(tokens),
        processor.sink.diagnostics,
        tuple(processor.include_trace),
        processor.macros.describe(),
        processor.options.diag_format,
    )
    if strict:
        result.raise_for_errors()
    return result


def preprocess_path(
    path: str | Path,
    *,
    options: PreprocessorOptions | None = None,
    include_system: IncludeSystem | None = None,
    strict: bool = False,
) -> PreprocessResult:
    resolved = Path(path)
    return preprocess_source(
        resolved.read_text(encoding="utf-8"),
        filename=str(resolved),
        options=options,
        include_system=include_system,
        strict=strict,
    )
