import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable

from ppstream.tokens import SourceLocation, Token

_LOGGER = logging.getLogger(__name__)


class Severity(Enum):
    NOTE = "note"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class DiagnosticInfo:
    code: str
    severity: Severity
    template: str

    def format(self, *args: object) -> str:
        return self.template.format(*args)


# Directives
UNKNOWN_DIRECTIVE = DiagnosticInfo(
    "PPS-PP-0101", Severity.ERROR, "unknown preprocessor directive '#{0}'"
)
EXPECTED_DIRECTIVE_NAME = DiagnosticInfo(
    "PPS-PP-0102", Severity.ERROR, "expected preprocessor directive name"
)
EXPECTED_TOKEN_IN_DIRECTIVE = DiagnosticInfo(
    "PPS-PP-0103", Severity.ERROR, "expected {0} in '#{1}' directive"
)
UNEXPECTED_TOKENS_AFTER_DIRECTIVE = DiagnosticInfo(
    "PPS-PP-0104", Severity.WARNING, "extra tokens at end of '#{0}' directive"
)
USER_ERROR = DiagnosticInfo("PPS-PP-0105", Severity.ERROR, "#error {0}")
USER_WARNING = DiagnosticInfo("PPS-PP-0106", Severity.WARNING, "#warning {0}")
END_OF_FILE_IN_CONDITIONAL = DiagnosticInfo(
    "PPS-PP-0107", Severity.ERROR, "end of file inside preprocessor conditional"
)
SEE_DIRECTIVE = DiagnosticInfo("PPS-PP-0108", Severity.NOTE, "see '#{0}' directive")
DIRECTIVE_WITHOUT_IF = DiagnosticInfo(
    "PPS-PP-0109", Severity.ERROR, "'#{0}' without matching '#if'"
)
DIRECTIVE_AFTER_ELSE = DiagnosticInfo(
    "PPS-PP-0110", Severity.ERROR, "'#{0}' after '#else'"
)
INVALID_IF_EXPRESSION = DiagnosticInfo(
    "PPS-PP-0111", Severity.ERROR, "invalid '#{0}' expression: {1}"
)
INVALID_LINE_NUMBER = DiagnosticInfo(
    "PPS-PP-0112", Severity.ERROR, "'#line' expects a positive line number, got '{0}'"
)

# Macros
MACRO_REDEFINITION = DiagnosticInfo(
    "PPS-PP-0201", Severity.WARNING, "macro '{0}' redefined"
)
SEE_PREVIOUS_DEFINITION = DiagnosticInfo(
    "PPS-PP-0202", Severity.NOTE, "see previous definition of '{0}'"
)
BUILTIN_MACRO_REDEFINITION = DiagnosticInfo(
    "PPS-PP-0203", Severity.ERROR, "cannot redefine builtin macro '{0}'"
)
BUILTIN_MACRO_UNDEFINITION = DiagnosticInfo(
    "PPS-PP-0204", Severity.WARNING, "cannot undefine builtin macro '{0}'"
)
DUPLICATE_MACRO_PARAMETER = DiagnosticInfo(
    "PPS-PP-0205", Severity.ERROR, "duplicate macro parameter name '{0}'"
)
VARIADIC_PARAMETER_NOT_LAST = DiagnosticInfo(
    "PPS-PP-0206", Severity.ERROR, "variadic macro parameter '{0}' must be the last parameter"
)
EXPECTED_TOKEN_IN_MACRO_PARAMETERS = DiagnosticInfo(
    "PPS-PP-0207", Severity.ERROR, "expected {0} in macro parameter list"
)
EXPECTED_PARAMETER_AFTER_STRINGIZE = DiagnosticInfo(
    "PPS-PP-0208", Severity.ERROR, "'#' is not followed by a macro parameter"
)
TOKEN_PASTE_AT_START = DiagnosticInfo(
    "PPS-PP-0209", Severity.ERROR, "'##' cannot appear at start of macro expansion"
)
TOKEN_PASTE_AT_END = DiagnosticInfo(
    "PPS-PP-0210", Severity.ERROR, "'##' cannot appear at end of macro expansion"
)
INVALID_TOKEN_PASTE_RESULT = DiagnosticInfo(
    "PPS-PP-0211",
    Severity.WARNING,
    "pasting formed '{0}', an invalid preprocessing token",
)
WRONG_NUMBER_OF_ARGUMENTS = DiagnosticInfo(
    "PPS-PP-0212",
    Severity.ERROR,
    "macro '{0}' requires {1} arguments, but {2} given",
)
UNTERMINATED_MACRO_INVOCATION = DiagnosticInfo(
    "PPS-PP-0213", Severity.ERROR, "unterminated argument list invoking macro '{0}'"
)

# Includes
INCLUDE_NOT_FOUND = DiagnosticInfo("PPS-PP-0301", Severity.ERROR, "include not found: {0}")
INCLUDE_READ_ERROR = DiagnosticInfo(
    "PPS-PP-0302", Severity.ERROR, "unable to read include {0}: {1}"
)
INCLUDE_TOO_DEEP = DiagnosticInfo(
    "PPS-PP-0303", Severity.ERROR, "#include nested deeper than {0} levels"
)
TOO_MANY_ERRORS = DiagnosticInfo(
    "PPS-PP-0304", Severity.ERROR, "too many errors emitted, stopping now"
)

# Lexing
UNTERMINATED_LITERAL = DiagnosticInfo(
    "PPS-LX-0401", Severity.WARNING, "missing terminating quote in {0}"
)
UNTERMINATED_COMMENT = DiagnosticInfo(
    "PPS-LX-0402", Severity.ERROR, "unterminated block comment"
)


@dataclass(frozen=True)
class Diagnostic:
    severity: Severity
    filename: str
    message: str
    line: int | None = None
    column: int | None = None
    code: str | None = None

    def __str__(self) -> str:
        stage = self.severity.value
        if self.line is None or self.column is None:
            return f"{self.filename}: {stage}: {self.message}"
        return f"{self.filename}:{self.line}:{self.column}: {stage}: {self.message}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity.value,
            "filename": self.filename,
            "line": self.line,
            "column": self.column,
            "code": self.code,
            "message": self.message,
        }


class DiagnosticError(ValueError):
    def __init__(self, diagnostic: Diagnostic) -> None:
        super().__init__(str(diagnostic))
        self.diagnostic = diagnostic


class InternalError(RuntimeError):
    pass


class DiagnosticSink:
    def __init__(self, *, warn_as_error: bool = False) -> None:
        self._warn_as_error = warn_as_error
        self._diagnostics: list[Diagnostic] = []
        self._error_count = 0
        self._warning_count = 0

    @property
    def warn_as_error(self) -> bool:
        return self._warn_as_error

    def diagnose(
        self, where: Token | SourceLocation, info: DiagnosticInfo, *args: object
    ) -> Diagnostic:
        location = where.location if isinstance(where, Token) else where
        severity = info.severity
        if severity is Severity.WARNING and self._warn_as_error:
            severity = Severity.ERROR
        diagnostic = Diagnostic(
            severity,
            location.filename,
            info.format(*args),
            location.line,
            location.column,
            info.code,
        )
        if severity is Severity.ERROR:
            self._error_count += 1
        elif severity is Severity.WARNING:
            self._warning_count += 1
        self._diagnostics.append(diagnostic)
        _LOGGER.debug("%s [%s]", diagnostic, info.code)
        return diagnostic

    @property
    def diagnostics(self) -> tuple[Diagnostic, ...]:
        return tuple(self._diagnostics)

    @property
    def error_count(self) -> int:
        return self._error_count

    @property
    def warning_count(self) -> int:
        return self._warning_count

    @property
    def has_errors(self) -> bool:
        return self._error_count > 0

    def codes(self) -> list[str | None]:
        return [diagnostic.code for diagnostic in self._diagnostics]


def first_error(diagnostics: Iterable[Diagnostic]) -> Diagnostic | None:
    for diagnostic in diagnostics:
        if diagnostic.severity is Severity.ERROR:
            return diagnostic
    return None


def format_diagnostics(diagnostics: Iterable[Diagnostic], diag_format: str = "human") -> str:
    if diag_format == "json":
        return json.dumps([diagnostic.to_dict() for diagnostic in diagnostics], indent=2)
    if diag_format != "human":
        raise ValueError(f"Unsupported diagnostic format: {diag_format}")
    lines = []
    for diagnostic in diagnostics:
        if diagnostic.code is None:
            lines.append(str(diagnostic))
        else:
            lines.append(f"{diagnostic} [{diagnostic.code}]")
    return "\n".join(lines)
