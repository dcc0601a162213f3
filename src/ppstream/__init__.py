from ppstream.arena import TextArena
from ppstream.diag import (
    Diagnostic,
    DiagnosticError,
    DiagnosticInfo,
    DiagnosticSink,
    InternalError,
    Severity,
    format_diagnostics,
)
from ppstream.expansion import ExpansionStream
from ppstream.includes import FileSystemIncludeSystem, IncludeSystem, MemoryIncludeSystem
from ppstream.invocation import MacroInvocation
from ppstream.lexer import Lexer, LexerError
from ppstream.macros import MacroDefinition, MacroFlavor, MacroTable, Op, Opcode
from ppstream.options import PreprocessorOptions
from ppstream.preprocessor import (
    InputFile,
    Preprocessor,
    PreprocessResult,
    preprocess_path,
    preprocess_source,
)
from ppstream.streams import (
    LexerStream,
    PretokenizedStream,
    SingleUseStream,
    StreamStack,
    TokenStream,
)
from ppstream.tokens import SourceLocation, Token, TokenKind

__all__ = [
    "Diagnostic",
    "DiagnosticError",
    "DiagnosticInfo",
    "DiagnosticSink",
    "ExpansionStream",
    "FileSystemIncludeSystem",
    "IncludeSystem",
    "InputFile",
    "InternalError",
    "Lexer",
    "LexerError",
    "LexerStream",
    "MacroDefinition",
    "MacroFlavor",
    "MacroInvocation",
    "MacroTable",
    "MemoryIncludeSystem",
    "Op",
    "Opcode",
    "PreprocessResult",
    "Preprocessor",
    "PreprocessorOptions",
    "PretokenizedStream",
    "Severity",
    "SingleUseStream",
    "SourceLocation",
    "StreamStack",
    "TextArena",
    "Token",
    "TokenKind",
    "TokenStream",
    "format_diagnostics",
    "preprocess_path",
    "preprocess_source",
]
