import re
from dataclasses import dataclass
from typing import Literal

DiagFormat = Literal["human", "json"]

_CLI_DEFINE_RE = re.compile(r"^(?P<name>[A-Za-z_]\w*)(?P<params>\([^)]*\))?$")


@dataclass(frozen=True)
class PreprocessorOptions:
    include_dirs: tuple[str, ...] = ()
    defines: tuple[str, ...] = ()
    undefs: tuple[str, ...] = ()
    diag_format: DiagFormat = "human"
    warn_as_error: bool = False
    max_include_depth: int = 200
    error_limit: int = 0

    def __post_init__(self) -> None:
        if self.diag_format not in {"human", "json"}:
            raise ValueError(f"Unsupported diagnostic format: {self.diag_format}")
        if self.max_include_depth <= 0:
            raise ValueError(f"Invalid include depth limit: {self.max_include_depth}")
        if self.error_limit < 0:
            raise ValueError(f"Invalid error limit: {self.error_limit}")
        for define in self.defines:
            parse_cli_define(define)
        for name in self.undefs:
            if _CLI_DEFINE_RE.fullmatch(name) is None or "(" in name:
                raise ValueError(f"Invalid macro name: {name}")


def normalize_options(options: PreprocessorOptions | None) -> PreprocessorOptions:
    return PreprocessorOptions() if options is None else options


def parse_cli_define(define: str) -> tuple[str, str]:
    """Split ``NAME[(params)][=body]`` into the head and body of a ``#define``."""
    if "=" in define:
        head, body = define.split("=", 1)
    else:
        head, body = define, "1"
    head = head.strip()
    if _CLI_DEFINE_RE.fullmatch(head) is None:
        raise ValueError(f"Invalid macro definition: {define}")
    return head, body


def command_line_source(options: PreprocessorOptions) -> str:
    lines = []
    for define in options.defines:
        head, body = parse_cli_define(define)
        lines.append(f"#define {head} {body}\n")
    for name in options.undefs:
        lines.append(f"#undef {name}\n")
    return "".join(lines)
