from pathlib import Path, PurePosixPath
from typing import Mapping, Protocol, Sequence


class IncludeSystem(Protocol):
    def resolve(self, include_name: str, *, is_angled: bool, includer: str | None) -> str | None:
        """Return the identity of the file ``include_name`` refers to, if any."""
        ...

    def read(self, path: str) -> str:
        ...


class FileSystemIncludeSystem:
    def __init__(self, include_dirs: Sequence[str] = ()) -> None:
        self._include_dirs = tuple(include_dirs)

    def resolve(self, include_name: str, *, is_angled: bool, includer: str | None) -> str | None:
        search_roots: list[Path] = []
        if not is_angled and includer is not None and not includer.startswith("<"):
            search_roots.append(Path(includer).parent)
        search_roots.extend(Path(path) for path in self._include_dirs)
        for root in search_roots:
            candidate = root / include_name
            if candidate.is_file():
                return str(candidate.resolve())
        return None

    def read(self, path: str) -> str:
        return Path(path).read_text(encoding="utf-8")


class MemoryIncludeSystem:
    """Serves include files from a mapping of POSIX-style paths to text."""

    def __init__(self, files: Mapping[str, str], include_dirs: Sequence[str] = ()) -> None:
        self._files = dict(files)
        self._include_dirs = tuple(include_dirs)

    def resolve(self, include_name: str, *, is_angled: bool, includer: str | None) -> str | None:
        candidates: list[PurePosixPath] = []
        if not is_angled and includer is not None:
            candidates.append(PurePosixPath(includer).parent / include_name)
        candidates.extend(PurePosixPath(root) / include_name for root in self._include_dirs)
        candidates.append(PurePosixPath(include_name))
        for candidate in candidates:
            key = str(candidate)
            if key in self._files:
                return key
        return None

    def read(self, path: str) -> str:
        try:
            return self._files[path]
        except KeyError:
            raise FileNotFoundError(path) from None
