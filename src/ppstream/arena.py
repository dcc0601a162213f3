class TextArena:
    """Run-scoped storage for text the preprocessor synthesizes.

    Stringized arguments, pasted tokens and builtin expansions are allocated
    here so equal spellings share one string for the lifetime of the run.
    """

    def __init__(self) -> None:
        self._pool: dict[str, str] = {}
        self._allocated_bytes = 0
        self._allocations = 0

    def allocate(self, text: str) -> str:
        self._allocations += 1
        stored = self._pool.get(text)
        if stored is not None:
            return stored
        self._pool[text] = text
        self._allocated_bytes += len(text.encode("utf-8"))
        return text

    @property
    def allocated_bytes(self) -> int:
        return self._allocated_bytes

    @property
    def allocations(self) -> int:
        return self._allocations

    def __len__(self) -> int:
        return len(self._pool)

    def __contains__(self, text: object) -> bool:
        return text in self._pool
