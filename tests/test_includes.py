import tempfile
import unittest
from pathlib import Path

from tests import _bootstrap  # noqa: F401
from ppstream.includes import FileSystemIncludeSystem, MemoryIncludeSystem


class FileSystemIncludeSystemTests(unittest.TestCase):
    def test_quoted_search_starts_next_to_includer(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            (root / "src").mkdir()
            (root / "inc").mkdir()
            (root / "src" / "a.h").write_text("local", encoding="utf-8")
            (root / "inc" / "a.h").write_text("system", encoding="utf-8")
            includes = FileSystemIncludeSystem((str(root / "inc"),))
            includer = str(root / "src" / "main.c")
            quoted = includes.resolve("a.h", is_angled=False, includer=includer)
            angled = includes.resolve("a.h", is_angled=True, includer=includer)
            self.assertEqual(includes.read(quoted), "local")
            self.assertEqual(includes.read(angled), "system")

    def test_missing_include(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            includes = FileSystemIncludeSystem((tmpdir,))
            self.assertIsNone(includes.resolve("nope.h", is_angled=True, includer=None))

    def test_pseudo_file_includer_is_not_searched(self) -> None:
        includes = FileSystemIncludeSystem()
        self.assertIsNone(includes.resolve("x.h", is_angled=False, includer="<input>"))


class MemoryIncludeSystemTests(unittest.TestCase):
    def test_resolution_order(self) -> None:
        includes = MemoryIncludeSystem(
            {"src/a.h": "local", "inc/a.h": "system", "b.h": "root"},
            include_dirs=("inc",),
        )
        self.assertEqual(includes.resolve("a.h", is_angled=False, includer="src/main.c"), "src/a.h")
        self.assertEqual(includes.resolve("a.h", is_angled=True, includer="src/main.c"), "inc/a.h")
        self.assertEqual(includes.resolve("b.h", is_angled=True, includer=None), "b.h")
        self.assertIsNone(includes.resolve("c.h", is_angled=False, includer="src/main.c"))

    def test_read_unknown_path(self) -> None:
        with self.assertRaises(FileNotFoundError):
            MemoryIncludeSystem({}).read("x.h")


if __name__ == "__main__":
    unittest.main()
