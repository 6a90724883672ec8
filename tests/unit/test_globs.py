"""Tests for glob expansion and matching."""

import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from tasklane.globs import InvalidPattern, PatternMatcher, expand_globs, glob_match, has_magic


class TestExpandGlobs(unittest.TestCase):
    def setUp(self):
        self._tmp = TemporaryDirectory()
        self.root = Path(self._tmp.name)
        for relative in ("src/b.py", "src/a.py", "src/pkg/c.py", "src/notes.txt"):
            path = self.root / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(relative)

    def tearDown(self):
        self._tmp.cleanup()

    def test_sorted_and_deduplicated(self):
        result = expand_globs(["src/*.py", "src/a.py"], self.root)
        self.assertEqual(result, [self.root / "src" / "a.py", self.root / "src" / "b.py"])

    def test_recursive(self):
        result = expand_globs(["src/**/*.py"], self.root)
        self.assertEqual(
            [p.relative_to(self.root).as_posix() for p in result],
            ["src/a.py", "src/b.py", "src/pkg/c.py"],
        )

    def test_files_only(self):
        self.assertEqual(expand_globs(["src/*"], self.root, files_only=True)[-1].name, "notes.txt")
        self.assertIn(self.root / "src" / "pkg", expand_globs(["src/*"], self.root, files_only=False))

    def test_absolute_pattern(self):
        result = expand_globs([str(self.root / "src" / "*.txt")], Path("/elsewhere"))
        self.assertEqual(result, [self.root / "src" / "notes.txt"])

    def test_trailing_double_star_includes_files(self):
        result = expand_globs(["src/**"], self.root)
        self.assertEqual(
            [p.relative_to(self.root).as_posix() for p in result],
            ["src/a.py", "src/b.py", "src/notes.txt", "src/pkg/c.py"],
        )

    def test_hidden_files_are_included(self):
        (self.root / "src" / ".env").write_text("")
        self.assertIn(self.root / "src" / ".env", expand_globs(["src/**"], self.root))

    def test_empty_pattern_raises(self):
        for pattern in ("", "   "):
            with self.assertRaises(InvalidPattern) as cm:
                expand_globs(["src/*.py", pattern], self.root)
            self.assertEqual(cm.exception.pattern, pattern)

    def test_no_matches(self):
        self.assertEqual(expand_globs(["*.rs"], self.root), [])


class TestGlobMatch(unittest.TestCase):
    def test_single_star_stays_in_segment(self):
        self.assertTrue(glob_match("src/*.c", "src/a.c"))
        self.assertFalse(glob_match("src/*.c", "src/sub/a.c"))

    def test_double_star_spans_segments(self):
        self.assertTrue(glob_match("src/**/*.c", "src/a.c"))
        self.assertTrue(glob_match("src/**/*.c", "src/x/y/a.c"))
        self.assertTrue(glob_match("**", "anything/at/all"))

    def test_question_mark_and_classes(self):
        self.assertTrue(glob_match("file?.txt", "file1.txt"))
        self.assertFalse(glob_match("file?.txt", "file10.txt"))
        self.assertTrue(glob_match("[ab].c", "a.c"))
        self.assertFalse(glob_match("[!ab].c", "a.c"))

    def test_literal_characters_are_escaped(self):
        self.assertTrue(glob_match("a+b.(c)", "a+b.(c)"))
        self.assertFalse(glob_match("a.c", "abc"))

    def test_has_magic(self):
        self.assertTrue(has_magic("*.c"))
        self.assertFalse(has_magic("dist/app"))


class TestPatternMatcher(unittest.TestCase):
    def test_relative_patterns_are_anchored(self):
        matcher = PatternMatcher()
        matcher.add(Path("/project/docs"), "./*.md")

        self.assertTrue(matcher.matches(Path("/project/docs/readme.md")))
        self.assertFalse(matcher.matches(Path("/project/readme.md")))
        self.assertEqual(matcher.patterns, ["*.md"])

    def test_absolute_patterns(self):
        matcher = PatternMatcher()
        matcher.add(Path("/project"), "/etc/app/*.conf")
        self.assertTrue(matcher.matches(Path("/etc/app/main.conf")))

    def test_empty_matcher_is_falsy(self):
        self.assertFalse(PatternMatcher())

    def test_ignored_paths(self):
        matcher = PatternMatcher(ignored=[Path("/project/.tasklane")])
        matcher.add(Path("/project"), "**")
        self.assertTrue(matcher.is_ignored(Path("/project/.tasklane/cache/a.json")))
        self.assertFalse(matcher.matches(Path("/project/.tasklane/cache/a.json")))
        self.assertTrue(matcher.matches(Path("/project/src/a.c")))


if __name__ == "__main__":
    unittest.main()
