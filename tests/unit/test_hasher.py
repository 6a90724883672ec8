"""Tests for fingerprint computation."""

import os
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest.mock import patch

from tasklane.hasher import (
    FINGERPRINT_LENGTH,
    FingerprintError,
    InvalidSourcePattern,
    SourceUnreadable,
    SourceVanished,
    compute_fingerprint,
    fingerprint_task,
    hash_file,
    resolve_sources,
)
from tasklane.model import Task


class TestFingerprintDeterminism(unittest.TestCase):
    def setUp(self):
        self._tmp = TemporaryDirectory()
        self.root = Path(self._tmp.name)
        (self.root / "src").mkdir()
        (self.root / "src" / "a.txt").write_text("alpha")
        (self.root / "src" / "b.txt").write_text("beta")

    def tearDown(self):
        self._tmp.cleanup()

    def _task(self, **kwargs) -> Task:
        kwargs.setdefault("run", ["make"])
        kwargs.setdefault("sources", ["src/*.txt"])
        return Task(name="build", **kwargs)

    def test_unchanged_inputs_give_identical_fingerprint(self):
        task = self._task()
        first = fingerprint_task(task, {"A": "1"}, self.root)
        second = fingerprint_task(task, {"A": "1"}, self.root)
        self.assertEqual(first, second)
        self.assertEqual(len(first), FINGERPRINT_LENGTH)

    def test_single_byte_change_changes_fingerprint(self):
        task = self._task()
        before = fingerprint_task(task, {}, self.root)
        (self.root / "src" / "b.txt").write_text("betb")
        after = fingerprint_task(task, {}, self.root)
        self.assertNotEqual(before, after)

    def test_source_order_does_not_matter(self):
        task = self._task()
        files = resolve_sources(task, self.root)
        self.assertEqual(
            compute_fingerprint(task, {}, files, base_path=self.root),
            compute_fingerprint(task, {}, list(reversed(files)), base_path=self.root),
        )

    def test_new_source_file_changes_fingerprint(self):
        task = self._task()
        before = fingerprint_task(task, {}, self.root)
        (self.root / "src" / "c.txt").write_text("gamma")
        self.assertNotEqual(before, fingerprint_task(task, {}, self.root))

    def test_config_fields_affect_fingerprint(self):
        base = fingerprint_task(self._task(), {}, self.root)
        variants = [
            self._task(run=["make all"]),
            self._task(env={"MODE": "release"}),
            self._task(cwd="src"),
            self._task(shell=True),
        ]
        for variant in variants:
            with self.subTest(variant=variant):
                self.assertNotEqual(base, fingerprint_task(variant, {}, self.root))

    def test_global_env_affects_fingerprint(self):
        task = self._task()
        self.assertNotEqual(
            fingerprint_task(task, {"CI": "1"}, self.root),
            fingerprint_task(task, {"CI": "0"}, self.root),
        )

    def test_task_env_overrides_global_env(self):
        overridden = self._task(env={"MODE": "debug"})
        plain = self._task()
        self.assertEqual(
            fingerprint_task(overridden, {"MODE": "release"}, self.root),
            fingerprint_task(plain, {"MODE": "debug"}, self.root),
        )

    def test_env_order_does_not_matter(self):
        first = self._task(env={"A": "1", "B": "2"})
        second = self._task(env={"B": "2", "A": "1"})
        self.assertEqual(
            fingerprint_task(first, {}, self.root),
            fingerprint_task(second, {}, self.root),
        )

    def test_shell_default_applies_when_task_does_not_set_it(self):
        task = self._task()
        self.assertEqual(
            fingerprint_task(task, {}, self.root, shell_default=True),
            fingerprint_task(self._task(shell=True), {}, self.root),
        )

    def test_empty_glob_is_config_only(self):
        task = self._task(sources=["nothing/*.rs"])
        before = fingerprint_task(task, {}, self.root)
        (self.root / "src" / "a.txt").write_text("changed")
        self.assertEqual(before, fingerprint_task(task, {}, self.root))

    def test_moving_project_keeps_fingerprint(self):
        task = self._task()
        before = fingerprint_task(task, {}, self.root)
        with TemporaryDirectory() as other:
            moved = Path(other) / "moved"
            os.rename(self.root, moved)
            try:
                self.assertEqual(before, fingerprint_task(task, {}, moved))
            finally:
                os.rename(moved, self.root)

    def test_directory_wildcard_source_tracks_file_edits(self):
        (self.root / "src" / "pkg").mkdir()
        (self.root / "src" / "pkg" / "deep.txt").write_text("deep")
        task = self._task(sources=["src/**"])

        before = fingerprint_task(task, {}, self.root)
        (self.root / "src" / "a.txt").write_text("alphb")
        after_top = fingerprint_task(task, {}, self.root)
        (self.root / "src" / "pkg" / "deep.txt").write_text("deeq")
        after_nested = fingerprint_task(task, {}, self.root)

        self.assertNotEqual(before, after_top)
        self.assertNotEqual(after_top, after_nested)

    def test_ignored_directory_is_not_a_source(self):
        cache_dir = self.root / ".tasklane" / "cache"
        cache_dir.mkdir(parents=True)
        task = self._task(sources=["**"])

        before = fingerprint_task(task, {}, self.root, ignored=[cache_dir])
        (cache_dir / "entry.json").write_text("{}")

        self.assertEqual(before, fingerprint_task(task, {}, self.root, ignored=[cache_dir]))
        self.assertNotIn(cache_dir / "entry.json", resolve_sources(task, self.root, ignored=[cache_dir]))


class TestSourceErrors(unittest.TestCase):
    def test_vanished_source_is_an_error(self):
        with TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            path = root / "gone.txt"
            path.write_text("x")
            task = Task(name="t", run=["true"], sources=["gone.txt"])
            files = resolve_sources(task, root)
            path.unlink()
            with self.assertRaises(SourceVanished) as cm:
                compute_fingerprint(task, {}, files, base_path=root)
            self.assertEqual(cm.exception.path, path)

    def test_unreadable_source_is_an_error(self):
        with TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "locked.txt"
            path.write_text("x")
            with patch("builtins.open", side_effect=PermissionError(13, "Permission denied")):
                with self.assertRaises(SourceUnreadable) as cm:
                    hash_file(path)
            self.assertIn("Permission denied", str(cm.exception))

    def test_empty_pattern_is_a_fingerprint_error(self):
        with TemporaryDirectory() as tmpdir:
            task = Task(name="t", run=["true"], sources=[""])
            with self.assertRaises(InvalidSourcePattern) as cm:
                fingerprint_task(task, {}, Path(tmpdir))
            self.assertIsInstance(cm.exception, FingerprintError)
            self.assertEqual(cm.exception.pattern, "")

    def test_hash_file_is_content_hash(self):
        with TemporaryDirectory() as tmpdir:
            first = Path(tmpdir) / "one"
            second = Path(tmpdir) / "two"
            first.write_bytes(b"same")
            second.write_bytes(b"same")
            self.assertEqual(hash_file(first), hash_file(second))


if __name__ == "__main__":
    unittest.main()
