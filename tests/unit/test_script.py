"""Tests for the embedded script engine."""

import threading
import time
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from tasklane.script import ScriptEngine, ScriptError, ScriptHost, semver_bump

from helpers.logging import logger_stub
from helpers.process_runner import MockProcessRunner


class TestSemverBump(unittest.TestCase):
    def test_parts(self):
        self.assertEqual(semver_bump("1.2.3", "major"), "2.0.0")
        self.assertEqual(semver_bump("1.2.3", "minor"), "1.3.0")
        self.assertEqual(semver_bump("1.2.3", "patch"), "1.2.4")

    def test_keeps_v_prefix_and_drops_prerelease(self):
        self.assertEqual(semver_bump("v0.9.1-rc.1+build.5", "patch"), "v0.9.2")

    def test_invalid_version(self):
        for version in ("1.2", "1.2.x", "", "a.b.c"):
            with self.subTest(version=version):
                with self.assertRaises(ScriptError):
                    semver_bump(version, "patch")

    def test_invalid_part(self):
        with self.assertRaises(ScriptError):
            semver_bump("1.0.0", "micro")


class TestScriptHost(unittest.TestCase):
    def setUp(self):
        self._tmp = TemporaryDirectory()
        self.cwd = Path(self._tmp.name)
        self.runner = MockProcessRunner(stdout={"git describe": "v1.0.0\n"}, exit_codes={"false": 1})
        self.host = ScriptHost(self.cwd, {"HOME": "/home/me"}, self.runner)

    def tearDown(self):
        self._tmp.cleanup()

    def test_file_operations_are_relative_to_cwd(self):
        self.host.mkdir("out/nested")
        self.host.write_file("out/nested/a.txt", "hello")

        self.assertEqual((self.cwd / "out" / "nested" / "a.txt").read_text(), "hello")
        self.assertEqual(self.host.read_file("out/nested/a.txt"), "hello")
        self.assertTrue(self.host.file_exists("out"))
        self.assertTrue(self.host.is_dir("out"))
        self.assertTrue(self.host.is_file("out/nested/a.txt"))
        self.assertFalse(self.host.is_file("out"))
        self.assertEqual(self.host.list_dir("out"), [str(self.cwd / "out" / "nested")])

    def test_read_missing_file(self):
        with self.assertRaises(ScriptError):
            self.host.read_file("nope.txt")

    def test_exec_returns_stdout(self):
        self.assertEqual(self.host.exec("git describe"), "v1.0.0\n")
        cmd, cwd, env = self.runner.calls[0]
        self.assertEqual(cwd, self.cwd)
        self.assertEqual(env, {"HOME": "/home/me"})

    def test_exec_failure_raises(self):
        with self.assertRaises(ScriptError) as cm:
            self.host.exec("false")
        self.assertIn("exit code 1", str(cm.exception))

    def test_glob(self):
        (self.cwd / "a.py").write_text("")
        (self.cwd / "b.py").write_text("")
        (self.cwd / "c.txt").write_text("")
        self.assertEqual(self.host.glob("*.py"), [str(self.cwd / "a.py"), str(self.cwd / "b.py")])

    def test_parsers(self):
        self.assertEqual(self.host.parse_json('{"a": [1, 2]}'), {"a": [1, 2]})
        self.assertEqual(self.host.parse_toml('[tool]\nname = "x"\n'), {"tool": {"name": "x"}})
        self.assertEqual(self.host.parse_yaml("a: 1\nb: [x]\n"), {"a": 1, "b": ["x"]})
        self.assertEqual(self.host.parse_json(self.host.to_json({"k": "v"})), {"k": "v"})

    def test_parse_errors(self):
        with self.assertRaises(ScriptError):
            self.host.parse_json("{")
        with self.assertRaises(ScriptError):
            self.host.parse_toml("= nope")
        with self.assertRaises(ScriptError):
            self.host.to_json(object())

    def test_get_env(self):
        self.assertEqual(self.host.get_env("HOME"), "/home/me")
        self.assertEqual(self.host.get_env("MISSING"), "")
        self.assertEqual(self.host.get_env("MISSING", "fallback"), "fallback")

    def test_set_env_reaches_exec_and_get_env(self):
        self.host.set_env("STAGE", "release")

        self.assertEqual(self.host.get_env("STAGE"), "release")
        self.host.exec("git describe")
        _, _, env = self.runner.calls[0]
        self.assertEqual(env["STAGE"], "release")

    def test_rmdir_removes_tree(self):
        self.host.mkdir("build/obj")
        self.host.write_file("build/obj/a.o", "")

        self.host.rmdir("build")

        self.assertFalse((self.cwd / "build").exists())

    def test_rmdir_missing_raises(self):
        with self.assertRaises(ScriptError):
            self.host.rmdir("nope")

    def test_path_helpers(self):
        self.assertEqual(self.host.join_path("src", "main.py"), "src/main.py")
        self.assertEqual(self.host.parent_path("src/pkg/main.py"), "src/pkg")
        self.assertEqual(self.host.parent_path("main.py"), "")
        self.assertEqual(self.host.file_name("src/pkg/main.py"), "main.py")
        self.assertEqual(self.host.extension("dist/app.tar.gz"), "gz")
        self.assertEqual(self.host.extension("Makefile"), "")

    def test_glob_with_empty_pattern_raises(self):
        with self.assertRaises(ScriptError):
            self.host.glob("")


class TestScriptEngine(unittest.TestCase):
    def setUp(self):
        self._tmp = TemporaryDirectory()
        self.cwd = Path(self._tmp.name)
        self.engine = ScriptEngine(logger_stub, MockProcessRunner(stdout={"echo hi": "hi\n"}))

    def tearDown(self):
        self._tmp.cleanup()

    def test_result_value(self):
        outcome = self.engine.execute("result = {'version': semver_bump('1.0.0', 'minor')}", {}, self.cwd)
        self.assertTrue(outcome.success)
        self.assertEqual(outcome.value, {"version": "1.1.0"})

    def test_no_result_is_none(self):
        outcome = self.engine.execute("x = 1", {}, self.cwd)
        self.assertTrue(outcome.success)
        self.assertIsNone(outcome.value)

    def test_print_is_captured(self):
        outcome = self.engine.execute("print('a', 1)\nprint('b')", {}, self.cwd)
        self.assertEqual(outcome.output, "a 1\nb\n")

    def test_env_and_cwd_are_visible(self):
        outcome = self.engine.execute("result = (env['NAME'], cwd)", {"NAME": "x"}, self.cwd)
        self.assertEqual(outcome.value, ("x", str(self.cwd)))

    def test_exec_builtin(self):
        outcome = self.engine.execute("result = exec('echo hi').strip()", {}, self.cwd)
        self.assertEqual(outcome.value, "hi")

    def test_exception_reports_line(self):
        outcome = self.engine.execute("a = 1\nb = 2\nraise ValueError('bad value')\n", {}, self.cwd)
        self.assertFalse(outcome.success)
        self.assertEqual(outcome.error, "ValueError: bad value (line 3)")

    def test_builtin_error_fails_script(self):
        outcome = self.engine.execute("read_file('missing.txt')", {}, self.cwd)
        self.assertFalse(outcome.success)
        self.assertIn("missing.txt", outcome.error)

    def test_syntax_error(self):
        outcome = self.engine.execute("def broken(:\n", {}, self.cwd)
        self.assertFalse(outcome.success)
        self.assertIn("SyntaxError", outcome.error)

    def test_timeout_aborts_infinite_loop(self):
        start = time.monotonic()
        outcome = self.engine.execute("while True:\n    pass\n", {}, self.cwd, timeout=0.1)
        self.assertLess(time.monotonic() - start, 2.0)
        self.assertFalse(outcome.success)
        self.assertTrue(outcome.timed_out)

    def test_timeout_cannot_be_swallowed(self):
        source = "while True:\n    try:\n        pass\n    except Exception:\n        pass\n"
        outcome = self.engine.execute(source, {}, self.cwd, timeout=0.1)
        self.assertTrue(outcome.timed_out)

    def test_timeout_while_blocked_in_sleep(self):
        start = time.monotonic()
        outcome = self.engine.execute("import time\ntime.sleep(3)\n", {}, self.cwd, timeout=0.5)
        self.assertLess(time.monotonic() - start, 2.0)
        self.assertFalse(outcome.success)
        self.assertTrue(outcome.timed_out)

    def test_cancellation(self):
        cancel = threading.Event()
        threading.Timer(0.05, cancel.set).start()
        outcome = self.engine.execute("while True:\n    pass\n", {}, self.cwd, cancel_event=cancel)
        self.assertTrue(outcome.cancelled)
        self.assertFalse(outcome.success)

    def test_host_factory_is_injectable(self):
        class FixedHost(ScriptHost):
            def read_file(self, path):
                return "stubbed"

        engine = ScriptEngine(logger_stub, MockProcessRunner(), host_factory=FixedHost)
        outcome = engine.execute("result = read_file('anything')", {}, self.cwd)
        self.assertEqual(outcome.value, "stubbed")

    def test_set_env_is_visible_through_env(self):
        outcome = self.engine.execute("set_env('MODE', 'fast')\nresult = env['MODE']", {}, self.cwd)
        self.assertEqual(outcome.value, "fast")

    def test_system_exit_fails_script(self):
        outcome = self.engine.execute("raise SystemExit(3)", {}, self.cwd)
        self.assertFalse(outcome.success)
        self.assertIn("exit(3)", outcome.error)


if __name__ == "__main__":
    unittest.main()
