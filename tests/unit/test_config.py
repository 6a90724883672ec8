"""Tests for config module."""

import unittest
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest.mock import patch

from tasklane.config import (
    ConfigError,
    apply_settings,
    get_machine_config_path,
    get_user_config_path,
    load_default_settings,
    parse_config_file,
    validate_settings,
)
from tasklane.model import Settings


class TestGetUserConfigPath(unittest.TestCase):
    """
    Tests for get_user_config_path function.
    """

    @patch("platformdirs.user_config_dir")
    def test_returns_path_from_platformdirs(self, mock_user_config_dir):
        """
        Test that get_user_config_path uses platformdirs.user_config_dir.
        """
        mock_user_config_dir.return_value = "/home/user/.config/tasklane"
        result = get_user_config_path()
        mock_user_config_dir.assert_called_once_with("tasklane")
        self.assertEqual(result, Path("/home/user/.config/tasklane/config.yml"))

    @patch("platformdirs.user_config_dir")
    def test_returns_correct_path_on_windows(self, mock_user_config_dir):
        # Forward slashes avoid path separator issues in the mock value
        mock_user_config_dir.return_value = "C:/Users/testuser/AppData/Local/tasklane"
        result = get_user_config_path()
        self.assertEqual(result, Path("C:/Users/testuser/AppData/Local/tasklane/config.yml"))


class TestGetMachineConfigPath(unittest.TestCase):
    @patch("platformdirs.site_config_dir")
    def test_returns_path_from_platformdirs(self, mock_site_config_dir):
        """
        Test that get_machine_config_path uses platformdirs.site_config_dir.
        """
        mock_site_config_dir.return_value = "/etc/tasklane"
        result = get_machine_config_path()
        mock_site_config_dir.assert_called_once_with("tasklane")
        self.assertEqual(result, Path("/etc/tasklane/config.yml"))


class TestValidateSettings(unittest.TestCase):
    def test_none_is_empty(self):
        self.assertEqual(validate_settings(None, "test"), {})

    def test_valid_settings(self):
        data = {"cache": False, "cache_dir": "build/cache", "parallelism": 4, "watch_debounce_ms": 100, "shell": True}
        self.assertEqual(validate_settings(data, "test"), data)

    def test_unknown_key(self):
        with self.assertRaises(ConfigError) as cm:
            validate_settings({"paralellism": 4}, "test")
        self.assertIn("paralellism", str(cm.exception))

    def test_wrong_types(self):
        for data in (
            {"cache": "yes"},
            {"parallelism": "4"},
            {"parallelism": True},
            {"watch_debounce_ms": 1.5},
            {"cache_dir": 3},
        ):
            with self.subTest(data=data):
                with self.assertRaises(ConfigError):
                    validate_settings(data, "test")

    def test_negative_integer(self):
        with self.assertRaises(ConfigError):
            validate_settings({"parallelism": -1}, "test")

    def test_not_a_mapping(self):
        with self.assertRaises(ConfigError):
            validate_settings(["cache"], "test")

    def test_apply_settings_returns_copy(self):
        base = Settings()
        updated = apply_settings(base, {"parallelism": 2})
        self.assertEqual(updated.parallelism, 2)
        self.assertEqual(base.parallelism, 0)


class TestParseConfigFile(unittest.TestCase):
    def setUp(self):
        self._tmp = TemporaryDirectory()
        self.dir = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def _write(self, content: str) -> Path:
        path = self.dir / "config.yml"
        path.write_text(content)
        return path

    def test_missing_file(self):
        self.assertEqual(parse_config_file(self.dir / "absent.yml"), {})

    def test_empty_file(self):
        self.assertEqual(parse_config_file(self._write("  \n")), {})

    def test_settings(self):
        path = self._write("settings:\n  parallelism: 8\n  cache: false\n")
        self.assertEqual(parse_config_file(path), {"parallelism": 8, "cache": False})

    def test_other_top_level_keys_rejected(self):
        with self.assertRaises(ConfigError) as cm:
            parse_config_file(self._write("tasks:\n  a:\n    run: echo\n"))
        self.assertIn("tasks", str(cm.exception))

    def test_invalid_yaml(self):
        with self.assertRaises(ConfigError):
            parse_config_file(self._write("settings: [unclosed\n"))

    def test_top_level_must_be_mapping(self):
        with self.assertRaises(ConfigError):
            parse_config_file(self._write("- a\n- b\n"))


class TestLoadDefaultSettings(unittest.TestCase):
    def test_user_overrides_machine(self):
        with TemporaryDirectory() as tmpdir:
            machine = Path(tmpdir) / "machine.yml"
            user = Path(tmpdir) / "user.yml"
            machine.write_text("settings:\n  parallelism: 2\n  watch_debounce_ms: 50\n")
            user.write_text("settings:\n  parallelism: 6\n")

            settings = load_default_settings(machine_config=machine, user_config=user)

            self.assertEqual(settings.parallelism, 6)
            self.assertEqual(settings.watch_debounce_ms, 50)
            self.assertTrue(settings.cache)

    def test_defaults_without_files(self):
        with TemporaryDirectory() as tmpdir:
            settings = load_default_settings(
                machine_config=Path(tmpdir) / "none1.yml", user_config=Path(tmpdir) / "none2.yml"
            )
            self.assertEqual(settings, Settings())


if __name__ == "__main__":
    unittest.main()
