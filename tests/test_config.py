import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from codey.core.config import CONFIG_ENV, CONFIG_NAME, find_config, load_config
from codey.core.execution import WANDBOX_URL


class ConfigTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def test_defaults(self):
        path = self.dir / "codey.yaml"
        path.write_text("", encoding="utf-8")
        cfg = load_config(path)
        self.assertEqual(cfg.problems_path, str((self.dir / "problems").resolve()))
        self.assertEqual(cfg.challenge_duration, 1800)
        self.assertEqual(cfg.verification_timeout, 60)
        self.assertEqual(cfg.execution.url, WANDBOX_URL)
        self.assertEqual(cfg.execution.compilers, {})
        self.assertEqual(cfg.log_level, "INFO")

    def test_values(self):
        path = self.dir / "codey.yaml"
        path.write_text(
            "problems:\n  path: defs\n"
            "challenge:\n  duration_seconds: 90\n"
            "verification:\n  timeout_seconds: 0\n"
            "execution:\n  url: http://localhost:9000/compile\n  compilers:\n    python: cpython-head\n"
            "audit:\n  path: /var/log/codey.jsonl\n"
            "log_level: debug\n",
            encoding="utf-8",
        )
        cfg = load_config(path)
        self.assertEqual(cfg.problems_path, str((self.dir / "defs").resolve()))
        self.assertEqual(cfg.challenge_duration, 90)
        self.assertIsNone(cfg.verification_timeout)
        self.assertEqual(cfg.execution.url, "http://localhost:9000/compile")
        self.assertEqual(cfg.execution.compilers, {"python": "cpython-head"})
        self.assertEqual(cfg.audit_path, "/var/log/codey.jsonl")
        self.assertEqual(cfg.log_level, "DEBUG")

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            load_config(self.dir / "nope.yaml")

    def test_not_a_mapping(self):
        path = self.dir / "codey.yaml"
        path.write_text("- python\n- java\n", encoding="utf-8")
        with self.assertRaises(ValueError):
            load_config(path)


class FindConfigTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self._tmp.name).resolve()
        self.nested = self.dir / "a" / "b"
        self.nested.mkdir(parents=True)
        env = mock.patch.dict(os.environ)
        env.start()
        self.addCleanup(env.stop)
        os.environ.pop(CONFIG_ENV, None)

    def tearDown(self):
        self._tmp.cleanup()

    def test_explicit_path_is_taken_as_given(self):
        self.assertEqual(find_config("conf/other.yaml", cwd=self.nested), Path("conf/other.yaml"))

    def test_found_in_a_parent(self):
        (self.dir / "a" / CONFIG_NAME).write_text("", encoding="utf-8")
        self.assertEqual(find_config(CONFIG_NAME, cwd=self.nested), self.dir / "a" / CONFIG_NAME)

    def test_nearest_one_wins(self):
        (self.dir / "a" / CONFIG_NAME).write_text("", encoding="utf-8")
        (self.nested / CONFIG_NAME).write_text("", encoding="utf-8")
        self.assertEqual(find_config(cwd=self.nested), self.nested / CONFIG_NAME)

    def test_environment_variable_first(self):
        (self.nested / CONFIG_NAME).write_text("", encoding="utf-8")
        other = self.dir / "elsewhere.yaml"
        other.write_text("", encoding="utf-8")
        os.environ[CONFIG_ENV] = str(other)
        self.assertEqual(find_config(CONFIG_NAME, cwd=self.nested), other)

    def test_nothing_found_points_at_cwd(self):
        self.assertEqual(find_config(cwd=self.nested), self.nested / CONFIG_NAME)


if __name__ == "__main__":
    unittest.main()
