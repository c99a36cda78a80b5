"""Tests for config loading and validation."""

import os
import tempfile
import unittest
from dataclasses import replace
from unittest.mock import patch

from allowscan.config import AdjusterConfig, EngineConfig, load_config
from allowscan.errors import ConfigError


class TestLoadConfig(unittest.TestCase):
    """Verify defaults, YAML overlay and env fallback."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = self._tmp.name

    def tearDown(self):
        self._tmp.cleanup()

    def _write(self, text):
        path = os.path.join(self.dir, "config.yaml")
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
        return path

    @patch.dict(os.environ, {}, clear=True)
    def test_defaults_without_file(self):
        config = load_config()
        self.assertEqual(config.rate.rps, 10.0)
        self.assertEqual(config.adjuster.max_concurrency, 50)
        self.assertEqual(config.retry.max_retries, 3)
        self.assertIsNone(config.alert.bot_token)
        self.assertIsNone(config.deadline_secs)

    @patch.dict(os.environ, {}, clear=True)
    def test_yaml_overlays_defaults(self):
        path = self._write(
            "rate:\n"
            "  rps: 4\n"
            "adjuster:\n"
            "  max_concurrency: 12\n"
            "  initial_concurrency: 6\n"
            "probe:\n"
            "  markers:\n"
            "    'all clear': success\n"
            "deadline_secs: 120\n"
        )
        config = load_config(path)
        self.assertEqual(config.rate.rps, 4)
        self.assertEqual(config.adjuster.max_concurrency, 12)
        self.assertEqual(config.adjuster.initial_concurrency, 6)
        self.assertEqual(config.adjuster.min_concurrency, 2)
        self.assertEqual(config.probe.markers, {"all clear": "success"})
        self.assertEqual(config.deadline_secs, 120)

    def test_empty_file_gives_defaults(self):
        config = load_config(self._write(""))
        self.assertEqual(config.rate, EngineConfig().rate)

    def test_unknown_key_is_rejected(self):
        with self.assertRaises(ConfigError):
            load_config(self._write("rate:\n  rsp: 4\n"))

    def test_unknown_section_is_rejected(self):
        with self.assertRaises(ConfigError):
            load_config(self._write("metrics:\n  enabled: true\n"))

    def test_missing_file(self):
        with self.assertRaises(ConfigError):
            load_config(os.path.join(self.dir, "nope.yaml"))

    def test_malformed_yaml(self):
        with self.assertRaises(ConfigError):
            load_config(self._write("rate: [unclosed\n"))

    @patch.dict(os.environ, {"ALLOWSCAN_TELEGRAM_TOKEN": "env-token", "ALLOWSCAN_TELEGRAM_CHAT_ID": "99"})
    def test_env_fallback_for_alert_credentials(self):
        config = load_config(self._write("alert:\n  enabled: true\n"))
        self.assertEqual(config.alert.bot_token, "env-token")
        self.assertEqual(config.alert.chat_id, "99")

    @patch.dict(os.environ, {"ALLOWSCAN_TELEGRAM_TOKEN": "env-token"})
    def test_file_credentials_win_over_env(self):
        config = load_config(self._write("alert:\n  bot_token: file-token\n"))
        self.assertEqual(config.alert.bot_token, "file-token")


class TestValidate(unittest.TestCase):
    def test_bad_concurrency_bounds(self):
        config = replace(EngineConfig(), adjuster=AdjusterConfig(min_concurrency=10, max_concurrency=5))
        with self.assertRaises(ConfigError):
            config.validate()

    def test_bad_thresholds(self):
        config = replace(EngineConfig(), adjuster=AdjusterConfig(low_threshold=0.95, high_threshold=0.9))
        with self.assertRaises(ConfigError):
            config.validate()

    def test_bad_unknown_bucket(self):
        config = EngineConfig()
        config = replace(config, output=replace(config.output, unknown_bucket="maybe"))
        with self.assertRaises(ConfigError):
            config.validate()

    def test_negative_retries(self):
        config = EngineConfig()
        config = replace(config, retry=replace(config.retry, max_retries=-1))
        with self.assertRaises(ConfigError):
            config.validate()


if __name__ == "__main__":
    unittest.main()
