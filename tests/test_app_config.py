import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from convo_stream.app_config import TOKEN_ENV_VAR, load_json_config, parse_app_config, resolve_runtime_env


class AppConfigTests(unittest.TestCase):
    def test_defaults(self) -> None:
        config = parse_app_config({})
        self.assertEqual("http://localhost:3001", config.base_url)
        self.assertEqual(5, config.max_concurrent_connections)
        self.assertEqual(3, config.max_retries)
        self.assertEqual(1.0, config.initial_retry_delay)
        self.assertEqual(30.0, config.request_timeout)
        self.assertEqual("INFO", config.log_level)
        self.assertIsNone(config.log_consumers)

    def test_overrides(self) -> None:
        config = parse_app_config(
            {
                "BaseUrl": "https://agents.example.com/",
                "MaxConcurrentConnections": 2,
                "MaxRetries": 0,
                "InitialRetryDelayMs": 250,
                "LogLevel": "DEBUG",
                "LogConsumers": [{"type": "console"}],
            }
        )
        self.assertEqual("https://agents.example.com", config.base_url)
        self.assertEqual(2, config.max_concurrent_connections)
        self.assertEqual(0, config.max_retries)
        self.assertEqual(0.25, config.initial_retry_delay)
        self.assertEqual("DEBUG", config.log_level)
        self.assertEqual([{"type": "console"}], config.log_consumers)

    def test_limits_are_clamped(self) -> None:
        config = parse_app_config({"MaxConcurrentConnections": 0, "MaxRetries": -2})
        self.assertEqual(1, config.max_concurrent_connections)
        self.assertEqual(0, config.max_retries)

    def test_load_json_config(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "config.json"
            self.assertEqual({}, load_json_config(path))
            path.write_text(json.dumps({"MaxRetries": 7}))
            self.assertEqual({"MaxRetries": 7}, load_json_config(path))

    def test_token_from_environment(self) -> None:
        with patch.dict(os.environ, {TOKEN_ENV_VAR: "secret"}):
            self.assertEqual("secret", resolve_runtime_env().token)
        with patch.dict(os.environ, {TOKEN_ENV_VAR: ""}):
            self.assertIsNone(resolve_runtime_env().token)


if __name__ == "__main__":
    unittest.main()
