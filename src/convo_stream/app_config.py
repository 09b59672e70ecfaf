from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

from convo_stream.connection_manager import (
    DEFAULT_INITIAL_RETRY_DELAY,
    DEFAULT_MAX_CONNECTIONS,
    DEFAULT_MAX_RETRIES,
)

TOKEN_ENV_VAR = "CONVO_STREAM_TOKEN"


@dataclass
class AppConfig:
    base_url: str
    max_concurrent_connections: int
    max_retries: int
    initial_retry_delay: float
    request_timeout: float
    log_level: str
    log_consumers: list | None


@dataclass
class RuntimeEnv:
    token: str | None


def load_json_config(path: Path | None = None) -> dict:
    config_path = path or Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def parse_app_config(config: dict) -> AppConfig:
    return AppConfig(
        base_url=str(config.get("BaseUrl", "http://localhost:3001")).rstrip("/"),
        max_concurrent_connections=max(1, int(config.get("MaxConcurrentConnections", DEFAULT_MAX_CONNECTIONS))),
        max_retries=max(0, int(config.get("MaxRetries", DEFAULT_MAX_RETRIES))),
        initial_retry_delay=float(config.get("InitialRetryDelayMs", DEFAULT_INITIAL_RETRY_DELAY * 1000)) / 1000,
        request_timeout=float(config.get("RequestTimeoutSeconds", 30)),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env() -> RuntimeEnv:
    return RuntimeEnv(token=os.environ.get(TOKEN_ENV_VAR) or None)
