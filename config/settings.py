"""
Configuration loader for the product-sync service.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class DeliveryConfig:
    endpoint_url: str = "https://httpbin.org/post"
    api_token: str = "TEST_TOKEN"
    timeout_seconds: float = 10.0


@dataclass
class QueueConfig:
    store_backend: str = "file"             # "file" | "memory"
    base_dir: str = "./var/queue"
    pending_dir: str = "pending"
    work_dir: str = "work"
    dlq_dir: str = "dlq"
    max_retries: int = 3
    backoff_seconds: list[float] = field(default_factory=lambda: [1, 2, 4])
    poll_interval: float = 0.2              # seconds between empty polls
    max_idle_polls: int = 10                # bounded-run cutoff, 0 = run forever
    inflight_timeout_seconds: float = 300   # orphan recovery threshold, 0 = off
    recovery_interval_seconds: float = 60
    embedded_worker: bool = False           # run a worker inside the API process


@dataclass
class LoggingConfig:
    level: str = "INFO"
    format: str = "console"                 # "console" | "json"
    log_file: str = ""


@dataclass
class Settings:
    app_name: str = "product-sync"
    debug: bool = False
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "PRODUCT_SYNC_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)

        if "delivery" in raw:
            d = raw["delivery"]
            settings.delivery = DeliveryConfig(
                endpoint_url=d.get("endpoint_url", settings.delivery.endpoint_url),
                api_token=d.get("api_token", settings.delivery.api_token),
                timeout_seconds=float(d.get("timeout_seconds", settings.delivery.timeout_seconds)),
            )

        if "queue" in raw:
            q = raw["queue"]
            defaults = QueueConfig()
            settings.queue = QueueConfig(
                store_backend=q.get("store_backend", defaults.store_backend),
                base_dir=q.get("base_dir", defaults.base_dir),
                pending_dir=q.get("pending_dir", defaults.pending_dir),
                work_dir=q.get("work_dir", defaults.work_dir),
                dlq_dir=q.get("dlq_dir", defaults.dlq_dir),
                max_retries=int(q.get("max_retries", defaults.max_retries)),
                backoff_seconds=[float(s) for s in q.get("backoff_seconds", defaults.backoff_seconds)],
                poll_interval=float(q.get("poll_interval", defaults.poll_interval)),
                max_idle_polls=int(q.get("max_idle_polls", defaults.max_idle_polls)),
                inflight_timeout_seconds=float(
                    q.get("inflight_timeout_seconds", defaults.inflight_timeout_seconds)
                ),
                recovery_interval_seconds=float(
                    q.get("recovery_interval_seconds", defaults.recovery_interval_seconds)
                ),
                embedded_worker=bool(q.get("embedded_worker", defaults.embedded_worker)),
            )

        if "logging" in raw:
            lg = raw["logging"]
            settings.logging = LoggingConfig(
                level=lg.get("level", "INFO"),
                format=lg.get("format", "console"),
                log_file=lg.get("log_file", ""),
            )

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings (for testing)."""
    global _settings
    _settings = None
