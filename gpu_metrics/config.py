# gpu_metrics/config.py
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .errors import ConfigError

# *** How to override at runtime:
# export GPU_METRICS_CONFIG=/path/to/collector.json   (collector)
# export PORT=9090 GPU_METRICS_DB=/var/lib/gpu-metrics/metrics.db   (server)
# export GPU_METRICS_KEEP_DAYS=30   (server, prune rows older than 30 days at start-up)
# export GPU_METRICS_LOG_LEVEL=DEBUG

DEFAULT_CONFIG_PATH = Path("/etc/gpu-metrics/config.json")
DEFAULT_COLLECT_INTERVAL = 60  # seconds
LOG_FORMAT = "%(asctime)s  %(levelname)s %(message)s"


def setup_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or os.getenv("GPU_METRICS_LOG_LEVEL", "INFO")).upper(),
        format=LOG_FORMAT,
    )


# -----------------------------
# Collector
# -----------------------------

@dataclass(frozen=True)
class CollectorConfig:
    instance_id: str
    api_key: str
    metrics_url: str
    collect_interval: float = DEFAULT_COLLECT_INTERVAL


def load_collector_config(path: str | os.PathLike | None = None) -> CollectorConfig:
    """Read the collector's JSON config file.

    Lookup order: explicit `path`, then $GPU_METRICS_CONFIG, then
    /etc/gpu-metrics/config.json.
    """
    config_path = Path(path or os.getenv("GPU_METRICS_CONFIG") or DEFAULT_CONFIG_PATH)
    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"failed to read config file {config_path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"failed to parse config: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError("failed to parse config: expected a JSON object")

    for key in ("instance_id", "api_key", "metrics_url"):
        if not raw.get(key):
            raise ConfigError(f"{key} is required")

    interval = raw.get("collect_interval_seconds") or 0
    try:
        interval = float(interval)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"collect_interval_seconds must be a number, got {interval!r}") from exc

    return CollectorConfig(
        instance_id=str(raw["instance_id"]),
        api_key=str(raw["api_key"]),
        metrics_url=str(raw["metrics_url"]),
        collect_interval=interval if interval > 0 else DEFAULT_COLLECT_INTERVAL,
    )


# -----------------------------
# Server
# -----------------------------

@dataclass(frozen=True)
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080
    db_path: Path = Path("gpu_metrics.db")
    retention_days: int = 0  # 0 = keep everything


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from exc


def load_server_config() -> ServerConfig:
    return ServerConfig(
        host=os.getenv("HOST", "0.0.0.0"),
        port=_int_env("PORT", 8080),
        db_path=Path(os.getenv("GPU_METRICS_DB", "gpu_metrics.db")),
        retention_days=_int_env("GPU_METRICS_KEEP_DAYS", 0),
    )
