"""Configuration loader for the replay engine."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

ENV_PREFIX = "REPLAY_"

DEFAULTS: Dict[str, Any] = {
    "max_retries": 3,
    "retry_delay_ms": 500,
    "retry_enabled": True,
    "action_timeout_ms": 30000,
    "skip_inputs_without_value": True,
    "case_sensitive_match": True,
    "pause_on_error": False,
    "max_log_length": 0,
    "log_root": "runs",
    "state_path": "state/session.json",
    "surface_url": "http://127.0.0.1:7001",
    "host": "0.0.0.0",
    "port": 7000,
    "command_timeout_s": 60.0,
}


def _as_bool(value: Any) -> bool:
    return str(value).strip().lower() in {"true", "1", "yes", "on"}


@dataclass(slots=True)
class EngineConfig:
    max_retries: int = DEFAULTS["max_retries"]
    retry_delay_ms: int = DEFAULTS["retry_delay_ms"]
    retry_enabled: bool = DEFAULTS["retry_enabled"]
    action_timeout_ms: int = DEFAULTS["action_timeout_ms"]
    skip_inputs_without_value: bool = DEFAULTS["skip_inputs_without_value"]
    case_sensitive_match: bool = DEFAULTS["case_sensitive_match"]
    pause_on_error: bool = DEFAULTS["pause_on_error"]
    max_log_length: int = DEFAULTS["max_log_length"]
    log_root: Path = field(default_factory=lambda: Path(DEFAULTS["log_root"]))
    state_path: Path = field(default_factory=lambda: Path(DEFAULTS["state_path"]))
    surface_url: str = DEFAULTS["surface_url"]
    host: str = DEFAULTS["host"]
    port: int = DEFAULTS["port"]
    command_timeout_s: float = DEFAULTS["command_timeout_s"]

    @property
    def retry_delay_s(self) -> float:
        return self.retry_delay_ms / 1000

    @property
    def action_timeout_s(self) -> float:
        return self.action_timeout_ms / 1000

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any]) -> "EngineConfig":
        data = dict(DEFAULTS)
        data.update(mapping)
        return cls(
            max_retries=int(data["max_retries"]),
            retry_delay_ms=int(data["retry_delay_ms"]),
            retry_enabled=_as_bool(data["retry_enabled"]),
            action_timeout_ms=int(data["action_timeout_ms"]),
            skip_inputs_without_value=_as_bool(data["skip_inputs_without_value"]),
            case_sensitive_match=_as_bool(data["case_sensitive_match"]),
            pause_on_error=_as_bool(data["pause_on_error"]),
            max_log_length=int(data["max_log_length"]),
            log_root=Path(data["log_root"]),
            state_path=Path(data["state_path"]),
            surface_url=str(data["surface_url"]).rstrip("/"),
            host=str(data["host"]),
            port=int(data["port"]),
            command_timeout_s=float(data["command_timeout_s"]),
        )


def _load_toml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("rb") as fh:
        return tomllib.load(fh)


def load_config(config_path: Path | None = None) -> EngineConfig:
    """Load configuration from environment, optional TOML file, and defaults."""

    env_map: Dict[str, Any] = {}
    for key, value in os.environ.items():
        if key.startswith(ENV_PREFIX):
            name = key[len(ENV_PREFIX):].lower()
            if name in DEFAULTS:
                env_map[name] = value

    path = config_path or Path("config.toml")
    file_map = _load_toml(path).get("engine", {})

    merged = {**file_map, **env_map}
    return EngineConfig.from_mapping(merged)
