from __future__ import annotations

import os
from pathlib import Path

import pytest

from orchestrator.config import EngineConfig, load_config


def test_defaults_without_file_or_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith("REPLAY_"):
            monkeypatch.delenv(key)

    config = load_config(tmp_path / "missing.toml")

    assert config == EngineConfig()
    assert config.retry_delay_s == 0.5
    assert config.action_timeout_s == 30.0


def test_env_overrides_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "config.toml"
    path.write_text(
        "[engine]\nmax_retries = 5\ncase_sensitive_match = false\nlog_root = 'logs'\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("REPLAY_MAX_RETRIES", "1")
    monkeypatch.setenv("REPLAY_RETRY_ENABLED", "no")
    monkeypatch.setenv("REPLAY_UNRELATED", "ignored")

    config = load_config(path)

    assert config.max_retries == 1
    assert config.retry_enabled is False
    assert config.case_sensitive_match is False
    assert config.log_root == Path("logs")
