from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from markbrowse.config import CONFIG_ENV, ConfigError, ServiceConfig, load_config


def write_config(tmp_path: Path, payload: object) -> Path:
    path = tmp_path / "markbrowse.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_defaults_without_file(monkeypatch) -> None:
    monkeypatch.delenv(CONFIG_ENV, raising=False)

    config = load_config()

    assert config == ServiceConfig()
    assert config.monitor_latency == 0.5
    assert config.show_hidden_files is True


def test_camel_case_keys(tmp_path) -> None:
    path = write_config(
        tmp_path,
        {
            "monitorLatency": 0.25,
            "showHiddenFiles": False,
            "directoriesFirst": True,
            "maxScopedAccesses": 4,
            "logPath": str(tmp_path / "logs" / "core.log"),
            "logLevel": "debug",
        },
    )

    config = load_config(path)

    assert config.monitor_latency == 0.25
    assert config.show_hidden_files is False
    assert config.directories_first is True
    assert config.max_scoped_accesses == 4
    assert config.log_path == tmp_path / "logs" / "core.log"
    assert config.logging_level == logging.DEBUG


def test_environment_variable_is_used(tmp_path, monkeypatch) -> None:
    path = write_config(tmp_path, {"monitor_latency": 1})
    monkeypatch.setenv(CONFIG_ENV, str(path))

    assert load_config().monitor_latency == 1.0


@pytest.mark.parametrize(
    ("payload", "key"),
    [
        ({"monitorLatency": -1}, "monitorLatency"),
        ({"monitorLatency": True}, "monitorLatency"),
        ({"showHiddenFiles": "yes"}, "showHiddenFiles"),
        ({"maxScopedAccesses": 0}, "maxScopedAccesses"),
        ({"logLevel": "LOUD"}, "logLevel"),
        ({"colour": "blue"}, "colour"),
    ],
)
def test_invalid_values(tmp_path, payload, key) -> None:
    with pytest.raises(ConfigError) as excinfo:
        load_config(write_config(tmp_path, payload))
    assert excinfo.value.key == key


def test_invalid_json(tmp_path) -> None:
    path = tmp_path / "broken.json"
    path.write_text("{", encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(path)


def test_missing_file(tmp_path) -> None:
    with pytest.raises(ConfigError):
        load_config(tmp_path / "absent.json")
