from __future__ import annotations

import json
import os
from pathlib import Path

import allure
import pytest

from ai_provider.config import (
    DEFAULT_PRIORITY,
    DEFAULT_USAGE_STATE_PATH,
    Settings,
    is_placeholder_key,
    load_config_file,
)
from ai_provider.orchestrator.models import ProviderConfig

pytestmark = [
    allure.epic("Provider Orchestration"),
    allure.feature("Configuration"),
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("AI_PROVIDER_"):
            monkeypatch.delenv(name)


def _write_config(tmp_path: Path, payload: object) -> Path:
    path = tmp_path / "usage-config.json"
    path.write_text(json.dumps(payload), "utf-8")
    return path


def test_missing_config_file_yields_defaults(tmp_path: Path) -> None:
    settings = Settings.from_env(config_path=tmp_path / "absent.json")

    assert settings.priority == DEFAULT_PRIORITY
    assert settings.provider_configs == {}
    assert settings.command_templates == {}
    assert settings.api_keys == {}
    assert settings.usage_state_path == DEFAULT_USAGE_STATE_PATH
    assert settings.allow_degraded is True
    assert settings.fallback_respects_threshold is False


def test_config_file_sections_accept_camel_and_snake_case(tmp_path: Path) -> None:
    path = _write_config(
        tmp_path,
        {
            "claude-code": {"dailyLimit": 500, "weeklyLimit": 2_000, "switchThreshold": 0.5},
            "gemini": {"daily_limit": 10, "command": "gemini --yolo -p {prompt}"},
            "priority": ["gemini", "claude-code"],
        },
    )

    settings = Settings.from_env(config_path=path)

    assert settings.priority == ("gemini", "claude-code")
    assert settings.provider_configs["claude-code"] == ProviderConfig(
        daily_limit=500,
        weekly_limit=2_000,
        switch_threshold=0.5,
    )
    assert settings.provider_configs["gemini"].daily_limit == 10
    assert settings.provider_configs["gemini"].weekly_limit == ProviderConfig().weekly_limit
    assert settings.command_templates == {"gemini": "gemini --yolo -p {prompt}"}


def test_environment_overrides_priority_and_command(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    path = _write_config(tmp_path, {"priority": ["codex"], "codex": {"command": "codex {prompt}"}})
    monkeypatch.setenv("AI_PROVIDER_PRIORITY", " cursor , codex ")
    monkeypatch.setenv("AI_PROVIDER_CODEX_COMMAND", "codex exec --full-auto {prompt}")
    monkeypatch.setenv("AI_PROVIDER_CLAUDE_CODE_COMMAND", "claude -p")

    settings = Settings.from_env(config_path=path)

    assert settings.priority == ("cursor", "codex")
    assert settings.command_templates == {
        "codex": "codex exec --full-auto {prompt}",
        "claude-code": "claude -p",
    }


def test_config_path_is_read_from_environment(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    path = _write_config(tmp_path, {"priority": ["codex"]})
    monkeypatch.setenv("AI_PROVIDER_CONFIG_PATH", str(path))

    settings = Settings.from_env()

    assert settings.config_path == path
    assert settings.priority == ("codex",)


@pytest.mark.parametrize(
    ("priority", "message"),
    [
        ("codex,copilot", "Unknown provider in priority: 'copilot'"),
        ("codex,codex", "Duplicate provider in priority: 'codex'"),
        (" , ", "at least one provider"),
    ],
)
def test_invalid_priority_is_rejected(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    priority: str,
    message: str,
) -> None:
    monkeypatch.setenv("AI_PROVIDER_PRIORITY", priority)

    with pytest.raises(ValueError, match=message):
        Settings.from_env(config_path=tmp_path / "absent.json")


def test_malformed_config_file_is_a_configuration_error(tmp_path: Path) -> None:
    path = tmp_path / "usage-config.json"
    path.write_text("{not json", "utf-8")

    with pytest.raises(ValueError, match="Invalid JSON in config file"):
        load_config_file(path)

    path.write_text("[1, 2]", "utf-8")
    with pytest.raises(ValueError, match="must contain a JSON object"):
        load_config_file(path)


def test_invalid_provider_section_names_the_provider(tmp_path: Path) -> None:
    path = _write_config(tmp_path, {"codex": {"switchThreshold": 1.5}})

    with pytest.raises(ValueError, match="Invalid config for provider 'codex'"):
        Settings.from_env(config_path=path)


def test_placeholder_api_keys_are_ignored(tmp_path: Path) -> None:
    path = _write_config(
        tmp_path,
        {
            "apiKeys": {
                "anthropic": "your-anthropic-key-here",
                "openai": "sk-live",
                "google": "  ",
                "cursor": "cur-123",
            },
        },
    )

    settings = Settings.from_env(config_path=path)

    assert settings.api_keys == {"codex": "sk-live", "cursor": "cur-123"}
    assert settings.credentials_for("codex") == {"api_key": "sk-live"}
    assert settings.credentials_for("claude-code") == {}
    assert is_placeholder_key("YOUR-OPENAI-KEY-HERE") is True
    assert is_placeholder_key("sk-your-key") is False


def test_empty_usage_state_path_disables_persistence(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("AI_PROVIDER_USAGE_STATE_PATH", "")

    assert Settings.from_env(config_path=tmp_path / "absent.json").usage_state_path is None

    monkeypatch.setenv("AI_PROVIDER_USAGE_STATE_PATH", str(tmp_path / "usage.json"))
    assert Settings.from_env(config_path=tmp_path / "absent.json").usage_state_path == (
        tmp_path / "usage.json"
    )


def test_explicit_usage_state_path_wins_over_environment(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("AI_PROVIDER_USAGE_STATE_PATH", "")

    settings = Settings.from_env(
        config_path=tmp_path / "absent.json",
        usage_state_path=tmp_path / "explicit.json",
    )

    assert settings.usage_state_path == tmp_path / "explicit.json"


def test_routing_flags_are_parsed_from_environment(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("AI_PROVIDER_FALLBACK_RESPECTS_THRESHOLD", "yes")
    monkeypatch.setenv("AI_PROVIDER_ALLOW_DEGRADED", "off")
    monkeypatch.setenv("AI_PROVIDER_TIMEOUT_SECONDS", "90")

    settings = Settings.from_env(config_path=tmp_path / "absent.json")

    assert settings.fallback_respects_threshold is True
    assert settings.allow_degraded is False
    assert settings.timeout_seconds == 90.0


def test_invalid_boolean_is_rejected(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AI_PROVIDER_ALLOW_DEGRADED", "maybe")

    with pytest.raises(ValueError, match="Invalid boolean value for AI_PROVIDER_ALLOW_DEGRADED"):
        Settings.from_env(config_path=tmp_path / "absent.json")


def test_negative_timeout_is_rejected(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AI_PROVIDER_TIMEOUT_SECONDS", "-1")

    with pytest.raises(ValueError, match="AI_PROVIDER_TIMEOUT_SECONDS must be >= 0"):
        Settings.from_env(config_path=tmp_path / "absent.json")
