"""Runtime configuration for provider orchestration."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ai_provider.orchestrator.models import DEFAULT_ESTIMATED_TOKENS, ProviderConfig
from ai_provider.orchestrator.providers import BUILTIN_DESCRIPTORS

logger = logging.getLogger(__name__)

KNOWN_PROVIDERS: tuple[str, ...] = tuple(descriptor.name for descriptor in BUILTIN_DESCRIPTORS)
DEFAULT_PRIORITY: tuple[str, ...] = ("claude-code", "codex", "gemini", "cursor")
DEFAULT_CONFIG_PATH = Path("config/usage-config.json")
DEFAULT_USAGE_STATE_PATH = Path(".ai_provider_usage.json")

# Vendor key names of the config file's "apiKeys" section.
API_KEY_OWNERS: dict[str, str] = {
    "anthropic": "claude-code",
    "openai": "codex",
    "google": "gemini",
    "cursor": "cursor",
}


@dataclass(slots=True)
class Settings:
    """Application settings loaded from environment and the JSON config file."""

    config_path: Path = DEFAULT_CONFIG_PATH
    usage_state_path: Path | None = DEFAULT_USAGE_STATE_PATH
    priority: tuple[str, ...] = DEFAULT_PRIORITY
    provider_configs: dict[str, ProviderConfig] = field(default_factory=dict)
    command_templates: dict[str, str] = field(default_factory=dict)
    api_keys: dict[str, str] = field(default_factory=dict)
    timeout_seconds: float = 0.0
    estimated_tokens: int = DEFAULT_ESTIMATED_TOKENS
    fallback_respects_threshold: bool = False
    allow_degraded: bool = True

    @classmethod
    def from_env(
        cls,
        config_path: Path | None = None,
        usage_state_path: Path | None = None,
    ) -> Settings:
        """Load settings from environment, then the JSON config file it points to."""

        resolved_config_path = config_path or Path(
            os.getenv("AI_PROVIDER_CONFIG_PATH", str(DEFAULT_CONFIG_PATH)),
        )
        raw = load_config_file(resolved_config_path)

        provider_configs: dict[str, ProviderConfig] = {}
        command_templates: dict[str, str] = {}
        for name in KNOWN_PROVIDERS:
            section = raw.get(name)
            if section is not None and not isinstance(section, dict):
                raise ValueError(f"Config section for {name!r} must be an object.")
            if isinstance(section, dict):
                try:
                    provider_configs[name] = ProviderConfig.from_mapping(section)
                except ValueError as error:
                    raise ValueError(f"Invalid config for provider {name!r}: {error}") from error
                command = section.get("command")
                if isinstance(command, str) and command.strip():
                    command_templates[name] = command.strip()
            env_command = os.getenv(_command_env_name(name), "").strip()
            if env_command:
                command_templates[name] = env_command

        settings = cls(
            config_path=resolved_config_path,
            usage_state_path=(
                usage_state_path
                if usage_state_path is not None
                else _usage_state_path_from_env()
            ),
            priority=_resolve_priority(raw.get("priority")),
            provider_configs=provider_configs,
            command_templates=command_templates,
            api_keys=_collect_api_keys(raw.get("apiKeys")),
            timeout_seconds=float(os.getenv("AI_PROVIDER_TIMEOUT_SECONDS", "0")),
            estimated_tokens=int(
                os.getenv("AI_PROVIDER_ESTIMATED_TOKENS", str(DEFAULT_ESTIMATED_TOKENS)),
            ),
            fallback_respects_threshold=_env_bool(
                "AI_PROVIDER_FALLBACK_RESPECTS_THRESHOLD",
                default=False,
            ),
            allow_degraded=_env_bool("AI_PROVIDER_ALLOW_DEGRADED", default=True),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Raise configuration error for out-of-range values."""

        if self.timeout_seconds < 0:
            raise ValueError("AI_PROVIDER_TIMEOUT_SECONDS must be >= 0.")
        if self.estimated_tokens <= 0:
            raise ValueError("AI_PROVIDER_ESTIMATED_TOKENS must be a positive integer.")
        _validate_priority(self.priority)

    def credentials_for(self, provider: str) -> dict[str, str]:
        """Credentials from the config file's ``apiKeys`` section for one provider."""

        key = self.api_keys.get(provider)
        return {"api_key": key} if key else {}


def load_config_file(path: Path) -> dict[str, Any]:
    """Read the JSON config; a missing file yields defaults."""

    if not path.exists():
        logger.debug("Config file %s not found; using defaults", path)
        return {}
    try:
        payload = json.loads(path.read_text("utf-8"))
    except json.JSONDecodeError as error:
        raise ValueError(f"Invalid JSON in config file {path}: {error}") from error
    if not isinstance(payload, dict):
        raise ValueError(f"Config file {path} must contain a JSON object.")
    return payload


def is_placeholder_key(value: str) -> bool:
    normalized = value.strip().lower()
    return not normalized or (normalized.startswith("your-") and normalized.endswith("-here"))


def _resolve_priority(file_priority: object) -> tuple[str, ...]:
    env_priority = os.getenv("AI_PROVIDER_PRIORITY", "").strip()
    if env_priority:
        return tuple(part.strip() for part in env_priority.split(",") if part.strip())
    if file_priority is None:
        return DEFAULT_PRIORITY
    if not isinstance(file_priority, list) or not all(
        isinstance(item, str) for item in file_priority
    ):
        raise ValueError("Config 'priority' must be a list of provider names.")
    return tuple(item.strip() for item in file_priority if item.strip())


def _validate_priority(priority: tuple[str, ...]) -> None:
    if not priority:
        raise ValueError("Provider priority must name at least one provider.")
    seen: set[str] = set()
    for name in priority:
        if name not in KNOWN_PROVIDERS:
            raise ValueError(
                f"Unknown provider in priority: {name!r}. "
                f"Expected one of: {', '.join(KNOWN_PROVIDERS)}.",
            )
        if name in seen:
            raise ValueError(f"Duplicate provider in priority: {name!r}")
        seen.add(name)


def _collect_api_keys(raw: object) -> dict[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError("Config 'apiKeys' must be an object.")
    keys: dict[str, str] = {}
    for vendor, provider in API_KEY_OWNERS.items():
        value = raw.get(vendor)
        if isinstance(value, str) and not is_placeholder_key(value):
            keys[provider] = value.strip()
    return keys


def _usage_state_path_from_env() -> Path | None:
    value = os.getenv("AI_PROVIDER_USAGE_STATE_PATH")
    if value is None:
        return DEFAULT_USAGE_STATE_PATH
    value = value.strip()
    return Path(value) if value else None


def _command_env_name(provider: str) -> str:
    return f"AI_PROVIDER_{provider.upper().replace('-', '_')}_COMMAND"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
