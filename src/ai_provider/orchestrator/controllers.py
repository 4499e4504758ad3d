"""Controllers for provider CLI commands."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from ai_provider.config import Settings
from ai_provider.orchestrator.backend import CommandRunner
from ai_provider.orchestrator.errors import AllProvidersFailed, NoProviderAvailable
from ai_provider.orchestrator.factory import ProviderFactory
from ai_provider.orchestrator.models import ExecutionOptions, ProviderAttempt, WindowStatus
from ai_provider.orchestrator.services import ProviderOrchestrator
from ai_provider.orchestrator.usage_store import UsageStateStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class StatusCommand:
    """CLI input for usage status."""

    config_path: Path | None
    usage_state_path: Path | None
    as_json: bool = False
    check_auth: bool = False


@dataclass(slots=True)
class RecommendCommand:
    """CLI input for provider recommendation."""

    config_path: Path | None
    usage_state_path: Path | None


@dataclass(slots=True)
class HealthCommand:
    """CLI input for provider health checks."""

    config_path: Path | None
    usage_state_path: Path | None


@dataclass(slots=True)
class ValidateAuthCommand:
    """CLI input for authentication validation of every provider."""

    config_path: Path | None
    usage_state_path: Path | None


@dataclass(slots=True)
class ProvidersCommand:
    """CLI input for the registered backends listing."""

    config_path: Path | None
    usage_state_path: Path | None


@dataclass(slots=True)
class LoginCommand:
    """CLI input for interactive or key-based login."""

    config_path: Path | None
    usage_state_path: Path | None
    provider: str
    api_key: str | None = None


@dataclass(slots=True)
class ExecuteCommand:
    """CLI input for one orchestrated request."""

    config_path: Path | None
    usage_state_path: Path | None
    prompt: str
    estimated_tokens: int | None = None
    stream: bool = False
    on_output: Callable[[str], None] | None = None


@dataclass(slots=True)
class RecordUsageCommand:
    """CLI input for manual usage accounting."""

    config_path: Path | None
    usage_state_path: Path | None
    provider: str
    tokens: int


@dataclass(slots=True)
class ResetUsageCommand:
    """CLI input for clearing a provider's usage windows."""

    config_path: Path | None
    usage_state_path: Path | None
    provider: str


@dataclass(slots=True)
class CommandResult:
    """Rendered lines plus success flag for CLI exit status."""

    lines: list[str]
    success: bool = True


class ProviderCliController:
    """Coordinates provider selection, execution, and inspection CLI operations."""

    def __init__(self, *, runner: CommandRunner | None = None) -> None:
        self._runner = runner

    def status(self, command: StatusCommand) -> CommandResult:
        settings = _load_settings(command.config_path, command.usage_state_path)
        if isinstance(settings, CommandResult):
            return settings
        with self._orchestrator(settings) as orchestrator:
            if command.check_auth:
                asyncio.run(_probe_authentication(orchestrator))
            statuses = orchestrator.usage_status()

        if command.as_json:
            payload = {name: status.to_dict() for name, status in statuses.items()}
            return CommandResult(lines=[json.dumps(payload, indent=2)])

        lines = ["Provider usage status:"]
        for name, status in statuses.items():
            lines.append(
                f"  provider={name} "
                f"authenticated={_yes_no(status.is_authenticated)} "
                f"threshold_exceeded={_yes_no(status.is_threshold_exceeded)}",
            )
            lines.append(f"    daily={_render_window(status.daily)}")
            lines.append(f"    weekly={_render_window(status.weekly)}")
        return CommandResult(lines=lines)

    def recommend(self, command: RecommendCommand) -> CommandResult:
        settings = _load_settings(command.config_path, command.usage_state_path)
        if isinstance(settings, CommandResult):
            return settings
        with self._orchestrator(settings) as orchestrator:
            selection = asyncio.run(orchestrator.recommended_provider())

        if selection is None:
            return CommandResult(
                lines=["No provider is available and authenticated."],
                success=False,
            )
        lines = [
            f"Recommended provider: {selection.provider_name}"
            + (" (degraded: usage threshold exceeded everywhere)" if selection.degraded else ""),
        ]
        lines.extend(f"  skipped {_render_attempt(attempt)}" for attempt in selection.skipped)
        return CommandResult(lines=lines)

    def health(self, command: HealthCommand) -> CommandResult:
        settings = _load_settings(command.config_path, command.usage_state_path)
        if isinstance(settings, CommandResult):
            return settings
        with self._orchestrator(settings) as orchestrator:
            statuses = asyncio.run(orchestrator.health_status())

        lines = ["Provider health:"]
        for status in statuses:
            line = (
                f"  provider={status.name} available={_yes_no(status.is_available)} "
                f"authenticated={_yes_no(status.is_authenticated)}"
            )
            if status.executable_path:
                line += f" executable={status.executable_path}"
            lines.append(line)
            if status.version:
                lines.append(f"    version={status.version}")
            if status.error:
                lines.append(f"    error={status.error}")
        success = any(status.is_healthy for status in statuses)
        lines.append(f"Health status: {'passed' if success else 'failed'}")
        return CommandResult(lines=lines, success=success)

    def validate_auth(self, command: ValidateAuthCommand) -> CommandResult:
        settings = _load_settings(command.config_path, command.usage_state_path)
        if isinstance(settings, CommandResult):
            return settings
        with self._orchestrator(settings) as orchestrator:
            try:
                results = asyncio.run(orchestrator.validate_all_authentication())
            except NoProviderAvailable as error:
                return CommandResult(
                    lines=[
                        "Authentication status:",
                        *(f"  {_render_attempt(attempt)}" for attempt in error.attempts),
                        "No provider is authenticated.",
                    ],
                    success=False,
                )

        lines = ["Authentication status:"]
        lines.extend(
            f"  {name}: {'authenticated' if ok else 'not authenticated'}"
            for name, ok in results.items()
        )
        return CommandResult(lines=lines)

    def providers(self, command: ProvidersCommand) -> CommandResult:
        settings = _load_settings(command.config_path, command.usage_state_path)
        if isinstance(settings, CommandResult):
            return settings
        factory = ProviderFactory(runner=self._runner)
        lines = ["Registered providers:"]
        for info in factory.all_provider_info():
            capabilities = info.capabilities
            position = (
                f"priority={settings.priority.index(info.name) + 1}"
                if info.name in settings.priority
                else "priority=disabled"
            )
            lines.append(f"  {info.name}: {capabilities.description} ({position})")
            lines.append(
                "    "
                f"usage_limits={_yes_no(capabilities.supports_usage_limits)} "
                f"authentication={_yes_no(capabilities.supports_authentication)} "
                f"api_key={_yes_no(capabilities.requires_api_key)} "
                f"oauth={_yes_no(capabilities.requires_oauth)} "
                f"streaming={_yes_no(capabilities.supports_streaming)}",
            )
        return CommandResult(lines=lines)

    def login(self, command: LoginCommand) -> CommandResult:
        settings = _load_settings(command.config_path, command.usage_state_path)
        if isinstance(settings, CommandResult):
            return settings
        credentials = (
            {"api_key": command.api_key}
            if command.api_key
            else settings.credentials_for(command.provider)
        )
        with self._orchestrator(settings) as orchestrator:
            if orchestrator.get_provider(command.provider) is None:
                return CommandResult(
                    lines=[f"Provider {command.provider} is not in the configured priority."],
                    success=False,
                )
            authenticated = asyncio.run(
                orchestrator.login_provider(command.provider, credentials or None),
            )

        if not authenticated:
            return CommandResult(
                lines=[f"Login failed for {command.provider}."],
                success=False,
            )
        return CommandResult(lines=[f"Provider {command.provider} is authenticated."])

    def execute(self, command: ExecuteCommand) -> CommandResult:
        settings = _load_settings(command.config_path, command.usage_state_path)
        if isinstance(settings, CommandResult):
            return settings
        if not command.prompt.strip():
            return CommandResult(lines=["Input is empty."], success=False)

        streamed: list[str] = []

        def on_output(chunk: str) -> None:
            streamed.append(chunk)
            if command.on_output is not None:
                command.on_output(chunk)

        options = ExecutionOptions(
            estimated_tokens=command.estimated_tokens or settings.estimated_tokens,
            stream=command.stream,
            on_output=on_output if command.stream else None,
        )
        with self._orchestrator(settings) as orchestrator:
            try:
                result = asyncio.run(orchestrator.execute(command.prompt, options))
            except AllProvidersFailed as error:
                lines = [f"Execution failed: {error.summary}."]
                lines.extend(f"  {_render_attempt(attempt)}" for attempt in error.attempts)
                return CommandResult(lines=lines, success=False)

        marker = ""
        if result.was_fallback:
            marker = " (fallback)"
        elif result.degraded:
            marker = " (degraded)"
        lines = [
            f"Provider: {result.provider_name}{marker}",
            f"Tokens used: {result.tokens_used}",
        ]
        lines.extend(f"  after {_render_attempt(attempt)}" for attempt in result.attempts)
        if not streamed:
            lines.append("Response:")
            lines.append(result.output.rstrip("\n"))
        return CommandResult(lines=lines)

    def record_usage(self, command: RecordUsageCommand) -> CommandResult:
        settings = _load_settings(command.config_path, command.usage_state_path)
        if isinstance(settings, CommandResult):
            return settings
        with self._orchestrator(settings) as orchestrator:
            provider = orchestrator.get_provider(command.provider)
            if provider is None:
                return CommandResult(
                    lines=[f"Provider {command.provider} is not in the configured priority."],
                    success=False,
                )
            provider.record_usage(command.tokens)
            status = provider.usage_status()
        return CommandResult(
            lines=[
                f"Recorded {command.tokens} tokens for {command.provider}.",
                f"  daily={_render_window(status.daily)}",
                f"  weekly={_render_window(status.weekly)}",
            ],
        )

    def reset_usage(self, command: ResetUsageCommand) -> CommandResult:
        settings = _load_settings(command.config_path, command.usage_state_path)
        if isinstance(settings, CommandResult):
            return settings
        with self._orchestrator(settings) as orchestrator:
            provider = orchestrator.get_provider(command.provider)
            if provider is None:
                return CommandResult(
                    lines=[f"Provider {command.provider} is not in the configured priority."],
                    success=False,
                )
            provider.reset_usage()
        return CommandResult(lines=[f"Reset usage data for {command.provider}."])

    @contextmanager
    def _orchestrator(self, settings: Settings) -> Iterator[ProviderOrchestrator]:
        orchestrator = ProviderOrchestrator.from_settings(settings, runner=self._runner)
        store = (
            UsageStateStore(settings.usage_state_path)
            if settings.usage_state_path is not None
            else None
        )
        if store is not None:
            orchestrator.restore_usage(store.load())
        try:
            yield orchestrator
        finally:
            if store is not None:
                store.save(orchestrator.usage_snapshot())


async def _probe_authentication(orchestrator: ProviderOrchestrator) -> None:
    for provider in orchestrator.providers:
        await provider.validate_authentication()


def _load_settings(
    config_path: Path | None,
    usage_state_path: Path | None,
) -> Settings | CommandResult:
    try:
        return Settings.from_env(config_path=config_path, usage_state_path=usage_state_path)
    except ValueError as error:
        logger.error("Invalid configuration: %s", error)
        return CommandResult(lines=[f"Configuration error: {error}"], success=False)


def _render_window(window: WindowStatus) -> str:
    return (
        f"{window.used}/{window.limit} ({window.percentage:.1%}) "
        f"threshold={window.threshold:.0%}"
    )


def _render_attempt(attempt: ProviderAttempt) -> str:
    suffix = f" [{attempt.failure_class.value}]" if attempt.failure_class is not None else ""
    return f"{attempt.provider_name}: {attempt.error_message}{suffix}"


def _yes_no(value: bool) -> str:
    return "yes" if value else "no"
