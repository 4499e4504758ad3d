"""Descriptor-driven provider for AI command-line backends.

Every backend is the same :class:`Provider` type configured by a
:class:`BackendDescriptor`: which executable to resolve, how to render the run
and probe commands, how to log in, and which credentials map to which
environment variables. Adding a backend means adding a descriptor, not a
subclass.
"""

from __future__ import annotations

import logging
import os
import re
import shlex
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from ai_provider.orchestrator.backend import (
    BackendRunError,
    CommandRunner,
    InvocationRequest,
    InvocationResult,
    SubprocessRunner,
    build_environment,
    build_run_args,
)
from ai_provider.orchestrator.errors import ExecutionFailure
from ai_provider.orchestrator.failure_classifier import classify_backend_failure
from ai_provider.orchestrator.models import (
    ExecutionOptions,
    FailureClass,
    ProviderCapabilities,
    ProviderConfig,
    UsagePeriod,
    UsageStatus,
)
from ai_provider.orchestrator.usage import (
    CODEX_TOKENS_USED,
    UsageTracker,
    reported_total_tokens,
    utc_now,
)

logger = logging.getLogger(__name__)

NO_ERROR_OUTPUT = "No error output available"
_VERSION_PROBE_TIMEOUT_SECONDS = 10.0


@dataclass(frozen=True, slots=True)
class BackendDescriptor:
    """Static description of one CLI backend kind."""

    name: str
    executable: str
    run_template: str
    probe_template: str
    probe_prompt: str
    capabilities: ProviderCapabilities
    login_template: str | None = None
    credential_env: Mapping[str, str] = field(default_factory=dict)
    strip_env: tuple[str, ...] = ()
    ensure_home: bool = False
    token_footer: re.Pattern[str] | None = None


CLAUDE_CODE = BackendDescriptor(
    name="claude-code",
    executable="claude",
    run_template="claude --dangerously-skip-permissions --verbose -p",
    probe_template="claude --dangerously-skip-permissions -p",
    probe_prompt="Hello",
    login_template="claude setup-token",
    # Stale tokens in the environment override the CLI's own OAuth session.
    strip_env=("CLAUDE_CODE_OAUTH_TOKEN", "ANTHROPIC_API_KEY"),
    ensure_home=True,
    capabilities=ProviderCapabilities(
        name="claude-code",
        description="Anthropic Claude Code - Advanced AI assistant with code understanding",
        requires_api_key=False,
        requires_oauth=True,
        supports_streaming=True,
    ),
)

CODEX = BackendDescriptor(
    name="codex",
    executable="codex",
    run_template="codex exec --skip-git-repo-check {prompt}",
    probe_template="codex exec --skip-git-repo-check {prompt}",
    probe_prompt='echo "test"',
    credential_env={"api_key": "OPENAI_API_KEY"},
    token_footer=CODEX_TOKENS_USED,
    capabilities=ProviderCapabilities(
        name="codex",
        description="OpenAI Codex - AI code generation and completion",
        requires_api_key=True,
        requires_oauth=False,
        supports_streaming=False,
    ),
)

GEMINI = BackendDescriptor(
    name="gemini",
    executable="gemini",
    run_template="gemini -p {prompt} --output-format text",
    probe_template="gemini -p {prompt} --output-format text",
    probe_prompt="Hello",
    login_template="gemini --login",
    credential_env={"api_key": "GEMINI_API_KEY", "google_api_key": "GOOGLE_API_KEY"},
    capabilities=ProviderCapabilities(
        name="gemini",
        description="Google Gemini - Multimodal AI with advanced reasoning capabilities",
        supports_streaming=True,
    ),
)

CURSOR = BackendDescriptor(
    name="cursor",
    executable="cursor-agent",
    run_template="cursor-agent --prompt {prompt}",
    probe_template="cursor-agent --prompt {prompt}",
    probe_prompt="Hello",
    login_template="cursor-agent --login",
    credential_env={"api_key": "CURSOR_API_KEY"},
    capabilities=ProviderCapabilities(
        name="cursor",
        description="Cursor AI - AI-powered code editor with advanced capabilities",
        supports_streaming=True,
    ),
)

BUILTIN_DESCRIPTORS: tuple[BackendDescriptor, ...] = (CLAUDE_CODE, CODEX, GEMINI, CURSOR)


class Provider:
    """One AI backend with its quota tracker and authentication state."""

    def __init__(  # noqa: PLR0913
        self,
        descriptor: BackendDescriptor,
        *,
        config: ProviderConfig | None = None,
        runner: CommandRunner | None = None,
        clock: Callable[[], datetime] = utc_now,
        base_env: Mapping[str, str] | None = None,
        command_template: str | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self.descriptor = descriptor
        self.name = descriptor.name
        self.config = config or ProviderConfig()
        self.usage = UsageTracker(self.config, clock=clock)
        self.is_authenticated = False
        self.command_template = (command_template or descriptor.run_template).strip()
        self.executable = _command_head(self.command_template) or descriptor.executable
        self._custom_command = command_template is not None
        self._runner: CommandRunner = runner or SubprocessRunner()
        self._base_env = dict(os.environ if base_env is None else base_env)
        self._credential_env: dict[str, str] = {}
        self._timeout_seconds = timeout_seconds

    def __repr__(self) -> str:
        return f"Provider(name={self.name!r}, executable={self.executable!r})"

    async def is_available(self) -> bool:
        return self.resolve_executable() is not None

    def resolve_executable(self) -> str | None:
        try:
            return self._runner.which(self.executable)
        except OSError as error:
            logger.warning("Could not resolve %s for %s: %s", self.executable, self.name, error)
            return None

    async def validate_authentication(self) -> bool:
        """Probe the backend with a tiny prompt and update ``is_authenticated``.

        A backend that answers with a rate-limit or quota error has accepted the
        credentials, so it counts as authenticated.
        """

        if not await self.is_available():
            self.is_authenticated = False
            return False

        probe_template = self.command_template if self._custom_command else None
        try:
            result = await self._invoke(
                probe_template or self.descriptor.probe_template,
                self.descriptor.probe_prompt,
            )
        except BackendRunError as error:
            logger.warning("Authentication probe for %s failed to start: %s", self.name, error)
            self.is_authenticated = False
            return False

        if result.exit_code == 0:
            self.is_authenticated = True
            return True

        if not result.timed_out:
            classification = classify_backend_failure(
                agent=self.name,
                exit_code=result.exit_code,
                stdout=result.stdout,
                stderr=result.stderr,
            )
            if classification.is_throttled:
                logger.warning(
                    "Provider %s is throttled (%s) but authenticated",
                    self.name,
                    classification.matched_pattern,
                )
                self.is_authenticated = True
                return True

        logger.info(
            "Authentication probe for %s exited with code %s: %s",
            self.name,
            result.exit_code,
            _error_detail(result),
        )
        self.is_authenticated = False
        return False

    async def authenticate(self, credentials: Mapping[str, str] | None = None) -> bool:
        """Ensure the provider is authenticated, logging in if needed."""

        if self.is_authenticated:
            return True
        if await self.validate_authentication():
            return True

        if credentials and self.apply_credentials(credentials):
            if await self.validate_authentication():
                return True
            logger.warning("Credentials supplied for %s were not accepted", self.name)

        login_template = self.descriptor.login_template
        if login_template is None:
            logger.warning(
                "Provider %s has no interactive login; configure its API key instead",
                self.name,
            )
            return False
        if not await self.is_available():
            logger.warning("Cannot log in to %s: %s not found", self.name, self.executable)
            return False

        try:
            argv, _ = build_run_args(command_template=login_template, prompt="")
            result = await self._runner.invoke(
                InvocationRequest(
                    argv=argv,
                    env=self.environment(),
                    capture_output=False,
                ),
            )
        except BackendRunError as error:
            logger.error("Login for %s failed to start: %s", self.name, error)
            return False
        if result.exit_code != 0:
            logger.error("Login for %s exited with code %s", self.name, result.exit_code)
            return False
        return await self.validate_authentication()

    def apply_credentials(self, credentials: Mapping[str, str]) -> bool:
        """Map credentials onto this provider's environment overlay."""

        applied = False
        for key, env_var in self.descriptor.credential_env.items():
            value = credentials.get(key)
            if value:
                self._credential_env[env_var] = value
                applied = True
        if not applied:
            logger.warning(
                "Provider %s ignores credentials %s",
                self.name,
                sorted(credentials),
            )
        return applied

    def environment(self) -> dict[str, str]:
        return build_environment(
            base_env=self._base_env,
            strip=self.descriptor.strip_env,
            overlay=self._credential_env,
            ensure_home=str(Path.home()) if self.descriptor.ensure_home else None,
        )

    async def execute(self, input: str, options: ExecutionOptions | None = None) -> str:  # noqa: A002
        """Run the backend once and return its stdout; no retries."""

        options = options or ExecutionOptions()
        on_output = (
            options.on_output
            if options.stream and self.descriptor.capabilities.supports_streaming
            else None
        )
        try:
            result = await self._invoke(self.command_template, input, on_stdout=on_output)
        except BackendRunError as error:
            raise ExecutionFailure(
                f"{self.executable} failed to start: {error}",
                provider=self.name,
                reason="spawn_failed",
                backend_message=str(error),
                failure_class=FailureClass.SPAWN_FAILED,
            ) from error

        if result.timed_out:
            raise ExecutionFailure(
                f"{self.executable} timed out after {self._timeout_seconds}s",
                provider=self.name,
                reason="timeout",
                backend_message=_error_detail(result),
                failure_class=FailureClass.TIMEOUT,
                exit_code=result.exit_code,
            )

        if result.exit_code != 0:
            detail = _error_detail(result)
            classification = classify_backend_failure(
                agent=self.name,
                exit_code=result.exit_code,
                stdout=result.stdout,
                stderr=result.stderr,
            )
            raise ExecutionFailure(
                f"{self.executable} failed with code {result.exit_code}: {detail}",
                provider=self.name,
                reason=classification.reason_code,
                backend_message=detail,
                failure_class=classification.failure_class,
                exit_code=result.exit_code,
            )
        return result.stdout

    def reported_tokens(self, output: str) -> int | None:
        return reported_total_tokens(footer=self.descriptor.token_footer, output=output)

    def record_usage(self, tokens: int) -> None:
        self.usage.record(tokens)

    def reset_usage(self) -> None:
        self.usage.reset()

    def usage_percentage(self, period: UsagePeriod | str = UsagePeriod.DAILY) -> float:
        return self.usage.usage_fraction(period)

    def is_usage_threshold_exceeded(self) -> bool:
        return self.usage.is_over_threshold()

    def describe_capabilities(self) -> ProviderCapabilities:
        return self.descriptor.capabilities

    def usage_status(self) -> UsageStatus:
        return UsageStatus(
            name=self.name,
            is_authenticated=self.is_authenticated,
            daily=self.usage.window_status(UsagePeriod.DAILY),
            weekly=self.usage.window_status(UsagePeriod.WEEKLY),
            is_threshold_exceeded=self.usage.is_over_threshold(),
        )

    async def probe_version(self) -> str | None:
        """Return ``--version`` (or ``--help``) output of the resolved executable."""

        resolved = self.resolve_executable()
        if resolved is None:
            return None
        for flag in ("--version", "--help"):
            try:
                result = await self._runner.invoke(
                    InvocationRequest(
                        argv=[resolved, flag],
                        env=self.environment(),
                        timeout_seconds=_VERSION_PROBE_TIMEOUT_SECONDS,
                    ),
                )
            except BackendRunError as error:
                logger.info("Version probe for %s failed to start: %s", self.name, error)
                return None
            if result.exit_code == 0:
                return (result.stdout.strip() or result.stderr.strip()) or None
        return None

    async def _invoke(
        self,
        command_template: str,
        prompt: str,
        *,
        on_stdout: Callable[[str], None] | None = None,
    ) -> InvocationResult:
        argv, stdin = build_run_args(command_template=command_template, prompt=prompt)
        return await self._runner.invoke(
            InvocationRequest(
                argv=argv,
                stdin=stdin,
                env=self.environment(),
                timeout_seconds=self._timeout_seconds,
                on_stdout=on_stdout,
            ),
        )


def _command_head(command_template: str) -> str | None:
    try:
        parts = shlex.split(command_template)
    except ValueError:
        return None
    return parts[0] if parts else None


def _error_detail(result: InvocationResult) -> str:
    return result.stderr.strip() or result.stdout.strip() or NO_ERROR_OUTPUT
