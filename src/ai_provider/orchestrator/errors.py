"""Error taxonomy for provider checks, execution, and orchestration."""

from __future__ import annotations

from collections.abc import Sequence

from ai_provider.orchestrator.models import FailureClass, ProviderAttempt


class ProviderError(Exception):
    """Base error for one provider; converted into a skip by the orchestrator."""

    def __init__(self, message: str, *, provider: str) -> None:
        super().__init__(message)
        self.provider = provider


class ProviderUnavailable(ProviderError):
    """Executable or integration is not reachable in this environment."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"Provider {provider} is not available", provider=provider)


class AuthenticationFailed(ProviderError):
    """Credentials are missing or invalid."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"Provider {provider} is not authenticated", provider=provider)


class UsageThresholdExceeded(ProviderError):
    """Daily or weekly usage reached the switch threshold."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"Provider {provider} usage threshold exceeded", provider=provider)


class ExecutionFailure(ProviderError):
    """Backend invocation exited non-zero, failed to start, or timed out."""

    def __init__(  # noqa: PLR0913
        self,
        message: str,
        *,
        provider: str,
        reason: str,
        backend_message: str,
        failure_class: FailureClass,
        exit_code: int | None = None,
    ) -> None:
        super().__init__(message, provider=provider)
        self.reason = reason
        self.backend_message = backend_message
        self.failure_class = failure_class
        self.exit_code = exit_code


class UnknownProviderError(ValueError):
    """Provider name is not registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown provider: {name}")
        self.name = name


class OrchestrationError(RuntimeError):
    """Request-level failure surfaced to the caller."""


class AllProvidersFailed(OrchestrationError):
    """Every provider was skipped or failed; attempts are in priority order."""

    def __init__(self, attempts: Sequence[ProviderAttempt], *, summary: str | None = None) -> None:
        self.attempts = list(attempts)
        self.summary = summary or "All providers failed"
        details = "; ".join(
            f"{attempt.provider_name}: {attempt.error_message}" for attempt in self.attempts
        )
        super().__init__(f"{self.summary}. {details}" if details else self.summary)


class NoProviderAvailable(AllProvidersFailed):
    """No provider is available and authenticated."""

    def __init__(self, attempts: Sequence[ProviderAttempt]) -> None:
        super().__init__(attempts, summary="No providers are available and authenticated")
