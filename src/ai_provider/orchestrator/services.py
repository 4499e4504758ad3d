"""Application service: route requests across providers with fallback."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import TYPE_CHECKING

from ai_provider.orchestrator.backend import CommandRunner
from ai_provider.orchestrator.errors import (
    AllProvidersFailed,
    AuthenticationFailed,
    NoProviderAvailable,
    ProviderError,
    ProviderUnavailable,
    UnknownProviderError,
)
from ai_provider.orchestrator.factory import ProviderFactory
from ai_provider.orchestrator.models import (
    ExecutionOptions,
    ExecutionResult,
    HealthStatus,
    ProviderAttempt,
    UsageStatus,
)
from ai_provider.orchestrator.providers import Provider
from ai_provider.orchestrator.routing import (
    ProviderSelection,
    RoutingPolicy,
    check_provider,
    failure_attempt,
    select_provider,
    skip_attempt,
)
from ai_provider.orchestrator.smoke import run_health_checks

if TYPE_CHECKING:
    from ai_provider.config import Settings

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4


class ProviderOrchestrator:
    """Select a provider per request, execute, account usage, and fall back.

    Providers are tried strictly in priority order. Calls are awaited one at a
    time and usage counters are not locked, so callers must not run
    ``execute`` concurrently on the same instance.
    """

    def __init__(
        self,
        providers: Iterable[Provider],
        *,
        policy: RoutingPolicy | None = None,
    ) -> None:
        self._providers = tuple(providers)
        if not self._providers:
            raise ValueError("At least one provider is required")
        names = [provider.name for provider in self._providers]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate provider names: {', '.join(duplicates)}")
        self.policy = policy or RoutingPolicy()
        self.current_provider_name: str | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        runner: CommandRunner | None = None,
        clock: Callable[[], datetime] | None = None,
        base_env: Mapping[str, str] | None = None,
    ) -> ProviderOrchestrator:
        factory = ProviderFactory(
            runner=runner,
            clock=clock,
            base_env=base_env,
            timeout_seconds=settings.timeout_seconds or None,
        )
        return cls(
            factory.create_from_settings(settings),
            policy=RoutingPolicy(
                allow_degraded=settings.allow_degraded,
                fallback_respects_threshold=settings.fallback_respects_threshold,
            ),
        )

    @property
    def providers(self) -> tuple[Provider, ...]:
        return self._providers

    def get_provider(self, name: str) -> Provider | None:
        for provider in self._providers:
            if provider.name == name:
                return provider
        return None

    async def select_provider(self) -> ProviderSelection:
        return await select_provider(self._providers, self.policy)

    async def recommended_provider(self) -> ProviderSelection | None:
        """Provider that would serve a request right now, or None."""

        try:
            return await self.select_provider()
        except NoProviderAvailable as error:
            logger.warning("%s", error)
            return None

    async def execute(
        self,
        input: str,  # noqa: A002
        options: ExecutionOptions | None = None,
    ) -> ExecutionResult:
        options = options or ExecutionOptions()
        selection = await self.select_provider()
        provider = selection.provider
        self._switch_to(provider)

        try:
            output = await provider.execute(input, options)
        except ProviderError as error:
            logger.error("Provider %s failed: %s", provider.name, error)
            return await self._execute_fallback(
                input,
                options,
                failed=provider,
                attempts=[failure_attempt(error)],
            )

        tokens_used = self._account_usage(provider, input, output, options)
        return ExecutionResult(
            output=output,
            provider_name=provider.name,
            tokens_used=tokens_used,
            was_fallback=False,
            degraded=selection.degraded,
        )

    async def validate_all_authentication(self) -> dict[str, bool]:
        """Probe every provider; raise when none is authenticated."""

        results: dict[str, bool] = {}
        attempts: list[ProviderAttempt] = []
        for provider in self._providers:
            authenticated = await provider.validate_authentication()
            results[provider.name] = authenticated
            if not authenticated:
                error: ProviderError = (
                    AuthenticationFailed(provider.name)
                    if await provider.is_available()
                    else ProviderUnavailable(provider.name)
                )
                attempts.append(skip_attempt(error))
        if not any(results.values()):
            raise NoProviderAvailable(attempts)
        return results

    def usage_status(self) -> dict[str, UsageStatus]:
        return {provider.name: provider.usage_status() for provider in self._providers}

    async def health_status(self) -> list[HealthStatus]:
        return await run_health_checks(self._providers)

    async def login_provider(
        self,
        name: str,
        credentials: Mapping[str, str] | None = None,
    ) -> bool:
        provider = self.get_provider(name)
        if provider is None:
            raise UnknownProviderError(name)
        return await provider.authenticate(credentials)

    def usage_snapshot(self) -> dict[str, dict[str, dict[str, object]]]:
        return {provider.name: provider.usage.snapshot() for provider in self._providers}

    def restore_usage(self, snapshot: Mapping[str, object]) -> None:
        for provider in self._providers:
            raw = snapshot.get(provider.name)
            if isinstance(raw, dict):
                provider.usage.restore(raw)

    async def _execute_fallback(
        self,
        input: str,  # noqa: A002
        options: ExecutionOptions,
        *,
        failed: Provider,
        attempts: list[ProviderAttempt],
    ) -> ExecutionResult:
        start = self._providers.index(failed) + 1
        for candidate in self._providers[start:]:
            try:
                await check_provider(
                    candidate,
                    respect_threshold=self.policy.fallback_respects_threshold,
                )
            except ProviderError as error:
                logger.warning("Skipping fallback provider %s: %s", candidate.name, error)
                attempts.append(skip_attempt(error))
                continue

            logger.info("Falling back from %s to %s", failed.name, candidate.name)
            self._switch_to(candidate)
            try:
                output = await candidate.execute(input, options)
            except ProviderError as error:
                logger.error("Fallback provider %s failed: %s", candidate.name, error)
                attempts.append(failure_attempt(error))
                continue

            tokens_used = self._account_usage(candidate, input, output, options)
            return ExecutionResult(
                output=output,
                provider_name=candidate.name,
                tokens_used=tokens_used,
                was_fallback=True,
                attempts=list(attempts),
            )

        raise AllProvidersFailed(attempts)

    def _switch_to(self, provider: Provider) -> None:
        if self.current_provider_name != provider.name:
            if self.current_provider_name is not None:
                logger.info(
                    "Switching from %s to %s",
                    self.current_provider_name,
                    provider.name,
                )
            self.current_provider_name = provider.name

    @staticmethod
    def _account_usage(
        provider: Provider,
        input: str,  # noqa: A002
        output: str,
        options: ExecutionOptions,
    ) -> int:
        tokens_used = estimate_tokens(
            input=input,
            output=output,
            estimated_tokens=options.estimated_tokens,
            reported_tokens=provider.reported_tokens(output),
        )
        provider.record_usage(tokens_used)
        return tokens_used


def estimate_tokens(
    *,
    input: str,  # noqa: A002
    output: str,
    estimated_tokens: int,
    reported_tokens: int | None = None,
) -> int:
    """Tokens to charge for one exchange.

    The caller's estimate and a characters-per-token approximation set the
    floor. A backend-reported total can raise the charge but never lower it.
    """

    approximate = math.ceil((len(input) + len(output)) / CHARS_PER_TOKEN)
    return max(estimated_tokens, approximate, reported_tokens or 0, 1)
