"""Provider selection passes over a fixed priority list."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from ai_provider.orchestrator.errors import (
    AuthenticationFailed,
    NoProviderAvailable,
    ProviderError,
    ProviderUnavailable,
    UsageThresholdExceeded,
)
from ai_provider.orchestrator.models import ProviderAttempt
from ai_provider.orchestrator.providers import Provider

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RoutingPolicy:
    """Knobs for the degraded pass and for fallback eligibility."""

    allow_degraded: bool = True
    fallback_respects_threshold: bool = False


@dataclass(slots=True)
class ProviderSelection:
    """Provider chosen for a request and the providers skipped before it."""

    provider: Provider
    degraded: bool = False
    skipped: list[ProviderAttempt] = field(default_factory=list)

    @property
    def provider_name(self) -> str:
        return self.provider.name


async def check_provider(provider: Provider, *, respect_threshold: bool = True) -> None:
    """Raise the first failing check: availability, authentication, threshold."""

    if not await provider.is_available():
        raise ProviderUnavailable(provider.name)
    if not await provider.validate_authentication():
        raise AuthenticationFailed(provider.name)
    if respect_threshold and provider.is_usage_threshold_exceeded():
        raise UsageThresholdExceeded(provider.name)


async def select_provider(
    providers: Sequence[Provider],
    policy: RoutingPolicy | None = None,
) -> ProviderSelection:
    """Pick the first fully eligible provider, else the first over-threshold one.

    The degraded pass reuses the verdicts of the primary pass, so each provider
    is probed at most once per selection.
    """

    policy = policy or RoutingPolicy()
    skipped: list[ProviderAttempt] = []
    over_threshold: list[Provider] = []

    for provider in providers:
        try:
            await check_provider(provider)
        except UsageThresholdExceeded as error:
            over_threshold.append(provider)
            skipped.append(skip_attempt(error))
            logger.warning("Skipping provider %s: %s", provider.name, error)
            continue
        except ProviderError as error:
            skipped.append(skip_attempt(error))
            logger.warning("Skipping provider %s: %s", provider.name, error)
            continue
        return ProviderSelection(provider=provider, degraded=False, skipped=skipped)

    if policy.allow_degraded and over_threshold:
        chosen = over_threshold[0]
        logger.warning(
            "All eligible providers exceed their usage threshold; using %s in degraded mode",
            chosen.name,
        )
        return ProviderSelection(
            provider=chosen,
            degraded=True,
            skipped=[attempt for attempt in skipped if attempt.provider_name != chosen.name],
        )

    raise NoProviderAvailable(skipped)


def skip_attempt(error: ProviderError) -> ProviderAttempt:
    return ProviderAttempt(provider_name=error.provider, error_message=str(error), skipped=True)


def failure_attempt(error: ProviderError) -> ProviderAttempt:
    return ProviderAttempt(
        provider_name=error.provider,
        error_message=str(error),
        failure_class=getattr(error, "failure_class", None),
        skipped=False,
    )
