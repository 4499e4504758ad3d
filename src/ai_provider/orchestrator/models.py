"""Domain models for provider selection, usage accounting, and execution."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

DEFAULT_DAILY_LIMIT = 1_000_000
DEFAULT_WEEKLY_LIMIT = 5_000_000
DEFAULT_SWITCH_THRESHOLD = 0.75
DEFAULT_ESTIMATED_TOKENS = 1000


class UsagePeriod(str, Enum):
    """Quota window granularity."""

    DAILY = "daily"
    WEEKLY = "weekly"


class FailureClass(str, Enum):
    """Normalized backend failure classes."""

    TIMEOUT = "timeout"
    SPAWN_FAILED = "spawn_failed"
    RATE_LIMITED = "rate_limited"
    BACKEND_TRANSIENT = "backend_transient"
    BACKEND_NON_RETRYABLE = "backend_non_retryable"
    BILLING_OR_QUOTA = "billing_or_quota"
    ACCESS_OR_AUTH = "access_or_auth"
    MODEL_NOT_AVAILABLE = "model_not_available"


@dataclass(frozen=True, slots=True)
class ProviderConfig:
    """Immutable quota configuration of one provider."""

    daily_limit: int = DEFAULT_DAILY_LIMIT
    weekly_limit: int = DEFAULT_WEEKLY_LIMIT
    switch_threshold: float = DEFAULT_SWITCH_THRESHOLD

    def __post_init__(self) -> None:
        _require_positive_int("daily_limit", self.daily_limit)
        _require_positive_int("weekly_limit", self.weekly_limit)
        threshold = self.switch_threshold
        if isinstance(threshold, bool) or not isinstance(threshold, int | float):
            raise ValueError(f"switch_threshold must be a number, got {threshold!r}")
        if not 0 < threshold <= 1:
            raise ValueError(f"switch_threshold must be in (0, 1], got {threshold!r}")

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> ProviderConfig:
        """Build config from a JSON-style mapping; unknown keys are ignored."""

        return cls(
            daily_limit=_pick(raw, "dailyLimit", "daily_limit", DEFAULT_DAILY_LIMIT),
            weekly_limit=_pick(raw, "weeklyLimit", "weekly_limit", DEFAULT_WEEKLY_LIMIT),
            switch_threshold=_pick(
                raw,
                "switchThreshold",
                "switch_threshold",
                DEFAULT_SWITCH_THRESHOLD,
            ),
        )

    def limit_for(self, period: UsagePeriod) -> int:
        return self.daily_limit if period is UsagePeriod.DAILY else self.weekly_limit


@dataclass(slots=True)
class UsageWindow:
    """Token counter bound to one calendar window."""

    tokens_consumed: int
    window_start_key: str


@dataclass(slots=True)
class WindowStatus:
    """Read-only view of one usage window."""

    used: int
    limit: int
    percentage: float
    threshold: float

    def to_dict(self) -> dict[str, object]:
        return {
            "used": self.used,
            "limit": self.limit,
            "percentage": self.percentage,
            "threshold": self.threshold,
        }


@dataclass(slots=True)
class UsageStatus:
    """Usage snapshot of one provider."""

    name: str
    is_authenticated: bool
    daily: WindowStatus
    weekly: WindowStatus
    is_threshold_exceeded: bool

    def to_dict(self) -> dict[str, object]:
        """Serialize for JSON status output."""

        return {
            "daily": self.daily.to_dict(),
            "weekly": self.weekly.to_dict(),
            "is_authenticated": self.is_authenticated,
            "is_threshold_exceeded": self.is_threshold_exceeded,
        }


@dataclass(frozen=True, slots=True)
class ProviderCapabilities:
    """Static provider metadata used for listing, never for routing."""

    name: str
    description: str
    supports_usage_limits: bool = True
    supports_authentication: bool = True
    requires_api_key: bool = False
    requires_oauth: bool = False
    supports_streaming: bool = False


@dataclass(frozen=True, slots=True)
class ProviderInfo:
    """Registered backend kind and its capabilities."""

    name: str
    capabilities: ProviderCapabilities


@dataclass(slots=True)
class HealthStatus:
    """Availability and authentication probe result."""

    name: str
    is_available: bool
    is_authenticated: bool
    last_checked: str
    executable_path: str | None = None
    version: str | None = None
    error: str | None = None

    @property
    def is_healthy(self) -> bool:
        return self.is_available and self.is_authenticated


@dataclass(slots=True)
class ExecutionOptions:
    """Per-request execution options."""

    estimated_tokens: int = DEFAULT_ESTIMATED_TOKENS
    stream: bool = False
    on_output: Callable[[str], None] | None = None


@dataclass(frozen=True, slots=True)
class ProviderAttempt:
    """One provider tried (or skipped) while serving a request."""

    provider_name: str
    error_message: str
    failure_class: FailureClass | None = None
    skipped: bool = False


@dataclass(slots=True)
class ExecutionResult:
    """Successful orchestrated execution."""

    output: str
    provider_name: str
    tokens_used: int
    was_fallback: bool
    degraded: bool = False
    attempts: list[ProviderAttempt] = field(default_factory=list)


def _pick(raw: Mapping[str, Any], camel: str, snake: str, default: Any) -> Any:
    if camel in raw:
        return raw[camel]
    return raw.get(snake, default)


def _require_positive_int(name: str, value: object) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if value <= 0:
        raise ValueError(f"{name} must be > 0, got {value!r}")
