"""Provider orchestration for AI command-line backends.

A request goes to the first provider in priority order that is installed,
authenticated, and under its usage threshold. When it fails, the remaining
providers after it are tried once, in order. Usage is counted per provider in
daily and weekly calendar windows that reset lazily on the first access after
a boundary.
"""

from ai_provider.orchestrator.errors import (
    AllProvidersFailed,
    AuthenticationFailed,
    ExecutionFailure,
    NoProviderAvailable,
    OrchestrationError,
    ProviderError,
    ProviderUnavailable,
    UnknownProviderError,
    UsageThresholdExceeded,
)
from ai_provider.orchestrator.factory import ProviderFactory
from ai_provider.orchestrator.models import (
    ExecutionOptions,
    ExecutionResult,
    ProviderCapabilities,
    ProviderConfig,
    UsagePeriod,
    UsageStatus,
)
from ai_provider.orchestrator.providers import BUILTIN_DESCRIPTORS, BackendDescriptor, Provider
from ai_provider.orchestrator.routing import ProviderSelection, RoutingPolicy
from ai_provider.orchestrator.services import ProviderOrchestrator
from ai_provider.orchestrator.usage import UsageTracker

__all__ = [
    "BUILTIN_DESCRIPTORS",
    "AllProvidersFailed",
    "AuthenticationFailed",
    "BackendDescriptor",
    "ExecutionFailure",
    "ExecutionOptions",
    "ExecutionResult",
    "NoProviderAvailable",
    "OrchestrationError",
    "Provider",
    "ProviderCapabilities",
    "ProviderConfig",
    "ProviderError",
    "ProviderFactory",
    "ProviderOrchestrator",
    "ProviderSelection",
    "ProviderUnavailable",
    "RoutingPolicy",
    "UnknownProviderError",
    "UsagePeriod",
    "UsageStatus",
    "UsageThresholdExceeded",
    "UsageTracker",
]
