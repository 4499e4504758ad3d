"""Command runner implementations used by providers."""

from ai_provider.orchestrator.backend.base import (
    CommandRunner,
    InvocationRequest,
    InvocationResult,
)
from ai_provider.orchestrator.backend.cli_backend import (
    BackendRunError,
    SubprocessRunner,
    build_environment,
    build_run_args,
)

__all__ = [
    "BackendRunError",
    "CommandRunner",
    "InvocationRequest",
    "InvocationResult",
    "SubprocessRunner",
    "build_environment",
    "build_run_args",
]
