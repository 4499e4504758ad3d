"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest

from ai_provider.orchestrator.backend import InvocationRequest, InvocationResult
from ai_provider.orchestrator.errors import ExecutionFailure
from ai_provider.orchestrator.models import (
    ExecutionOptions,
    FailureClass,
    ProviderCapabilities,
    ProviderConfig,
)
from ai_provider.orchestrator.providers import BackendDescriptor, Provider

Outcome = InvocationResult | Exception | Callable[[InvocationRequest], InvocationResult]


class FakeClock:
    """Mutable UTC clock for simulating calendar rollovers."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeRunner:
    """Command runner returning scripted results keyed by executable."""

    def __init__(self, *, installed: tuple[str, ...] = ()) -> None:
        self.installed = set(installed)
        self.calls: list[InvocationRequest] = []
        self._scripts: dict[str, list[Outcome]] = {}

    def script(self, executable: str, *outcomes: Outcome) -> None:
        """Queue outcomes for an executable; the last one repeats."""

        self._scripts[executable] = list(outcomes)

    def which(self, executable: str) -> str | None:
        return f"/usr/local/bin/{executable}" if executable in self.installed else None

    async def invoke(self, request: InvocationRequest) -> InvocationResult:
        self.calls.append(request)
        queue = self._scripts.get(request.argv[0])
        if not queue:
            return InvocationResult(stdout="ok\n", stderr="", exit_code=0)
        outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(outcome, Exception):
            raise outcome
        if callable(outcome):
            return outcome(request)
        return outcome

    def calls_for(self, executable: str) -> list[InvocationRequest]:
        return [call for call in self.calls if call.argv[0] == executable]


class ScriptedProvider(Provider):
    """Provider whose checks and execution are scripted in memory."""

    def __init__(  # noqa: PLR0913
        self,
        name: str,
        *,
        available: bool = True,
        authenticated: bool = True,
        outcomes: list[str | Exception] | None = None,
        config: ProviderConfig | None = None,
        clock: FakeClock | None = None,
    ) -> None:
        descriptor = BackendDescriptor(
            name=name,
            executable=name,
            run_template=f"{name} {{prompt}}",
            probe_template=f"{name} {{prompt}}",
            probe_prompt="Hello",
            capabilities=ProviderCapabilities(name=name, description=f"{name} test backend"),
        )
        super().__init__(
            descriptor,
            config=config,
            runner=FakeRunner(installed=(name,)),
            clock=clock or FakeClock(datetime(2024, 1, 3, 12, 0, tzinfo=UTC)),
        )
        self.available = available
        self.authenticates = authenticated
        self.outcomes: list[str | Exception] = outcomes or [f"{name} output"]
        self.execute_calls: list[str] = []
        self.auth_checks = 0

    async def is_available(self) -> bool:
        return self.available

    async def validate_authentication(self) -> bool:
        self.auth_checks += 1
        self.is_authenticated = self.available and self.authenticates
        return self.is_authenticated

    async def execute(self, input: str, options: ExecutionOptions | None = None) -> str:  # noqa: A002
        self.execute_calls.append(input)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def execution_failure(provider: str, message: str = "backend crashed") -> ExecutionFailure:
    return ExecutionFailure(
        f"{provider} failed with code 1: {message}",
        provider=provider,
        reason=f"{provider}_backend_non_retryable",
        backend_message=message,
        failure_class=FailureClass.BACKEND_NON_RETRYABLE,
        exit_code=1,
    )


@pytest.fixture()
def clock() -> FakeClock:
    """Wednesday 2024-01-03 12:00 UTC; its week started on Sunday 2023-12-31."""

    return FakeClock(datetime(2024, 1, 3, 12, 0, tzinfo=UTC))


@pytest.fixture()
def runner() -> FakeRunner:
    return FakeRunner(installed=("claude", "codex", "gemini", "cursor-agent"))
