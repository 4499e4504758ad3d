"""Backend interface for invoking AI command-line tools."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Protocol


@dataclass(slots=True)
class InvocationRequest:
    """Inputs required to run one backend command."""

    argv: list[str]
    stdin: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    timeout_seconds: float | None = None
    capture_output: bool = True
    on_stdout: Callable[[str], None] | None = None


@dataclass(slots=True)
class InvocationResult:
    """Execution outcome from a command runner."""

    stdout: str
    stderr: str
    exit_code: int
    timed_out: bool = False


class CommandRunner(Protocol):
    """Protocol implemented by command runners."""

    def which(self, executable: str) -> str | None:
        """Resolve an executable on PATH, or return None."""

    async def invoke(self, request: InvocationRequest) -> InvocationResult:
        """Run a command and return its captured output and exit code."""
