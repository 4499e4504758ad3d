"""Asyncio subprocess runner for CLI agents."""

from __future__ import annotations

import asyncio
import logging
import shlex
import shutil
from collections.abc import Callable, Iterable, Mapping

from ai_provider.orchestrator.backend.base import InvocationRequest, InvocationResult

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
_TERMINATE_GRACE_SECONDS = 2.0


class BackendRunError(RuntimeError):
    """Backend execution error with retryability hint."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


class SubprocessRunner:
    """Run backend commands with ``asyncio.create_subprocess_exec``."""

    def which(self, executable: str) -> str | None:
        return shutil.which(executable)

    async def invoke(self, request: InvocationRequest) -> InvocationResult:
        if not request.argv:
            raise BackendRunError("CLI backend command is empty.", transient=False)
        command_head = request.argv[0]
        try:
            if not request.capture_output:
                return await _run_interactive(request)
            return await _run_captured(request)
        except FileNotFoundError as error:
            raise BackendRunError(
                f"CLI backend command not found: {command_head}",
                transient=False,
            ) from error
        except PermissionError as error:
            raise BackendRunError(
                f"CLI backend command is not executable: {command_head}",
                transient=False,
            ) from error
        except OSError as error:
            raise BackendRunError(
                f"CLI backend failed to start: {error}",
                transient=True,
            ) from error


def build_run_args(*, command_template: str, prompt: str) -> tuple[list[str], str | None]:
    """Render a command template into argv and the stdin payload.

    Templates containing ``{prompt}`` receive the shell-quoted prompt as an
    argument; templates without it receive the prompt on stdin.
    """

    stripped = command_template.strip()
    if not stripped:
        raise BackendRunError("CLI backend command template is empty.", transient=False)

    prompt_in_args = "{prompt}" in stripped
    try:
        rendered = stripped.format(prompt=shlex.quote(prompt)) if prompt_in_args else stripped
    except (KeyError, IndexError) as error:
        raise BackendRunError(
            f"Unsupported command template placeholder: {error}",
            transient=False,
        ) from error

    try:
        argv = shlex.split(rendered)
    except ValueError as error:
        raise BackendRunError(
            f"CLI backend command template is malformed: {error}",
            transient=False,
        ) from error
    if not argv:
        raise BackendRunError(
            "CLI backend command template rendered empty command.",
            transient=False,
        )
    return argv, (None if prompt_in_args else prompt)


def build_environment(
    *,
    base_env: Mapping[str, str],
    strip: Iterable[str] = (),
    overlay: Mapping[str, str] | None = None,
    ensure_home: str | None = None,
) -> dict[str, str]:
    """Build an explicit child environment without touching ``os.environ``."""

    stripped = set(strip)
    env = {key: value for key, value in base_env.items() if key not in stripped}
    if overlay:
        env.update(overlay)
    if ensure_home and not env.get("HOME"):
        env["HOME"] = ensure_home
    return env


async def _run_captured(request: InvocationRequest) -> InvocationResult:
    stdin_bytes = request.stdin.encode("utf-8") if request.stdin is not None else None
    process = await asyncio.create_subprocess_exec(
        *request.argv,
        stdin=asyncio.subprocess.PIPE if stdin_bytes is not None else asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=dict(request.env),
    )

    if request.on_stdout is None:
        communicate = _communicate(process, stdin_bytes)
    else:
        communicate = _communicate_streaming(process, stdin_bytes, request.on_stdout)

    try:
        stdout, stderr = await _with_timeout(communicate, request.timeout_seconds)
    except TimeoutError:
        logger.warning(
            "Backend command %s timed out after %ss; terminating",
            request.argv[0],
            request.timeout_seconds,
        )
        await _terminate_process(process)
        return InvocationResult(
            stdout="",
            stderr=f"Command timed out after {request.timeout_seconds}s",
            exit_code=TIMEOUT_EXIT_CODE,
            timed_out=True,
        )
    except BackendRunError:
        await _terminate_process(process)
        raise

    return InvocationResult(
        stdout=stdout,
        stderr=stderr,
        exit_code=process.returncode if process.returncode is not None else -1,
        timed_out=False,
    )


async def _run_interactive(request: InvocationRequest) -> InvocationResult:
    """Run with inherited stdio so the user can complete a login flow."""

    process = await asyncio.create_subprocess_exec(*request.argv, env=dict(request.env))
    try:
        exit_code = await _with_timeout(process.wait(), request.timeout_seconds)
    except TimeoutError:
        await _terminate_process(process)
        return InvocationResult(stdout="", stderr="", exit_code=TIMEOUT_EXIT_CODE, timed_out=True)
    return InvocationResult(stdout="", stderr="", exit_code=exit_code)


async def _communicate(
    process: asyncio.subprocess.Process,
    stdin_bytes: bytes | None,
) -> tuple[str, str]:
    stdout, stderr = await process.communicate(input=stdin_bytes)
    return _decode(stdout), _decode(stderr)


async def _communicate_streaming(
    process: asyncio.subprocess.Process,
    stdin_bytes: bytes | None,
    on_stdout: Callable[[str], None],
) -> tuple[str, str]:
    if process.stdin is not None:
        try:
            if stdin_bytes:
                process.stdin.write(stdin_bytes)
                await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            logger.debug("Backend closed stdin before the prompt was fully written")
        finally:
            process.stdin.close()

    stdout, stderr = process.stdout, process.stderr
    if stdout is None or stderr is None:
        raise BackendRunError("CLI backend output pipes are not open.", transient=False)

    chunks: list[str] = []

    async def pump_stdout() -> None:
        while True:
            line = await stdout.readline()
            if not line:
                break
            text = _decode(line)
            chunks.append(text)
            on_stdout(text)

    _, stderr_bytes = await asyncio.gather(pump_stdout(), stderr.read())
    await process.wait()
    return "".join(chunks), _decode(stderr_bytes)


async def _with_timeout(awaitable, timeout_seconds: float | None):
    if timeout_seconds is None or timeout_seconds <= 0:
        return await awaitable
    return await asyncio.wait_for(awaitable, timeout=timeout_seconds)


async def _terminate_process(process: asyncio.subprocess.Process) -> None:
    try:
        process.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=_TERMINATE_GRACE_SECONDS)
    except TimeoutError:
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()


def _decode(payload: bytes | None) -> str:
    if not payload:
        return ""
    return payload.decode("utf-8", errors="replace")
