"""CLI entrypoint for ai-provider."""

import logging
import sys
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from ai_provider import __version__
from ai_provider.config import KNOWN_PROVIDERS
from ai_provider.orchestrator.controllers import (
    CommandResult,
    ExecuteCommand,
    HealthCommand,
    LoginCommand,
    ProviderCliController,
    ProvidersCommand,
    RecommendCommand,
    RecordUsageCommand,
    ResetUsageCommand,
    StatusCommand,
    ValidateAuthCommand,
)

click.rich_click.USE_MARKDOWN = True
PROVIDER_CONTROLLER = ProviderCliController()
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _state_options(command: Callable) -> Callable:
    command = click.option(
        "--usage-state-path",
        type=click.Path(path_type=Path, dir_okay=False),
        default=None,
        help="Usage state JSON file. Defaults to AI_PROVIDER_USAGE_STATE_PATH.",
    )(command)
    return click.option(
        "--config-path",
        type=click.Path(path_type=Path, dir_okay=False),
        default=None,
        help="Provider config JSON file. Defaults to AI_PROVIDER_CONFIG_PATH.",
    )(command)


@click.group()
@click.version_option(version=__version__, prog_name="ai-provider")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Log verbosity; logs go to stderr.",
)
def ai_provider(log_level: str) -> None:
    """Route prompts across AI command-line backends with **usage-aware fallback**."""

    logging.basicConfig(
        level=log_level.upper(),
        stream=sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
    )


@ai_provider.command("status")
@_state_options
@click.option("--json", "as_json", is_flag=True, help="Print status as JSON.")
@click.option(
    "--check-auth",
    is_flag=True,
    help="Probe authentication before reporting (runs each backend once).",
)
def status(
    config_path: Path | None,
    usage_state_path: Path | None,
    as_json: bool,
    check_auth: bool,
) -> None:
    """Show daily and weekly usage of every configured provider."""

    _finish(
        PROVIDER_CONTROLLER.status(
            StatusCommand(
                config_path=config_path,
                usage_state_path=usage_state_path,
                as_json=as_json,
                check_auth=check_auth,
            ),
        ),
        failure="Status check failed.",
    )


@ai_provider.command("recommend")
@_state_options
def recommend(config_path: Path | None, usage_state_path: Path | None) -> None:
    """Show the provider that would serve a request right now."""

    _finish(
        PROVIDER_CONTROLLER.recommend(
            RecommendCommand(config_path=config_path, usage_state_path=usage_state_path),
        ),
        failure="No provider can serve requests.",
    )


@ai_provider.command("health")
@_state_options
def health(config_path: Path | None, usage_state_path: Path | None) -> None:
    """Check installation, authentication, and version of every provider."""

    _finish(
        PROVIDER_CONTROLLER.health(
            HealthCommand(config_path=config_path, usage_state_path=usage_state_path),
        ),
        failure="No healthy provider.",
    )


@ai_provider.command("validate-auth")
@_state_options
def validate_auth(config_path: Path | None, usage_state_path: Path | None) -> None:
    """Validate authentication of every configured provider."""

    _finish(
        PROVIDER_CONTROLLER.validate_auth(
            ValidateAuthCommand(config_path=config_path, usage_state_path=usage_state_path),
        ),
        failure="Authentication validation failed.",
    )


@ai_provider.command("providers")
@_state_options
def providers(config_path: Path | None, usage_state_path: Path | None) -> None:
    """List registered backends and their capabilities."""

    _finish(
        PROVIDER_CONTROLLER.providers(
            ProvidersCommand(config_path=config_path, usage_state_path=usage_state_path),
        ),
        failure="Could not list providers.",
    )


@ai_provider.command("login")
@_state_options
@click.argument("provider", type=click.Choice(KNOWN_PROVIDERS))
@click.option(
    "--api-key",
    default=None,
    help="API key to use instead of the config file's apiKeys entry.",
)
def login(
    config_path: Path | None,
    usage_state_path: Path | None,
    provider: str,
    api_key: str | None,
) -> None:
    """Authenticate one provider with an API key or its interactive login."""

    _finish(
        PROVIDER_CONTROLLER.login(
            LoginCommand(
                config_path=config_path,
                usage_state_path=usage_state_path,
                provider=provider,
                api_key=api_key,
            ),
        ),
        failure=f"Login failed for {provider}.",
    )


@ai_provider.command("execute")
@_state_options
@click.argument("input_text", metavar="[INPUT]", required=False)
@click.option(
    "--estimated-tokens",
    type=click.IntRange(min=1),
    default=None,
    help="Minimum tokens to account when the backend reports none.",
)
@click.option("--stream", is_flag=True, help="Print output as the backend produces it.")
def execute(
    config_path: Path | None,
    usage_state_path: Path | None,
    input_text: str | None,
    estimated_tokens: int | None,
    stream: bool,
) -> None:
    """Run INPUT on the best provider, falling back on failure. Reads stdin for `-`."""

    if input_text is None or input_text == "-":
        input_text = click.get_text_stream("stdin").read()

    _finish(
        PROVIDER_CONTROLLER.execute(
            ExecuteCommand(
                config_path=config_path,
                usage_state_path=usage_state_path,
                prompt=input_text,
                estimated_tokens=estimated_tokens,
                stream=stream,
                on_output=(lambda chunk: click.echo(chunk, nl=False)) if stream else None,
            ),
        ),
        failure="Execution failed.",
    )


@ai_provider.command("record")
@_state_options
@click.argument("provider", type=click.Choice(KNOWN_PROVIDERS))
@click.argument("tokens", type=click.IntRange(min=1))
def record(
    config_path: Path | None,
    usage_state_path: Path | None,
    provider: str,
    tokens: int,
) -> None:
    """Record TOKENS of usage for PROVIDER in the usage state file."""

    _finish(
        PROVIDER_CONTROLLER.record_usage(
            RecordUsageCommand(
                config_path=config_path,
                usage_state_path=usage_state_path,
                provider=provider,
                tokens=tokens,
            ),
        ),
        failure="Could not record usage.",
    )


@ai_provider.command("reset")
@_state_options
@click.argument("provider", type=click.Choice(KNOWN_PROVIDERS))
def reset(config_path: Path | None, usage_state_path: Path | None, provider: str) -> None:
    """Reset daily and weekly usage of PROVIDER."""

    _finish(
        PROVIDER_CONTROLLER.reset_usage(
            ResetUsageCommand(
                config_path=config_path,
                usage_state_path=usage_state_path,
                provider=provider,
            ),
        ),
        failure="Could not reset usage.",
    )


def _finish(result: CommandResult, *, failure: str) -> None:
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException(failure)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    ai_provider()
