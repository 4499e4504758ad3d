"""Lightweight health checks for configured CLI providers."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from ai_provider.orchestrator.models import HealthStatus
from ai_provider.orchestrator.providers import Provider
from ai_provider.orchestrator.usage import utc_now

logger = logging.getLogger(__name__)


async def run_health_checks(providers: Sequence[Provider]) -> list[HealthStatus]:
    """Resolve, version-probe and auth-probe every provider in order."""

    results: list[HealthStatus] = []
    for provider in providers:
        checked_at = utc_now().isoformat()
        resolved_executable = provider.resolve_executable()
        if resolved_executable is None:
            provider.is_authenticated = False
            results.append(
                HealthStatus(
                    name=provider.name,
                    is_available=False,
                    is_authenticated=False,
                    last_checked=checked_at,
                    error=f"Executable not found in PATH: {provider.executable}",
                ),
            )
            continue

        version = await provider.probe_version()
        authenticated = await provider.validate_authentication()
        if not authenticated:
            logger.info("Health check: %s is installed but not authenticated", provider.name)
        results.append(
            HealthStatus(
                name=provider.name,
                is_available=True,
                is_authenticated=authenticated,
                last_checked=checked_at,
                executable_path=resolved_executable,
                version=_truncate(version) if version else None,
                error=(
                    None
                    if authenticated
                    else f"Authentication probe failed (resolved executable: {resolved_executable})"
                ),
            ),
        )
    return results


def _truncate(value: str, *, limit: int = 240) -> str:
    compact = value.strip().replace("\n", " ")
    if len(compact) <= limit:
        return compact
    return compact[:limit] + "..."
