"""Registry of known backend kinds and provider construction."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import TYPE_CHECKING

from ai_provider.orchestrator.backend import CommandRunner
from ai_provider.orchestrator.errors import UnknownProviderError
from ai_provider.orchestrator.models import ProviderConfig, ProviderInfo
from ai_provider.orchestrator.providers import BUILTIN_DESCRIPTORS, BackendDescriptor, Provider
from ai_provider.orchestrator.usage import utc_now

if TYPE_CHECKING:
    from ai_provider.config import Settings


class ProviderFactory:
    """Create providers by name from registered descriptors."""

    def __init__(
        self,
        *,
        runner: CommandRunner | None = None,
        clock: Callable[[], datetime] | None = None,
        base_env: Mapping[str, str] | None = None,
        timeout_seconds: float | None = None,
        descriptors: Iterable[BackendDescriptor] = BUILTIN_DESCRIPTORS,
    ) -> None:
        self._runner = runner
        self._clock = clock or utc_now
        self._base_env = base_env
        self._timeout_seconds = timeout_seconds
        self._descriptors: dict[str, BackendDescriptor] = {}
        for descriptor in descriptors:
            self.register(descriptor)

    def register(self, descriptor: BackendDescriptor) -> None:
        """Add or replace a backend kind."""

        self._descriptors[descriptor.name] = descriptor

    def available_providers(self) -> tuple[str, ...]:
        return tuple(self._descriptors)

    def is_supported(self, name: str) -> bool:
        return name in self._descriptors

    def provider_info(self, name: str) -> ProviderInfo | None:
        descriptor = self._descriptors.get(name)
        if descriptor is None:
            return None
        return ProviderInfo(name=descriptor.name, capabilities=descriptor.capabilities)

    def all_provider_info(self) -> list[ProviderInfo]:
        return [
            ProviderInfo(name=descriptor.name, capabilities=descriptor.capabilities)
            for descriptor in self._descriptors.values()
        ]

    def create_provider(
        self,
        name: str,
        config: ProviderConfig | None = None,
        command_template: str | None = None,
    ) -> Provider:
        descriptor = self._descriptors.get(name)
        if descriptor is None:
            raise UnknownProviderError(name)
        return Provider(
            descriptor,
            config=config,
            runner=self._runner,
            clock=self._clock,
            base_env=self._base_env,
            command_template=command_template,
            timeout_seconds=self._timeout_seconds,
        )

    def create_from_settings(self, settings: Settings) -> list[Provider]:
        """Build providers in the configured priority order."""

        return [
            self.create_provider(
                name,
                config=settings.provider_configs.get(name),
                command_template=settings.command_templates.get(name),
            )
            for name in settings.priority
        ]
