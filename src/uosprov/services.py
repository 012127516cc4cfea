"""Service registry: the fixed set of services a provisioning run manages."""
from __future__ import annotations

import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .config import AppConfig

_TOKEN = re.compile(r"^[A-Za-z0-9_.@-]+$")

DEFAULT_LEGACY_PATTERNS: tuple[str, ...] = ("u_os_hub_example_*",)


class ServiceRegistryError(ValueError):
    """Raised when a service definition is invalid."""


@dataclass(frozen=True, slots=True)
class ServiceSpec:
    """An executable plus unit file, and the scope its machine client needs.

    ``executable_source`` and ``unit_source`` point at local artifacts to
    deliver. ``None`` means the artifact is already staged on the device (or,
    for the unit, rendered from the built-in template).
    """

    name: str
    scope: str
    executable_source: Path | None = None
    unit_source: Path | None = None
    client_name: str = ""

    def __post_init__(self) -> None:
        """Validate tokens and derive the client name."""
        if not _TOKEN.match(self.name):
            raise ServiceRegistryError(f"Invalid service name {self.name!r}.")
        if not self.scope.strip():
            raise ServiceRegistryError(f"Service {self.name!r} requires a scope.")
        if not self.client_name:
            object.__setattr__(self, "client_name", self.name.replace("-", "_"))
        elif not _TOKEN.match(self.client_name):
            raise ServiceRegistryError(f"Invalid client name {self.client_name!r}.")

    @property
    def unit_name(self) -> str:
        """Name of the unit file for this service."""
        return f"{self.name}.service"

    @property
    def credential_file(self) -> str:
        """File name of the sealed credential inside the credential store."""
        return f"{self.client_name}.creds"


@dataclass(frozen=True, slots=True)
class ServiceRegistry:
    """Ordered, name-unique collection of :class:`ServiceSpec`."""

    services: tuple[ServiceSpec, ...]
    legacy_credential_patterns: tuple[str, ...] = field(default=DEFAULT_LEGACY_PATTERNS)

    def __post_init__(self) -> None:
        """Reject duplicate names and path-like legacy patterns."""
        names = [service.name for service in self.services]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ServiceRegistryError(f"Duplicate service names: {', '.join(duplicates)}.")
        for pattern in self.legacy_credential_patterns:
            if not pattern or "/" in pattern:
                raise ServiceRegistryError(f"Invalid legacy credential pattern {pattern!r}.")

    def __iter__(self) -> Iterator[ServiceSpec]:
        return iter(self.services)

    def __len__(self) -> int:
        return len(self.services)

    def names(self) -> list[str]:
        """Service names in registry order."""
        return [service.name for service in self.services]

    def get(self, name: str) -> ServiceSpec:
        """Return the service called *name*."""
        for service in self.services:
            if service.name == name or service.client_name == name:
                return service
        raise ServiceRegistryError(f"Service '{name}' is not managed by this registry.")

    def credential_patterns(self) -> list[str]:
        """Credential file patterns for current and legacy names, de-duplicated."""
        patterns: list[str] = []
        for candidate in [s.credential_file for s in self.services] + list(
            self.legacy_credential_patterns
        ):
            if candidate not in patterns:
                patterns.append(candidate)
        return patterns

    def with_artifacts(
        self,
        executables: Mapping[str, Path],
        units: Mapping[str, Path] | None = None,
    ) -> ServiceRegistry:
        """Return a copy whose services point at the given local artifacts."""
        units = units or {}
        updated = [
            ServiceSpec(
                name=service.name,
                scope=service.scope,
                executable_source=executables.get(service.name, service.executable_source),
                unit_source=units.get(service.name, service.unit_source),
                client_name=service.client_name,
            )
            for service in self.services
        ]
        return ServiceRegistry(tuple(updated), self.legacy_credential_patterns)


def default_registry() -> ServiceRegistry:
    """The hub example provider and consumer."""
    return ServiceRegistry(
        (
            ServiceSpec(name="u-os-hub-example-provider", scope="hub.variables.provide"),
            ServiceSpec(name="u-os-hub-example-consumer", scope="hub.variables.readwrite"),
        )
    )


def registry_from_config(
    config: AppConfig,
    *,
    executables: Mapping[str, Path] | None = None,
    units: Mapping[str, Path] | None = None,
) -> ServiceRegistry:
    """Build the registry declared in *config*."""
    services = _build_specs(config)
    registry = ServiceRegistry(tuple(services), tuple(config.legacy_patterns))
    if executables or units:
        registry = registry.with_artifacts(executables or {}, units)
    return registry


def _build_specs(config: AppConfig) -> Iterable[ServiceSpec]:
    for entry in config.services:
        yield ServiceSpec(
            name=entry.name,
            scope=entry.scope,
            executable_source=entry.executable,
            unit_source=entry.unit,
            client_name=entry.client_name or "",
        )


__all__ = [
    "DEFAULT_LEGACY_PATTERNS",
    "ServiceRegistry",
    "ServiceRegistryError",
    "ServiceSpec",
    "default_registry",
    "registry_from_config",
]
