"""Tests for the service registry and target resolution."""
from __future__ import annotations

from pathlib import Path

import pytest

from uosprov.config import load_config
from uosprov.services import (
    ServiceRegistry,
    ServiceRegistryError,
    ServiceSpec,
    default_registry,
    registry_from_config,
)
from uosprov.targets import (
    DeploymentTarget,
    TargetResolutionError,
    artifact_path,
    resolve_target_triple,
    usage_text,
)


@pytest.mark.parametrize(
    ("alias", "triple"),
    [
        ("ucu", "aarch64-unknown-linux-gnu"),
        ("ucm", "armv7-unknown-linux-gnueabihf"),
        ("ucg", "armv7-unknown-linux-gnueabihf"),
        ("x86_64", "x86_64-unknown-linux-gnu"),
        ("riscv64gc-unknown-linux-gnu", "riscv64gc-unknown-linux-gnu"),
        ("armv7-unknown-linux-musleabihf", "armv7-unknown-linux-musleabihf"),
    ],
)
def test_resolve_target_triple(alias: str, triple: str) -> None:
    """Aliases map to triples and literal triples pass through."""
    assert resolve_target_triple(alias) == triple


@pytest.mark.parametrize("value", ["", "ucx", "arm64", "../etc"])
def test_unknown_targets_are_rejected(value: str) -> None:
    """Anything that is neither alias nor triple is refused."""
    with pytest.raises(TargetResolutionError):
        resolve_target_triple(value)


def test_usage_text_lists_aliases() -> None:
    """The usage text names every supported triple."""
    text = usage_text()

    assert "aarch64-unknown-linux-gnu" in text
    assert "armv7-unknown-linux-gnueabihf" in text
    assert "x86_64-unknown-linux-gnu" in text


def test_artifact_path_follows_cargo_layout(tmp_path: Path) -> None:
    """Built example executables live under <triple>/release/examples."""
    path = artifact_path(tmp_path, "aarch64-unknown-linux-gnu", "u-os-hub-example-provider")

    assert path == (
        tmp_path / "aarch64-unknown-linux-gnu" / "release" / "examples" / "u-os-hub-example-provider"
    )


def test_deployment_target_properties() -> None:
    """Remote logins expose user and key; local targets do not."""
    remote = DeploymentTarget("admin@192.168.0.10")
    local = DeploymentTarget()

    assert remote.is_remote is True
    assert remote.user == "admin"
    assert remote.key == "192.168.0.10"
    assert local.is_remote is False
    assert local.user is None
    assert local.key == "local"
    assert local.describe() == "local machine"


def test_invalid_login_is_rejected() -> None:
    """Logins with shell metacharacters are refused."""
    with pytest.raises(TargetResolutionError):
        DeploymentTarget("admin@device; reboot")


def test_client_name_is_derived_from_service_name() -> None:
    """Dashes become underscores unless a client name is given."""
    derived = ServiceSpec(name="u-os-hub-example-provider", scope="hub.variables.provide")
    explicit = ServiceSpec(name="sensor", scope="hub.variables.provide", client_name="sensor_v2")

    assert derived.client_name == "u_os_hub_example_provider"
    assert derived.credential_file == "u_os_hub_example_provider.creds"
    assert derived.unit_name == "u-os-hub-example-provider.service"
    assert explicit.client_name == "sensor_v2"


@pytest.mark.parametrize(
    ("kwargs", "message"),
    [
        ({"name": "bad name", "scope": "x"}, "Invalid service name"),
        ({"name": "ok", "scope": "  "}, "requires a scope"),
        ({"name": "ok", "scope": "x", "client_name": "a/b"}, "Invalid client name"),
    ],
)
def test_service_spec_validation(kwargs: dict[str, str], message: str) -> None:
    """Invalid service definitions raise ServiceRegistryError."""
    with pytest.raises(ServiceRegistryError, match=message):
        ServiceSpec(**kwargs)


def test_registry_rejects_duplicates() -> None:
    """Service names are unique within a registry."""
    spec = ServiceSpec(name="sensor", scope="x")

    with pytest.raises(ServiceRegistryError, match="Duplicate"):
        ServiceRegistry((spec, spec))


def test_credential_patterns_cover_current_and_legacy_names() -> None:
    """Patterns list current files first, then legacy globs, without repeats."""
    registry = ServiceRegistry(
        (
            ServiceSpec(name="u-os-hub-example-provider", scope="a"),
            ServiceSpec(name="u-os-hub-example-consumer", scope="b"),
        ),
        ("u_os_hub_example_*", "u_os_hub_example_provider.creds"),
    )

    assert registry.credential_patterns() == [
        "u_os_hub_example_provider.creds",
        "u_os_hub_example_consumer.creds",
        "u_os_hub_example_*",
    ]


def test_registry_lookup_by_service_or_client_name() -> None:
    """get() accepts either name."""
    registry = default_registry()

    assert registry.get("u_os_hub_example_consumer").name == "u-os-hub-example-consumer"
    with pytest.raises(ServiceRegistryError, match="not managed"):
        registry.get("other")


def test_default_registry_scopes() -> None:
    """The default services carry the provider and read-write scopes."""
    scopes = {spec.name: spec.scope for spec in default_registry()}

    assert scopes == {
        "u-os-hub-example-provider": "hub.variables.provide",
        "u-os-hub-example-consumer": "hub.variables.readwrite",
    }


def test_registry_from_config_attaches_artifacts(tmp_path: Path) -> None:
    """Configured services pick up the executables found for them."""
    config = load_config(tmp_path / "missing.yml", env={})
    binary = tmp_path / "u-os-hub-example-provider"

    registry = registry_from_config(config, executables={"u-os-hub-example-provider": binary})

    provider = registry.get("u-os-hub-example-provider")
    consumer = registry.get("u-os-hub-example-consumer")
    assert provider.executable_source == binary
    assert consumer.executable_source is None
    assert registry.legacy_credential_patterns == ("u_os_hub_example_*",)
