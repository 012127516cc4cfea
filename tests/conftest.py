"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest
from fakes import FakeDevice

from uosprov.config import AppConfig, load_config
from uosprov.credentials import CredentialLedger
from uosprov.orchestrator import Orchestrator
from uosprov.registry import StateRegistry
from uosprov.services import ServiceRegistry, default_registry


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """Configuration rooted in the temporary directory, ignoring the host."""
    return load_config(
        tmp_path / "absent.yml",
        env={},
        overrides={"state_dir": str(tmp_path / "state")},
    )


@pytest.fixture
def device() -> FakeDevice:
    """A fresh fake device with a read-only root."""
    return FakeDevice()


@pytest.fixture
def state_registry(tmp_path: Path) -> StateRegistry:
    """YAML state registry under the temporary directory."""
    return StateRegistry(tmp_path / "state" / "registry")


@pytest.fixture
def artifacts(tmp_path: Path) -> ServiceRegistry:
    """Default services pointing at locally built executables."""
    root = tmp_path / "artifacts"
    root.mkdir()
    executables: dict[str, Path] = {}
    for spec in default_registry():
        path = root / spec.name
        path.write_text(f"#!/bin/sh\necho {spec.name}\n", encoding="utf-8")
        executables[spec.name] = path
    return default_registry().with_artifacts(executables)


@pytest.fixture
def make_orchestrator(
    app_config: AppConfig,
    device: FakeDevice,
    state_registry: StateRegistry,
) -> Callable[..., Orchestrator]:
    """Build orchestrators wired to the fake device."""

    def factory(config: AppConfig | None = None, *, phases: list[str] | None = None) -> Orchestrator:
        sink = phases if phases is not None else []
        return Orchestrator.from_config(
            config or app_config,
            device,
            remote=True,
            ledger=CredentialLedger(state_registry, "device"),
            phase=sink.append,
        )

    return factory
