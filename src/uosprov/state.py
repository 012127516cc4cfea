"""Device provisioning state and the pure step transition function.

The orchestrator never reads device state back before acting. Instead it
threads a :class:`DeviceProvisioningState` through the run and folds each
:class:`StepResult` into it with :func:`transition`. The function has no
side effects, which keeps the lifecycle testable without a device.
"""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from enum import Enum


class MountMode(str, Enum):
    """Mount mode of the device root filesystem."""

    READ_ONLY = "ro"
    READ_WRITE = "rw"


class StepOutcome(str, Enum):
    """Classification of a single step's result."""

    OK = "ok"
    ALREADY_ABSENT = "already-absent"
    FATAL = "fatal"
    SKIPPED = "skipped"


class LifecycleState(str, Enum):
    """Conceptual per-service lifecycle position."""

    ABSENT = "absent"
    STAGED = "staged"
    INSTALLED = "installed"
    RUNNING = "running"
    STOPPED = "stopped"
    REMOVED = "removed"


class Step(str, Enum):
    """Named steps of the install and remove paths."""

    STAGE = "files.stage"
    ISSUE_CREDENTIALS = "credentials.issue"
    STOP = "systemd.stop"
    MOVE = "files.move"
    CHMOD = "files.chmod"
    DAEMON_RELOAD = "systemd.daemon-reload"
    ENABLE_NOW = "systemd.enable-now"
    DISABLE = "systemd.disable"
    REMOUNT_RW = "mount.remount-rw"
    REMOUNT_RO = "mount.remount-ro"
    REMOVE_FILES = "files.remove"
    REMOVE_CREDENTIALS = "credentials.remove"
    REFRESH_IDENTITY = "identity.refresh"


@dataclass(frozen=True, slots=True)
class StepResult:
    """Outcome of one step, for the services it touched."""

    step: Step
    outcome: StepOutcome
    detail: str = ""
    services: tuple[str, ...] = ()
    tolerated: bool = False

    @property
    def fatal(self) -> bool:
        """Whether the step aborts the run."""
        return self.outcome is StepOutcome.FATAL and not self.tolerated

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "step": self.step.value,
            "outcome": self.outcome.value,
            "detail": self.detail,
            "services": list(self.services),
            "tolerated": self.tolerated,
        }


def _names(values: Iterable[str]) -> frozenset[str]:
    return frozenset(values)


@dataclass(frozen=True, slots=True)
class DeviceProvisioningState:
    """What the run believes about the device after the last completed step."""

    credentials: frozenset[str] = field(default_factory=frozenset)
    staged: frozenset[str] = field(default_factory=frozenset)
    installed: frozenset[str] = field(default_factory=frozenset)
    registered: frozenset[str] = field(default_factory=frozenset)
    enabled: frozenset[str] = field(default_factory=frozenset)
    running: frozenset[str] = field(default_factory=frozenset)
    removed: frozenset[str] = field(default_factory=frozenset)
    mount_mode: MountMode = MountMode.READ_ONLY

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "credentials": sorted(self.credentials),
            "staged": sorted(self.staged),
            "installed": sorted(self.installed),
            "registered": sorted(self.registered),
            "enabled": sorted(self.enabled),
            "running": sorted(self.running),
            "removed": sorted(self.removed),
            "mount_mode": self.mount_mode.value,
        }


def transition(state: DeviceProvisioningState, result: StepResult) -> DeviceProvisioningState:
    """Return the state after applying *result*.

    Fatal and skipped results leave the state untouched. ``ALREADY_ABSENT``
    is applied like ``OK``: the desired end state holds either way.
    """
    if result.outcome in (StepOutcome.FATAL, StepOutcome.SKIPPED):
        return state
    touched = _names(result.services)
    step = result.step

    if step is Step.STAGE:
        return replace(state, staged=state.staged | touched, removed=state.removed - touched)
    if step is Step.ISSUE_CREDENTIALS:
        return replace(state, credentials=state.credentials | touched)
    if step is Step.STOP:
        return replace(state, running=state.running - touched)
    if step is Step.MOVE:
        return replace(
            state,
            staged=state.staged - touched,
            installed=state.installed | touched,
            removed=state.removed - touched,
        )
    if step is Step.CHMOD:
        return state
    if step is Step.DAEMON_RELOAD:
        return replace(state, registered=frozenset(state.installed))
    if step is Step.ENABLE_NOW:
        return replace(
            state,
            enabled=state.enabled | touched,
            running=state.running | touched,
        )
    if step is Step.DISABLE:
        return replace(state, enabled=state.enabled - touched)
    if step is Step.REMOUNT_RW:
        return replace(state, mount_mode=MountMode.READ_WRITE)
    if step is Step.REMOUNT_RO:
        return replace(state, mount_mode=MountMode.READ_ONLY)
    if step is Step.REMOVE_FILES:
        return replace(
            state,
            installed=state.installed - touched,
            removed=state.removed | touched,
        )
    if step is Step.REMOVE_CREDENTIALS:
        return replace(state, credentials=state.credentials - touched)
    if step is Step.REFRESH_IDENTITY:
        return state
    raise ValueError(f"Unhandled step {step!r}")  # pragma: no cover - enum is exhaustive


def lifecycle_of(state: DeviceProvisioningState, name: str) -> LifecycleState:
    """Derive the lifecycle position of service *name*."""
    if name in state.running:
        return LifecycleState.RUNNING
    if name in state.installed:
        if name in state.enabled:
            return LifecycleState.STOPPED
        return LifecycleState.INSTALLED
    if name in state.staged:
        return LifecycleState.STAGED
    if name in state.removed:
        return LifecycleState.REMOVED
    return LifecycleState.ABSENT


__all__ = [
    "DeviceProvisioningState",
    "LifecycleState",
    "MountMode",
    "Step",
    "StepOutcome",
    "StepResult",
    "lifecycle_of",
    "transition",
]
