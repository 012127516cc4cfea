"""Tests for the provisioning state transitions."""
from __future__ import annotations

from uosprov.state import (
    DeviceProvisioningState,
    LifecycleState,
    MountMode,
    Step,
    StepOutcome,
    StepResult,
    lifecycle_of,
    transition,
)

SENSOR = ("sensor",)


def _apply(state: DeviceProvisioningState, *results: StepResult) -> DeviceProvisioningState:
    for result in results:
        state = transition(state, result)
    return state


def test_install_sequence_reaches_running() -> None:
    """Stage, move, reload and enable walk a service to RUNNING."""
    state = DeviceProvisioningState()
    assert lifecycle_of(state, "sensor") is LifecycleState.ABSENT

    state = transition(state, StepResult(Step.STAGE, StepOutcome.OK, services=SENSOR))
    assert lifecycle_of(state, "sensor") is LifecycleState.STAGED

    state = _apply(
        state,
        StepResult(Step.REMOUNT_RW, StepOutcome.OK),
        StepResult(Step.ISSUE_CREDENTIALS, StepOutcome.OK, services=SENSOR),
        StepResult(Step.MOVE, StepOutcome.OK, services=SENSOR),
    )
    assert state.mount_mode is MountMode.READ_WRITE
    assert lifecycle_of(state, "sensor") is LifecycleState.INSTALLED

    state = _apply(
        state,
        StepResult(Step.REMOUNT_RO, StepOutcome.OK),
        StepResult(Step.DAEMON_RELOAD, StepOutcome.OK),
        StepResult(Step.ENABLE_NOW, StepOutcome.OK, services=SENSOR),
    )
    assert state.registered == frozenset(SENSOR)
    assert state.credentials == frozenset(SENSOR)
    assert state.mount_mode is MountMode.READ_ONLY
    assert lifecycle_of(state, "sensor") is LifecycleState.RUNNING


def test_remove_sequence_reaches_removed() -> None:
    """Stop, disable and file removal walk a running service to REMOVED."""
    running = DeviceProvisioningState(
        credentials=frozenset(SENSOR),
        installed=frozenset(SENSOR),
        registered=frozenset(SENSOR),
        enabled=frozenset(SENSOR),
        running=frozenset(SENSOR),
    )

    stopped = transition(running, StepResult(Step.STOP, StepOutcome.OK, services=SENSOR))
    assert lifecycle_of(stopped, "sensor") is LifecycleState.STOPPED

    state = _apply(
        stopped,
        StepResult(Step.DISABLE, StepOutcome.ALREADY_ABSENT, services=SENSOR),
        StepResult(Step.REMOVE_FILES, StepOutcome.OK, services=SENSOR),
        StepResult(Step.REMOVE_CREDENTIALS, StepOutcome.OK, services=SENSOR),
    )
    assert lifecycle_of(state, "sensor") is LifecycleState.REMOVED
    assert state.credentials == frozenset()
    assert state.enabled == frozenset()


def test_fatal_and_skipped_results_leave_state_unchanged() -> None:
    """Only OK and ALREADY_ABSENT results advance the state."""
    state = DeviceProvisioningState(staged=frozenset(SENSOR))

    for outcome in (StepOutcome.FATAL, StepOutcome.SKIPPED):
        assert transition(state, StepResult(Step.MOVE, outcome, services=SENSOR)) is state


def test_transition_does_not_mutate_input() -> None:
    """Transitions return new values."""
    state = DeviceProvisioningState()

    after = transition(state, StepResult(Step.REMOUNT_RW, StepOutcome.OK))

    assert state.mount_mode is MountMode.READ_ONLY
    assert after.mount_mode is MountMode.READ_WRITE


def test_step_result_fatal_respects_tolerance() -> None:
    """A tolerated failure is not fatal."""
    failure = StepResult(Step.STOP, StepOutcome.FATAL, "boom", SENSOR)
    tolerated = StepResult(Step.STOP, StepOutcome.FATAL, "boom", SENSOR, tolerated=True)

    assert failure.fatal is True
    assert tolerated.fatal is False
    assert tolerated.to_dict() == {
        "step": "systemd.stop",
        "outcome": "fatal",
        "detail": "boom",
        "services": ["sensor"],
        "tolerated": True,
    }
