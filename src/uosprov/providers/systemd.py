"""Systemd provider issuing batch service-manager operations."""
from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from ..channel import CommandResult, ExecutionChannel
from ..state import Step, StepOutcome, StepResult
from .common import ABSENT_MARKERS, classify


class SystemdError(RuntimeError):
    """Raised when systemd operations are requested with invalid arguments."""


@dataclass(slots=True)
class SystemdProvider:
    """Drive ``systemctl`` on the device through an execution channel.

    Stop, disable and enable operate on the whole service list in a single
    call so the service manager applies its own dependency ordering.
    """

    channel: ExecutionChannel
    systemctl_bin: str = "systemctl"

    def stop(self, services: Sequence[str], *, dry_run: bool = False) -> StepResult:
        """Stop every service in *services*."""
        return self._batch(Step.STOP, ["stop"], services, dry_run=dry_run)

    def disable(self, services: Sequence[str], *, dry_run: bool = False) -> StepResult:
        """Disable every service in *services*."""
        return self._batch(Step.DISABLE, ["disable"], services, dry_run=dry_run)

    def enable_now(self, services: Sequence[str], *, dry_run: bool = False) -> StepResult:
        """Enable and start every service in *services*.

        A unit that does not exist fails the step like any other error.
        """
        return self._batch(
            Step.ENABLE_NOW, ["enable", "--now"], services, dry_run=dry_run, absent_markers=()
        )

    def daemon_reload(self, *, dry_run: bool = False) -> StepResult:
        """Reload the unit cache."""
        if dry_run:
            return _skipped(Step.DAEMON_RELOAD, ())
        return classify(Step.DAEMON_RELOAD, self._systemctl("daemon-reload"), absent_markers=())

    def restart(self, unit: str, *, required: bool = False, dry_run: bool = False) -> StepResult:
        """Restart a single unit.

        When *required* is set a missing unit is fatal instead of already absent.
        """
        if dry_run:
            return _skipped(Step.REFRESH_IDENTITY, (unit,))
        markers = () if required else ABSENT_MARKERS
        return classify(
            Step.REFRESH_IDENTITY, self._systemctl("restart", unit), (unit,), absent_markers=markers
        )

    # ------------------------------------------------------------------
    def _batch(
        self,
        step: Step,
        command: list[str],
        services: Sequence[str],
        *,
        dry_run: bool,
        absent_markers: Iterable[str] = ABSENT_MARKERS,
    ) -> StepResult:
        if not services:
            raise SystemdError(f"systemctl {command[0]} requires at least one service.")
        if dry_run:
            return _skipped(step, services)
        result = self._systemctl(*command, *services)
        return classify(step, result, services, absent_markers=absent_markers)

    def _systemctl(self, *args: str) -> CommandResult:
        return self.channel.run([self.systemctl_bin, *args])


def _skipped(step: Step, services: Sequence[str]) -> StepResult:
    return StepResult(step, StepOutcome.SKIPPED, "dry-run", tuple(services))


__all__ = ["SystemdError", "SystemdProvider"]
