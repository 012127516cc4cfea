"""Root filesystem mount control for read-only u-OS images."""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from ..channel import ExecutionChannel
from ..errors import TransportError
from ..state import Step, StepOutcome, StepResult
from .common import classify

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class MountProvider:
    """Switch the device root between read-only and read-write."""

    channel: ExecutionChannel
    mount_bin: str = "mount"
    growfs_bin: str = "/usr/lib/systemd/systemd-growfs"
    root: str = "/"
    grow: bool = True

    def remount_rw(self, *, dry_run: bool = False) -> StepResult:
        """Remount the root read-write and grow it to fill the partition."""
        if dry_run:
            return StepResult(Step.REMOUNT_RW, StepOutcome.SKIPPED, "dry-run")
        result = classify(
            Step.REMOUNT_RW,
            self.channel.run([self.mount_bin, self.root, "-o", "rw,remount"]),
            absent_markers=(),
        )
        if result.outcome is not StepOutcome.OK or not self.grow:
            return result
        return classify(
            Step.REMOUNT_RW,
            self.channel.run([self.growfs_bin, self.root]),
            absent_markers=(),
        )

    def remount_ro(self, *, dry_run: bool = False) -> StepResult:
        """Remount the root read-only."""
        if dry_run:
            return StepResult(Step.REMOUNT_RO, StepOutcome.SKIPPED, "dry-run")
        return classify(
            Step.REMOUNT_RO,
            self.channel.run([self.mount_bin, self.root, "-o", "ro,remount"]),
            absent_markers=(),
        )

    @contextmanager
    def writable(
        self,
        record: Callable[[StepResult], None],
        *,
        dry_run: bool = False,
    ) -> Iterator[StepResult]:
        """Hold the root read-write for the duration of the block.

        The acquisition result is recorded and yielded; the caller decides
        whether a failed acquisition aborts. The release runs on every exit
        path, including a failed acquisition, and its result is recorded.
        """
        try:
            acquired = self._acquire(dry_run=dry_run)
            record(acquired)
            yield acquired
        finally:
            record(self._release(dry_run=dry_run))

    def _acquire(self, *, dry_run: bool) -> StepResult:
        try:
            return self.remount_rw(dry_run=dry_run)
        except TransportError as exc:
            return StepResult(Step.REMOUNT_RW, StepOutcome.FATAL, str(exc))

    def _release(self, *, dry_run: bool) -> StepResult:
        try:
            return self.remount_ro(dry_run=dry_run)
        except TransportError as exc:
            logger.warning("Read-only remount failed: %s", exc)
            return StepResult(Step.REMOUNT_RO, StepOutcome.FATAL, str(exc))


__all__ = ["MountProvider"]
