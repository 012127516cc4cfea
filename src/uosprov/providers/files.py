"""File delivery and removal on the device."""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from ..channel import ExecutionChannel
from ..errors import MissingArtifactError
from ..state import Step, StepOutcome, StepResult
from .common import classify


@dataclass(slots=True)
class FileProvider:
    """Copy, move, chmod and delete files through an execution channel."""

    channel: ExecutionChannel

    def stage(self, local: Path, remote: str, *, service: str = "", dry_run: bool = False) -> StepResult:
        """Copy a local artifact to the staging location on the device."""
        services = (service,) if service else ()
        if not local.is_file():
            raise MissingArtifactError(f"Artifact {local} does not exist.")
        if dry_run:
            return StepResult(Step.STAGE, StepOutcome.SKIPPED, f"dry-run: {local} -> {remote}", services)
        self.channel.put(local, remote)
        return StepResult(Step.STAGE, StepOutcome.OK, f"{local} -> {remote}", services)

    def move(self, source: str, destination: str, *, service: str = "", dry_run: bool = False) -> StepResult:
        """Move a staged file to its final location, replacing any existing file."""
        services = (service,) if service else ()
        if dry_run:
            return StepResult(Step.MOVE, StepOutcome.SKIPPED, f"dry-run: {source} -> {destination}", services)
        # A missing staged file is fatal here, so no absence markers apply.
        return classify(
            Step.MOVE,
            self.channel.run(["mv", "-f", source, destination]),
            services,
            absent_markers=(),
        )

    def make_executable(self, path: str, *, service: str = "", dry_run: bool = False) -> StepResult:
        """Set mode 0755 on *path*."""
        services = (service,) if service else ()
        if dry_run:
            return StepResult(Step.CHMOD, StepOutcome.SKIPPED, f"dry-run: {path}", services)
        return classify(
            Step.CHMOD,
            self.channel.run(["chmod", "0755", path]),
            services,
            absent_markers=(),
        )

    def remove(self, paths: Sequence[str], *, service: str = "", dry_run: bool = False) -> StepResult:
        """Delete *paths*; files that are already gone are not an error."""
        services = (service,) if service else ()
        if dry_run:
            return StepResult(Step.REMOVE_FILES, StepOutcome.SKIPPED, "dry-run", services)
        return classify(Step.REMOVE_FILES, self.channel.run(["rm", "-f", *paths]), services)


__all__ = ["FileProvider"]
