"""Result classification shared by the providers."""
from __future__ import annotations

from collections.abc import Iterable, Sequence

from ..channel import CommandResult
from ..state import Step, StepOutcome, StepResult

# Phrases systemctl, rm and find use when the target is already gone.
ABSENT_MARKERS: tuple[str, ...] = (
    "not loaded",
    "not found",
    "does not exist",
    "no such file",
    "not running",
    "inactive",
)


def classify(
    step: Step,
    result: CommandResult,
    services: Sequence[str] = (),
    *,
    absent_markers: Iterable[str] = ABSENT_MARKERS,
) -> StepResult:
    """Translate a command result into a :class:`StepResult`."""
    if result.ok:
        return StepResult(step, StepOutcome.OK, result.stdout.strip(), tuple(services))
    text = f"{result.stderr}\n{result.stdout}".lower()
    if any(marker in text for marker in absent_markers):
        return StepResult(step, StepOutcome.ALREADY_ABSENT, result.message, tuple(services))
    detail = f"{' '.join(result.argv)} failed (exit {result.returncode}): {result.message}"
    return StepResult(step, StepOutcome.FATAL, detail, tuple(services))


__all__ = ["ABSENT_MARKERS", "classify"]
