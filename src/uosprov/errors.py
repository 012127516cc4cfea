"""Exception hierarchy shared by the provisioning workflow.

Errors fall into three groups:

* :class:`FatalProvisioningError` aborts the run. Anything that establishes
  new state on the device (credentials, files, enablement) raises it.
* :class:`TolerableAbsenceError` marks cleanup of something that is already
  gone, such as a missing credential store. The orchestrator records the step
  as ``ALREADY_ABSENT`` and continues. Absence reported by a command's own
  output is classified directly into ``ALREADY_ABSENT`` without raising.
* :class:`TransportError` is raised by execution channels. It is fatal unless
  the step that triggered it is explicitly tolerant.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

from .exit_codes import ExitCode

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from .orchestrator import RunReport


class ProvisioningError(RuntimeError):
    """Base class for provisioning failures."""

    exit_code: ExitCode = ExitCode.PROVIDER


class FatalProvisioningError(ProvisioningError):
    """Raised when a step that establishes new state fails."""


class CredentialIssuanceFailed(FatalProvisioningError):
    """Raised when the identity provider does not return usable credentials."""


class MissingArtifactError(FatalProvisioningError):
    """Raised when a staged or local artifact is missing."""


class TolerableAbsenceError(ProvisioningError):
    """Raised when the target of a cleanup step is already gone."""


class TransportError(ProvisioningError):
    """Raised when the execution channel itself fails."""

    exit_code = ExitCode.TRANSPORT


class PrivilegeError(ProvisioningError):
    """Raised when the login cannot gain the privileges a run needs."""

    exit_code = ExitCode.ENVIRONMENT


class ProvisioningAborted(FatalProvisioningError):
    """Raised by the orchestrator after a fatal step.

    The guaranteed-release steps have already executed when this is raised;
    ``report`` holds every step recorded up to and including the failure.
    """

    def __init__(self, step: str, reason: str, report: RunReport) -> None:
        super().__init__(f"{step} failed: {reason}")
        self.step = step
        self.reason = reason
        self.report = report


__all__ = [
    "CredentialIssuanceFailed",
    "FatalProvisioningError",
    "MissingArtifactError",
    "PrivilegeError",
    "ProvisioningAborted",
    "ProvisioningError",
    "TolerableAbsenceError",
    "TransportError",
]
