"""Deployment orchestrator: the install and remove paths.

Each path is a fixed table of steps. Every step yields a
:class:`~uosprov.state.StepResult` that is folded into the run's
:class:`~uosprov.state.DeviceProvisioningState`. A ``FATAL`` result aborts
the run with :class:`~uosprov.errors.ProvisioningAborted` unless the step is
tolerant, in which case the failure is kept as a warning. The read-write root
mount is always released before an abort propagates.
"""
from __future__ import annotations

import logging
import shlex
import tempfile
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path

from . import __version__
from .channel import ExecutionChannel
from .config import AppConfig
from .credentials import (
    ChannelAdminClient,
    ClientsDirIssuer,
    Credential,
    CredentialIssuer,
    CredentialLedger,
    CredentialStore,
    Issuer,
    SocketAdminClient,
)
from .errors import ProvisioningAborted, ProvisioningError, TolerableAbsenceError
from .providers import FileProvider, MountProvider, SystemdProvider
from .registry import StateRegistryError
from .services import ServiceRegistry, ServiceRegistryError, ServiceSpec
from .state import DeviceProvisioningState, Step, StepOutcome, StepResult, transition
from .templates import TemplateEngine

logger = logging.getLogger(__name__)

UNIT_TEMPLATE = "systemd/service.j2"
REMOVE_SCRIPT_TEMPLATE = "scripts/remove.sh.j2"


def _silent(_: str) -> None:
    return None


@dataclass(slots=True)
class RunReport:
    """Everything a run did, in order."""

    steps: list[StepResult] = field(default_factory=list)
    state: DeviceProvisioningState = field(default_factory=DeviceProvisioningState)
    warnings: list[str] = field(default_factory=list)
    credentials: list[Credential] = field(default_factory=list)
    orphaned_clients: list[str] = field(default_factory=list)

    def record(self, result: StepResult) -> StepResult:
        """Append *result* and advance the state."""
        self.steps.append(result)
        self.state = transition(self.state, result)
        return result

    @property
    def changed(self) -> bool:
        """Whether any step did work on the device."""
        return any(step.outcome is StepOutcome.OK for step in self.steps)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "steps": [step.to_dict() for step in self.steps],
            "state": self.state.to_dict(),
            "warnings": list(self.warnings),
            "credentials": [
                {
                    "client_name": credential.client_name,
                    "client_id": credential.client_id,
                    "path": credential.encrypted_blob_path,
                }
                for credential in self.credentials
            ],
            "orphaned_clients": list(self.orphaned_clients),
        }


@dataclass(slots=True)
class Orchestrator:
    """Run the install and remove paths against one device."""

    systemd: SystemdProvider
    mount: MountProvider
    files: FileProvider
    issuer: Issuer
    store: CredentialStore
    templates: TemplateEngine
    executable_dir: str = "/usr/bin"
    unit_dir: str = "/usr/lib/systemd/system"
    staging_dir: str = "/tmp"
    manage_mount: bool = True
    client_creator_unit: str = "hydra-client-creator"
    ledger: CredentialLedger | None = None
    phase: Callable[[str], None] = _silent

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        channel: ExecutionChannel,
        *,
        remote: bool,
        ledger: CredentialLedger | None = None,
        phase: Callable[[str], None] = _silent,
    ) -> Orchestrator:
        """Wire providers and the credential issuer from configuration."""
        binaries = config.binaries
        paths = config.paths
        store = CredentialStore(channel, str(paths.credstore_dir), binaries.systemd_creds)
        issuer: Issuer
        if config.credentials.mode == "clients-dir":
            issuer = ClientsDirIssuer(channel, store, str(paths.hydra_clients_dir))
        elif remote:
            issuer = CredentialIssuer(
                ChannelAdminClient(
                    channel,
                    str(paths.hydra_admin_socket),
                    config.credentials.admin_url,
                    binaries.curl,
                ),
                store,
            )
        else:
            issuer = CredentialIssuer(
                SocketAdminClient(
                    paths.hydra_admin_socket,
                    config.credentials.admin_url,
                    config.credentials.timeout,
                ),
                store,
            )
        return cls(
            systemd=SystemdProvider(channel, binaries.systemctl),
            mount=MountProvider(
                channel,
                binaries.mount,
                binaries.growfs,
                config.mount.root,
                config.mount.grow,
            ),
            files=FileProvider(channel),
            issuer=issuer,
            store=store,
            templates=TemplateEngine.with_overrides(config.templates_dir),
            executable_dir=str(paths.executable_dir),
            unit_dir=str(paths.unit_dir),
            staging_dir=str(paths.staging_dir),
            manage_mount=config.mount.manage,
            client_creator_unit=config.credentials.client_creator_unit,
            ledger=ledger,
            phase=phase,
        )

    # ------------------------------------------------------------------
    # Paths on the device
    # ------------------------------------------------------------------
    def executable_path(self, spec: ServiceSpec) -> str:
        """Final location of the executable of *spec*."""
        return _join(self.executable_dir, spec.name)

    def unit_path(self, spec: ServiceSpec) -> str:
        """Final location of the unit file of *spec*."""
        return _join(self.unit_dir, spec.unit_name)

    def staged_executable(self, spec: ServiceSpec) -> str:
        """Staging location of the executable of *spec*."""
        return _join(self.staging_dir, spec.name)

    def staged_unit(self, spec: ServiceSpec) -> str:
        """Staging location of the unit file of *spec*."""
        return _join(self.staging_dir, spec.unit_name)

    def render_unit(self, spec: ServiceSpec) -> str:
        """Render the unit file of *spec* from the built-in template."""
        return self.templates.render_to_string(
            UNIT_TEMPLATE,
            {
                "description": f"u-OS hub example service {spec.name}",
                "exec_start": self.executable_path(spec),
                "client_name": spec.client_name,
                "credstore_dir": self.store.store_dir.rstrip("/"),
            },
        )

    # ------------------------------------------------------------------
    # Install path
    # ------------------------------------------------------------------
    def install(
        self,
        registry: ServiceRegistry,
        *,
        state: DeviceProvisioningState | None = None,
        dry_run: bool = False,
    ) -> RunReport:
        """Deliver, register and start every service in *registry*."""
        _require_services(registry)
        report = RunReport(state=state or DeviceProvisioningState())
        names = registry.names()

        self.phase("Stage artifacts")
        with tempfile.TemporaryDirectory(prefix="uosprov-units-") as tmp:
            for spec in registry:
                self._stage(report, spec, Path(tmp), dry_run=dry_run)

        with self._writable(report, dry_run=dry_run):
            self._issue_all(report, list(registry), dry_run=dry_run)

            self.phase(f"Stop {' '.join(names)}")
            self._step(report, Step.STOP, names,
                       lambda: self.systemd.stop(names, dry_run=dry_run), tolerate=True)

            self.phase("Move files to their final locations")
            for spec in registry:
                self._step(report, Step.MOVE, [spec.name], lambda spec=spec: self.files.move(
                    self.staged_executable(spec), self.executable_path(spec),
                    service=spec.name, dry_run=dry_run))
                self._step(report, Step.MOVE, [spec.name], lambda spec=spec: self.files.move(
                    self.staged_unit(spec), self.unit_path(spec),
                    service=spec.name, dry_run=dry_run))

            self.phase("Overwrite file permissions")
            for spec in registry:
                self._step(report, Step.CHMOD, [spec.name], lambda spec=spec: self.files.make_executable(
                    self.executable_path(spec), service=spec.name, dry_run=dry_run))

        self.phase("Reload systemd")
        self._step(report, Step.DAEMON_RELOAD, [], lambda: self.systemd.daemon_reload(dry_run=dry_run))

        self.phase("Enable and start the services")
        self._step(report, Step.ENABLE_NOW, names, lambda: self.systemd.enable_now(names, dry_run=dry_run))
        return report

    def issue_credentials(
        self,
        specs: Sequence[ServiceSpec],
        *,
        dry_run: bool = False,
    ) -> RunReport:
        """Issue and seal credentials for *specs* without touching their files."""
        report = RunReport()
        with self._writable(report, dry_run=dry_run):
            self._issue_all(report, specs, dry_run=dry_run)
        return report

    # ------------------------------------------------------------------
    # Remove path
    # ------------------------------------------------------------------
    def remove(
        self,
        registry: ServiceRegistry,
        *,
        state: DeviceProvisioningState | None = None,
        dry_run: bool = False,
    ) -> RunReport:
        """Stop, disable and delete every service in *registry* and its credentials."""
        _require_services(registry)
        report = RunReport(state=state or DeviceProvisioningState())
        names = registry.names()

        self.phase(f"Disable {' '.join(names)}")
        self._step(report, Step.STOP, names,
                   lambda: self.systemd.stop(names, dry_run=dry_run), tolerate=True)
        self._step(report, Step.DISABLE, names,
                   lambda: self.systemd.disable(names, dry_run=dry_run), tolerate=True)

        with self._writable(report, dry_run=dry_run):
            self.phase("Remove service and executable files")
            for spec in registry:
                paths = [self.executable_path(spec), self.unit_path(spec), *self.issuer.device_paths(spec)]
                self._step(report, Step.REMOVE_FILES, [spec.name],
                           lambda spec=spec, paths=paths: self.files.remove(
                               paths, service=spec.name, dry_run=dry_run),
                           tolerate=True)

            self.phase("Remove credentials")
            self._step(report, Step.REMOVE_CREDENTIALS, names,
                       lambda: self.store.remove_patterns(
                           registry.credential_patterns(), services=names, dry_run=dry_run))
            if self.ledger is not None and not dry_run:
                ledger = self.ledger
                retired = self._update_ledger(
                    report, lambda: ledger.retire(names), "Removed credentials"
                )
                if retired:
                    report.orphaned_clients.extend(retired)
                    report.warnings.append(
                        "Identity provider still holds clients for removed credentials: "
                        + ", ".join(retired)
                    )

            self.phase(f"Restart {self.client_creator_unit}")
            self._step(report, Step.REFRESH_IDENTITY, [self.client_creator_unit],
                       lambda: self.systemd.restart(self.client_creator_unit, dry_run=dry_run),
                       tolerate=True)

        self.phase("Reload systemd")
        self._step(report, Step.DAEMON_RELOAD, [],
                   lambda: self.systemd.daemon_reload(dry_run=dry_run), tolerate=True)
        return report

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _stage(self, report: RunReport, spec: ServiceSpec, scratch: Path, *, dry_run: bool) -> None:
        if spec.executable_source is not None:
            source = spec.executable_source
            self._step(report, Step.STAGE, [spec.name], lambda: self.files.stage(
                source, self.staged_executable(spec), service=spec.name, dry_run=dry_run))
        if spec.unit_source is not None:
            unit_source = spec.unit_source
        else:
            unit_source = scratch / spec.unit_name
            unit_source.write_text(self.render_unit(spec), encoding="utf-8")
        self._step(report, Step.STAGE, [spec.name], lambda: self.files.stage(
            unit_source, self.staged_unit(spec), service=spec.name, dry_run=dry_run))

    def _issue_all(self, report: RunReport, specs: Sequence[ServiceSpec], *, dry_run: bool) -> None:
        self.phase("Generate credentials")
        for spec in specs:
            self._step(report, Step.ISSUE_CREDENTIALS, [spec.name],
                       lambda spec=spec: self._issue(report, spec, dry_run=dry_run))
        if self.issuer.requires_refresh:
            self.phase(f"Restart {self.client_creator_unit}")
            self._step(report, Step.REFRESH_IDENTITY, [self.client_creator_unit],
                       lambda: self.systemd.restart(self.client_creator_unit, required=True, dry_run=dry_run))

    def _issue(self, report: RunReport, spec: ServiceSpec, *, dry_run: bool) -> StepResult:
        if dry_run:
            return StepResult(Step.ISSUE_CREDENTIALS, StepOutcome.SKIPPED, "dry-run", (spec.name,))
        credential = self.issuer.issue(spec)
        report.credentials.append(credential)
        if self.ledger is not None and credential.client_id:
            ledger = self.ledger
            orphaned = self._update_ledger(
                report,
                lambda: ledger.record(spec.name, spec.client_name, credential.client_id),
                f"Issued {spec.client_name} as {credential.client_id}",
            )
            if orphaned:
                report.orphaned_clients.extend(orphaned)
                report.warnings.append(
                    f"Re-issued {spec.client_name}; orphaned identity provider clients: "
                    + ", ".join(orphaned)
                )
        return StepResult(
            Step.ISSUE_CREDENTIALS,
            StepOutcome.OK,
            credential.encrypted_blob_path,
            (spec.name,),
        )

    def _step(
        self,
        report: RunReport,
        step: Step,
        services: Sequence[str],
        action: Callable[[], StepResult],
        *,
        tolerate: bool = False,
    ) -> StepResult:
        try:
            result = action()
        except TolerableAbsenceError as exc:
            result = StepResult(step, StepOutcome.ALREADY_ABSENT, str(exc), tuple(services))
        except ProvisioningError as exc:
            result = StepResult(step, StepOutcome.FATAL, str(exc), tuple(services))
        result = self._accept(report, result, tolerate=tolerate)
        if result.fatal:
            raise ProvisioningAborted(step.value, result.detail, report)
        return result

    def _update_ledger(
        self,
        report: RunReport,
        action: Callable[[], list[str]],
        done: str,
    ) -> list[str]:
        # Runs after the device change, so failures never abort the step.
        try:
            return action()
        except (StateRegistryError, OSError) as exc:
            logger.warning("Credential ledger update failed: %s", exc)
            report.warnings.append(f"{done} but the credential ledger was not updated: {exc}")
            return []

    def _accept(self, report: RunReport, result: StepResult, *, tolerate: bool) -> StepResult:
        if result.outcome is StepOutcome.FATAL and tolerate:
            result = replace(result, tolerated=True)
            report.warnings.append(f"{result.step.value}: {result.detail}")
        logger.info("%s %s %s", result.step.value, result.outcome.value, result.detail)
        return report.record(result)

    @contextmanager
    def _writable(self, report: RunReport, *, dry_run: bool) -> Iterator[None]:
        if not self.manage_mount:
            yield
            return

        def record(result: StepResult) -> None:
            # The release never aborts; a failed release is kept as a warning.
            self._accept(report, result, tolerate=result.step is Step.REMOUNT_RO)

        self.phase(f"Mount {self.mount.root} as rw")
        with self.mount.writable(record, dry_run=dry_run) as acquired:
            if acquired.fatal:
                raise ProvisioningAborted(acquired.step.value, acquired.detail, report)
            yield
            self.phase(f"Mount {self.mount.root} as ro")


def render_remove_script(
    registry: ServiceRegistry,
    config: AppConfig,
    *,
    templates: TemplateEngine | None = None,
    extra_paths: Sequence[str] = (),
) -> str:
    """Render the remove path as a standalone POSIX shell script."""
    _require_services(registry)
    engine = templates or TemplateEngine.with_overrides(config.templates_dir)
    paths = config.paths
    remove_paths: list[str] = []
    for spec in registry:
        remove_paths.append(_join(str(paths.executable_dir), spec.name))
        remove_paths.append(_join(str(paths.unit_dir), spec.unit_name))
    remove_paths.extend(extra_paths)
    return engine.render_to_string(
        REMOVE_SCRIPT_TEMPLATE,
        {
            "version": __version__,
            "service_args": shlex.join(registry.names()),
            "systemctl": config.binaries.systemctl,
            "mount_bin": config.binaries.mount,
            "mount_root": config.mount.root,
            "manage_mount": config.mount.manage,
            "grow": config.mount.grow,
            "growfs": config.binaries.growfs,
            "remove_paths": remove_paths,
            "credstore_dir": str(paths.credstore_dir),
            "credential_patterns": registry.credential_patterns(),
            "client_creator_unit": config.credentials.client_creator_unit,
        },
    )


def _join(directory: str, name: str) -> str:
    return f"{directory.rstrip('/')}/{name}"


def _require_services(registry: ServiceRegistry) -> None:
    if not len(registry):
        raise ServiceRegistryError("No services configured.")


__all__ = [
    "Orchestrator",
    "RunReport",
    "render_remove_script",
]
