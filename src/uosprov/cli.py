"""Typer-powered command line for ``uosprov``.

Commands provision the u-OS hub example services on the local machine or on a
device reached over ssh. Every command runs inside a structured operation
scope so its steps and result land in ``operations.jsonl``.
"""
from __future__ import annotations

import json
import os
import textwrap
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .channel import ExecutionChannel, LocalChannel, SshChannel, run_script
from .config import AppConfig, ConfigError, load_config
from .credentials import CredentialLedger
from .errors import ProvisioningAborted, ProvisioningError
from .exit_codes import ExitCode
from .locking import LockManager, LockTimeoutError
from .logging import OperationScope, StructuredLogger
from .orchestrator import Orchestrator, RunReport, render_remove_script
from .registry import StateRegistry, StateRegistryError
from .services import ServiceRegistry, ServiceRegistryError, registry_from_config
from .state import StepOutcome, StepResult
from .targets import (
    DeploymentTarget,
    TargetResolutionError,
    artifact_path,
    resolve_target_triple,
    usage_text,
)
from .templates import TemplateEngine

console = Console()

SUDO_PASSWORD_ENV = "UOSPROV_SUDO_PASSWORD"
REMOVE_SCRIPT_NAME = "uosprov-remove.sh"

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to uosprov's YAML config file.",
)

REMOTE_OPTION = typer.Option(
    None,
    "--remote",
    "-r",
    help="Provision a remote device reached as [user@]host over ssh.",
)

SUDO_OPTION = typer.Option(
    None,
    "--sudo/--no-sudo",
    help="Run device commands through sudo (default: unless acting as root).",
)

DRY_RUN_OPTION = typer.Option(
    False,
    "--dry-run",
    help="Report the steps that would run without touching the device.",
)

JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit JSON instead of a table.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        u-OS device provisioning for the hub example services.

        Issues machine-client credentials from the device identity provider,
        delivers executables and unit files, and drives the services through
        install and removal.
        """
    ).strip(),
)
target_app = typer.Typer(help="Inspect target aliases and architecture triples.")
services_app = typer.Typer(help="Inspect the managed services.")
credentials_app = typer.Typer(help="Issue and inspect machine-client credentials.")
config_app = typer.Typer(help="Inspect the effective configuration.")

app.add_typer(target_app, name="target")
app.add_typer(services_app, name="services")
app.add_typer(credentials_app, name="credentials")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    registry: StateRegistry
    locks: LockManager
    logger: StructuredLogger
    templates: TemplateEngine


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    lock_timeout_override: float | None = None,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    overrides: dict[str, object] = {}
    if lock_timeout_override is not None:
        overrides["lock_timeout"] = lock_timeout_override

    try:
        config = load_config(config_file=config_file, overrides=overrides)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc
    registry = StateRegistry(config.registry_dir)
    runtime = RuntimeContext(
        config=config,
        registry=registry,
        locks=LockManager(config.runtime_dir, config.lock_timeout),
        logger=StructuredLogger(config.logs_dir),
        templates=TemplateEngine.with_overrides(config.templates_dir),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the uosprov version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    lock_timeout: float | None = typer.Option(
        None,
        "--lock-timeout",
        help="Override lock acquisition timeout in seconds.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        runtime = _ensure_runtime(ctx, config_file, lock_timeout)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"uosprov {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file, lock_timeout)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
    context: Mapping[str, object] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc), context=context)
    raise typer.Exit(code=int(rc))


def _phase(text: str) -> None:
    console.print(f"[bold cyan]-->[/bold cyan] {text}")


def _record_steps(op: OperationScope, steps: Sequence[StepResult]) -> None:
    for result in steps:
        status = "warning" if result.tolerated else result.outcome.value
        op.add_step(result.step.value, status=status, detail=result.detail or None)


def _make_target(remote: str | None, op: OperationScope) -> DeploymentTarget:
    try:
        return DeploymentTarget(remote)
    except TargetResolutionError as exc:
        _command_error(op, str(exc), rc=ExitCode.VALIDATION)


def _wants_sudo(target: DeploymentTarget, sudo: bool | None) -> bool:
    if sudo is not None:
        return sudo
    if target.is_remote:
        return target.user != "root"
    return os.geteuid() != 0


def _build_channel(
    runtime: RuntimeContext,
    target: DeploymentTarget,
    op: OperationScope,
    *,
    sudo: bool,
    prompt_password: bool,
) -> ExecutionChannel:
    """Create the channel for *target*; ask for a sudo password only if sudo needs one."""
    channel_config = runtime.config.channel
    if not target.is_remote:
        return LocalChannel(sudo=sudo, timeout=channel_config.timeout)
    assert target.login is not None
    channel = SshChannel(
        login=target.login,
        ssh_bin=runtime.config.binaries.ssh,
        scp_bin=runtime.config.binaries.scp,
        options=channel_config.ssh_options,
        sudo=sudo,
        timeout=channel_config.timeout,
    )
    if sudo and prompt_password:
        _authorise_sudo(channel, op)
    return channel


def _authorise_sudo(channel: SshChannel, op: OperationScope) -> None:
    try:
        if not channel.sudo_needs_password():
            op.add_step("sudo.check", status="success", detail="no password required")
            return
        password = os.environ.get(SUDO_PASSWORD_ENV)
        if password is None:
            password = typer.prompt(
                f"[sudo] password for {channel.login}",
                hide_input=True,
                default="",
                show_default=False,
            )
        accepted = channel.verify_sudo_password(password)
    except ProvisioningError as exc:
        _command_error(op, str(exc), rc=exc.exit_code)
    if not accepted:
        _command_error(
            op, f"Sudo authentication failed for {channel.login}.", rc=ExitCode.ENVIRONMENT
        )
    channel.sudo_password = password
    op.add_step("sudo.check", status="success", detail="password accepted")


def _load_services(
    runtime: RuntimeContext,
    op: OperationScope,
    *,
    executables: Mapping[str, Path] | None = None,
    units: Mapping[str, Path] | None = None,
) -> ServiceRegistry:
    try:
        registry = registry_from_config(runtime.config, executables=executables, units=units)
    except ServiceRegistryError as exc:
        _command_error(op, str(exc), rc=ExitCode.VALIDATION)
    if not len(registry):
        _command_error(op, "No services configured.", rc=ExitCode.VALIDATION)
    return registry


def _ledger(runtime: RuntimeContext, target: DeploymentTarget) -> CredentialLedger:
    return CredentialLedger(runtime.registry, target.key)


def _run_report(
    op: OperationScope,
    action: Callable[[], RunReport],
    *,
    verb: str,
) -> RunReport:
    """Run an orchestrator path and translate failures into exit codes."""
    try:
        report = action()
    except ProvisioningAborted as exc:
        _record_steps(op, exc.report.steps)
        for warning in exc.report.warnings:
            console.print(f"[yellow]warning:[/yellow] {warning}")
        _command_error(
            op,
            f"{verb} aborted: {exc}",
            rc=exc.exit_code,
            errors=[str(exc)],
            context=exc.report.to_dict(),
        )
    except (ProvisioningError, StateRegistryError) as exc:
        rc = getattr(exc, "exit_code", ExitCode.PROVIDER)
        _command_error(op, f"{verb} failed: {exc}", rc=rc)
    _record_steps(op, report.steps)
    for warning in report.warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")
    return report


def _finish(op: OperationScope, report: RunReport, message: str, *, dry_run: bool) -> None:
    changed = sum(1 for step in report.steps if step.outcome is StepOutcome.OK)
    if dry_run:
        console.print(f"[yellow]Dry run[/yellow]: {message}")
        op.success("Dry run complete.", changed=0, context=report.to_dict())
        return
    if report.warnings:
        console.print(f"[yellow]{message} (with warnings).[/yellow]")
        op.warning(message, warnings=report.warnings, changed=changed, context=report.to_dict())
        return
    console.print(f"[green]{message}.[/green]")
    op.success(message, changed=changed, context=report.to_dict())


@app.command()
def install(
    ctx: typer.Context,
    target_alias: str = typer.Argument(
        ...,
        metavar="TARGET",
        help="Device alias (ucu, ucm, ucg, x86_64) or architecture triple.",
    ),
    remote: str | None = REMOTE_OPTION,
    artifacts_dir: Path = typer.Option(
        Path("target"),
        "--artifacts-dir",
        file_okay=False,
        help="Cargo output directory holding <triple>/release/examples/<service>.",
    ),
    units_dir: Path | None = typer.Option(
        None,
        "--units-dir",
        file_okay=False,
        help="Directory with <service>.service files (default: render the built-in unit).",
    ),
    sudo: bool | None = SUDO_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
) -> None:
    """Install and start the example services on a device."""
    runtime = _get_runtime(ctx)
    args = {
        "target": target_alias,
        "remote": remote,
        "artifacts_dir": artifacts_dir,
        "units_dir": units_dir,
        "dry_run": dry_run,
    }
    with runtime.logger.operation(
        "install",
        args=args,
        target={"kind": "device", "device": remote or "local"},
    ) as op:
        try:
            triple = resolve_target_triple(target_alias)
        except TargetResolutionError as exc:
            console.print(usage_text())
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)
        op.add_step("target.resolve", status="success", detail=triple)

        target = _make_target(remote, op)
        base = _load_services(runtime, op)
        executables = {
            spec.name: artifact_path(artifacts_dir, triple, spec.name)
            for spec in base
            if spec.executable_source is None
        }
        units = (
            {spec.name: units_dir / spec.unit_name for spec in base if spec.unit_source is None}
            if units_dir is not None
            else None
        )
        registry = _load_services(runtime, op, executables=executables, units=units)

        elevated = _wants_sudo(target, sudo)
        channel = _build_channel(runtime, target, op, sudo=elevated, prompt_password=not dry_run)
        console.print(
            f"Installing {', '.join(registry.names())} for {triple} on {channel.describe()}"
        )
        try:
            with runtime.locks.device_lock(target.key) as lock:
                op.set_lock_wait_ms(lock.wait_ms)
                orchestrator = Orchestrator.from_config(
                    runtime.config,
                    channel,
                    remote=target.is_remote,
                    ledger=_ledger(runtime, target),
                    phase=_phase,
                )
                report = _run_report(
                    op,
                    lambda: orchestrator.install(registry, dry_run=dry_run),
                    verb="Install",
                )
        except LockTimeoutError as exc:
            _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)
        _finish(op, report, f"Installed {len(registry)} service(s)", dry_run=dry_run)


@app.command()
def remove(
    ctx: typer.Context,
    remote: str | None = REMOTE_OPTION,
    script: bool = typer.Option(
        False,
        "--script",
        help="Copy a generated remove script to the device and run it over an interactive sudo session.",
    ),
    sudo: bool | None = SUDO_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
) -> None:
    """Stop, disable and delete the example services and their credentials."""
    runtime = _get_runtime(ctx)
    args = {"remote": remote, "script": script, "dry_run": dry_run}
    with runtime.logger.operation(
        "remove",
        args=args,
        target={"kind": "device", "device": remote or "local"},
    ) as op:
        target = _make_target(remote, op)
        registry = _load_services(runtime, op)
        elevated = _wants_sudo(target, sudo)

        if script:
            _remove_with_script(runtime, op, target, registry, elevated=elevated, dry_run=dry_run)
            return

        channel = _build_channel(runtime, target, op, sudo=elevated, prompt_password=not dry_run)
        console.print(f"Removing {', '.join(registry.names())} from {channel.describe()}")
        try:
            with runtime.locks.device_lock(target.key) as lock:
                op.set_lock_wait_ms(lock.wait_ms)
                orchestrator = Orchestrator.from_config(
                    runtime.config,
                    channel,
                    remote=target.is_remote,
                    ledger=_ledger(runtime, target),
                    phase=_phase,
                )
                report = _run_report(
                    op,
                    lambda: orchestrator.remove(registry, dry_run=dry_run),
                    verb="Remove",
                )
        except LockTimeoutError as exc:
            _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)
        _finish(op, report, f"Removed {len(registry)} service(s)", dry_run=dry_run)


def _remove_with_script(
    runtime: RuntimeContext,
    op: OperationScope,
    target: DeploymentTarget,
    registry: ServiceRegistry,
    *,
    elevated: bool,
    dry_run: bool,
) -> None:
    """Run the remove path as one script so sudo prompts only once."""
    extra_paths: list[str] = []
    if runtime.config.credentials.mode == "clients-dir":
        clients_dir = str(runtime.config.paths.hydra_clients_dir).rstrip("/")
        extra_paths = [f"{clients_dir}/{spec.client_name}" for spec in registry]
    script_text = render_remove_script(
        registry,
        runtime.config,
        templates=runtime.templates,
        extra_paths=extra_paths,
    )
    op.add_step("script.render", status="success", detail=REMOVE_SCRIPT_NAME)
    if dry_run:
        console.print(script_text, markup=False, highlight=False, soft_wrap=True)
        console.print("[yellow]Dry run[/yellow]: remove script not executed.")
        op.success("Dry run complete.", changed=0)
        return

    channel = _build_channel(runtime, target, op, sudo=elevated, prompt_password=False)
    try:
        with runtime.locks.device_lock(target.key) as lock:
            op.set_lock_wait_ms(lock.wait_ms)
            rc = run_script(
                channel,
                script_text,
                name=REMOVE_SCRIPT_NAME,
                remote_dir=str(runtime.config.paths.staging_dir),
            )
    except LockTimeoutError as exc:
        _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)
    except ProvisioningError as exc:
        _command_error(op, f"Remove script failed: {exc}", rc=exc.exit_code)
    if rc != 0:
        op.add_step("script.run", status="fatal", detail=f"exit {rc}")
        _command_error(op, f"Remove script exited with status {rc}.", rc=ExitCode.PROVIDER)
    op.add_step("script.run", status="ok", detail="exit 0")
    warnings: list[str] = []
    try:
        retired = _ledger(runtime, target).retire(registry.names())
    except (StateRegistryError, OSError) as exc:
        warnings.append(f"Removed credentials but the credential ledger was not updated: {exc}")
    else:
        if retired:
            warnings.append(
                f"Identity provider still holds clients for removed credentials: {', '.join(retired)}"
            )
    for warning in warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")
    console.print(f"[green]Removed {len(registry)} service(s).[/green]")
    op.success("Remove script completed.", changed=1, warnings=warnings)


@target_app.command("resolve")
def target_resolve(
    ctx: typer.Context,
    alias: str = typer.Argument(..., help="Device alias or architecture triple."),
) -> None:
    """Print the architecture triple for a device alias."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "target resolve",
        args={"alias": alias},
        target={"kind": "target", "alias": alias},
    ) as op:
        try:
            triple = resolve_target_triple(alias)
        except TargetResolutionError as exc:
            console.print(usage_text())
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)
        console.print(triple)
        op.success("Resolved target triple.", changed=0, context={"triple": triple})


@services_app.command("list")
def services_list(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """List the services a provisioning run manages."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "services list",
        args={"json": json_output},
        target={"kind": "services"},
    ) as op:
        registry = _load_services(runtime, op)
        entries = [
            {
                "name": spec.name,
                "scope": spec.scope,
                "client_name": spec.client_name,
                "credential": spec.credential_file,
                "unit": spec.unit_name,
            }
            for spec in registry
        ]
        if json_output:
            console.print_json(
                data={
                    "services": entries,
                    "credential_patterns": registry.credential_patterns(),
                }
            )
            op.success("Reported services as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Service", style="bold")
        table.add_column("Scope")
        table.add_column("Client")
        table.add_column("Credential")
        for entry in entries:
            table.add_row(entry["name"], entry["scope"], entry["client_name"], entry["credential"])
        console.print(table)
        op.success("Reported services.", changed=0)


@credentials_app.command("issue")
def credentials_issue(
    ctx: typer.Context,
    service: str = typer.Argument(..., help="Service (or client) name to issue for."),
    remote: str | None = REMOTE_OPTION,
    sudo: bool | None = SUDO_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
) -> None:
    """Issue and seal a fresh credential for one service."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "credentials issue",
        args={"service": service, "remote": remote, "dry_run": dry_run},
        target={"kind": "credential", "service": service, "device": remote or "local"},
    ) as op:
        target = _make_target(remote, op)
        registry = _load_services(runtime, op)
        try:
            spec = registry.get(service)
        except ServiceRegistryError as exc:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)

        elevated = _wants_sudo(target, sudo)
        channel = _build_channel(runtime, target, op, sudo=elevated, prompt_password=not dry_run)
        try:
            with runtime.locks.device_lock(target.key) as lock:
                op.set_lock_wait_ms(lock.wait_ms)
                orchestrator = Orchestrator.from_config(
                    runtime.config,
                    channel,
                    remote=target.is_remote,
                    ledger=_ledger(runtime, target),
                    phase=_phase,
                )
                report = _run_report(
                    op,
                    lambda: orchestrator.issue_credentials([spec], dry_run=dry_run),
                    verb="Credential issue",
                )
        except LockTimeoutError as exc:
            _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)
        for credential in report.credentials:
            console.print(f"{credential.client_name}: {credential.encrypted_blob_path}")
        _finish(op, report, f"Issued credential for {spec.client_name}", dry_run=dry_run)


@credentials_app.command("inspect")
def credentials_inspect(
    ctx: typer.Context,
    service: str = typer.Argument(..., help="Service (or client) name to inspect."),
    remote: str | None = REMOTE_OPTION,
    sudo: bool | None = SUDO_OPTION,
) -> None:
    """Decrypt a sealed credential and show its client id (never the secret)."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "credentials inspect",
        args={"service": service, "remote": remote},
        target={"kind": "credential", "service": service, "device": remote or "local"},
    ) as op:
        target = _make_target(remote, op)
        registry = _load_services(runtime, op)
        try:
            spec = registry.get(service)
        except ServiceRegistryError as exc:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)
        channel = _build_channel(
            runtime, target, op, sudo=_wants_sudo(target, sudo), prompt_password=True
        )
        orchestrator = Orchestrator.from_config(runtime.config, channel, remote=target.is_remote)
        try:
            values = orchestrator.store.read(spec.client_name)
        except ProvisioningError as exc:
            _command_error(op, str(exc), rc=exc.exit_code)
        client_id = values.get("CLIENT_ID", "")
        has_secret = bool(values.get("CLIENT_SECRET"))
        console.print(f"CLIENT_ID={client_id}")
        console.print(f"CLIENT_SECRET={'<present>' if has_secret else '<missing>'}")
        if not client_id or not has_secret:
            _command_error(
                op,
                f"Credential '{spec.client_name}' is incomplete.",
                rc=ExitCode.PROVIDER,
            )
        op.success("Inspected credential.", changed=0, context={"client_id": client_id})


@credentials_app.command("ledger")
def credentials_ledger(
    ctx: typer.Context,
    remote: str | None = typer.Option(
        None,
        "--remote",
        "-r",
        help="Only show clients issued for this device.",
    ),
    orphaned_only: bool = typer.Option(
        False,
        "--orphaned",
        help="Only show clients whose credential was replaced or removed.",
    ),
    json_output: bool = JSON_OPTION,
) -> None:
    """List client ids issued by uosprov, per device."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "credentials ledger",
        args={"remote": remote, "orphaned": orphaned_only, "json": json_output},
        target={"kind": "ledger", "device": remote or "all"},
    ) as op:
        try:
            if remote is None:
                entries = runtime.registry.read_clients()
            else:
                entries = _ledger(runtime, _make_target(remote, op)).entries()
        except StateRegistryError as exc:
            _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)
        if orphaned_only:
            entries = [entry for entry in entries if entry.get("status") == "orphaned"]

        if json_output:
            console.print_json(data={"clients": entries})
            op.success("Reported credential ledger as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Device", style="bold")
        table.add_column("Service")
        table.add_column("Client id")
        table.add_column("Status")
        table.add_column("Issued")
        if not entries:
            table.add_row("(none)", "", "", "", "")
        for entry in entries:
            table.add_row(
                str(entry.get("device", "")),
                str(entry.get("service", "")),
                str(entry.get("client_id", "")),
                str(entry.get("status", "")),
                str(entry.get("issued_at", "")),
            )
        console.print(table)
        op.success("Reported credential ledger.", changed=0)


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, (dict, list)):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
