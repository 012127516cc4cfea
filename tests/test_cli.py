"""Tests for the uosprov CLI."""
from __future__ import annotations

import json
import subprocess
from pathlib import Path
from typing import Any

import pytest
import yaml
from typer.testing import CliRunner

from uosprov import __version__
from uosprov import channel as channel_module
from uosprov.cli import app
from uosprov.registry import StateRegistry
from uosprov.services import default_registry

runner = CliRunner()

TRIPLE = "aarch64-unknown-linux-gnu"


def _extract_json(output: str) -> dict[str, object]:
    """Extract the first JSON object embedded in *output*."""
    start = output.find("{")
    end = output.rfind("}")
    assert start != -1 and end != -1, f"No JSON payload found in output: {output}"
    return json.loads(output[start : end + 1])


def _prepare_environment(
    tmp_path: Path,
    *,
    config_overrides: dict[str, object] | None = None,
) -> tuple[dict[str, str], Path]:
    """Write a config rooted in *tmp_path* and return the CLI environment."""
    state_dir = tmp_path / "state"
    config: dict[str, object] = {"state_dir": str(state_dir)}
    config.update(config_overrides or {})
    config_path = tmp_path / "config.yml"
    config_path.write_text(yaml.safe_dump(config), encoding="utf-8")
    env = {"UOSPROV_CONFIG_FILE": str(config_path), "UOSPROV_SUDO_PASSWORD": "unused"}
    return env, state_dir


def _build_artifacts(tmp_path: Path) -> Path:
    """Lay out executables the way cargo does for the aarch64 target."""
    root = tmp_path / "target"
    examples = root / TRIPLE / "release" / "examples"
    examples.mkdir(parents=True)
    for spec in default_registry():
        (examples / spec.name).write_text("#!/bin/sh\n", encoding="utf-8")
    return root


def _last_record(state_dir: Path) -> dict[str, object]:
    lines = (state_dir / "logs" / "operations.jsonl").read_text(encoding="utf-8").splitlines()
    return json.loads(lines[-1])


def test_version_option_outputs_package_version(tmp_path: Path) -> None:
    """CLI ``--version`` flag emits the package version."""
    env, _ = _prepare_environment(tmp_path)
    result = runner.invoke(app, ["--version"], env=env)

    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_invocation_without_subcommand_shows_help(tmp_path: Path) -> None:
    """Calling the CLI without a subcommand shows help output."""
    env, _ = _prepare_environment(tmp_path)
    result = runner.invoke(app, env=env)

    assert result.exit_code == 0
    assert "u-OS device provisioning" in result.stdout


def test_invalid_config_exits_with_validation_code(tmp_path: Path) -> None:
    """Configuration errors abort before any command runs."""
    env, _ = _prepare_environment(tmp_path, config_overrides={"bogus": 1})

    result = runner.invoke(app, ["config", "show"], env=env)

    assert result.exit_code == 2
    assert "Unknown configuration keys" in result.stdout


def test_config_show_json(tmp_path: Path) -> None:
    """`config show --json` emits JSON with the resolved configuration."""
    env, state_dir = _prepare_environment(
        tmp_path, config_overrides={"mount": {"grow": False}}
    )

    result = runner.invoke(app, ["config", "show", "--json"], env=env)

    assert result.exit_code == 0
    payload = _extract_json(result.stdout)
    assert payload["state_dir"] == str(state_dir)
    assert payload["mount"] == {"manage": True, "grow": False, "root": "/"}


def test_config_show_renders_table(tmp_path: Path) -> None:
    """`config show` prints the merged configuration in a table."""
    env, _ = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["config", "show"], env=env)

    assert result.exit_code == 0
    assert "lock_timeout" in result.stdout
    assert "credentials" in result.stdout


def test_target_resolve_alias(tmp_path: Path) -> None:
    """Aliases resolve to their architecture triple."""
    env, state_dir = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["target", "resolve", "ucm"], env=env)

    assert result.exit_code == 0
    assert "armv7-unknown-linux-gnueabihf" in result.stdout
    record = _last_record(state_dir)
    assert record["command"] == "target resolve"
    assert record["result"]["context"] == {"triple": "armv7-unknown-linux-gnueabihf"}  # type: ignore[index]


def test_target_resolve_unknown_alias_prints_usage(tmp_path: Path) -> None:
    """Unknown aliases exit non-zero and show the supported targets."""
    env, state_dir = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["target", "resolve", "ucx"], env=env)

    assert result.exit_code == 2
    assert "Target examples" in result.stdout
    assert _last_record(state_dir)["result"]["status"] == "error"  # type: ignore[index]


def test_services_list_json(tmp_path: Path) -> None:
    """`services list --json` reports services and credential patterns."""
    env, _ = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["services", "list", "--json"], env=env)

    assert result.exit_code == 0
    payload = _extract_json(result.stdout)
    names = [entry["name"] for entry in payload["services"]]  # type: ignore[union-attr]
    assert names == ["u-os-hub-example-provider", "u-os-hub-example-consumer"]
    assert payload["credential_patterns"] == [
        "u_os_hub_example_provider.creds",
        "u_os_hub_example_consumer.creds",
        "u_os_hub_example_*",
    ]


def test_services_list_with_no_services_fails(tmp_path: Path) -> None:
    """An empty service list is a validation error."""
    env, _ = _prepare_environment(tmp_path, config_overrides={"services": []})

    result = runner.invoke(app, ["services", "list"], env=env)

    assert result.exit_code == 2
    assert "No services configured" in result.stdout


def test_credentials_ledger_filters_orphaned(tmp_path: Path) -> None:
    """The ledger lists issued clients and can show only orphaned ones."""
    env, state_dir = _prepare_environment(tmp_path)
    StateRegistry(state_dir / "registry").write_clients(
        [
            {"device": "device", "service": "a", "client_id": "c-1", "status": "orphaned"},
            {"device": "device", "service": "a", "client_id": "c-2", "status": "active"},
            {"device": "other", "service": "a", "client_id": "c-3", "status": "orphaned"},
        ]
    )

    everything = runner.invoke(app, ["credentials", "ledger", "--json"], env=env)
    orphaned = runner.invoke(
        app,
        ["credentials", "ledger", "--remote", "admin@device", "--orphaned", "--json"],
        env=env,
    )

    assert everything.exit_code == 0
    assert len(_extract_json(everything.stdout)["clients"]) == 3  # type: ignore[arg-type]
    assert orphaned.exit_code == 0
    clients = _extract_json(orphaned.stdout)["clients"]
    assert [entry["client_id"] for entry in clients] == ["c-1"]  # type: ignore[union-attr]


def test_credentials_ledger_empty_table(tmp_path: Path) -> None:
    """An empty ledger still renders."""
    env, _ = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["credentials", "ledger"], env=env)

    assert result.exit_code == 0
    assert "(none)" in result.stdout


def test_install_dry_run_reports_steps_without_touching_device(tmp_path: Path) -> None:
    """A dry-run install walks every step as skipped."""
    env, state_dir = _prepare_environment(tmp_path)
    artifacts = _build_artifacts(tmp_path)

    result = runner.invoke(
        app,
        [
            "install",
            "ucu",
            "--remote",
            "admin@192.168.0.10",
            "--artifacts-dir",
            str(artifacts),
            "--dry-run",
        ],
        env=env,
    )

    assert result.exit_code == 0, result.stdout
    assert "Dry run" in result.stdout
    assert "Generate credentials" in result.stdout
    record = _last_record(state_dir)
    assert record["command"] == "install"
    assert record["result"]["status"] == "success"  # type: ignore[index]
    statuses = {step["status"] for step in record["steps"]}  # type: ignore[union-attr]
    assert statuses == {"success", "skipped"}
    assert not (state_dir / "registry" / "clients.yml").exists()


def test_install_unknown_target_exits_with_usage(tmp_path: Path) -> None:
    """Unknown targets are rejected before anything runs."""
    env, state_dir = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["install", "ucx", "--dry-run"], env=env)

    assert result.exit_code == 2
    assert "Target examples" in result.stdout
    assert _last_record(state_dir)["result"]["rc"] == 2  # type: ignore[index]


def test_install_missing_artifact_is_provider_error(tmp_path: Path) -> None:
    """Executables that were never built abort the install."""
    env, state_dir = _prepare_environment(tmp_path)

    result = runner.invoke(
        app,
        [
            "install",
            "ucu",
            "--remote",
            "admin@192.168.0.10",
            "--artifacts-dir",
            str(tmp_path / "empty"),
            "--no-sudo",
        ],
        env=env,
    )

    assert result.exit_code == 4
    assert "files.stage" in result.stdout
    record = _last_record(state_dir)
    assert record["result"]["status"] == "error"  # type: ignore[index]
    assert record["steps"][-1]["status"] == "fatal"  # type: ignore[index]


def test_install_invalid_remote_login(tmp_path: Path) -> None:
    """Malformed logins are validation errors."""
    env, _ = _prepare_environment(tmp_path)
    artifacts = _build_artifacts(tmp_path)

    result = runner.invoke(
        app,
        ["install", "ucu", "--remote", "a b", "--artifacts-dir", str(artifacts), "--dry-run"],
        env=env,
    )

    assert result.exit_code == 2
    assert "Invalid remote login" in result.stdout


def test_remove_dry_run(tmp_path: Path) -> None:
    """A dry-run remove reports success without contacting the device."""
    env, state_dir = _prepare_environment(tmp_path)

    result = runner.invoke(
        app, ["remove", "--remote", "admin@192.168.0.10", "--dry-run"], env=env
    )

    assert result.exit_code == 0, result.stdout
    record = _last_record(state_dir)
    assert record["command"] == "remove"
    steps = [step["name"] for step in record["steps"]]  # type: ignore[union-attr]
    assert steps[:2] == ["systemd.stop", "systemd.disable"]
    assert "credentials.remove" in steps


def test_remove_script_dry_run_prints_script(tmp_path: Path) -> None:
    """`remove --script --dry-run` prints the generated script."""
    env, _ = _prepare_environment(tmp_path, config_overrides={"credentials": {"mode": "clients-dir"}})

    result = runner.invoke(
        app, ["remove", "--script", "--remote", "admin@192.168.0.10", "--dry-run"], env=env
    )

    assert result.exit_code == 0
    assert "set -u" in result.stdout
    assert "rm -f /usr/share/uc-iam/clients/u_os_hub_example_provider || true" in result.stdout
    assert "remove script not executed" in result.stdout


class _SshStub:
    """Stand-in for ``subprocess.run`` answering the sudo checks."""

    def __init__(self, responses: dict[str, tuple[int, str]]) -> None:
        self.responses = responses
        self.calls: list[tuple[list[str], str | None]] = []

    def __call__(self, command: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        self.calls.append((list(command), kwargs.get("input")))
        returncode, stderr = self.responses.get(command[-1], (0, ""))
        return subprocess.CompletedProcess(command, returncode, "", stderr)


def test_remove_rejects_wrong_sudo_password(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """A password sudo refuses stops the run before any device command."""
    env, state_dir = _prepare_environment(tmp_path)
    stub = _SshStub(
        {
            "sudo -n true": (1, "sudo: a password is required\n"),
            "sudo -k -S -p '' true": (1, "Sorry, try again.\n"),
        }
    )
    monkeypatch.setattr(channel_module.subprocess, "run", stub)

    result = runner.invoke(app, ["remove", "--remote", "admin@192.168.0.10"], env=env)

    assert result.exit_code == 3
    assert "Sudo authentication failed" in result.stdout
    assert [call[0][-1] for call in stub.calls] == ["sudo -n true", "sudo -k -S -p '' true"]
    assert stub.calls[1][1] == "unused\n"
    assert _last_record(state_dir)["result"]["rc"] == 3  # type: ignore[index]


def test_credentials_inspect_skips_password_when_sudo_needs_none(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Passwordless sudo never receives the configured password."""
    env, _ = _prepare_environment(tmp_path)
    stub = _SshStub({})
    monkeypatch.setattr(channel_module.subprocess, "run", stub)

    runner.invoke(
        app,
        ["credentials", "inspect", "u-os-hub-example-provider", "--remote", "admin@device"],
        env=env,
    )

    remote_commands = [call[0][-1] for call in stub.calls]
    assert remote_commands[0] == "sudo -n true"
    assert all("-S" not in command for command in remote_commands)
    assert all(call[1] is None or "unused" not in call[1] for call in stub.calls)
