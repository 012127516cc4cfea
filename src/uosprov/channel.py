"""Execution channels: run commands and copy files on the target device.

A channel is synchronous and handles one command at a time. It performs no
retries and owns transport timeouts. Callers classify the result of each
command; the channel only raises :class:`~uosprov.errors.TransportError` when
the transport itself fails (missing binary, timeout, ssh connection error).
"""
from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
import tempfile
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from .errors import PrivilegeError, TransportError

logger = logging.getLogger(__name__)

# ssh reserves 255 for its own failures.
SSH_TRANSPORT_FAILURE = 255
COMMAND_NOT_FOUND = 127


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Result of a single command."""

    argv: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        """Whether the command exited with status zero."""
        return self.returncode == 0

    @property
    def message(self) -> str:
        """Best available diagnostic text."""
        return self.stderr.strip() or self.stdout.strip() or "no output"


class ExecutionChannel(Protocol):
    """Interface every channel implements."""

    def run(
        self,
        argv: Sequence[str],
        *,
        input: str | None = None,
        elevated: bool | None = None,
    ) -> CommandResult:
        """Run *argv* on the device."""
        ...

    def run_interactive(self, argv: Sequence[str], *, elevated: bool | None = None) -> int:
        """Run *argv* attached to the operator's terminal; return the exit status."""
        ...

    def put(self, local: Path, remote: str) -> None:
        """Copy *local* to *remote* on the device."""
        ...

    def describe(self) -> str:
        """Human readable description of the channel."""
        ...


@dataclass(slots=True)
class LocalChannel:
    """Run commands on this machine."""

    sudo: bool = False
    timeout: float | None = None

    def run(
        self,
        argv: Sequence[str],
        *,
        input: str | None = None,
        elevated: bool | None = None,
    ) -> CommandResult:
        """Run *argv* locally."""
        command = self._command(argv, elevated)
        logger.debug("local: %s", shlex.join(command))
        try:
            completed = subprocess.run(  # noqa: S603
                command,
                input=input,
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout,
            )
        except FileNotFoundError as exc:
            raise TransportError(f"{command[0]} not found: {exc}") from exc
        except subprocess.TimeoutExpired as exc:
            raise TransportError(f"{shlex.join(command)} timed out after {exc.timeout}s") from exc
        return CommandResult(
            argv=tuple(argv),
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )

    def run_interactive(self, argv: Sequence[str], *, elevated: bool | None = None) -> int:
        """Run *argv* with inherited stdio."""
        command = self._command(argv, elevated)
        try:
            completed = subprocess.run(command, check=False)  # noqa: S603
        except FileNotFoundError as exc:
            raise TransportError(f"{command[0]} not found: {exc}") from exc
        return completed.returncode

    def put(self, local: Path, remote: str) -> None:
        """Copy *local* to *remote*."""
        try:
            shutil.copy2(local, remote)
        except OSError as exc:
            raise TransportError(f"copy {local} -> {remote} failed: {exc}") from exc

    def describe(self) -> str:
        """Describe the channel."""
        return "local" + (" (sudo)" if self.sudo else "")

    def _command(self, argv: Sequence[str], elevated: bool | None) -> list[str]:
        use_sudo = self.sudo if elevated is None else elevated
        return (["sudo"] if use_sudo else []) + list(argv)


@dataclass(slots=True)
class SshChannel:
    """Run commands on a remote device through ``ssh``/``scp``.

    With ``sudo`` enabled every command is wrapped in ``sudo``. Without a
    password ``sudo -n`` is used and fails fast instead of prompting. A
    password is only set after :meth:`sudo_needs_password` found that sudo
    asks for one; it is then fed to ``sudo -k -S`` as the first line of stdin.
    ``-k`` ignores cached credentials, so sudo always consumes that line
    before the command reads its own input.
    """

    login: str
    ssh_bin: str = "ssh"
    scp_bin: str = "scp"
    options: tuple[str, ...] = ()
    sudo: bool = False
    sudo_password: str | None = field(default=None, repr=False)
    timeout: float | None = None

    def run(
        self,
        argv: Sequence[str],
        *,
        input: str | None = None,
        elevated: bool | None = None,
    ) -> CommandResult:
        """Run *argv* on the remote device."""
        use_sudo = self.sudo if elevated is None else elevated
        remote = shlex.join(argv)
        stdin = input
        if use_sudo:
            if self.sudo_password is not None:
                remote = f"sudo -k -S -p '' {remote}"
                stdin = f"{self.sudo_password}\n{input or ''}"
            else:
                remote = f"sudo -n {remote}"
        command = [self.ssh_bin, *self.options, self.login, remote]
        logger.debug("ssh %s: %s", self.login, shlex.join(argv))
        completed = self._invoke(command, stdin)
        if completed.returncode == SSH_TRANSPORT_FAILURE:
            message = (completed.stderr or "").strip() or "ssh connection failed"
            raise TransportError(f"ssh {self.login}: {message}")
        return CommandResult(
            argv=tuple(argv),
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )

    def sudo_needs_password(self) -> bool:
        """Return whether sudo on the device asks this login for a password.

        Raises :class:`~uosprov.errors.PrivilegeError` when the login may not
        use sudo at all.
        """
        check = self.run(["sudo", "-n", "true"], elevated=False)
        if check.ok:
            return False
        text = check.stderr.lower()
        if (
            check.returncode == COMMAND_NOT_FOUND
            or "not in the sudoers" in text
            or "not allowed to run sudo" in text
        ):
            raise PrivilegeError(f"{self.login} cannot use sudo on the device: {check.message}")
        return True

    def verify_sudo_password(self, password: str) -> bool:
        """Return whether sudo accepts *password*."""
        check = self.run(
            ["sudo", "-k", "-S", "-p", "", "true"], input=f"{password}\n", elevated=False
        )
        return check.ok

    def run_interactive(self, argv: Sequence[str], *, elevated: bool | None = None) -> int:
        """Run *argv* over a forced tty so ``sudo`` can prompt the operator."""
        use_sudo = self.sudo if elevated is None else elevated
        remote = shlex.join(argv)
        if use_sudo:
            remote = f"sudo {remote}"
        command = [self.ssh_bin, "-tt", *self.options, self.login, remote]
        try:
            completed = subprocess.run(command, check=False)  # noqa: S603
        except FileNotFoundError as exc:
            raise TransportError(f"{self.ssh_bin} not found: {exc}") from exc
        if completed.returncode == SSH_TRANSPORT_FAILURE:
            raise TransportError(f"ssh {self.login}: connection failed")
        return completed.returncode

    def put(self, local: Path, remote: str) -> None:
        """Copy *local* to *remote* with ``scp``."""
        command = [self.scp_bin, *self.options, str(local), f"{self.login}:{remote}"]
        logger.debug("scp %s -> %s:%s", local, self.login, remote)
        completed = self._invoke(command, None)
        if completed.returncode != 0:
            message = (completed.stderr or "").strip() or f"exit {completed.returncode}"
            raise TransportError(f"scp {local} -> {self.login}:{remote} failed: {message}")

    def describe(self) -> str:
        """Describe the channel."""
        return f"ssh {self.login}" + (" (sudo)" if self.sudo else "")

    def _invoke(self, command: list[str], stdin: str | None) -> subprocess.CompletedProcess[str]:
        try:
            return subprocess.run(  # noqa: S603
                command,
                input=stdin,
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout,
            )
        except FileNotFoundError as exc:
            raise TransportError(f"{command[0]} not found: {exc}") from exc
        except subprocess.TimeoutExpired as exc:
            raise TransportError(f"{command[0]} to {self.login} timed out after {exc.timeout}s") from exc


def run_script(
    channel: ExecutionChannel,
    script: str,
    *,
    name: str,
    remote_dir: str = "/tmp",
) -> int:
    """Copy *script* to the device, run it elevated, then delete it.

    The script is removed whatever its exit status; the status is returned.
    """
    remote_path = f"{remote_dir.rstrip('/')}/{name}"
    with tempfile.TemporaryDirectory(prefix="uosprov-") as tmp:
        local_path = Path(tmp) / name
        local_path.write_text(script, encoding="utf-8")
        local_path.chmod(0o700)
        channel.put(local_path, remote_path)
    try:
        return channel.run_interactive(["sh", remote_path], elevated=True)
    finally:
        cleanup = channel.run(["rm", "-f", remote_path], elevated=False)
        if not cleanup.ok:
            logger.warning("Failed to remove %s: %s", remote_path, cleanup.message)


__all__ = [
    "CommandResult",
    "ExecutionChannel",
    "LocalChannel",
    "SshChannel",
    "run_script",
]
