"""Machine-client credentials: issue from Hydra, seal into the credential store.

Issuing is one ``POST /admin/clients`` against the identity provider admin
API, which listens on a Unix socket that only exists on the device. Locally
the socket is reached directly with httpx; for a remote device the same
request is made by ``curl`` through the execution channel. The returned
secret is sealed with ``systemd-creds`` under the client name, so only the
unit that loads the credential by that name can decrypt it.
"""
from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

import httpx

from .channel import ExecutionChannel
from .errors import CredentialIssuanceFailed, ProvisioningError, TolerableAbsenceError
from .providers.common import classify
from .registry import StateRegistry
from .services import ServiceSpec
from .state import Step, StepOutcome, StepResult

logger = logging.getLogger(__name__)

CREATED = 201


def registration_payload(spec: ServiceSpec) -> dict[str, object]:
    """Body of the client registration request for *spec*."""
    return {
        "client_name": spec.client_name,
        "grant_types": ["client_credentials"],
        "owner": "System",
        "scope": spec.scope,
        "token_endpoint_auth_method": "client_secret_basic",
    }


@dataclass(frozen=True, slots=True)
class AdminResponse:
    """Status code and raw body returned by the admin API."""

    status: int
    body: str


class AdminClient(Protocol):
    """Something that can POST a client registration."""

    def register(self, payload: Mapping[str, object]) -> AdminResponse:
        """Submit *payload* and return the raw response."""
        ...


@dataclass(slots=True)
class SocketAdminClient:
    """Talk to the admin API over its Unix socket with httpx."""

    socket_path: Path
    url: str = "http://hydra/admin/clients"
    timeout: float = 10.0
    transport: httpx.BaseTransport | None = None

    def register(self, payload: Mapping[str, object]) -> AdminResponse:
        """POST *payload* to the admin API."""
        transport = self.transport or httpx.HTTPTransport(uds=str(self.socket_path))
        try:
            with httpx.Client(transport=transport, timeout=self.timeout) as client:
                response = client.post(
                    self.url,
                    json=dict(payload),
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as exc:
            raise CredentialIssuanceFailed(
                f"Identity provider admin socket {self.socket_path} unreachable: {exc}"
            ) from exc
        return AdminResponse(response.status_code, response.text)


@dataclass(slots=True)
class ChannelAdminClient:
    """Talk to the admin API by running ``curl`` on the device."""

    channel: ExecutionChannel
    socket_path: str = "/run/hydra/admin.sock"
    url: str = "http://hydra/admin/clients"
    curl_bin: str = "curl"

    def register(self, payload: Mapping[str, object]) -> AdminResponse:
        """POST *payload* through the channel; the status code follows the body."""
        argv = [
            self.curl_bin,
            "-s",
            "--unix-socket",
            self.socket_path,
            "--location",
            self.url,
            "--header",
            "Content-Type: application/json",
            "--header",
            "Accept: application/json",
            "--data-binary",
            "@-",
            "--write-out",
            "\n%{http_code}",
        ]
        result = self.channel.run(argv, input=json.dumps(dict(payload)))
        if not result.ok:
            raise CredentialIssuanceFailed(
                f"curl to the identity provider failed (exit {result.returncode}): {result.message}"
            )
        body, _, status = result.stdout.rstrip("\n").rpartition("\n")
        try:
            code = int(status.strip())
        except ValueError as exc:
            raise CredentialIssuanceFailed(
                f"Could not read the HTTP status from curl output: {status!r}"
            ) from exc
        return AdminResponse(code, body)


def parse_registration(response: AdminResponse, client_name: str) -> tuple[str, str]:
    """Return ``(client_id, client_secret)`` from a registration response."""
    if response.status != CREATED:
        snippet = response.body.strip()[:200] or "empty body"
        raise CredentialIssuanceFailed(
            f"Registering client '{client_name}' returned HTTP {response.status}: {snippet}"
        )
    try:
        data = json.loads(response.body)
    except json.JSONDecodeError as exc:
        raise CredentialIssuanceFailed(
            f"Registering client '{client_name}' returned malformed JSON: {exc}"
        ) from exc
    if not isinstance(data, Mapping):
        raise CredentialIssuanceFailed(
            f"Registering client '{client_name}' returned an unexpected payload."
        )
    values: list[str] = []
    for key in ("client_id", "client_secret"):
        value = data.get(key)
        if not isinstance(value, str) or not value:
            raise CredentialIssuanceFailed(
                f"Registering client '{client_name}' returned no {key}."
            )
        values.append(value)
    return values[0], values[1]


@dataclass(frozen=True, slots=True)
class Credential:
    """An issued machine-client credential."""

    client_id: str
    client_secret: str = field(repr=False)
    scope: str
    encrypted_blob_path: str
    client_name: str = ""

    def plaintext(self) -> str:
        """Env-file rendering that gets sealed into the credential store."""
        return f"CLIENT_ID={self.client_id}\nCLIENT_SECRET={self.client_secret}\n"


def parse_env_file(text: str) -> dict[str, str]:
    """Parse ``KEY=value`` lines; surrounding double quotes are trimmed."""
    values: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if not sep:
            continue
        values[key] = value.strip('"')
    return values


@dataclass(slots=True)
class CredentialStore:
    """The device's encrypted credential directory."""

    channel: ExecutionChannel
    store_dir: str = "/etc/credstore.encrypted"
    systemd_creds_bin: str = "systemd-creds"

    def path_for(self, client_name: str) -> str:
        """Location of the sealed credential for *client_name*."""
        return f"{self.store_dir.rstrip('/')}/{client_name}.creds"

    def seal(self, client_name: str, plaintext: str) -> str:
        """Encrypt *plaintext* bound to *client_name*; return the blob path."""
        path = self.path_for(client_name)
        result = self.channel.run(
            [self.systemd_creds_bin, "encrypt", "-H", f"--name={client_name}", "-", path],
            input=plaintext,
        )
        if not result.ok:
            raise CredentialIssuanceFailed(
                f"Sealing credential '{client_name}' failed: {result.message}"
            )
        logger.info("Sealed credential %s", path)
        return path

    def read(self, client_name: str) -> dict[str, str]:
        """Decrypt the credential for *client_name* and parse its env lines."""
        path = self.path_for(client_name)
        result = self.channel.run(
            [self.systemd_creds_bin, "decrypt", f"--name={client_name}", path, "-"]
        )
        if not result.ok:
            raise ProvisioningError(
                f"Decrypting credential '{client_name}' failed: {result.message}"
            )
        return parse_env_file(result.stdout)

    def remove_patterns(
        self,
        patterns: Sequence[str],
        *,
        services: Sequence[str] = (),
        dry_run: bool = False,
    ) -> StepResult:
        """Delete every credential file matching one of *patterns*.

        Raises :class:`~uosprov.errors.TolerableAbsenceError` when the store
        directory itself is gone.
        """
        if dry_run:
            return StepResult(
                Step.REMOVE_CREDENTIALS, StepOutcome.SKIPPED, "dry-run", tuple(services)
            )
        removed: list[str] = []
        failures: list[str] = []
        absent = 0
        for pattern in patterns:
            result = classify(
                Step.REMOVE_CREDENTIALS,
                self.channel.run(
                    [
                        "find",
                        self.store_dir,
                        "-maxdepth",
                        "1",
                        "-type",
                        "f",
                        "-name",
                        pattern,
                        "-print",
                        "-delete",
                    ]
                ),
            )
            if result.outcome is StepOutcome.FATAL:
                failures.append(result.detail)
            elif result.outcome is StepOutcome.ALREADY_ABSENT:
                absent += 1
            elif result.detail:
                removed.extend(result.detail.splitlines())
        if failures:
            return StepResult(
                Step.REMOVE_CREDENTIALS, StepOutcome.FATAL, "; ".join(failures), tuple(services)
            )
        if absent and not removed:
            raise TolerableAbsenceError(f"Credential store {self.store_dir} does not exist.")
        if not removed:
            return StepResult(
                Step.REMOVE_CREDENTIALS,
                StepOutcome.ALREADY_ABSENT,
                "no matching credentials",
                tuple(services),
            )
        return StepResult(
            Step.REMOVE_CREDENTIALS,
            StepOutcome.OK,
            "removed " + ", ".join(sorted(removed)),
            tuple(services),
        )


@dataclass(slots=True)
class CredentialLedger:
    """Per-device record of issued client ids, kept in ``clients.yml``.

    The identity provider keeps a client even after its sealed credential is
    replaced or deleted. Entries superseded that way are marked ``orphaned``
    so an operator can clean them up on the identity provider.
    """

    registry: StateRegistry
    device: str

    def record(self, service: str, client_name: str, client_id: str) -> list[str]:
        """Store a newly issued client id; return ids it orphaned."""
        entries = self.registry.read_clients()
        orphaned = self._orphan(entries, [service])
        entries.append(
            {
                "device": self.device,
                "service": service,
                "client_name": client_name,
                "client_id": client_id,
                "status": "active",
                "issued_at": _now(),
            }
        )
        self.registry.write_clients(entries)
        return orphaned

    def retire(self, services: Iterable[str]) -> list[str]:
        """Mark the active clients of *services* orphaned; return their ids."""
        entries = self.registry.read_clients()
        orphaned = self._orphan(entries, list(services))
        if orphaned:
            self.registry.write_clients(entries)
        return orphaned

    def entries(self, *, all_devices: bool = False) -> list[dict[str, Any]]:
        """Ledger entries for this device (or every device)."""
        entries = self.registry.read_clients()
        if all_devices:
            return entries
        return [entry for entry in entries if entry.get("device") == self.device]

    def orphaned(self) -> list[dict[str, Any]]:
        """Orphaned entries for this device."""
        return [entry for entry in self.entries() if entry.get("status") == "orphaned"]

    def _orphan(self, entries: list[dict[str, Any]], services: list[str]) -> list[str]:
        orphaned: list[str] = []
        for entry in entries:
            if (
                entry.get("device") == self.device
                and entry.get("service") in services
                and entry.get("status") == "active"
            ):
                entry["status"] = "orphaned"
                entry["orphaned_at"] = _now()
                orphaned.append(str(entry.get("client_id")))
        return orphaned


class Issuer(Protocol):
    """Produces a sealed credential for a service."""

    requires_refresh: bool

    def issue(self, spec: ServiceSpec) -> Credential:
        """Issue and seal the credential for *spec*."""
        ...

    def device_paths(self, spec: ServiceSpec) -> list[str]:
        """Files on the device that belong to the credential of *spec*."""
        ...


@dataclass(slots=True)
class CredentialIssuer:
    """Issue through the admin API and seal with ``systemd-creds``."""

    admin: AdminClient
    store: CredentialStore
    requires_refresh: bool = False

    def issue(self, spec: ServiceSpec) -> Credential:
        """Register a machine client for *spec* and seal its secret."""
        response = self.admin.register(registration_payload(spec))
        client_id, client_secret = parse_registration(response, spec.client_name)
        credential = Credential(
            client_id=client_id,
            client_secret=client_secret,
            scope=spec.scope,
            encrypted_blob_path=self.store.path_for(spec.client_name),
            client_name=spec.client_name,
        )
        self.store.seal(spec.client_name, credential.plaintext())
        return credential

    def device_paths(self, spec: ServiceSpec) -> list[str]:
        """The admin API flow leaves nothing beyond the sealed credential."""
        return []


@dataclass(slots=True)
class ClientsDirIssuer:
    """Declare the client in the u-OS IAM clients directory.

    ``hydra-client-creator`` picks declarations up when restarted, registers
    the client and seals the credential itself, so the secret never leaves
    the device. The returned credential carries no id or secret.
    """

    channel: ExecutionChannel
    store: CredentialStore
    clients_dir: str = "/usr/share/uc-iam/clients"
    requires_refresh: bool = True

    def declaration_path(self, spec: ServiceSpec) -> str:
        """Location of the client declaration for *spec*."""
        return f"{self.clients_dir.rstrip('/')}/{spec.client_name}"

    def issue(self, spec: ServiceSpec) -> Credential:
        """Write the scope declaration for *spec*."""
        path = self.declaration_path(spec)
        result = self.channel.run(["tee", path], input=f"{spec.scope}\n")
        if not result.ok:
            raise CredentialIssuanceFailed(
                f"Declaring client '{spec.client_name}' in {self.clients_dir} failed: {result.message}"
            )
        return Credential(
            client_id="",
            client_secret="",
            scope=spec.scope,
            encrypted_blob_path=self.store.path_for(spec.client_name),
            client_name=spec.client_name,
        )

    def device_paths(self, spec: ServiceSpec) -> list[str]:
        """The client declaration file."""
        return [self.declaration_path(spec)]


def _now() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


__all__ = [
    "AdminClient",
    "AdminResponse",
    "ChannelAdminClient",
    "ClientsDirIssuer",
    "Credential",
    "CredentialIssuer",
    "CredentialLedger",
    "CredentialStore",
    "Issuer",
    "SocketAdminClient",
    "parse_env_file",
    "parse_registration",
    "registration_payload",
]
