"""Tests for credential issuance, sealing and removal."""
from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest
from fakes import FakeDevice, seal_legacy

from uosprov.channel import CommandResult
from uosprov.credentials import (
    AdminResponse,
    ChannelAdminClient,
    ClientsDirIssuer,
    Credential,
    CredentialIssuer,
    CredentialStore,
    SocketAdminClient,
    parse_env_file,
    parse_registration,
    registration_payload,
)
from uosprov.errors import CredentialIssuanceFailed, ProvisioningError, TolerableAbsenceError
from uosprov.services import ServiceSpec
from uosprov.state import StepOutcome

PROVIDER = ServiceSpec(name="u-os-hub-example-provider", scope="hub.variables.provide")


def _socket_client(handler: httpx.MockTransport) -> SocketAdminClient:
    return SocketAdminClient(Path("/run/hydra/admin.sock"), transport=handler)


def test_registration_payload_requests_client_credentials() -> None:
    """The registration body names the client, scope and grant."""
    assert registration_payload(PROVIDER) == {
        "client_name": "u_os_hub_example_provider",
        "grant_types": ["client_credentials"],
        "owner": "System",
        "scope": "hub.variables.provide",
        "token_endpoint_auth_method": "client_secret_basic",
    }


def test_socket_client_posts_registration() -> None:
    """The admin API is called with a JSON body and the 201 body is returned."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"client_id": "abc", "client_secret": "s3cret"})

    response = _socket_client(httpx.MockTransport(handler)).register(registration_payload(PROVIDER))

    assert response.status == 201
    assert parse_registration(response, PROVIDER.client_name) == ("abc", "s3cret")
    (request,) = seen
    assert request.method == "POST"
    assert request.url == "http://hydra/admin/clients"
    assert json.loads(request.content)["scope"] == "hub.variables.provide"


def test_socket_client_connection_error_is_issuance_failure() -> None:
    """An unreachable socket surfaces as CredentialIssuanceFailed."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("No such file or directory", request=request)

    with pytest.raises(CredentialIssuanceFailed, match="unreachable"):
        _socket_client(httpx.MockTransport(handler)).register({})


@pytest.mark.parametrize(
    ("response", "message"),
    [
        (AdminResponse(409, '{"error": "conflict"}'), "HTTP 409"),
        (AdminResponse(500, ""), "empty body"),
        (AdminResponse(201, "not json"), "malformed JSON"),
        (AdminResponse(201, "[]"), "unexpected payload"),
        (AdminResponse(201, '{"client_id": "abc"}'), "no client_secret"),
        (AdminResponse(201, '{"client_id": "", "client_secret": "x"}'), "no client_id"),
    ],
)
def test_parse_registration_rejects_bad_responses(response: AdminResponse, message: str) -> None:
    """Anything but a 201 with both fields is fatal."""
    with pytest.raises(CredentialIssuanceFailed, match=message):
        parse_registration(response, "sensor")


def test_channel_client_runs_curl_on_device() -> None:
    """Remote issuance pipes the body to curl over the admin socket."""
    device = FakeDevice()

    response = ChannelAdminClient(device).register(registration_payload(PROVIDER))

    assert response.status == 201
    assert json.loads(response.body)["client_id"] == "client-1"
    (call,) = device.commands("curl")
    assert call[call.index("--unix-socket") + 1] == "/run/hydra/admin.sock"


def test_channel_client_curl_failure() -> None:
    """A failing curl is an issuance failure."""
    device = FakeDevice()
    device.failures["curl"] = CommandResult((), 7, "", "curl: (7) Couldn't connect to server")

    with pytest.raises(CredentialIssuanceFailed, match="exit 7"):
        ChannelAdminClient(device).register({})


def test_channel_client_unreadable_status() -> None:
    """Output without a trailing status code is rejected."""
    device = FakeDevice()
    device.failures["curl"] = CommandResult((), 0, "garbage", "")

    with pytest.raises(CredentialIssuanceFailed, match="HTTP status"):
        ChannelAdminClient(device).register({})


def test_credential_repr_hides_secret() -> None:
    """The client secret never appears in reprs or logs."""
    credential = Credential("abc", "s3cret", "scope", "/etc/credstore.encrypted/x.creds")

    assert "s3cret" not in repr(credential)
    assert credential.plaintext() == "CLIENT_ID=abc\nCLIENT_SECRET=s3cret\n"


def test_parse_env_file_strips_quotes() -> None:
    """Quoted values and stray lines are handled."""
    assert parse_env_file('CLIENT_ID="abc"\n\nnoise\nCLIENT_SECRET=x=y\n') == {
        "CLIENT_ID": "abc",
        "CLIENT_SECRET": "x=y",
    }


def test_issuer_seals_credential_under_client_name() -> None:
    """Issued secrets are sealed with the host key and the client name."""
    device = FakeDevice(mount_mode="rw")
    store = CredentialStore(device)

    credential = CredentialIssuer(ChannelAdminClient(device), store).issue(PROVIDER)

    assert credential.encrypted_blob_path == (
        "/etc/credstore.encrypted/u_os_hub_example_provider.creds"
    )
    (seal,) = device.commands("systemd-creds")
    assert seal[:4] == ("systemd-creds", "encrypt", "-H", "--name=u_os_hub_example_provider")
    assert store.read("u_os_hub_example_provider") == {
        "CLIENT_ID": "client-1",
        "CLIENT_SECRET": "secret-1",
    }


def test_sealing_on_read_only_root_fails() -> None:
    """The store cannot be written while the root is read-only."""
    device = FakeDevice()

    with pytest.raises(CredentialIssuanceFailed, match="Read-only"):
        CredentialIssuer(ChannelAdminClient(device), CredentialStore(device)).issue(PROVIDER)


def test_store_read_missing_credential() -> None:
    """Decrypting a credential that does not exist is an error."""
    with pytest.raises(ProvisioningError, match="Decrypting credential"):
        CredentialStore(FakeDevice()).read("u_os_hub_example_provider")


def test_remove_patterns_reports_removed_files() -> None:
    """Matching files are deleted and named in the detail."""
    device = FakeDevice(mount_mode="rw")
    seal_legacy(device, "u_os_hub_example_provider")
    seal_legacy(device, "u_os_hub_example_legacy")
    seal_legacy(device, "other")

    result = CredentialStore(device).remove_patterns(
        ["u_os_hub_example_provider.creds", "u_os_hub_example_*"], services=["p"]
    )

    assert result.outcome is StepOutcome.OK
    assert "u_os_hub_example_legacy.creds" in result.detail
    assert device.listdir("/etc/credstore.encrypted") == ["other.creds"]


def test_remove_patterns_with_nothing_to_delete() -> None:
    """No matches is an already-absent result, not a failure."""
    result = CredentialStore(FakeDevice()).remove_patterns(["u_os_hub_example_*"])

    assert result.outcome is StepOutcome.ALREADY_ABSENT
    assert result.detail == "no matching credentials"


def test_remove_patterns_without_store_raises_absence() -> None:
    """A device that never had a credential store has nothing to clean up."""
    device = FakeDevice(credstore_exists=False)

    with pytest.raises(TolerableAbsenceError, match="does not exist"):
        CredentialStore(device).remove_patterns(["u_os_hub_example_*"])


def test_remove_patterns_failure_is_fatal() -> None:
    """Any pattern that fails for another reason fails the step."""
    device = FakeDevice()
    device.failures["find"] = CommandResult((), 1, "", "find: Permission denied")

    result = CredentialStore(device).remove_patterns(["a*", "b*"])

    assert result.outcome is StepOutcome.FATAL
    assert result.detail.count("Permission denied") == 2


def test_clients_dir_issuer_writes_declaration() -> None:
    """Declarations hold the scope; the creator seals the credential later."""
    device = FakeDevice(mount_mode="rw")
    issuer = ClientsDirIssuer(device, CredentialStore(device))

    credential = issuer.issue(PROVIDER)

    path = "/usr/share/uc-iam/clients/u_os_hub_example_provider"
    assert device.files[path] == "hub.variables.provide\n"
    assert credential.client_id == ""
    assert issuer.requires_refresh is True
    assert issuer.device_paths(PROVIDER) == [path]
