import json
import socket
from datetime import datetime, timezone
from unittest import mock

import pytest
import responses

from pipekit import config
from pipekit.auth import (
    AuthClient,
    AuthError,
    Credentials,
    DeviceAuthRequest,
    DeviceAuthStatusResponse,
    collect_device_info,
    delete_credentials,
    load_credentials,
    poll_for_authorization,
    save_credentials,
)

BASE = "http://hub.example.com"


@pytest.fixture
def rsps():
    with responses.RequestsMock() as mock_requests:
        yield mock_requests


@pytest.fixture
def creds_path(tmp_path, monkeypatch):
    path = tmp_path / "credentials.json"
    monkeypatch.setattr(config, "CREDENTIALS_PATH", path)
    return path


def test_initiate_device_auth(rsps):
    rsps.add(
        responses.POST,
        BASE + "/api/v1/auth/device",
        json={
            "deviceCode": "dev-1",
            "userCode": "ABCD",
            "verificationUri": "http://hub.example.com/verify",
            "verificationUriComplete": "http://hub.example.com/verify?c=ABCD",
            "expiresIn": 600,
            "interval": 5,
        },
    )
    request = DeviceAuthRequest("pipe-cli", "linux", "amd64", "build-host")
    result = AuthClient(BASE).initiate_device_auth(request)
    assert result.device_code == "dev-1"
    assert result.interval == 5
    assert result.expires_in == 600
    sent = json.loads(rsps.calls[0].request.body)
    assert sent == {
        "clientName": "pipe-cli",
        "clientOS": "linux",
        "clientArch": "amd64",
        "clientHostname": "build-host",
    }


def test_initiate_device_auth_server_error(rsps):
    rsps.add(responses.POST, BASE + "/api/v1/auth/device", status=500, body="  boom \n")
    request = DeviceAuthRequest("pipe-cli", "linux", "amd64", "h")
    with pytest.raises(AuthError, match="server returned 500: boom$"):
        AuthClient(BASE).initiate_device_auth(request)


def test_initiate_device_auth_bad_json(rsps):
    rsps.add(responses.POST, BASE + "/api/v1/auth/device", body="not json")
    request = DeviceAuthRequest("pipe-cli", "linux", "amd64", "h")
    with pytest.raises(AuthError, match="decoding response"):
        AuthClient(BASE).initiate_device_auth(request)


@pytest.mark.parametrize("status", [204, 401])
def test_logout_accepts_revoked(rsps, status):
    rsps.add(responses.POST, BASE + "/api/v1/auth/device/logout", status=status)
    assert AuthClient(BASE).logout("placeholder") is None
    assert rsps.calls[0].request.headers["Authorization"] == "Bearer placeholder"


def test_logout_error(rsps):
    rsps.add(responses.POST, BASE + "/api/v1/auth/device/logout", status=500, body="down")
    with pytest.raises(AuthError, match="server returned 500"):
        AuthClient(BASE).logout("placeholder")


def test_validate(rsps):
    rsps.add(
        responses.GET,
        BASE + "/api/v1/users/me",
        json={"username": "alice", "displayName": "Alice"},
    )
    result = AuthClient(BASE).validate("placeholder")
    assert result.username == "alice"
    assert result.display_name == "Alice"
    assert rsps.calls[0].request.headers["Authorization"] == "Bearer placeholder"


@pytest.mark.parametrize("status", [401, 403])
def test_validate_revoked(rsps, status):
    rsps.add(responses.GET, BASE + "/api/v1/users/me", status=status)
    with pytest.raises(AuthError, match="credentials are invalid or revoked"):
        AuthClient(BASE).validate("placeholder")


def test_poll_device_auth_status(rsps):
    rsps.add(
        responses.GET,
        BASE + "/api/v1/auth/device/status",
        json={"status": "authorized", "apiKey": "placeholder", "username": "alice"},
    )
    result = AuthClient(BASE).poll_device_auth_status("dev-1")
    assert result.status == "authorized"
    assert result.api_key == "placeholder"
    assert "device_code=dev-1" in rsps.calls[0].request.url


def test_poll_device_auth_status_pending_has_no_key(rsps):
    rsps.add(responses.GET, BASE + "/api/v1/auth/device/status", json={"status": "pending"})
    result = AuthClient(BASE).poll_device_auth_status("dev-1")
    assert result.api_key is None
    assert result.username is None


def test_request_failure(rsps):
    with pytest.raises(AuthError, match="request failed"):
        AuthClient(BASE).validate("placeholder")


def test_credentials_round_trip(creds_path):
    when = datetime(2026, 2, 17, 10, 0, tzinfo=timezone.utc)
    creds = Credentials(
        api_key="placeholder", api_base_url=BASE, username="alice", authorized_at=when
    )
    save_credentials(creds)
    assert load_credentials() == creds


def test_credentials_file_keys(creds_path):
    save_credentials(Credentials(api_key="placeholder", api_base_url=BASE))
    loaded = load_credentials()
    assert loaded.api_key == "placeholder"
    assert loaded.api_base_url == BASE
    data = json.loads(creds_path.read_text())
    assert set(data) == {"api_key", "api_base_url", "authorized_at"}
    assert data["authorized_at"] == "0001-01-01T00:00:00Z"


def test_load_missing_credentials(creds_path):
    assert load_credentials() is None


def test_delete_credentials(creds_path):
    save_credentials(Credentials(api_key="placeholder", api_base_url=BASE))
    delete_credentials()
    assert not creds_path.exists()
    delete_credentials()
    assert load_credentials() is None


def test_collect_device_info():
    info = collect_device_info()
    assert info.client_name == "pipe-cli"
    assert info.client_hostname == socket.gethostname()
    assert info.client_os == info.client_os.lower()


class _Clock:
    def __init__(self):
        self.now = 0.0

    def monotonic(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


class _ScriptedClient:
    def __init__(self, statuses):
        self.statuses = list(statuses)
        self.calls = []

    def poll_device_auth_status(self, device_code):
        self.calls.append(device_code)
        status = self.statuses.pop(0) if self.statuses else "pending"
        if status == "authorized":
            return DeviceAuthStatusResponse(status=status, api_key="placeholder")
        return DeviceAuthStatusResponse(status=status, api_key=None)


def _poll(client, interval, expires_in):
    clock = _Clock()
    with mock.patch("pipekit.auth.time.monotonic", clock.monotonic), mock.patch(
        "pipekit.auth.time.sleep", clock.sleep
    ):
        return poll_for_authorization(client, "dev-1", interval, expires_in), clock


def test_poll_until_authorized():
    client = _ScriptedClient(["pending", "verified", "authorized"])
    result, clock = _poll(client, 5, 600)
    assert result.api_key == "placeholder"
    assert client.calls == ["dev-1", "dev-1", "dev-1"]
    assert clock.now == 3 * 5


def test_poll_denied():
    client = _ScriptedClient(["denied"])
    with pytest.raises(AuthError, match="denied"):
        _poll(client, 5, 600)


def test_poll_expired_status():
    client = _ScriptedClient(["expired"])
    with pytest.raises(AuthError, match="device authorization expired"):
        _poll(client, 5, 600)


def test_poll_unexpected_status():
    client = _ScriptedClient(["weird"])
    with pytest.raises(AuthError, match="unexpected status: weird"):
        _poll(client, 5, 600)


def test_poll_deadline():
    client = _ScriptedClient([])
    with pytest.raises(AuthError, match="device authorization expired"):
        _poll(client, 5, 12)
    assert len(client.calls) == 2


def test_poll_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        poll_for_authorization(_ScriptedClient([]), "dev-1", 0, 10)