"""Device authorization against the hub and locally stored credentials."""

from __future__ import annotations

import json
import os
import platform
import socket
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import requests

from . import config
from .models import _format_time, _parse_time

_ZERO_TIME_TEXT = "0001-01-01T00:00:00Z"


class AuthError(Exception):
    """Raised when authorization or a credentials request fails."""


@dataclass
class DeviceAuthRequest:
    """Describes the device asking for authorization."""

    client_name: str
    client_os: str
    client_arch: str
    client_hostname: str


@dataclass
class DeviceAuthResponse:
    """Codes and timing returned when device authorization starts."""

    device_code: str = ""
    user_code: str = ""
    verification_uri: str = ""
    verification_uri_complete: str = ""
    expires_in: int = 0
    interval: int = 0


@dataclass
class DeviceAuthStatusResponse:
    """Current state of a device authorization."""

    status: str = ""
    api_key: str | None = None
    username: str | None = None


@dataclass
class ValidateResponse:
    """The user that an API key belongs to."""

    username: str = ""
    display_name: str = ""


@dataclass
class Credentials:
    """Stored login credentials."""

    api_key: str
    api_base_url: str = ""
    username: str = ""
    authorized_at: datetime | None = None


@dataclass
class DeviceInfo:
    """Identification of this machine sent to the hub."""

    client_name: str
    client_os: str
    client_arch: str
    client_hostname: str


def _object(response: requests.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError as exc:
        raise AuthError(f"decoding response: {exc}") from exc
    if not isinstance(data, dict):
        raise AuthError("decoding response: expected a JSON object")
    return data


def _server_error(response: requests.Response) -> AuthError:
    body = response.content.strip().decode("utf-8", "replace")
    return AuthError(f"server returned {response.status_code}: {body}")


class AuthClient:
    """Client for the hub's authentication endpoints."""

    timeout = 10.0

    def __init__(self, base_url: str) -> None:
        self.base_url = base_url
        self._session = requests.Session()

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        try:
            return self._session.request(
                method, self.base_url + path, timeout=self.timeout, **kwargs
            )
        except requests.RequestException as exc:
            raise AuthError(f"request failed: {exc}") from exc

    def initiate_device_auth(self, request: DeviceAuthRequest) -> DeviceAuthResponse:
        """Start device authorization."""
        body = {
            "clientName": request.client_name,
            "clientOS": request.client_os,
            "clientArch": request.client_arch,
            "clientHostname": request.client_hostname,
        }
        response = self._request("POST", "/api/v1/auth/device", json=body)
        if response.status_code != 200:
            raise _server_error(response)
        data = _object(response)
        try:
            return DeviceAuthResponse(
                device_code=data.get("deviceCode") or "",
                user_code=data.get("userCode") or "",
                verification_uri=data.get("verificationUri") or "",
                verification_uri_complete=data.get("verificationUriComplete") or "",
                expires_in=int(data.get("expiresIn") or 0),
                interval=int(data.get("interval") or 0),
            )
        except (TypeError, ValueError) as exc:
            raise AuthError(f"decoding response: {exc}") from exc

    def logout(self, api_key: str) -> None:
        """Revoke the device and API key; an already revoked key is fine."""
        response = self._request(
            "POST",
            "/api/v1/auth/device/logout",
            headers={"Authorization": "Bearer " + api_key},
        )
        if response.status_code in (204, 401):
            return
        raise _server_error(response)

    def validate(self, api_key: str) -> ValidateResponse:
        """Check that the API key is still valid and return its user."""
        response = self._request(
            "GET", "/api/v1/users/me", headers={"Authorization": "Bearer " + api_key}
        )
        if response.status_code in (401, 403):
            raise AuthError("credentials are invalid or revoked")
        if response.status_code != 200:
            raise _server_error(response)
        data = _object(response)
        return ValidateResponse(
            username=data.get("username") or "",
            display_name=data.get("displayName") or "",
        )

    def poll_device_auth_status(self, device_code: str) -> DeviceAuthStatusResponse:
        """Ask for the current state of a device authorization."""
        response = self._request(
            "GET", "/api/v1/auth/device/status?device_code=" + device_code
        )
        if response.status_code != 200:
            raise _server_error(response)
        data = _object(response)
        return DeviceAuthStatusResponse(
            status=data.get("status") or "",
            api_key=data.get("apiKey"),
            username=data.get("username"),
        )


def save_credentials(creds: Credentials) -> None:
    """Write credentials to the credentials file, readable by the owner only."""
    data: dict[str, Any] = {"api_key": creds.api_key}
    if creds.username:
        data["username"] = creds.username
    data["api_base_url"] = creds.api_base_url
    data["authorized_at"] = (
        _format_time(creds.authorized_at) if creds.authorized_at else _ZERO_TIME_TEXT
    )
    text = json.dumps(data, indent=2)
    fd = os.open(Path(config.CREDENTIALS_PATH), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(text)


def load_credentials() -> Credentials | None:
    """Read stored credentials; None when there are none."""
    try:
        raw = Path(config.CREDENTIALS_PATH).read_bytes()
    except FileNotFoundError:
        return None
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("credentials file does not hold a JSON object")
    return Credentials(
        api_key=data.get("api_key") or "",
        username=data.get("username") or "",
        api_base_url=data.get("api_base_url") or "",
        authorized_at=_parse_time(data.get("authorized_at")),
    )


def delete_credentials() -> None:
    """Remove stored credentials, if any."""
    Path(config.CREDENTIALS_PATH).unlink(missing_ok=True)


_ARCH_NAMES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
}


def collect_device_info() -> DeviceInfo:
    """Describe this machine."""
    try:
        hostname = socket.gethostname()
    except OSError:
        hostname = ""
    machine = platform.machine().lower()
    return DeviceInfo(
        client_name="pipe-cli",
        client_os=platform.system().lower(),
        client_arch=_ARCH_NAMES.get(machine, machine),
        client_hostname=hostname,
    )


def _sleep_until(moment: float) -> None:
    remaining = moment - time.monotonic()
    if remaining > 0:
        time.sleep(remaining)


def poll_for_authorization(
    client: AuthClient, device_code: str, interval: int, expires_in: int
) -> DeviceAuthStatusResponse:
    """Poll every ``interval`` seconds until authorized, denied or expired."""
    if interval <= 0:
        raise ValueError("poll interval must be positive")
    start = time.monotonic()
    deadline = start + expires_in
    next_tick = start + interval
    while True:
        if next_tick >= deadline:
            _sleep_until(deadline)
            raise AuthError("device authorization expired")
        _sleep_until(next_tick)
        status = client.poll_device_auth_status(device_code)
        match status.status:
            case "authorized":
                return status
            case "denied":
                raise AuthError("device authorization was denied")
            case "expired":
                raise AuthError("device authorization expired")
            case "pending" | "verified":
                pass
            case other:
                raise AuthError(f"unexpected status: {other}")
        next_tick = max(next_tick + interval, time.monotonic())