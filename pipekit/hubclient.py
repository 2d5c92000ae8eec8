"""HTTP client for the Pipe Hub API."""

from __future__ import annotations

import json
import logging
from typing import Any

import requests

from .models import CreatePipeRequest, PipeMetadata, PushResponse, TagDetail

log = logging.getLogger(__name__)


class HubError(Exception):
    """Raised when a hub request fails."""


def _read_error(response: requests.Response) -> HubError:
    body = response.content.strip().decode("utf-8", "replace")
    return HubError(f"server returned {response.status_code}: {body}")


def _object(response: requests.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError as exc:
        raise HubError(f"decoding response: {exc}") from exc
    if not isinstance(data, dict):
        raise HubError("decoding response: expected a JSON object")
    return data


class HubClient:
    """Talks to the hub, authenticated when an API key is given."""

    timeout = 30.0

    def __init__(self, base_url: str, api_key: str = "") -> None:
        self.base_url = base_url
        self.api_key = api_key
        self._session = requests.Session()

    def _send(
        self,
        method: str,
        url: str,
        *,
        body: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> requests.Response:
        headers = dict(headers or {})
        if self.api_key:
            headers["Authorization"] = "Bearer " + self.api_key
        headers.setdefault("Content-Type", "application/json")
        log.debug("hub API request: method=%s url=%s", method, url)
        try:
            response = self._session.request(
                method, url, data=body, headers=headers, timeout=self.timeout
            )
        except requests.RequestException as exc:
            log.debug("hub API request failed: method=%s url=%s err=%s", method, url, exc)
            raise HubError(f"request failed: {exc}") from exc
        log.debug(
            "hub API response: method=%s url=%s status=%d", method, url, response.status_code
        )
        return response

    def get_pipe(self, owner: str, name: str) -> PipeMetadata | None:
        """Pipe metadata, or None when the hub does not know the pipe."""
        response = self._send("GET", f"{self.base_url}/api/v1/pipes/{owner}/{name}")
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise _read_error(response)
        return PipeMetadata.from_dict(_object(response))

    def create_pipe(self, owner: str, request: CreatePipeRequest) -> PipeMetadata:
        """Create a pipe under ``owner``."""
        body = json.dumps(request.to_dict()).encode("utf-8")
        response = self._send("POST", f"{self.base_url}/api/v1/pipes/{owner}", body=body)
        if response.status_code not in (200, 201):
            raise _read_error(response)
        meta = PipeMetadata.from_dict(_object(response))
        log.debug("CreatePipe result: owner=%s name=%s", owner, meta.name)
        return meta

    def get_tag(self, owner: str, name: str, tag: str) -> TagDetail | None:
        """Tag metadata, or None when the tag does not exist."""
        response = self._send("GET", f"{self.base_url}/api/v1/pipes/{owner}/{name}/tags/{tag}")
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise _read_error(response)
        detail = TagDetail.from_dict(_object(response))
        if not detail.sha256 and detail.digest.startswith("sha256:"):
            detail.sha256 = detail.digest.removeprefix("sha256:")
        log.debug(
            "GetTag result: tag=%s sha256=%s size=%d", tag, detail.sha256[:12], detail.size_bytes
        )
        return detail

    def _download(self, url: str) -> bytes:
        response = self._send("GET", url)
        if response.status_code != 200:
            raise _read_error(response)
        return response.content

    def download_tag(self, owner: str, name: str, tag: str) -> bytes:
        """The YAML content of a tag."""
        data = self._download(f"{self.base_url}/api/v1/pipes/{owner}/{name}/tags/{tag}/download")
        log.debug("DownloadTag result: tag=%s size=%d", tag, len(data))
        return data

    def download_by_digest(self, owner: str, name: str, digest: str) -> bytes:
        """The YAML content with the given content digest."""
        data = self._download(
            f"{self.base_url}/api/v1/pipes/{owner}/{name}/digests/{digest}/download"
        )
        log.debug("DownloadByDigest result: digest=%s size=%d", digest, len(data))
        return data

    def push(self, owner: str, name: str, content: bytes, tags: list[str]) -> PushResponse:
        """Upload YAML content and assign ``tags`` to it."""
        headers = {"Content-Type": "application/x-yaml"}
        if tags:
            headers["X-Pipe-Tags"] = ",".join(tags)
        response = self._send(
            "POST",
            f"{self.base_url}/api/v1/pipes/{owner}/{name}/push",
            body=content,
            headers=headers,
        )
        if response.status_code not in (200, 201):
            raise _read_error(response)
        result = PushResponse.from_dict(_object(response))
        log.debug(
            "Push result: digest=%s tags=%s created=%s size=%d",
            result.digest,
            result.tags,
            result.created,
            result.size_bytes,
        )
        return result