"""
HTTP transport using httpx.
"""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx

from replica.constants import FILE_UPLOAD_DELIMITER, FILE_UPLOAD_KEY
from replica.errors import ErrorCode, ReplicaError
from replica.transport.base import BaseTransport
from replica.transport.request import Request

if TYPE_CHECKING:
    from replica.auth import Authentication

logger = logging.getLogger(__name__)

SDK_HEADER_VALUE = "replica-python"


def normalize_response(body: Any) -> dict[str, Any]:
    """Map the server's response envelope onto the SDK's lowercase keys."""
    if not isinstance(body, dict):
        return {"result": body}

    response: dict[str, Any] = {}
    for key, value in body.items():
        if key == "Result":
            response["result"] = value
        elif key == "Count":
            response["count"] = value
        else:
            response[key] = value
    return response


def error_from_response(response: httpx.Response) -> ReplicaError:
    try:
        body = response.json()
    except ValueError:
        body = {}

    if isinstance(body, dict) and "errorCode" in body:
        return ReplicaError(body.get("message") or None, body["errorCode"])
    return ReplicaError(
        f"HTTP {response.status_code}: {response.text[:200]}", ErrorCode.GENERAL
    )


class HttpTransport(BaseTransport):
    """Talks to the backend REST API over HTTP."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        auth: Authentication | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ):
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.api_key = api_key
        self.auth = auth
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def url_for(self, endpoint: str) -> str:
        prefix = f"{self.base_url}{self.api_key}/" if self.api_key else self.base_url
        return prefix + endpoint.lstrip("/")

    def _headers(self, request: Request) -> dict[str, str]:
        headers = {"X-Replica-Sdk": SDK_HEADER_VALUE}
        if request.authenticate and self.auth is not None:
            headers.update(self.auth.auth_headers())
        headers.update(request.headers)
        return headers

    async def close(self) -> None:
        await self._client.aclose()

    async def send(self, request: Request) -> dict[str, Any]:
        url = self.url_for(request.endpoint)
        logger.debug(f"{request.method} {url}")

        try:
            response = await self._client.request(
                request.method,
                url,
                headers=self._headers(request),
                json=request.data,
            )
        except httpx.TimeoutException as e:
            raise ReplicaError(f"Request timed out: {url}") from e
        except httpx.HTTPError as e:
            raise ReplicaError(f"Request failed: {e}") from e

        if response.status_code >= 400:
            raise error_from_response(response)
        if not response.content:
            return {"result": None}
        return normalize_response(response.json())

    async def upload(self, request: Request, path: Path, fields: dict[str, Any]) -> dict[str, Any]:
        url = self.url_for(request.endpoint)
        filename = fields.get("Filename") or path.name
        content_type = fields.get("ContentType") or mimetypes.guess_type(filename)[0]
        form = {
            f"{FILE_UPLOAD_KEY}{FILE_UPLOAD_DELIMITER}{key}": str(value)
            for key, value in fields.items()
            if key.lower() != "base64" and value is not None
        }
        logger.debug(f"Uploading {path} with {request.method} {url}")

        try:
            response = await self._client.request(
                request.method,
                url,
                headers=self._headers(request),
                data=form,
                files={FILE_UPLOAD_KEY: (filename, path.read_bytes(), content_type or "application/octet-stream")},
            )
        except httpx.HTTPError as e:
            raise ReplicaError(f"Upload failed: {e}") from e

        if response.status_code >= 400:
            raise error_from_response(response)

        result = normalize_response(response.json())
        if result.get("result") is False:
            raise ReplicaError.from_code(ErrorCode.MISSING_OR_INVALID_FILE_CONTENT)
        if isinstance(result.get("result"), list):
            result["result"] = result["result"][0]
        return result

    async def download(self, url: str) -> bytes:
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            raise ReplicaError(f"Download failed: {e}") from e

        if response.status_code >= 400:
            raise error_from_response(response)
        return response.content
