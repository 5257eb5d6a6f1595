"""HTTP clients for the external AI vendors and internal tools.

Vendors are opaque: the engine only submits a task, checks its remote
state and downloads the resulting artifact.
"""

import asyncio
from typing import Any, Dict, Literal, Optional

import httpx
from pydantic import BaseModel

from atelier.core.errors import VendorError

DEFAULT_TIMEOUT = httpx.Timeout(60.0, connect=10.0)

IN_PROGRESS_STATES = {"PENDING", "IN_QUEUE", "QUEUED", "IN_PROGRESS", "PROCESSING"}
SUCCESS_STATES = {"COMPLETED", "SUCCESS", "SUCCEEDED", "COMPLETE"}


class RemoteStatus(BaseModel):
    state: Literal["in_progress", "succeeded", "failed"]
    result_url: Optional[str] = None
    error: Optional[str] = None
    raw_status: Optional[str] = None


def normalize_remote_status(data: Any) -> RemoteStatus:
    if not isinstance(data, dict) or not data.get("status"):
        raise VendorError("vendor status response is missing 'status'")
    raw = str(data["status"]).upper()
    if raw in IN_PROGRESS_STATES:
        return RemoteStatus(state="in_progress", raw_status=raw)
    if raw in SUCCESS_STATES:
        result = data.get("result") or data.get("output_url")
        if not result:
            raise VendorError("vendor reported success without a result url")
        if not isinstance(result, str):
            raise VendorError(f"vendor result url is not a string: {result!r}")
        return RemoteStatus(state="succeeded", result_url=result, raw_status=raw)
    error = data.get("error")
    if error and not isinstance(error, str):
        error = str(error)
    return RemoteStatus(
        state="failed",
        error=error or f"vendor reported status {raw}",
        raw_status=raw,
    )


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    headers: Dict[str, str],
    params: Optional[Dict[str, Any]] = None,
    json_body: Optional[Dict[str, Any]] = None,
    retries: int = 0,
) -> Any:
    attempt = 0
    while True:
        try:
            response = await client.request(
                method,
                url,
                headers=headers,
                params=params,
                json=json_body,
            )
        except httpx.HTTPError as exc:
            raise VendorError(f"request to {url} failed: {exc}") from exc
        if response.status_code == 429 and attempt < retries:
            retry_after = response.headers.get("Retry-After")
            delay = 1.0
            if retry_after and retry_after.isdigit():
                delay = max(1.0, float(retry_after))
            await asyncio.sleep(delay)
            attempt += 1
            continue
        if response.status_code >= 500 and attempt < retries:
            await asyncio.sleep(0.5 * (attempt + 1))
            attempt += 1
            continue
        if response.status_code >= 400:
            detail = response.text.strip() or response.reason_phrase
            raise VendorError(f"vendor error {response.status_code}: {detail}")
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise VendorError(f"unparseable response from {url}") from exc


async def download_bytes(
    client: httpx.AsyncClient, url: str, retries: int = 2
) -> bytes:
    attempt = 0
    while True:
        try:
            response = await client.get(url, follow_redirects=True)
        except httpx.HTTPError as exc:
            raise VendorError(f"download of {url} failed: {exc}") from exc
        if response.status_code >= 500 and attempt < retries:
            await asyncio.sleep(0.5 * (attempt + 1))
            attempt += 1
            continue
        if response.status_code >= 400:
            raise VendorError(f"download of {url} failed: {response.status_code}")
        return response.content


class HttpVendor:
    """Queue/status style vendor API (``POST /queue``, ``POST /status``)."""

    def __init__(
        self,
        name: str,
        base_url: str,
        api_key: str = "",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.name = name
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "x-api-key": self._api_key,
        }

    def _client(self) -> httpx.AsyncClient:
        if not self._base_url:
            raise VendorError(f"vendor {self.name} is not configured")
        return httpx.AsyncClient(timeout=DEFAULT_TIMEOUT, transport=self._transport)

    async def submit(self, body: Dict[str, Any]) -> str:
        async with self._client() as client:
            data = await request_json(
                client, "POST", f"{self._base_url}/queue", self._headers(), json_body=body
            )
        task_id = isinstance(data, dict) and (data.get("requestId") or data.get("task_id"))
        if not task_id:
            raise VendorError(f"{self.name} did not return a task id")
        return str(task_id)

    async def check(self, task_id: str) -> RemoteStatus:
        async with self._client() as client:
            data = await request_json(
                client,
                "POST",
                f"{self._base_url}/status",
                self._headers(),
                json_body={"request_id": task_id},
                retries=2,
            )
        return normalize_remote_status(data)

    async def download(self, url: str) -> bytes:
        async with self._client() as client:
            return await download_bytes(client, url)


class ToolClient:
    """Synchronous internal tools, ``POST {base_url}/{tool}``."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        if not self._base_url:
            raise VendorError("tool endpoint is not configured")
        return httpx.AsyncClient(timeout=DEFAULT_TIMEOUT, transport=self._transport)

    async def call(self, tool: str, body: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        async with self._client() as client:
            data = await request_json(
                client, "POST", f"{self._base_url}/{tool}", headers, json_body=body
            )
        if not isinstance(data, dict):
            raise VendorError(f"tool {tool} returned an unexpected response")
        if data.get("error"):
            raise VendorError(f"tool {tool} failed: {data['error']}")
        return data

    async def download(self, url: str) -> bytes:
        async with self._client() as client:
            return await download_bytes(client, url)
