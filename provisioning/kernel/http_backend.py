"""HTTP implementation of the backend API."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from provisioning.config import settings
from provisioning.kernel.backend import BackendApi, BackendError, host_path, hosts_path
from provisioning.models import (
    CreateCVDRequest,
    CreateHostRequest,
    Device,
    ErrorMsg,
    HostInstance,
    ListDevicesResponse,
    ListHostsResponse,
    ListOperationsResponse,
    Operation,
)

logger = logging.getLogger(__name__)


class HttpBackend(BackendApi):
    """HTTP client for a provisioning control plane."""

    def __init__(
        self,
        api_url: str,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.api_url,
            timeout=timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS,
            transport=transport,
        )

    def _headers(self) -> dict:
        """Build request headers."""
        return {"Content-Type": "application/json", "Accept": "application/json"}

    async def _request(self, method: str, path: str, data: dict | None = None) -> Any:
        """
        Make a request and return the decoded JSON body (None if empty).
        Relative paths resolve against api_url; absolute URLs are used as-is.
        """
        try:
            res = await self.client.request(method, path, json=data, headers=self._headers())
        except httpx.HTTPError as e:
            raise BackendError(f"failed to connect to {self.api_url}: {e}") from e

        if res.is_error:
            raise BackendError(_error_message(res), res.status_code)
        if not res.content:
            return None
        try:
            return res.json()
        except ValueError as e:
            raise BackendError(f"failed to parse response from {method} {path}") from e

    async def create_host(self, zone: str, request: CreateHostRequest) -> Operation:
        body = await self._request("POST", hosts_path(zone), request.model_dump())
        return _parse(Operation, body)

    async def list_hosts(self, zone: str) -> list[HostInstance]:
        body = await self._request("GET", hosts_path(zone))
        return _parse(ListHostsResponse, _as_listing(body)).items

    async def delete_host(self, zone: str, host: str) -> None:
        await self._request("DELETE", host_path(zone, host))

    async def create_cvd(self, zone: str, host: str, request: CreateCVDRequest) -> Operation:
        body = await self._request("POST", f"{host_path(zone, host)}/cvds", request.model_dump(exclude_none=True))
        return _parse(Operation, body)

    async def list_devices(self, zone: str, host: str) -> list[Device]:
        body = await self._request("GET", f"{host_path(zone, host)}/devices")
        return _parse(ListDevicesResponse, _as_listing(body)).items

    async def list_operations(self, zone: str, host: str) -> list[Operation]:
        body = await self._request("GET", f"{host_path(zone, host)}/operations")
        return _parse(ListOperationsResponse, _as_listing(body)).items

    async def wait_status(self, url: str) -> Operation:
        body = await self._request("GET", url)
        return _parse(Operation, body)

    async def close(self) -> None:
        await self.client.aclose()


def _as_listing(body: Any) -> Any:
    """List endpoints may answer with a bare JSON array or an {"items": [...]} object."""
    if body is None:
        return {"items": []}
    if isinstance(body, list):
        return {"items": body}
    return body


def _parse(model: type[BaseModel], body: Any) -> Any:
    try:
        return model.model_validate(body)
    except ValidationError as e:
        logger.warning("http_backend: malformed %s: %s", model.__name__, e)
        raise BackendError(f"malformed {model.__name__} in backend response") from e


def _error_message(res: httpx.Response) -> str:
    """Prefer the backend's {"error": "..."} body, fall back to the status line."""
    try:
        msg = ErrorMsg.model_validate(res.json()).error
    except (ValueError, ValidationError):
        msg = ""
    return msg or f"{res.request.method} {res.request.url.path} failed: {res.reason_phrase}"
