"""
Provisioning Kernel - Backend API

The narrow interface the dispatcher uses to reach a provisioning control
plane. Every result is a validated model from provisioning.models; every
failure (transport, non-2xx, malformed payload) is a BackendError.

Implement with HttpBackend for production, or MemoryBackend for tests.
"""

from __future__ import annotations

from typing import Any

from provisioning.models import (
    CreateCVDRequest,
    CreateHostRequest,
    Device,
    HostInstance,
    Operation,
)

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class BackendError(Exception):
    """A backend call failed. Recoverable: surfaced to the state as an *-error action."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.message = message
        self.status = status

    def __str__(self) -> str:
        if self.status is None:
            return self.message
        return f"{self.message} (HTTP {self.status})"


# ---------------------------------------------------------------------------
# Backend protocol
# ---------------------------------------------------------------------------


def hosts_path(zone: str) -> str:
    return f"/v1/zones/{zone}/hosts"


def host_path(zone: str, host: str) -> str:
    return f"/v1/zones/{zone}/hosts/{host}"


def operation_path(zone: str, host: str, name: str) -> str:
    return f"{host_path(zone, host)}/operations/{name}"


class BackendApi:
    """
    Abstract backend interface.
    All methods are coroutines and raise BackendError on failure.
    """

    async def create_host(self, zone: str, request: CreateHostRequest) -> Operation:
        """POST /v1/zones/{zone}/hosts. Returns the creation operation."""
        raise NotImplementedError

    async def list_hosts(self, zone: str) -> list[HostInstance]:
        """GET /v1/zones/{zone}/hosts"""
        raise NotImplementedError

    async def delete_host(self, zone: str, host: str) -> None:
        """DELETE /v1/zones/{zone}/hosts/{host}"""
        raise NotImplementedError

    async def create_cvd(self, zone: str, host: str, request: CreateCVDRequest) -> Operation:
        """POST /v1/zones/{zone}/hosts/{host}/cvds. Returns the creation operation."""
        raise NotImplementedError

    async def list_devices(self, zone: str, host: str) -> list[Device]:
        """GET /v1/zones/{zone}/hosts/{host}/devices"""
        raise NotImplementedError

    async def list_operations(self, zone: str, host: str) -> list[Operation]:
        """GET /v1/zones/{zone}/hosts/{host}/operations"""
        raise NotImplementedError

    async def get_operation(self, zone: str, host: str, name: str) -> Operation:
        """GET /v1/zones/{zone}/hosts/{host}/operations/{name}"""
        return await self.wait_status(operation_path(zone, host, name))

    async def wait_status(self, url: str) -> Operation:
        """GET a poll URL (path or absolute URL) and return the operation status."""
        raise NotImplementedError

    async def close(self) -> None:
        pass


class MemoryBackend(BackendApi):
    """
    In-memory backend for testing.

    Operation statuses are scripted per poll URL: each wait_status call
    consumes the next scripted Operation, and the last one repeats.
    Calls are recorded in `requests` as (method, path, body).
    """

    def __init__(self) -> None:
        self.hosts: dict[str, list[HostInstance]] = {}
        self.devices: dict[tuple[str, str], list[Device]] = {}
        self.operations: dict[str, list[Operation]] = {}
        self.requests: list[tuple[str, str, Any]] = []
        self.failures: dict[str, BackendError] = {}
        self.closed = False
        self._op_counter = 0

    # -- scripting helpers --

    def fail(self, method: str, message: str = "backend unavailable", status: int | None = 503) -> None:
        """Make every call to `method` raise BackendError."""
        self.failures[method] = BackendError(message, status)

    def script_operation(self, url: str, *statuses: Operation) -> None:
        self.operations[url] = list(statuses)

    def add_host(self, zone: str, name: str, devices: list[Device] | None = None) -> None:
        self.hosts.setdefault(zone, []).append(HostInstance(name=name))
        self.devices[(zone, name)] = list(devices or [])

    def _call(self, method: str, path: str, body: Any = None) -> None:
        self.requests.append((method, path, body))
        error = self.failures.get(method)
        if error is not None:
            raise error

    def _next_operation_name(self) -> str:
        self._op_counter += 1
        return f"op-{self._op_counter}"

    # -- BackendApi --

    async def create_host(self, zone: str, request: CreateHostRequest) -> Operation:
        self._call("create_host", hosts_path(zone), request.model_dump())
        return Operation(name=self._next_operation_name())

    async def list_hosts(self, zone: str) -> list[HostInstance]:
        self._call("list_hosts", hosts_path(zone))
        return list(self.hosts.get(zone, []))

    async def delete_host(self, zone: str, host: str) -> None:
        self._call("delete_host", host_path(zone, host))
        remaining = [h for h in self.hosts.get(zone, []) if h.name != host]
        if len(remaining) == len(self.hosts.get(zone, [])):
            raise BackendError(f"host {host} not found", 404)
        self.hosts[zone] = remaining
        self.devices.pop((zone, host), None)

    async def create_cvd(self, zone: str, host: str, request: CreateCVDRequest) -> Operation:
        self._call("create_cvd", f"{host_path(zone, host)}/cvds", request.model_dump(exclude_none=True))
        if not any(h.name == host for h in self.hosts.get(zone, [])):
            raise BackendError(f"host {host} not found", 404)
        return Operation(name=self._next_operation_name())

    async def list_devices(self, zone: str, host: str) -> list[Device]:
        self._call("list_devices", f"{host_path(zone, host)}/devices")
        return list(self.devices.get((zone, host), []))

    async def list_operations(self, zone: str, host: str) -> list[Operation]:
        prefix = f"{host_path(zone, host)}/operations/"
        self._call("list_operations", prefix.rstrip("/"))
        return [ops[0] for url, ops in self.operations.items() if url.startswith(prefix) and ops]

    async def wait_status(self, url: str) -> Operation:
        self._call("wait_status", url)
        statuses = self.operations.get(url)
        if not statuses:
            raise BackendError(f"operation {url} not found", 404)
        if len(statuses) > 1:
            return statuses.pop(0)
        return statuses[0]

    async def close(self) -> None:
        self.closed = True
