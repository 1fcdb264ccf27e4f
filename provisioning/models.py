"""Wire models for the provisioning REST API (request and response shapes)."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, Field


class GCPInstance(BaseModel):
    disk_size_gb: int = 0
    machine_type: str = ""
    min_cpu_platform: str = ""


class CreateHostInstanceRequest(BaseModel):
    gcp: GCPInstance


class CreateHostRequest(BaseModel):
    """Body of POST /v1/zones/{zone}/hosts."""

    create_host_instance_request: CreateHostInstanceRequest


class HostInstance(BaseModel):
    name: str
    gcp: GCPInstance | None = None


class ListHostsResponse(BaseModel):
    items: list[HostInstance] = Field(default_factory=list, validation_alias=AliasChoices("items", "hosts"))


class BuildInfo(BaseModel):
    build_id: str
    target: str


class CreateCVDRequest(BaseModel):
    """Body of POST /v1/zones/{zone}/hosts/{host}/cvds."""

    build_info: BuildInfo
    instances_count: int | None = None
    fetch_cvd_build_id: str | None = None
    group_name: str | None = None


class Device(BaseModel):
    """
    A CVD running on a host.
    `group_name` ties devices created by one request together; devices
    without one are grouped under their host's name.
    """

    name: str
    group_name: str | None = None
    build_id: str | None = None
    target: str | None = None


class ListDevicesResponse(BaseModel):
    items: list[Device] = Field(default_factory=list, validation_alias=AliasChoices("items", "devices"))


class ErrorInfo(BaseModel):
    message: str = ""


class OperationResult(BaseModel):
    error: ErrorInfo | None = None


class Operation(BaseModel):
    """
    Progress of an asynchronous backend request.

    If `done` is False the operation is still in progress. Once True,
    either an error or a response is available. Errors may be reported
    as a top-level `error` (string or object) or nested under
    `result.error.message`.
    """

    name: str
    done: bool = False
    error: Any = None
    response: dict[str, Any] | None = None
    result: OperationResult | None = None

    @property
    def error_message(self) -> str | None:
        if self.result is not None and self.result.error is not None:
            return self.result.error.message or "operation failed"
        if self.error is None:
            return None
        if isinstance(self.error, dict):
            return str(self.error.get("message") or self.error.get("error") or self.error)
        return str(self.error)


class ListOperationsResponse(BaseModel):
    items: list[Operation] = Field(default_factory=list, validation_alias=AliasChoices("items", "operations"))


class ErrorMsg(BaseModel):
    """Body of a non-2xx response."""

    error: str = ""
