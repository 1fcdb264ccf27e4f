"""
Provisioning Kernel - Shared Types

Data classes used across actions, reducer, backend and dispatcher.
These are the contracts that bind the kernel together.

Entity records (Runtime, Environment, Host, Wait) travel inside action
payloads as dataclasses and are stored in the state snapshot as plain
dicts (see to_dict/from_dict). The reducer reads only `type` and
`payload` of an Action.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# ---------------------------------------------------------------------------
# Action type registry
# ---------------------------------------------------------------------------

INIT = "init"
RUNTIME_REGISTER_START = "runtime-register-start"
RUNTIME_REGISTER_COMPLETE = "runtime-register-complete"
RUNTIME_REGISTER_ERROR = "runtime-register-error"
RUNTIME_UNREGISTER = "runtime-unregister"
RUNTIME_SELECT = "runtime-select"
RUNTIME_INIT = "runtime-init"
RUNTIME_REFRESH_START = "runtime-refresh-start"
RUNTIME_LOAD = "runtime-load"
RUNTIME_LOAD_COMPLETE = "runtime-load-complete"
ENV_CREATE_START = "env-create-start"
ENV_CREATE_ERROR = "env-create-error"
ENV_DELETE_START = "env-delete-start"
ENV_DELETE_ERROR = "env-delete-error"
HOST_CREATE_START = "host-create-start"
HOST_CREATE_COMPLETE = "host-create-complete"
HOST_CREATE_ERROR = "host-create-error"

ACTION_TYPES: set[str] = {
    INIT,
    # Runtime
    RUNTIME_REGISTER_START,
    RUNTIME_REGISTER_COMPLETE,
    RUNTIME_REGISTER_ERROR,
    RUNTIME_UNREGISTER,
    RUNTIME_SELECT,
    RUNTIME_INIT,
    RUNTIME_REFRESH_START,
    RUNTIME_LOAD,
    RUNTIME_LOAD_COMPLETE,
    # Environment
    ENV_CREATE_START,
    ENV_CREATE_ERROR,
    ENV_DELETE_START,
    ENV_DELETE_ERROR,
    # Host
    HOST_CREATE_START,
    HOST_CREATE_COMPLETE,
    HOST_CREATE_ERROR,
}

# Effect types requested by the reducer, executed by the dispatcher
EFFECT_RUNTIME_REGISTER = "runtime.register"
EFFECT_RUNTIME_REFRESH = "runtime.refresh"
EFFECT_ENV_CREATE = "env.create"
EFFECT_ENV_DELETE = "env.delete"
EFFECT_WAIT_POLL = "wait.poll"

EFFECT_TYPES: set[str] = {
    EFFECT_RUNTIME_REGISTER,
    EFFECT_RUNTIME_REFRESH,
    EFFECT_ENV_CREATE,
    EFFECT_ENV_DELETE,
    EFFECT_WAIT_POLL,
}

RUNTIME_STATUSES: set[str] = {"pending", "registered", "error"}
ENV_STATUSES: set[str] = {"requested", "ready", "deleting", "error"}
HOST_STATUSES: set[str] = {"waiting", "ready", "error"}
WAIT_STATUSES: set[str] = {"pending", "resolved", "failed"}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class OrchestratorError(Exception):
    """Programming error while applying an action. Never recoverable."""

    pass


class UnhandledActionError(OrchestratorError):
    """Action type is not part of the vocabulary."""

    pass


class MalformedActionError(OrchestratorError):
    """Action is missing a required payload field."""

    pass


# ---------------------------------------------------------------------------
# Entity records
# ---------------------------------------------------------------------------


@dataclass
class Runtime:
    """A registered connection to a provisioning control plane."""

    alias: str
    url: str
    status: str = "pending"
    zones: list[str] = field(default_factory=list)
    hosts: list[str] = field(default_factory=list)
    initialized: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "alias": self.alias,
            "url": self.url,
            "status": self.status,
            "zones": list(self.zones),
            "hosts": list(self.hosts),
            "initialized": self.initialized,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Runtime:
        return cls(
            alias=d["alias"],
            url=d["url"],
            status=d.get("status", "pending"),
            zones=list(d.get("zones", [])),
            hosts=list(d.get("hosts", [])),
            initialized=d.get("initialized", False),
            error=d.get("error"),
        )


@dataclass
class Environment:
    """
    A named group of virtual devices on one host, owned by a runtime.
    `devices` is kept sorted so snapshots compare stably.
    """

    name: str
    runtime: str
    zone: str = ""
    host: str = ""
    devices: list[str] = field(default_factory=list)
    build_id: str = ""
    target: str = ""
    instances_count: int | None = None
    status: str = "requested"
    error: str | None = None

    @property
    def key(self) -> str:
        return env_key(self.runtime, self.name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "runtime": self.runtime,
            "zone": self.zone,
            "host": self.host,
            "devices": sorted(set(self.devices)),
            "build_id": self.build_id,
            "target": self.target,
            "instances_count": self.instances_count,
            "status": self.status,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Environment:
        return cls(
            name=d["name"],
            runtime=d["runtime"],
            zone=d.get("zone", ""),
            host=d.get("host", ""),
            devices=list(d.get("devices", [])),
            build_id=d.get("build_id", ""),
            target=d.get("target", ""),
            instances_count=d.get("instances_count"),
            status=d.get("status", "requested"),
            error=d.get("error"),
        )


@dataclass
class Host:
    """A cloud compute instance. `name` stays None until creation completes."""

    zone: str
    name: str | None = None
    status: str = "waiting"
    runtime: str | None = None
    wait_url: str | None = None
    machine_type: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "zone": self.zone,
            "status": self.status,
            "runtime": self.runtime,
            "wait_url": self.wait_url,
            "machine_type": self.machine_type,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Host:
        return cls(
            name=d.get("name", d.get("id")),
            zone=d.get("zone", ""),
            status=d.get("status", "waiting"),
            runtime=d.get("runtime"),
            wait_url=d.get("wait_url"),
            machine_type=d.get("machine_type"),
            error=d.get("error"),
        )


@dataclass
class Wait:
    """Handle on an in-flight backend operation, identified by its poll URL."""

    url: str
    zone: str = ""
    runtime: str | None = None
    kind: str = "host"
    status: str = "pending"
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "zone": self.zone,
            "runtime": self.runtime,
            "kind": self.kind,
            "status": self.status,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Wait:
        return cls(
            url=d["url"],
            zone=d.get("zone", ""),
            runtime=d.get("runtime"),
            kind=d.get("kind", "host"),
            status=d.get("status", "pending"),
            error=d.get("error"),
        )


# ---------------------------------------------------------------------------
# Actions, effects, results
# ---------------------------------------------------------------------------


@dataclass
class Action:
    """
    One event dispatched into the orchestrator.
    Payload values are plain dicts/strings; see actions.py for factories.
    """

    type: str
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "payload": self.payload}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Action:
        return cls(type=d["type"], payload=d.get("payload", {}))


@dataclass
class Effect:
    """A side effect requested by the reducer. Carries everything the dispatcher needs."""

    type: str
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "payload": self.payload}


@dataclass
class Warning:
    """A non-fatal diagnostic produced while reducing (stale completion, unknown key)."""

    code: str
    message: str
    details: dict[str, Any] | None = None


@dataclass
class ReduceResult:
    """
    Result of applying one action to a snapshot.
    `state` is always a fresh dict; the input snapshot is never modified.
    """

    state: dict[str, Any]
    effects: list[Effect] = field(default_factory=list)
    warnings: list[Warning] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def env_key(runtime: str, name: str) -> str:
    """State key of an environment: names are unique per runtime only."""
    return f"{runtime}/{name}"
