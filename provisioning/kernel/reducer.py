"""
Provisioning Kernel - Reducer

Pure function: (state, action) -> ReduceResult(state, effects, warnings)
No side effects. No IO. No logging. Deterministic.

The reducer never performs a request itself. When an action needs the
outside world (register a runtime, poll a wait) it returns an Effect
describing the request; the dispatcher executes it and feeds the outcome
back in as further actions.

Failure modes:
  - unknown action type      -> UnhandledActionError (raised)
  - missing payload field    -> MalformedActionError (raised)
  - stale or unknown target  -> state unchanged, Warning returned
"""

from __future__ import annotations

import copy
from typing import Any

from provisioning.kernel.types import (
    EFFECT_ENV_CREATE,
    EFFECT_ENV_DELETE,
    EFFECT_RUNTIME_REFRESH,
    EFFECT_RUNTIME_REGISTER,
    EFFECT_WAIT_POLL,
    ENV_CREATE_ERROR,
    ENV_CREATE_START,
    ENV_DELETE_ERROR,
    ENV_DELETE_START,
    HOST_CREATE_COMPLETE,
    HOST_CREATE_ERROR,
    HOST_CREATE_START,
    INIT,
    RUNTIME_INIT,
    RUNTIME_LOAD,
    RUNTIME_LOAD_COMPLETE,
    RUNTIME_REFRESH_START,
    RUNTIME_REGISTER_COMPLETE,
    RUNTIME_REGISTER_ERROR,
    RUNTIME_REGISTER_START,
    RUNTIME_SELECT,
    RUNTIME_UNREGISTER,
    Action,
    Effect,
    Environment,
    Host,
    MalformedActionError,
    ReduceResult,
    Runtime,
    UnhandledActionError,
    Wait,
    Warning,
    env_key,
)

# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def empty_state() -> dict[str, Any]:
    """
    The initial snapshot: no runtimes, environments, hosts or waits.

    State = {
        "runtimes":           {alias: Runtime},
        "active_runtime":     alias | None,
        "registering":        bool,
        "registration_error": str | None,
        "refreshing":         bool,
        "environments":       {"runtime/name": Environment},
        "hosts":              {wait_url | host_name: Host},
        "waits":              {url: Wait},
    }
    """
    return {
        "runtimes": {},
        "active_runtime": None,
        "registering": False,
        "registration_error": None,
        "refreshing": False,
        "environments": {},
        "hosts": {},
        "waits": {},
    }


def reduce(state: dict[str, Any], action: Action) -> ReduceResult:
    """
    Apply one action to the current state.
    Returns the new state + requested effects + warnings.

    The returned state is a new dict (deep copy). The input state is never
    modified, so callers holding an older snapshot never see it change.
    """
    handler = _HANDLERS.get(action.type)
    if handler is None:
        raise UnhandledActionError(f"UNHANDLED_ACTION: {action.type!r}")

    snap = copy.deepcopy(state)
    return handler(snap, action)


def replay(actions: list[Action]) -> dict[str, Any]:
    """
    Rebuild state from scratch by reducing over all actions.
    Effects are discarded.
    """
    state = empty_state()
    for action in actions:
        state = reduce(state, action).state
    return state


def pending_waits(state: dict[str, Any]) -> list[dict[str, Any]]:
    """Waits still in flight, in creation order."""
    return [w for w in state["waits"].values() if w["status"] == "pending"]


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _ok(
    snap: dict,
    effects: list[Effect] | None = None,
    warnings: list[Warning] | None = None,
) -> ReduceResult:
    return ReduceResult(state=snap, effects=effects or [], warnings=warnings or [])


def _noop(snap: dict, code: str, msg: str, **details: Any) -> ReduceResult:
    return ReduceResult(state=snap, warnings=[Warning(code=code, message=msg, details=details or None)])


def _require(action: Action, key: str) -> Any:
    value = action.payload.get(key)
    if value is None:
        raise MalformedActionError(f"{action.type}: missing required field {key!r}")
    return value


def _record(action: Action, key: str, cls: type) -> Any:
    """Read a required entity record from the payload into its dataclass."""
    raw = _require(action, key)
    if not isinstance(raw, dict):
        raise MalformedActionError(f"{action.type}: {key!r} must be an object")
    try:
        return cls.from_dict(raw)
    except KeyError as e:
        raise MalformedActionError(f"{action.type}: {key!r} missing field {e}") from None


def _endpoint(snap: dict, alias: str | None) -> str | None:
    rt = snap["runtimes"].get(alias) if alias else None
    return rt["url"] if rt else None


def _any_pending(snap: dict) -> bool:
    return any(rt["status"] == "pending" for rt in snap["runtimes"].values())


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


def _reduce_init(snap: dict, action: Action) -> ReduceResult:
    return _ok(empty_state())


# ---------------------------------------------------------------------------
# Runtime handlers
# ---------------------------------------------------------------------------


def _reduce_runtime_register_start(snap: dict, action: Action) -> ReduceResult:
    rt: Runtime = _record(action, "runtime", Runtime)

    existing = snap["runtimes"].get(rt.alias)
    rt.status = "pending"
    rt.error = None
    rt.initialized = bool(existing and existing["initialized"])

    snap["runtimes"][rt.alias] = rt.to_dict()
    snap["registering"] = True
    snap["registration_error"] = None

    effect = Effect(
        EFFECT_RUNTIME_REGISTER,
        {"alias": rt.alias, "url": rt.url, "zones": list(rt.zones)},
    )
    return _ok(snap, [effect])


def _reduce_runtime_register_complete(snap: dict, action: Action) -> ReduceResult:
    rt: Runtime = _record(action, "runtime", Runtime)

    existing = snap["runtimes"].get(rt.alias)
    rt.status = "registered"
    rt.error = None
    rt.initialized = rt.initialized or bool(existing and existing["initialized"])

    snap["runtimes"][rt.alias] = rt.to_dict()
    snap["registering"] = _any_pending(snap)
    snap["registration_error"] = None
    if snap["active_runtime"] is None:
        snap["active_runtime"] = rt.alias
    return _ok(snap)


def _reduce_runtime_register_error(snap: dict, action: Action) -> ReduceResult:
    alias = action.payload.get("alias")
    error = action.payload.get("error") or "runtime registration failed"

    snap["registration_error"] = error

    if alias is None:
        # No alias: every pending registration has failed
        targets = [rt for rt in snap["runtimes"].values() if rt["status"] == "pending"]
    else:
        rt = snap["runtimes"].get(alias)
        if rt is None:
            snap["registering"] = _any_pending(snap)
            return _ok(snap, warnings=[
                Warning("UNKNOWN_RUNTIME", f"registration error for unknown runtime {alias!r}", {"alias": alias}),
            ])
        targets = [rt] if rt["status"] == "pending" else []

    for rt in targets:
        rt["status"] = "error"
        rt["error"] = error
    snap["registering"] = _any_pending(snap)
    return _ok(snap)


def _reduce_runtime_unregister(snap: dict, action: Action) -> ReduceResult:
    alias = _require(action, "alias")
    if alias not in snap["runtimes"]:
        return _ok(snap)

    del snap["runtimes"][alias]
    for key in [k for k, env in snap["environments"].items() if env["runtime"] == alias]:
        del snap["environments"][key]
    snap["registering"] = _any_pending(snap)

    # Waits and hosts of this runtime are left alone; late completions
    # resolve against them or are absorbed as stale.
    if snap["active_runtime"] == alias:
        remaining = sorted(snap["runtimes"])
        snap["active_runtime"] = remaining[0] if remaining else None
    return _ok(snap)


def _reduce_runtime_select(snap: dict, action: Action) -> ReduceResult:
    alias = _require(action, "alias")
    if alias not in snap["runtimes"]:
        return _noop(snap, "UNKNOWN_RUNTIME", f"cannot select unknown runtime {alias!r}", alias=alias)
    snap["active_runtime"] = alias
    return _ok(snap)


def _reduce_runtime_init(snap: dict, action: Action) -> ReduceResult:
    alias = snap["active_runtime"]
    if alias is None:
        return _noop(snap, "NO_ACTIVE_RUNTIME", "runtime-init with no active runtime")
    snap["runtimes"][alias]["initialized"] = True
    return _ok(snap)


def _reduce_runtime_refresh_start(snap: dict, action: Action) -> ReduceResult:
    snap["refreshing"] = True
    targets = [
        {"alias": rt["alias"], "url": rt["url"], "zones": list(rt["zones"])}
        for _, rt in sorted(snap["runtimes"].items())
        if rt["status"] != "pending"
    ]
    return _ok(snap, [Effect(EFFECT_RUNTIME_REFRESH, {"runtimes": targets})])


def _reduce_runtime_load(snap: dict, action: Action) -> ReduceResult:
    rt: Runtime = _record(action, "runtime", Runtime)

    # alias is the merge key: replace, never duplicate
    existing = snap["runtimes"].get(rt.alias)
    rt.initialized = rt.initialized or bool(existing and existing["initialized"])
    snap["runtimes"][rt.alias] = rt.to_dict()
    if snap["active_runtime"] is None and rt.status == "registered":
        snap["active_runtime"] = rt.alias

    listed = action.payload.get("environments")
    if listed is not None:
        _settle_environments(snap, rt.alias, listed)
    return _ok(snap)


def _settle_environments(snap: dict, alias: str, listed: list[dict[str, Any]]) -> None:
    """
    Reconcile one runtime's environments with what the backend reported.

    Listed environments become ready, except ones already being deleted.
    Unlisted ready/deleting environments are gone on the backend and are
    dropped. Unlisted requested/error environments are kept: creation may
    still be in progress, and errors stay visible until retried.
    """
    seen: dict[str, Environment] = {}
    for raw in listed:
        env = Environment.from_dict({**raw, "runtime": alias})
        seen[env.key] = env

    for key in [k for k, e in snap["environments"].items() if e["runtime"] == alias]:
        if key in seen:
            continue
        if snap["environments"][key]["status"] in ("ready", "deleting"):
            del snap["environments"][key]

    for key, env in seen.items():
        current = snap["environments"].get(key)
        if current is None:
            env.status = "ready"
            snap["environments"][key] = env.to_dict()
            continue
        current["devices"] = sorted(set(env.devices))
        current["host"] = env.host or current["host"]
        current["zone"] = env.zone or current["zone"]
        if current["status"] != "deleting":
            current["status"] = "ready"
            current["error"] = None


def _reduce_runtime_load_complete(snap: dict, action: Action) -> ReduceResult:
    snap["refreshing"] = False
    return _ok(snap)


# ---------------------------------------------------------------------------
# Environment handlers
# ---------------------------------------------------------------------------


def _reduce_env_create_start(snap: dict, action: Action) -> ReduceResult:
    env: Environment = _record(action, "env", Environment)

    endpoint = _endpoint(snap, env.runtime)
    if endpoint is None:
        return _noop(snap, "UNKNOWN_RUNTIME", f"environment {env.name!r} names unknown runtime {env.runtime!r}",
                     runtime=env.runtime)

    current = snap["environments"].get(env.key)
    if current is not None and current["status"] != "error":
        return _noop(snap, "ENV_EXISTS", f"environment {env.key!r} already exists", key=env.key)

    env.status = "requested"
    env.error = None
    snap["environments"][env.key] = env.to_dict()
    return _ok(snap, [Effect(EFFECT_ENV_CREATE, {"endpoint": endpoint, "env": env.to_dict()})])


def _reduce_env_create_error(snap: dict, action: Action) -> ReduceResult:
    env: Environment = _record(action, "env", Environment)

    current = snap["environments"].get(env.key)
    if current is None or current["status"] != "requested":
        return _noop(snap, "STALE_ENV", f"create error for environment {env.key!r} not being created", key=env.key)
    current["status"] = "error"
    current["error"] = action.payload.get("error") or "environment creation failed"
    return _ok(snap)


def _reduce_env_delete_start(snap: dict, action: Action) -> ReduceResult:
    target: Environment = _record(action, "target", Environment)

    current = snap["environments"].get(target.key)
    if current is None:
        return _noop(snap, "UNKNOWN_ENV", f"cannot delete unknown environment {target.key!r}", key=target.key)

    current["status"] = "deleting"
    current["error"] = None
    effect = Effect(EFFECT_ENV_DELETE, {"endpoint": _endpoint(snap, target.runtime), "env": dict(current)})
    return _ok(snap, [effect])


def _reduce_env_delete_error(snap: dict, action: Action) -> ReduceResult:
    target: Environment = _record(action, "target", Environment)

    current = snap["environments"].get(target.key)
    if current is None or current["status"] != "deleting":
        return _noop(snap, "STALE_ENV", f"delete error for environment {target.key!r} not being deleted",
                     key=target.key)
    current["status"] = "ready"
    current["error"] = action.payload.get("error") or "environment deletion failed"
    return _ok(snap)


# ---------------------------------------------------------------------------
# Host handlers
# ---------------------------------------------------------------------------


def _reduce_host_create_start(snap: dict, action: Action) -> ReduceResult:
    wait: Wait = _record(action, "wait", Wait)

    current = snap["waits"].get(wait.url)
    if current is not None and current["status"] == "pending":
        return _noop(snap, "DUPLICATE_WAIT", f"wait {wait.url!r} is already pending", url=wait.url)

    wait.status = "pending"
    wait.error = None
    snap["waits"][wait.url] = wait.to_dict()

    host = Host(zone=wait.zone, status="waiting", runtime=wait.runtime, wait_url=wait.url)
    snap["hosts"][wait.url] = host.to_dict()

    effect = Effect(
        EFFECT_WAIT_POLL,
        {
            "url": wait.url,
            "zone": wait.zone,
            "runtime": wait.runtime,
            "endpoint": _endpoint(snap, wait.runtime),
        },
    )
    return _ok(snap, [effect])


def _reduce_host_create_complete(snap: dict, action: Action) -> ReduceResult:
    url = _require(action, "waitUrl")
    host: Host = _record(action, "host", Host)

    wait = snap["waits"].get(url)
    if wait is None or wait["status"] != "pending":
        return _noop(snap, "STALE_WAIT", f"completion for unknown or settled wait {url!r}", url=url)
    if not host.name:
        raise MalformedActionError(f"{action.type}: completed host has no name")

    del snap["waits"][url]
    snap["hosts"].pop(url, None)

    host.zone = host.zone or wait["zone"]
    host.runtime = host.runtime or wait["runtime"]
    host.wait_url = url
    host.status = "ready"
    host.error = None
    snap["hosts"][host.name] = host.to_dict()

    rt = snap["runtimes"].get(host.runtime) if host.runtime else None
    if rt is not None and host.name not in rt["hosts"]:
        rt["hosts"] = sorted([*rt["hosts"], host.name])
    return _ok(snap)


def _reduce_host_create_error(snap: dict, action: Action) -> ReduceResult:
    url = action.payload.get("waitUrl")
    error = action.payload.get("error") or "host creation failed"

    if url is None:
        # Global failure: fail every pending wait so nothing stays stuck
        targets = [w["url"] for w in pending_waits(snap)]
        if not targets:
            return _noop(snap, "NO_PENDING_WAITS", "host creation error with no pending waits")
    else:
        wait = snap["waits"].get(url)
        if wait is None or wait["status"] != "pending":
            return _noop(snap, "STALE_WAIT", f"error for unknown or settled wait {url!r}", url=url)
        targets = [url]

    # Failed waits leave the state; the failure stays on the host
    for target in targets:
        del snap["waits"][target]
        host = snap["hosts"].get(target)
        if host is not None and host["status"] == "waiting":
            host["status"] = "error"
            host["error"] = error
    return _ok(snap)


# ---------------------------------------------------------------------------
# Dispatch table
# ---------------------------------------------------------------------------

_HANDLERS = {
    INIT: _reduce_init,
    RUNTIME_REGISTER_START: _reduce_runtime_register_start,
    RUNTIME_REGISTER_COMPLETE: _reduce_runtime_register_complete,
    RUNTIME_REGISTER_ERROR: _reduce_runtime_register_error,
    RUNTIME_UNREGISTER: _reduce_runtime_unregister,
    RUNTIME_SELECT: _reduce_runtime_select,
    RUNTIME_INIT: _reduce_runtime_init,
    RUNTIME_REFRESH_START: _reduce_runtime_refresh_start,
    RUNTIME_LOAD: _reduce_runtime_load,
    RUNTIME_LOAD_COMPLETE: _reduce_runtime_load_complete,
    ENV_CREATE_START: _reduce_env_create_start,
    ENV_CREATE_ERROR: _reduce_env_create_error,
    ENV_DELETE_START: _reduce_env_delete_start,
    ENV_DELETE_ERROR: _reduce_env_delete_error,
    HOST_CREATE_START: _reduce_host_create_start,
    HOST_CREATE_COMPLETE: _reduce_host_create_complete,
    HOST_CREATE_ERROR: _reduce_host_create_error,
}
