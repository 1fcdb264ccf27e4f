"""
Provisioning Kernel - Action Construction

Factory functions for creating well-formed actions.
Used by the dispatcher to wrap backend results before feeding them to the
reducer, by view layers to express operator intent, and by tests to build
actions concisely.

Entity arguments may be passed as dataclasses or as plain dicts; payloads
always hold plain dicts.
"""

from __future__ import annotations

from typing import Any

from provisioning.kernel.types import (
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
    Environment,
    Host,
    Runtime,
    Wait,
)


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return dict(value)
    return value.to_dict()


def init() -> Action:
    return Action(INIT)


# -- runtimes --


def runtime_register_start(runtime: Runtime | dict[str, Any]) -> Action:
    return Action(RUNTIME_REGISTER_START, {"runtime": _as_dict(runtime)})


def runtime_register_complete(runtime: Runtime | dict[str, Any]) -> Action:
    return Action(RUNTIME_REGISTER_COMPLETE, {"runtime": _as_dict(runtime)})


def runtime_register_error(alias: str | None = None, error: str | None = None) -> Action:
    payload: dict[str, Any] = {}
    if alias is not None:
        payload["alias"] = alias
    if error is not None:
        payload["error"] = error
    return Action(RUNTIME_REGISTER_ERROR, payload)


def runtime_unregister(alias: str) -> Action:
    return Action(RUNTIME_UNREGISTER, {"alias": alias})


def runtime_select(alias: str) -> Action:
    return Action(RUNTIME_SELECT, {"alias": alias})


def runtime_init() -> Action:
    return Action(RUNTIME_INIT)


def runtime_refresh_start() -> Action:
    return Action(RUNTIME_REFRESH_START)


def runtime_load(
    runtime: Runtime | dict[str, Any],
    environments: list[Environment | dict[str, Any]] | None = None,
) -> Action:
    """
    One runtime record as seen by a refresh.

    environments=None means the refresh did not look at environments (for
    example the runtime was unreachable) and existing ones are left alone.
    An empty list means the runtime has none.
    """
    payload: dict[str, Any] = {"runtime": _as_dict(runtime)}
    if environments is not None:
        payload["environments"] = [_as_dict(e) for e in environments]
    return Action(RUNTIME_LOAD, payload)


def runtime_load_complete() -> Action:
    return Action(RUNTIME_LOAD_COMPLETE)


# -- environments --


def env_create_start(env: Environment | dict[str, Any]) -> Action:
    return Action(ENV_CREATE_START, {"env": _as_dict(env)})


def env_create_error(env: Environment | dict[str, Any], error: str | None = None) -> Action:
    return Action(ENV_CREATE_ERROR, {"env": _as_dict(env), "error": error})


def env_delete_start(target: Environment | dict[str, Any]) -> Action:
    return Action(ENV_DELETE_START, {"target": _as_dict(target)})


def env_delete_error(target: Environment | dict[str, Any], error: str | None = None) -> Action:
    return Action(ENV_DELETE_ERROR, {"target": _as_dict(target), "error": error})


# -- hosts --


def host_create_start(wait: Wait | dict[str, Any]) -> Action:
    return Action(HOST_CREATE_START, {"wait": _as_dict(wait)})


def host_create_complete(wait_url: str, host: Host | dict[str, Any]) -> Action:
    return Action(HOST_CREATE_COMPLETE, {"waitUrl": wait_url, "host": _as_dict(host)})


def host_create_error(wait_url: str | None = None, error: str | None = None) -> Action:
    """
    wait_url=None is a global host-creation failure: every pending wait
    is failed.
    """
    payload: dict[str, Any] = {}
    if wait_url is not None:
        payload["waitUrl"] = wait_url
    if error is not None:
        payload["error"] = error
    return Action(HOST_CREATE_ERROR, payload)
