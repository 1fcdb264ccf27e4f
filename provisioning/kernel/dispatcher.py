"""
Provisioning Kernel - Effect Dispatcher

Sits between the pure reducer and the outside world (backend APIs, view
layers). Owns the current state snapshot, applies dispatched actions,
and executes the effects the reducer asks for.

This is where IO happens. The reducer is pure.

Effects never read the state: each one carries the data it needs, and
its outcome re-enters the state only as a dispatched action. All of this
runs on a single event loop, so no lock guards the snapshot.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from provisioning.config import settings
from provisioning.kernel import actions
from provisioning.kernel.backend import BackendApi, BackendError
from provisioning.kernel.reducer import empty_state, reduce
from provisioning.kernel.types import (
    EFFECT_ENV_CREATE,
    EFFECT_ENV_DELETE,
    EFFECT_RUNTIME_REFRESH,
    EFFECT_RUNTIME_REGISTER,
    EFFECT_WAIT_POLL,
    Action,
    Effect,
    Environment,
    Host,
    OrchestratorError,
    ReduceResult,
    Runtime,
    Wait,
)
from provisioning.models import BuildInfo, CreateCVDRequest, CreateHostRequest, Device, HostInstance

logger = logging.getLogger(__name__)

Subscriber = Callable[[dict[str, Any]], None]


def wait_url_for(endpoint: str, zone: str, operation_name: str) -> str:
    """
    Poll URL of a host-creation operation.
    The backend may hand back the poll path itself as the operation name.
    """
    if "://" in operation_name:
        return operation_name
    if operation_name.startswith("/"):
        return f"{endpoint}{operation_name}"
    return f"{endpoint}/v1/zones/{zone}/operations/{operation_name}"


def group_devices(runtime: str, zone: str, host: str, devices: list[Device]) -> list[Environment]:
    """Group a host's devices into environments by group name (default: the host name)."""
    groups: dict[str, Environment] = {}
    for device in devices:
        name = device.group_name or host
        env = groups.get(name)
        if env is None:
            env = Environment(
                name=name,
                runtime=runtime,
                zone=zone,
                host=host,
                build_id=device.build_id or "",
                target=device.target or "",
                status="ready",
            )
            groups[name] = env
        env.devices.append(device.name)
    return list(groups.values())


class Orchestrator:
    """
    Single owner of the provisioning state.

    View layers call dispatch() and subscribe() and read `state`; they
    never mutate the snapshot. Effects run as asyncio tasks on the running
    loop; settle() waits until none are left.
    """

    def __init__(
        self,
        connect: Callable[[str], BackendApi],
        default_endpoint: str | None = None,
        zone: str | None = None,
        poll_interval: float | None = None,
        poll_timeout: float | None = None,
    ):
        self._connect = connect
        self._backends: dict[str, BackendApi] = {}
        self._state: dict[str, Any] = empty_state()
        self._subscribers: list[Subscriber] = []
        self._tasks: set[asyncio.Task] = set()
        self.default_endpoint = (default_endpoint or settings.API_URL).rstrip("/")
        self.zone = zone or settings.ZONE
        self.poll_interval = poll_interval if poll_interval is not None else settings.POLL_INTERVAL_SECONDS
        self.poll_timeout = poll_timeout if poll_timeout is not None else settings.POLL_TIMEOUT_SECONDS
        self._effect_handlers = {
            EFFECT_RUNTIME_REGISTER: self._register_runtime,
            EFFECT_RUNTIME_REFRESH: self._refresh_runtimes,
            EFFECT_ENV_CREATE: self._create_env,
            EFFECT_ENV_DELETE: self._delete_env,
            EFFECT_WAIT_POLL: self._poll_wait,
        }

    @property
    def state(self) -> dict[str, Any]:
        """Latest snapshot. Treat as read-only; a new dict replaces it on every dispatch."""
        return self._state

    def backend(self, endpoint: str | None = None) -> BackendApi:
        """One backend client per endpoint, created on first use."""
        endpoint = (endpoint or self.default_endpoint).rstrip("/")
        if endpoint not in self._backends:
            self._backends[endpoint] = self._connect(endpoint)
        return self._backends[endpoint]

    # -- dispatch --

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Call `callback(state)` after every dispatch. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def dispatch(self, action: Action) -> ReduceResult:
        """
        Apply one action, start its effects, publish the new snapshot.
        OrchestratorError from the reducer, or RuntimeError when effects
        are due outside a running event loop, propagates to the caller and
        the state is left as it was. A subscriber that raises does so after
        the effects have started.
        """
        result = reduce(self._state, action)
        loop = asyncio.get_running_loop() if result.effects else None
        self._state = result.state

        for warning in result.warnings:
            logger.info("dispatcher: %s ignored (%s): %s", action.type, warning.code, warning.message)
        for effect in result.effects:
            self._spawn(loop, effect)
        for callback in list(self._subscribers):
            callback(self._state)
        return result

    def _spawn(self, loop: asyncio.AbstractEventLoop, effect: Effect) -> None:
        task = loop.create_task(self.run_effect(effect))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def settle(self) -> None:
        """Wait for every in-flight effect, including ones started while waiting."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        for backend in self._backends.values():
            await backend.close()
        self._backends.clear()

    # -- commands --

    async def create_host(
        self,
        request: CreateHostRequest,
        zone: str | None = None,
        runtime: str | None = None,
        endpoint: str | None = None,
    ) -> str | None:
        """
        Request a new host and start waiting for it.
        Returns the wait URL, or None if the request itself failed.
        """
        zone = zone or self.zone
        endpoint = (endpoint or self.default_endpoint).rstrip("/")
        try:
            op = await self.backend(endpoint).create_host(zone, request)
        except BackendError as e:
            # No operation was started, so there is no wait to fail
            logger.warning("dispatcher: create host in %s failed: %s", zone, e)
            return None

        url = wait_url_for(endpoint, zone, op.name)
        logger.info("dispatcher: host creation started, waiting on %s", url)
        self.dispatch(actions.host_create_start(Wait(url=url, zone=zone, runtime=runtime)))
        return url

    # -- effects --

    async def run_effect(self, effect: Effect) -> None:
        handler = self._effect_handlers.get(effect.type)
        if handler is None:
            raise OrchestratorError(f"UNHANDLED_EFFECT: {effect.type!r}")
        await handler(effect.payload)

    async def _register_runtime(self, payload: dict[str, Any]) -> None:
        alias, url = payload["alias"], payload["url"]
        zones = payload["zones"] or [self.zone]
        try:
            hosts = await self.backend(url).list_hosts(zones[0])
        except BackendError as e:
            logger.warning("dispatcher: registering runtime %s at %s failed: %s", alias, url, e)
            self.dispatch(actions.runtime_register_error(alias, str(e)))
            return

        runtime = Runtime(
            alias=alias,
            url=url,
            status="registered",
            zones=zones,
            hosts=sorted(h.name for h in hosts),
        )
        self.dispatch(actions.runtime_register_complete(runtime))

    async def _refresh_runtimes(self, payload: dict[str, Any]) -> None:
        await asyncio.gather(*(self._load_runtime(rt) for rt in payload["runtimes"]))
        self.dispatch(actions.runtime_load_complete())

    async def _load_runtime(self, target: dict[str, Any]) -> None:
        alias, url = target["alias"], target["url"]
        zones = target["zones"] or [self.zone]
        backend = self.backend(url)

        host_names: list[str] = []
        environments: list[Environment] = []
        try:
            for zone in zones:
                for host in await backend.list_hosts(zone):
                    host_names.append(host.name)
                    devices = await backend.list_devices(zone, host.name)
                    environments.extend(group_devices(alias, zone, host.name, devices))
        except BackendError as e:
            logger.warning("dispatcher: refreshing runtime %s failed: %s", alias, e)
            failed = Runtime(alias=alias, url=url, status="error", zones=zones, error=str(e))
            self.dispatch(actions.runtime_load(failed))
            return

        loaded = Runtime(alias=alias, url=url, status="registered", zones=zones, hosts=sorted(host_names))
        self.dispatch(actions.runtime_load(loaded, environments))

    async def _create_env(self, payload: dict[str, Any]) -> None:
        env = Environment.from_dict(payload["env"])
        request = CreateCVDRequest(
            build_info=BuildInfo(build_id=env.build_id, target=env.target),
            instances_count=env.instances_count,
            group_name=env.name,
        )
        try:
            op = await self.backend(payload["endpoint"]).create_cvd(env.zone, env.host, request)
        except BackendError as e:
            logger.warning("dispatcher: creating environment %s failed: %s", env.key, e)
            self.dispatch(actions.env_create_error(env, str(e)))
            return
        # No completion action: the environment settles on the next refresh
        logger.info("dispatcher: environment %s requested (operation %s)", env.key, op.name)

    async def _delete_env(self, payload: dict[str, Any]) -> None:
        env = Environment.from_dict(payload["env"])
        try:
            await self.backend(payload["endpoint"]).delete_host(env.zone, env.host)
        except BackendError as e:
            logger.warning("dispatcher: deleting environment %s failed: %s", env.key, e)
            self.dispatch(actions.env_delete_error(env, str(e)))
            return
        logger.info("dispatcher: environment %s deletion requested", env.key)

    async def _poll_wait(self, payload: dict[str, Any]) -> None:
        """
        Poll a wait URL until the operation is done or the timeout elapses.
        Exactly one complete/error action is dispatched per wait.
        """
        url = payload["url"]
        backend = self.backend(payload["endpoint"])
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.poll_timeout

        while True:
            try:
                op = await backend.wait_status(url)
            except BackendError as e:
                logger.warning("dispatcher: polling %s failed: %s", url, e)
                self.dispatch(actions.host_create_error(url, str(e)))
                return
            if op.done:
                break
            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.warning("dispatcher: %s not done after %ss", url, self.poll_timeout)
                self.dispatch(actions.host_create_error(url, f"timed out after {self.poll_timeout}s"))
                return
            await asyncio.sleep(min(self.poll_interval, remaining))

        if op.error_message:
            self.dispatch(actions.host_create_error(url, op.error_message))
            return
        try:
            instance = HostInstance.model_validate(op.response or {})
        except ValidationError:
            logger.warning("dispatcher: %s finished without a host record: %r", url, op.response)
            self.dispatch(actions.host_create_error(url, "operation finished without a host record"))
            return

        host = Host(
            zone=payload["zone"],
            name=instance.name,
            status="ready",
            runtime=payload["runtime"],
            machine_type=instance.gcp.machine_type if instance.gcp else None,
        )
        self.dispatch(actions.host_create_complete(url, host))
