"""
Provisioning Dispatcher -- Runtime and Environment Tests

Covers:
  - register probes the backend, then completes or errors
  - refresh lists hosts and devices, groups devices into environments
  - refresh failure marks the runtime and still completes the refresh
  - env.create posts the CVD request; failures become env-create-error
  - env.delete deletes the host; the environment disappears on refresh
  - wait URL construction and device grouping helpers
"""

import pytest

from provisioning.kernel import actions
from provisioning.kernel.dispatcher import group_devices, wait_url_for
from provisioning.kernel.types import Environment, Runtime
from provisioning.models import Device

ENDPOINT = "http://prod"
ZONE = "us-central1-b"


def prod(**overrides):
    fields = {"alias": "prod", "url": ENDPOINT, "zones": [ZONE]}
    fields.update(overrides)
    return Runtime(**fields)


async def register(orch):
    orch.dispatch(actions.runtime_register_start(prod()))
    await orch.settle()


async def refresh(orch):
    orch.dispatch(actions.runtime_refresh_start())
    await orch.settle()


# ============================================================================
# Registration
# ============================================================================


class TestRegister:
    @pytest.mark.asyncio
    async def test_register_completes_with_known_hosts(self, orch, backend):
        backend.add_host(ZONE, "cf-2")
        backend.add_host(ZONE, "cf-1")
        await register(orch)
        rt = orch.state["runtimes"]["prod"]
        assert rt["status"] == "registered"
        assert rt["hosts"] == ["cf-1", "cf-2"]
        assert orch.state["active_runtime"] == "prod"
        assert orch.state["registering"] is False

    @pytest.mark.asyncio
    async def test_register_uses_default_zone(self, orch, backend):
        orch.dispatch(actions.runtime_register_start(prod(zones=[])))
        await orch.settle()
        assert backend.requests == [("list_hosts", f"/v1/zones/{ZONE}/hosts", None)]
        assert orch.state["runtimes"]["prod"]["zones"] == [ZONE]

    @pytest.mark.asyncio
    async def test_register_failure_records_error(self, orch, backend):
        backend.fail("list_hosts", "connection refused", None)
        await register(orch)
        assert orch.state["registration_error"] == "connection refused"
        assert orch.state["runtimes"]["prod"]["status"] == "error"
        assert orch.state["active_runtime"] is None


# ============================================================================
# Refresh
# ============================================================================


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_loads_environments(self, orch, backend):
        backend.add_host(ZONE, "cf-1", [
            Device(name="cvd-1", group_name="phones", build_id="8673413"),
            Device(name="cvd-2", group_name="phones", build_id="8673413"),
            Device(name="cvd-3"),
        ])
        await register(orch)
        await refresh(orch)

        assert orch.state["refreshing"] is False
        envs = orch.state["environments"]
        assert sorted(envs) == ["prod/cf-1", "prod/phones"]
        assert envs["prod/phones"]["devices"] == ["cvd-1", "cvd-2"]
        assert envs["prod/phones"]["status"] == "ready"
        assert envs["prod/cf-1"]["devices"] == ["cvd-3"]

    @pytest.mark.asyncio
    async def test_refresh_with_no_runtimes_still_completes(self, orch):
        await refresh(orch)
        assert orch.state["refreshing"] is False

    @pytest.mark.asyncio
    async def test_refresh_failure_marks_runtime(self, orch, backend):
        await register(orch)
        backend.fail("list_hosts", "gateway timeout", 504)
        await refresh(orch)
        rt = orch.state["runtimes"]["prod"]
        assert rt["status"] == "error"
        assert rt["error"] == "gateway timeout (HTTP 504)"
        assert orch.state["refreshing"] is False

    @pytest.mark.asyncio
    async def test_errored_runtime_recovers_on_next_refresh(self, orch, backend):
        await register(orch)
        backend.fail("list_hosts")
        await refresh(orch)
        backend.failures.clear()
        await refresh(orch)
        assert orch.state["runtimes"]["prod"]["status"] == "registered"


# ============================================================================
# Environments
# ============================================================================


class TestEnvironments:
    @pytest.mark.asyncio
    async def test_create_posts_cvd_request(self, orch, backend):
        backend.add_host(ZONE, "cf-1")
        await register(orch)
        env = Environment(name="phones", runtime="prod", zone=ZONE, host="cf-1",
                          build_id="8673413", target="aosp_cf_x86_64_phone-userdebug", instances_count=3)
        orch.dispatch(actions.env_create_start(env))
        await orch.settle()

        method, path, body = backend.requests[-1]
        assert (method, path) == ("create_cvd", f"/v1/zones/{ZONE}/hosts/cf-1/cvds")
        assert body == {
            "build_info": {"build_id": "8673413", "target": "aosp_cf_x86_64_phone-userdebug"},
            "instances_count": 3,
            "group_name": "phones",
        }
        assert orch.state["environments"]["prod/phones"]["status"] == "requested"

    @pytest.mark.asyncio
    async def test_create_settles_on_refresh(self, orch, backend):
        backend.add_host(ZONE, "cf-1")
        await register(orch)
        orch.dispatch(actions.env_create_start(Environment(name="phones", runtime="prod", zone=ZONE, host="cf-1")))
        await orch.settle()

        backend.devices[(ZONE, "cf-1")] = [Device(name="cvd-1", group_name="phones")]
        await refresh(orch)
        env = orch.state["environments"]["prod/phones"]
        assert env["status"] == "ready"
        assert env["devices"] == ["cvd-1"]

    @pytest.mark.asyncio
    async def test_create_on_missing_host_errors(self, orch, backend):
        await register(orch)
        orch.dispatch(actions.env_create_start(Environment(name="phones", runtime="prod", zone=ZONE, host="cf-9")))
        await orch.settle()
        env = orch.state["environments"]["prod/phones"]
        assert env["status"] == "error"
        assert env["error"] == "host cf-9 not found (HTTP 404)"

    @pytest.mark.asyncio
    async def test_delete_removes_host_and_settles(self, orch, backend):
        backend.add_host(ZONE, "cf-1", [Device(name="cvd-1", group_name="phones")])
        await register(orch)
        await refresh(orch)

        orch.dispatch(actions.env_delete_start(orch.state["environments"]["prod/phones"]))
        await orch.settle()
        assert ("delete_host", f"/v1/zones/{ZONE}/hosts/cf-1", None) in backend.requests
        assert orch.state["environments"]["prod/phones"]["status"] == "deleting"

        await refresh(orch)
        assert orch.state["environments"] == {}

    @pytest.mark.asyncio
    async def test_delete_failure_restores_environment(self, orch, backend):
        backend.add_host(ZONE, "cf-1", [Device(name="cvd-1", group_name="phones")])
        await register(orch)
        await refresh(orch)
        backend.fail("delete_host", "permission denied", 403)

        orch.dispatch(actions.env_delete_start(orch.state["environments"]["prod/phones"]))
        await orch.settle()
        env = orch.state["environments"]["prod/phones"]
        assert env["status"] == "ready"
        assert env["error"] == "permission denied (HTTP 403)"


# ============================================================================
# Helpers
# ============================================================================


class TestHelpers:
    def test_wait_url_from_operation_name(self):
        assert wait_url_for("http://prod", ZONE, "op-1") == f"http://prod/v1/zones/{ZONE}/operations/op-1"

    def test_wait_url_from_path(self):
        assert wait_url_for("http://prod", ZONE, "/v1/ops/abc") == "http://prod/v1/ops/abc"

    def test_wait_url_from_absolute_url(self):
        assert wait_url_for("http://prod", ZONE, "https://elsewhere/ops/1") == "https://elsewhere/ops/1"

    def test_group_devices_defaults_to_host_name(self):
        envs = group_devices("prod", ZONE, "cf-1", [Device(name="a"), Device(name="b", group_name="g")])
        assert [(e.name, e.devices) for e in envs] == [("cf-1", ["a"]), ("g", ["b"])]
        assert all(e.status == "ready" and e.runtime == "prod" for e in envs)
