"""
Provisioning Reducer -- Runtime Tests

Runtime lifecycle: register (start/complete/error), unregister, select,
init, refresh (start/load/complete).

Covers:
  - register-start records a pending runtime and requests a register effect
  - register-complete installs the runtime and makes it active
  - register-error records the failure without losing the record
  - register-error without an alias fails every pending runtime
  - registering stays set while any runtime is pending
  - unregister removes the runtime and its environments, and is idempotent
  - runtime-load merges by alias (one record, latest fields)
  - refresh-start targets every non-pending runtime
"""

import json

import pytest

from provisioning.kernel import actions
from provisioning.kernel.reducer import empty_state, reduce, replay
from provisioning.kernel.types import (
    EFFECT_RUNTIME_REFRESH,
    EFFECT_RUNTIME_REGISTER,
    Environment,
    Runtime,
)


def snap_json(snap):
    return json.dumps(snap, sort_keys=True)


def registered(alias="prod", url="http://prod", zones=None):
    return Runtime(alias=alias, url=url, status="registered", zones=zones or ["us-central1-b"])


@pytest.fixture
def with_runtime():
    return replay([actions.runtime_register_complete(registered())])


# ============================================================================
# Registration
# ============================================================================


class TestRuntimeRegister:
    def test_start_records_pending_runtime(self):
        r = reduce(empty_state(), actions.runtime_register_start(Runtime(alias="prod", url="http://prod")))
        assert r.state["runtimes"]["prod"]["status"] == "pending"
        assert r.state["registering"] is True

    def test_start_requests_register_effect(self):
        r = reduce(empty_state(), actions.runtime_register_start(
            Runtime(alias="prod", url="http://prod", zones=["europe-west1-b"]),
        ))
        assert len(r.effects) == 1
        effect = r.effects[0]
        assert effect.type == EFFECT_RUNTIME_REGISTER
        assert effect.payload == {"alias": "prod", "url": "http://prod", "zones": ["europe-west1-b"]}

    def test_complete_installs_registered_runtime(self):
        state = replay([
            actions.runtime_register_start(Runtime(alias="prod", url="http://prod")),
            actions.runtime_register_complete(registered()),
        ])
        assert state["runtimes"]["prod"]["status"] == "registered"
        assert state["registering"] is False

    def test_first_registered_runtime_becomes_active(self):
        state = replay([
            actions.runtime_register_complete(registered("a", "http://a")),
            actions.runtime_register_complete(registered("b", "http://b")),
        ])
        assert state["active_runtime"] == "a"

    def test_error_marks_pending_runtime_failed(self):
        state = replay([
            actions.runtime_register_start(Runtime(alias="prod", url="http://prod")),
            actions.runtime_register_error("prod", "connection refused"),
        ])
        assert state["registering"] is False
        assert state["registration_error"] == "connection refused"
        assert state["runtimes"]["prod"]["status"] == "error"
        assert state["runtimes"]["prod"]["error"] == "connection refused"

    def test_error_without_alias_fails_every_pending_runtime(self):
        state = replay([
            actions.runtime_register_complete(registered("a", "http://a")),
            actions.runtime_register_start(Runtime(alias="b", url="http://b")),
            actions.runtime_register_start(Runtime(alias="c", url="http://c")),
            actions.runtime_register_error(),
        ])
        assert state["registration_error"] == "runtime registration failed"
        assert state["registering"] is False
        assert {alias: rt["status"] for alias, rt in state["runtimes"].items()} == {
            "a": "registered",
            "b": "error",
            "c": "error",
        }
        assert state["runtimes"]["b"]["error"] == "runtime registration failed"

    def test_error_without_alias_and_no_runtimes_records_failure(self):
        state = replay([actions.runtime_register_error()])
        assert state["registration_error"] == "runtime registration failed"
        assert state["runtimes"] == {}

    def test_failed_runtime_is_refreshed_again(self):
        state = replay([
            actions.runtime_register_start(Runtime(alias="prod", url="http://prod")),
            actions.runtime_register_error(),
        ])
        r = reduce(state, actions.runtime_refresh_start())
        assert [t["alias"] for t in r.effects[0].payload["runtimes"]] == ["prod"]

    def test_registering_stays_set_while_another_runtime_is_pending(self):
        state = replay([
            actions.runtime_register_start(Runtime(alias="a", url="http://a")),
            actions.runtime_register_start(Runtime(alias="b", url="http://b")),
            actions.runtime_register_complete(registered("a", "http://a")),
        ])
        assert state["registering"] is True

        state = reduce(state, actions.runtime_register_error("b", "boom")).state
        assert state["registering"] is False

    def test_unregistering_the_pending_runtime_clears_registering(self):
        state = replay([
            actions.runtime_register_start(Runtime(alias="prod", url="http://prod")),
            actions.runtime_unregister("prod"),
        ])
        assert state["registering"] is False

    def test_error_for_unknown_alias_warns(self):
        r = reduce(empty_state(), actions.runtime_register_error("ghost", "boom"))
        assert [w.code for w in r.warnings] == ["UNKNOWN_RUNTIME"]

    def test_retry_after_error_is_pending_again(self):
        state = replay([
            actions.runtime_register_start(Runtime(alias="prod", url="http://prod")),
            actions.runtime_register_error("prod", "boom"),
            actions.runtime_register_start(Runtime(alias="prod", url="http://prod")),
        ])
        assert state["runtimes"]["prod"]["status"] == "pending"
        assert state["runtimes"]["prod"]["error"] is None
        assert state["registration_error"] is None


# ============================================================================
# Unregister / select / init
# ============================================================================


class TestRuntimeUnregister:
    def test_removes_runtime(self, with_runtime):
        r = reduce(with_runtime, actions.runtime_unregister("prod"))
        assert r.state["runtimes"] == {}
        assert r.state["active_runtime"] is None

    def test_unregister_twice_equals_once(self, with_runtime):
        once = reduce(with_runtime, actions.runtime_unregister("prod")).state
        twice = reduce(once, actions.runtime_unregister("prod")).state
        assert snap_json(once) == snap_json(twice)

    def test_unknown_alias_is_silent_noop(self, with_runtime):
        r = reduce(with_runtime, actions.runtime_unregister("ghost"))
        assert snap_json(r.state) == snap_json(with_runtime)
        assert r.warnings == []
        assert r.effects == []

    def test_removes_owned_environments_only(self):
        state = replay([
            actions.runtime_register_complete(registered("a", "http://a")),
            actions.runtime_register_complete(registered("b", "http://b")),
            actions.env_create_start(Environment(name="phones", runtime="a", host="h1")),
            actions.env_create_start(Environment(name="phones", runtime="b", host="h2")),
            actions.runtime_unregister("a"),
        ])
        assert list(state["environments"]) == ["b/phones"]

    def test_active_falls_back_to_remaining_runtime(self):
        state = replay([
            actions.runtime_register_complete(registered("a", "http://a")),
            actions.runtime_register_complete(registered("c", "http://c")),
            actions.runtime_register_complete(registered("b", "http://b")),
            actions.runtime_unregister("a"),
        ])
        assert state["active_runtime"] == "b"


class TestRuntimeSelectAndInit:
    def test_select_known_runtime(self):
        state = replay([
            actions.runtime_register_complete(registered("a", "http://a")),
            actions.runtime_register_complete(registered("b", "http://b")),
            actions.runtime_select("b"),
        ])
        assert state["active_runtime"] == "b"

    def test_select_unknown_runtime_is_noop(self, with_runtime):
        r = reduce(with_runtime, actions.runtime_select("ghost"))
        assert r.state["active_runtime"] == "prod"
        assert [w.code for w in r.warnings] == ["UNKNOWN_RUNTIME"]

    def test_init_marks_active_runtime(self, with_runtime):
        r = reduce(with_runtime, actions.runtime_init())
        assert r.state["runtimes"]["prod"]["initialized"] is True

    def test_init_without_active_runtime_warns(self):
        r = reduce(empty_state(), actions.runtime_init())
        assert [w.code for w in r.warnings] == ["NO_ACTIVE_RUNTIME"]
        assert snap_json(r.state) == snap_json(empty_state())


# ============================================================================
# Refresh
# ============================================================================


class TestRuntimeRefresh:
    def test_refresh_start_sets_flag_and_targets_runtimes(self):
        state = replay([
            actions.runtime_register_complete(registered("b", "http://b")),
            actions.runtime_register_complete(registered("a", "http://a")),
            actions.runtime_register_start(Runtime(alias="c", url="http://c")),
        ])
        r = reduce(state, actions.runtime_refresh_start())
        assert r.state["refreshing"] is True
        assert len(r.effects) == 1
        assert r.effects[0].type == EFFECT_RUNTIME_REFRESH
        assert [t["alias"] for t in r.effects[0].payload["runtimes"]] == ["a", "b"]

    def test_load_complete_clears_flag(self):
        state = replay([actions.runtime_refresh_start(), actions.runtime_load_complete()])
        assert state["refreshing"] is False

    def test_load_same_alias_twice_keeps_one_latest_record(self):
        state = replay([
            actions.runtime_load(Runtime(alias="prod", url="http://old", status="registered")),
            actions.runtime_load(Runtime(alias="prod", url="http://new", status="registered", hosts=["h1"])),
        ])
        assert list(state["runtimes"]) == ["prod"]
        assert state["runtimes"]["prod"]["url"] == "http://new"
        assert state["runtimes"]["prod"]["hosts"] == ["h1"]

    def test_load_preserves_initialized_flag(self, with_runtime):
        state = reduce(with_runtime, actions.runtime_init()).state
        state = reduce(state, actions.runtime_load(registered())).state
        assert state["runtimes"]["prod"]["initialized"] is True

    def test_load_without_environments_leaves_them_alone(self, with_runtime):
        state = reduce(with_runtime, actions.env_create_start(
            Environment(name="phones", runtime="prod", host="h1"),
        )).state
        state = reduce(state, actions.runtime_load(registered())).state
        assert state["environments"]["prod/phones"]["status"] == "requested"
