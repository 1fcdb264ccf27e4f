"""Text rendering of provisioning state snapshots."""

from __future__ import annotations

from typing import Any


def render_runtime(rt: dict[str, Any], active: bool) -> str:
    line = f"runtime {rt['alias']}  {rt['url']}  {rt['status']}"
    if active:
        line += "  (active)"
    if rt.get("error"):
        line += f"  error: {rt['error']}"
    return line


def render_host(key: str, host: dict[str, Any]) -> str:
    name = host["name"] or "(pending)"
    line = f"host {name}  {host['zone']}  {host['status']}"
    if host["status"] == "waiting":
        line += f"  wait: {key}"
    if host.get("error"):
        line += f"  error: {host['error']}"
    return line


def render_environment(env: dict[str, Any]) -> str:
    count = len(env["devices"])
    line = f"env {env['runtime']}/{env['name']}  {env['status']}  host {env['host'] or '-'}  {count} device(s)"
    if env.get("error"):
        line += f"  error: {env['error']}"
    return line


def render_state(state: dict[str, Any]) -> str:
    """
    Render a snapshot as plain text, one entity per line:
    runtimes, then hosts, then environments.
    """
    lines: list[str] = []
    if state["registration_error"]:
        lines.append(f"registration failed: {state['registration_error']}")

    for alias, rt in sorted(state["runtimes"].items()):
        lines.append(render_runtime(rt, alias == state["active_runtime"]))
    for key, host in state["hosts"].items():
        lines.append(render_host(key, host))
    for _, env in sorted(state["environments"].items()):
        lines.append(render_environment(env))

    if state["refreshing"]:
        lines.append("(refreshing)")
    if not lines:
        return "Nothing here yet."
    return "\n".join(lines)
