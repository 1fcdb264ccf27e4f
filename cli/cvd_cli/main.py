"""Main entry point for the CVD console CLI."""
from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Callable

from cvd_cli import __version__
from cvd_cli.render import render_state

from provisioning.config import settings
from provisioning.kernel import actions
from provisioning.kernel.backend import BackendApi, BackendError
from provisioning.kernel.dispatcher import Orchestrator
from provisioning.kernel.http_backend import HttpBackend
from provisioning.kernel.types import Environment, Runtime
from provisioning.models import CreateHostInstanceRequest, CreateHostRequest, GCPInstance

RUNTIME_ALIAS = "default"

COMMANDS = ("create-host", "create-cvd", "delete-env", "hosts", "operation")

# flag -> (args key, converter)
VALUE_OPTIONS: dict[str, tuple[str, Callable[[str], object]]] = {
    "--api-url": ("api_url", str),
    "--zone": ("zone", str),
    "--host": ("host", str),
    "--name": ("name", str),
    "--build-id": ("build_id", str),
    "--target": ("target", str),
    "--count": ("count", int),
}


def print_help():
    """Print help message."""
    print(f"""
CVD console v{__version__}

Usage:
  cvd [options] <command>

Commands:
  create-host                       Create a host and wait until it is ready
  create-cvd --host H [--name N]    Create devices on a host
  delete-env --name N               Delete an environment (and its host)
  hosts                             List hosts and environments
  operation --host H --name N       Show one operation

Options:
  --api-url URL     Control plane endpoint (default: {settings.API_URL})
  --zone ZONE       Zone (default: {settings.ZONE})
  --build-id ID     Build for create-cvd (default: {settings.BUILD_ID})
  --target T        Build target for create-cvd (default: {settings.TARGET})
  --count N         Number of devices for create-cvd
  -h, --help        Show this help
  -v, --version     Show version

Environment:
  CVD_API_URL, CVD_ZONE, CVD_POLL_INTERVAL, CVD_POLL_TIMEOUT, CVD_LOG_LEVEL
""")


def parse_args(args: list[str]) -> dict:
    """
    Parse command line arguments.

    Returns dict with:
        command: str | None
        api_url, zone, host, name, build_id, target: str | None
        count: int | None
        show_help: bool
        show_version: bool
    """
    result: dict = {
        "command": None,
        "api_url": None,
        "zone": None,
        "host": None,
        "name": None,
        "build_id": None,
        "target": None,
        "count": None,
        "show_help": False,
        "show_version": False,
    }

    i = 0
    while i < len(args):
        arg = args[i]

        if arg in COMMANDS:
            result["command"] = arg
        elif arg in VALUE_OPTIONS:
            key, convert = VALUE_OPTIONS[arg]
            if i + 1 >= len(args):
                print(f"Error: {arg} requires a value")
                sys.exit(1)
            try:
                result[key] = convert(args[i + 1])
            except ValueError:
                print(f"Error: invalid value for {arg}: {args[i + 1]}")
                sys.exit(1)
            i += 1
        elif arg in ("--help", "-h"):
            result["show_help"] = True
        elif arg in ("--version", "-v"):
            result["show_version"] = True
        elif arg.startswith("-"):
            print(f"Unknown option: {arg}")
            print("Run 'cvd --help' for usage.")
            sys.exit(1)
        else:
            print(f"Unknown command: {arg}")
            print("Run 'cvd --help' for usage.")
            sys.exit(1)

        i += 1

    return result


def build_host_request(zone: str) -> CreateHostRequest:
    return CreateHostRequest(
        create_host_instance_request=CreateHostInstanceRequest(
            gcp=GCPInstance(
                disk_size_gb=settings.DISK_SIZE_GB,
                machine_type=settings.machine_type(zone),
                min_cpu_platform=settings.MIN_CPU_PLATFORM,
            )
        )
    )


async def refresh(orch: Orchestrator) -> None:
    orch.dispatch(actions.runtime_refresh_start())
    await orch.settle()


async def run(args: dict, connect: Callable[[str], BackendApi] = HttpBackend) -> int:
    """
    Run one command through the orchestrator and print the resulting state.
    Returns the process exit code.
    """
    api_url = (args["api_url"] or settings.API_URL).rstrip("/")
    zone = args["zone"] or settings.ZONE
    orch = Orchestrator(connect, default_endpoint=api_url, zone=zone)

    try:
        orch.dispatch(actions.runtime_register_start(Runtime(alias=RUNTIME_ALIAS, url=api_url, zones=[zone])))
        await orch.settle()
        if orch.state["registration_error"]:
            print(f"Error: could not reach {api_url}: {orch.state['registration_error']}")
            return 1
        orch.dispatch(actions.runtime_init())

        command = args["command"]

        if command == "create-host":
            url = await orch.create_host(build_host_request(zone), zone, runtime=RUNTIME_ALIAS, endpoint=api_url)
            if url is None:
                print("Error: host request failed")
                return 1
            print(f"Waiting on {url} ...")
            await orch.settle()
            print(render_state(orch.state))
            return 1 if orch.state["hosts"].get(url, {}).get("status") == "error" else 0

        if command == "create-cvd":
            if not args["host"]:
                print("Error: create-cvd requires --host")
                return 1
            env = Environment(
                name=args["name"] or args["host"],
                runtime=RUNTIME_ALIAS,
                zone=zone,
                host=args["host"],
                build_id=args["build_id"] or settings.BUILD_ID,
                target=args["target"] or settings.TARGET,
                instances_count=args["count"],
            )
            orch.dispatch(actions.env_create_start(env))
            await orch.settle()
            await refresh(orch)
            print(render_state(orch.state))
            current = orch.state["environments"].get(env.key)
            return 1 if current is not None and current["status"] == "error" else 0

        if command == "delete-env":
            if not args["name"]:
                print("Error: delete-env requires --name")
                return 1
            await refresh(orch)
            target = orch.state["environments"].get(f"{RUNTIME_ALIAS}/{args['name']}")
            if target is None:
                print(f"Error: no environment named {args['name']}")
                return 1
            orch.dispatch(actions.env_delete_start(target))
            await orch.settle()
            await refresh(orch)
            print(render_state(orch.state))
            return 0

        if command == "hosts":
            await refresh(orch)
            print(render_state(orch.state))
            return 0

        if command == "operation":
            if not args["host"] or not args["name"]:
                print("Error: operation requires --host and --name")
                return 1
            try:
                op = await orch.backend(api_url).get_operation(zone, args["host"], args["name"])
            except BackendError as e:
                print(f"Error: {e}")
                return 1
            print(json.dumps(op.model_dump(exclude_none=True), indent=2))
            return 0

        print_help()
        return 1

    finally:
        await orch.close()


def main():
    """Main entry point."""
    args = parse_args(sys.argv[1:])

    # Handle help and version first
    if args["show_help"]:
        print_help()
        return

    if args["show_version"]:
        print(f"cvd {__version__}")
        return

    logging.basicConfig(level=settings.LOG_LEVEL, format="%(levelname)s %(name)s: %(message)s")
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
