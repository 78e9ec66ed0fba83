from __future__ import annotations

import argparse
import json
import os
import signal
import sys
from dataclasses import asdict
from threading import Event
from typing import Any, Callable

from docker.errors import DockerException

from silohound import db
from silohound.docker_ops import docker_available, get_client, list_containers
from silohound.exec_runner import ExecError
from silohound.health import check_health, wait_for_http
from silohound.naming import belongs_to, validate_project_name
from silohound.orchestrator import SpawnError, StackCancelled, StackOrchestrator
from silohound.provisioning import extend_admin_password_expiry
from silohound.roles import Role
from silohound.settings import settings


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _warn(msg: str) -> None:
    print(f"Warning: {msg}")


def _fail(msg: str) -> int:
    print(msg, file=sys.stderr)
    return 1


def resolve_workdir(name: str, path: str | None) -> tuple[str, bool]:
    """Return (working directory, is_new_project), registering new projects.

    A known project keeps its registered path; asking for a different one is
    an error so existing data is never silently abandoned.
    """
    existing = db.get_project(name)
    if existing is not None:
        if path is not None and os.path.abspath(path) != existing.path:
            raise ValueError(
                f"Project '{name}' already exists at '{existing.path}'. You provided '{os.path.abspath(path)}'. "
                f"Use 'move' to change the project location or omit --path to use the existing one."
            )
        return existing.path, False

    workdir = os.path.abspath(path or os.getcwd())
    db.add_project(name, workdir)
    return workdir, True


def _cmd_up(args, client, confirm: Callable[[str], Any]) -> int:
    cancel = Event()
    orch = StackOrchestrator(client, cancel=cancel, notify=print)

    try:
        running = orch.is_running(args.name)
    except DockerException as e:
        _warn(f"failed to check if project is running: {e}")
        running = False
    if running and not args.yes:
        print(f"WARNING: Project {args.name} appears to be already running. "
              f"Starting another instance will replace its containers.")
        try:
            confirm("Press ENTER to continue anyway, or Ctrl+C to abort...")
        except (KeyboardInterrupt, EOFError):
            return _fail("\nAborted.")

    try:
        workdir, is_new = resolve_workdir(args.name, args.path)
    except ValueError as e:
        return _fail(f"Error: {e}")
    if is_new:
        print(f"New project {args.name} registered at {workdir}")
    else:
        print(f"Resuming known project {args.name}")
    print(f"Project Path: {workdir}")

    previous = signal.signal(signal.SIGTERM, lambda signum, frame: cancel.set())
    try:
        ids = orch.bring_up(
            args.name,
            workdir,
            admin_name=args.admin_name,
            admin_password=args.admin_password,
            pull=not args.no_pull,
        )
    except (SpawnError, StackCancelled) as e:
        print(f"Failed to start stack: {e}", file=sys.stderr)
        for st in orch.statuses(args.name):
            print(f"  {st.role.value}: {st.state.value}" + (f" ({st.message})" if st.message else ""), file=sys.stderr)
        print(f"Containers that already started are still running; use 'stop --name {args.name}'.", file=sys.stderr)
        return 1
    except DockerException as e:
        return _fail(f"Container runtime error: {e}")
    finally:
        signal.signal(signal.SIGTERM, previous)

    print("Updating password expiration to 1 year...")
    try:
        extend_admin_password_expiry(client, ids[Role.POSTGRES])
    except (ExecError, DockerException) as e:
        _warn(f"failed to update password expiration: {e}")

    if args.ui_wait > 0:
        ok, msg = wait_for_http(settings.ui_url, max_wait_s=args.ui_wait)
        if not ok:
            _warn(f"UI at {settings.ui_url} is not answering yet ({msg}).")

    print("\nSiloHound is now running in the background.")
    print(f"URL: {settings.ui_url}")
    print(f"User: {args.admin_name}\nPass: {args.admin_password}\n")
    print("To stop the containers, run:")
    print(f"  silohound stop --name {args.name}")
    return 0


def _cmd_status(args, client) -> int:
    project = db.get_project(args.name)
    containers = [asdict(c) for c in list_containers(client) if belongs_to(c.name, args.name)]
    running = any(c["status"] == "running" for c in containers)
    out: dict[str, Any] = {
        "project": args.name,
        "path": project.path if project else None,
        "running": running,
        "containers": containers,
    }
    if running:
        ok, msg, latency = check_health(settings.ui_url)
        out["ui"] = {"url": settings.ui_url, "reachable": ok, "message": msg, "latency_ms": latency}
    _print(out)
    return 0


def main(argv: list[str] | None = None, client=None, confirm: Callable[[str], Any] = input) -> int:
    p = argparse.ArgumentParser(description="SiloHound project stack manager")
    sub = p.add_subparsers(dest="cmd", required=True)

    s_up = sub.add_parser("up", help="Start or resume a project's stack")
    s_up.add_argument("--name", required=True)
    s_up.add_argument("--path", default=None, help="Directory for data folders (default: current directory)")
    s_up.add_argument("--no-pull", action="store_true", help="Do not pull images before starting")
    s_up.add_argument("--admin-name", default="admin")
    s_up.add_argument("--admin-password", default="admin")
    s_up.add_argument("--ui-wait", type=int, default=settings.ui_wait_s, help="Seconds to wait for the UI (0 to skip)")
    s_up.add_argument("--yes", action="store_true", help="Do not ask before replacing a running stack")

    s_stop = sub.add_parser("stop", help="Stop all containers of a project")
    s_stop.add_argument("--name", required=True)

    s_clean = sub.add_parser("clean", help="Stop containers and forget a project")
    s_clean.add_argument("--name", required=True)

    s_move = sub.add_parser("move", help="Change a project's registered path")
    s_move.add_argument("--name", required=True)
    s_move.add_argument("--to", required=True)

    sub.add_parser("list", help="List known projects")

    s_status = sub.add_parser("status", help="Show a project's containers")
    s_status.add_argument("--name", required=True)

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)
    s_ev.add_argument("--name", default=None)

    args = p.parse_args(argv)

    if args.cmd == "list":
        _print([asdict(x) for x in db.list_projects()])
        return 0

    if args.cmd == "events":
        _print(db.latest_events(limit=args.limit, project=args.name))
        return 0

    try:
        validate_project_name(args.name)
    except ValueError as e:
        return _fail(f"Error: {e}")

    if args.cmd == "move":
        existing = db.get_project(args.name)
        if existing is None:
            return _fail(f"Project {args.name} not found")
        new_path = os.path.abspath(args.to)
        if new_path == existing.path:
            print("New path is the same as the current path.")
            return 0
        db.update_project_path(args.name, new_path)
        print(f"Project {args.name} path updated.\nOld: {existing.path}\nNew: {new_path}")
        print("NOTE: Only the registry record changed. Move the data files manually if needed.")
        return 0

    if client is None:
        try:
            client = get_client()
        except DockerException as e:
            return _fail(f"Failed to create docker client: {e}")
        if not docker_available(client):
            return _fail("Docker daemon is not reachable. Is it running?")

    if args.cmd == "up":
        return _cmd_up(args, client, confirm)

    if args.cmd == "status":
        try:
            return _cmd_status(args, client)
        except DockerException as e:
            return _fail(f"Container runtime error: {e}")

    orch = StackOrchestrator(client)

    if args.cmd == "stop":
        print(f"Stopping containers for project {args.name}...")
        try:
            stopped = orch.stop_project_containers(args.name)
        except DockerException as e:
            return _fail(f"Failed to stop containers: {e}")
        for name in stopped:
            print(f"Stopped {name}")
        print(f"Project {args.name} containers stopped.")
        return 0

    if args.cmd == "clean":
        print(f"Stopping containers for project {args.name}...")
        try:
            orch.stop_project_containers(args.name)
        except DockerException as e:
            _warn(f"failed to stop containers: {e}")
        if db.delete_project(args.name):
            print(f"Project {args.name} removed from registry.")
        else:
            print(f"Project {args.name} was not registered.")
        return 0

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
