from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import Event
from typing import Callable

import docker
from docker.errors import DockerException

from . import docker_ops
from .db import log_event
from .exec_runner import ExecOutcome, exec_in_container
from .naming import validate_project_name
from .network import ensure_network
from .probe import Readiness, ReadinessCancelled, ReadinessError, wait_until_ready
from .provisioning import create_folders
from .roles import ROLE_TABLE, STARTUP_ORDER, Role, SpawnParams, build_spec, container_name
from .settings import settings


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class RoleState(str, Enum):
    ABSENT = "absent"
    CREATING = "creating"
    STARTED = "started"
    AWAITING_READY = "awaiting_ready"
    READY = "ready"
    FAILED = "failed"


# Any state may go back to ABSENT: every spawn attempt starts by reconciling.
_TRANSITIONS: dict[RoleState, set[RoleState]] = {
    RoleState.ABSENT: {RoleState.CREATING},
    RoleState.CREATING: {RoleState.STARTED, RoleState.FAILED},
    RoleState.STARTED: {RoleState.AWAITING_READY, RoleState.FAILED},
    RoleState.AWAITING_READY: {RoleState.READY, RoleState.FAILED},
    RoleState.READY: set(),
    RoleState.FAILED: set(),
}


class SpawnError(Exception):
    def __init__(self, role: Role, state: RoleState, name: str, message: str):
        self.role = role
        self.state = state
        self.name = name
        super().__init__(f"{role.value} ({name}) failed while {state.value}: {message}")


class StackCancelled(Exception):
    pass


@dataclass
class RoleStatus:
    project: str
    role: Role
    name: str
    state: RoleState = RoleState.ABSENT
    container_id: str | None = None
    message: str = ""
    updated_at: str = field(default_factory=utc_now)


class StackOrchestrator:
    """Brings up a project's stack one role at a time.

    The runtime client and the cancellation event are owned by the caller.
    All calls happen on the calling thread; the only helper thread is the
    readiness probe's watchdog.
    """

    def __init__(
        self,
        client: docker.DockerClient,
        cancel: Event | None = None,
        readiness_timeout_s: float | None = None,
        stop_timeout_s: int | None = None,
        chunk_size: int | None = None,
        eof_is_ready: bool | None = None,
        notify: Callable[[str], None] | None = None,
    ):
        self.client = client
        self.cancel = cancel or Event()
        self.readiness_timeout_s = settings.readiness_timeout_s if readiness_timeout_s is None else readiness_timeout_s
        self.stop_timeout_s = settings.stop_timeout_s if stop_timeout_s is None else stop_timeout_s
        self.chunk_size = chunk_size or settings.readiness_chunk_size
        self.eof_is_ready = (not settings.strict_readiness) if eof_is_ready is None else eof_is_ready
        self.notify = notify or (lambda msg: None)
        self._status: dict[tuple[str, Role], RoleStatus] = {}
        self.history: list[tuple[str, Role, RoleState]] = []

    # --- state -----------------------------------------------------------

    def status(self, project: str, role: Role) -> RoleStatus:
        key = (project, role)
        if key not in self._status:
            self._status[key] = RoleStatus(project=project, role=role, name=container_name(project, role))
        return self._status[key]

    def statuses(self, project: str) -> list[RoleStatus]:
        return [self.status(project, role) for role in STARTUP_ORDER]

    def _transition(
        self,
        project: str,
        role: Role,
        new: RoleState,
        message: str = "",
        container_id: str | None = None,
    ) -> RoleStatus:
        st = self.status(project, role)
        if new is not RoleState.ABSENT and new not in _TRANSITIONS[st.state]:
            raise RuntimeError(f"Illegal transition for {st.name}: {st.state.value} -> {new.value}")
        st.state = new
        st.message = message
        if new is RoleState.ABSENT:
            st.container_id = None
        elif container_id is not None:
            st.container_id = container_id
        st.updated_at = utc_now()
        self.history.append((project, role, new))
        log_event(
            "ERROR" if new is RoleState.FAILED else "INFO",
            f"{st.name}: {new.value}" + (f" ({message})" if message else ""),
            project=project,
            role=role.value,
        )
        return st

    def _check_cancelled(self) -> None:
        if self.cancel.is_set():
            raise StackCancelled("Stack startup was cancelled.")

    def _fail(self, project: str, role: Role, exc: BaseException) -> SpawnError | StackCancelled:
        st = self.status(project, role)
        failed_in = st.state
        self._transition(project, role, RoleState.FAILED, message=f"{type(exc).__name__}: {exc}")
        if isinstance(exc, (StackCancelled, ReadinessCancelled)):
            return StackCancelled(f"Startup of {st.name} was cancelled while {failed_in.value}.")
        return SpawnError(role, failed_in, st.name, f"{type(exc).__name__}: {exc}")

    # --- operations ------------------------------------------------------

    def ensure_network(self, project: str) -> str:
        self._check_cancelled()
        return ensure_network(self.client, project)

    def spawn_role(self, project: str, role: Role, network_name: str, params: SpawnParams) -> str:
        """Reconcile, create, start and wait for one role. Returns the container id."""
        spec = build_spec(project, role, network_name, params)

        self._check_cancelled()
        if docker_ops.stop_container(self.client, spec.name, self.stop_timeout_s, cancel=self.cancel):
            log_event("INFO", f"Removed existing container {spec.name}", project=project, role=role.value)
        self._transition(project, role, RoleState.ABSENT)

        self._transition(project, role, RoleState.CREATING)
        try:
            self._check_cancelled()
            container = self.client.containers.create(**spec.create_kwargs(self.client))
            container.start()
        except (DockerException, StackCancelled) as e:
            raise self._fail(project, role, e) from e

        container_id = container.id
        self._transition(project, role, RoleState.STARTED, container_id=container_id)
        self.notify(f"Started {spec.name} ({container_id[:12]}). Waiting for readiness...")

        try:
            self._check_cancelled()
            self._transition(project, role, RoleState.AWAITING_READY)
            outcome = wait_until_ready(
                self.client,
                container_id,
                spec.marker,
                timeout_s=self.readiness_timeout_s,
                cancel=self.cancel,
                chunk_size=self.chunk_size,
                eof_is_ready=self.eof_is_ready,
            )
        except (ReadinessError, DockerException, StackCancelled) as e:
            raise self._fail(project, role, e) from e

        message = ""
        if outcome is Readiness.STREAM_ENDED:
            message = "log stream ended before readiness marker"
            log_event("WARN", f"{spec.name}: {message}; treating as ready", project=project, role=role.value)
        self._transition(project, role, RoleState.READY, message=message)
        return container_id

    def prepare_images(self, project: str, pull: bool = True) -> list[str]:
        """Pull (or check) every role image. Problems come back as warnings."""
        warnings: list[str] = []
        for role in STARTUP_ORDER:
            image = ROLE_TABLE[role].image
            self._check_cancelled()
            try:
                if pull:
                    self.notify(f"Pulling {image}...")
                    docker_ops.pull_image(self.client, image)
                elif not docker_ops.image_exists(self.client, image):
                    warnings.append(f"Image {image} is not present locally and pulling is disabled.")
            except DockerException as e:
                warnings.append(f"Failed to pull {image}: {e}")
        for w in warnings:
            log_event("WARN", w, project=project)
            self.notify(f"Warning: {w}")
        return warnings

    def bring_up(
        self,
        project: str,
        workdir: str,
        admin_name: str,
        admin_password: str,
        pull: bool = True,
    ) -> dict[Role, str]:
        """Start the whole stack in dependency order.

        A failing role aborts the run; roles that already started are left
        running for the caller to stop.
        """
        validate_project_name(project)
        create_folders(workdir)
        network = self.ensure_network(project)
        self.prepare_images(project, pull=pull)

        params = SpawnParams(workdir=workdir, admin_name=admin_name, admin_password=admin_password)
        ids: dict[Role, str] = {}
        for role in STARTUP_ORDER:
            ids[role] = self.spawn_role(project, role, network, params)
            self.notify(f"{role.value} ready (ID: {ids[role][:12]})")
        return ids

    def stop_container(self, name_or_id: str) -> bool:
        return docker_ops.stop_container(self.client, name_or_id, self.stop_timeout_s, cancel=self.cancel)

    def stop_project_containers(self, project: str) -> list[str]:
        stopped = docker_ops.stop_project_containers(self.client, project, self.stop_timeout_s, cancel=self.cancel)
        for role in STARTUP_ORDER:
            if (project, role) in self._status:
                self._transition(project, role, RoleState.ABSENT, message="stopped")
        return stopped

    def is_running(self, project: str) -> bool:
        return docker_ops.is_running(self.client, project)

    def exec(self, container_id: str, cmd: list[str], user: str | None = None) -> ExecOutcome:
        self._check_cancelled()
        return exec_in_container(self.client, container_id, cmd, user=user)
