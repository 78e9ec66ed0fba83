from __future__ import annotations

import time
from dataclasses import dataclass
from threading import Event

import docker
from docker.errors import APIError, DockerException, NotFound

from .db import log_event
from .naming import belongs_to
from .settings import settings


@dataclass(frozen=True)
class ContainerRef:
    id: str
    name: str
    status: str


def get_client(timeout_s: int | None = None) -> docker.DockerClient:
    return docker.from_env(timeout=timeout_s or settings.docker_timeout_s)


def docker_available(client: docker.DockerClient) -> bool:
    try:
        client.ping()
        return True
    except DockerException:
        return False


def list_containers(client: docker.DockerClient, include_stopped: bool = True) -> list[ContainerRef]:
    containers = client.containers.list(all=include_stopped)
    return [ContainerRef(id=c.id, name=c.name, status=c.status) for c in containers]


REMOVAL_POLL_S = 0.1


class RemovalTimeout(DockerException):
    pass


def _wait_removed(client: docker.DockerClient, container_id: str, deadline_s: float, cancel: Event | None) -> None:
    t0 = time.time()
    while True:
        try:
            client.containers.get(container_id)
        except NotFound:
            return
        if cancel is not None and cancel.is_set():
            return
        if time.time() - t0 >= deadline_s:
            raise RemovalTimeout(f"Container {container_id[:12]} still present after {deadline_s}s")
        time.sleep(REMOVAL_POLL_S)


def _stop_and_remove(
    client: docker.DockerClient,
    container_id: str,
    timeout_s: int,
    cancel: Event | None = None,
) -> None:
    # Auto-removal may delete the container between any two of these calls.
    try:
        cont = client.containers.get(container_id)
        cont.stop(timeout=timeout_s)
        cont.remove(force=True)
    except NotFound:
        return
    except APIError as e:
        # 409: removal already in progress
        if e.status_code != 409:
            raise
    # The name stays taken until the daemon has finished deleting the container.
    _wait_removed(client, container_id, settings.docker_timeout_s, cancel)


def stop_container(
    client: docker.DockerClient,
    name_or_id: str,
    timeout_s: int | None = None,
    cancel: Event | None = None,
) -> bool:
    """Stop and force-remove the container with this exact name or id.

    Returns once the name is free again, or False when nothing matches.
    """
    timeout_s = settings.stop_timeout_s if timeout_s is None else timeout_s
    wanted = name_or_id.lstrip("/")
    for ref in list_containers(client):
        if ref.name == wanted or ref.id == wanted:
            _stop_and_remove(client, ref.id, timeout_s, cancel)
            return True
    return False


def stop_project_containers(
    client: docker.DockerClient,
    project: str,
    timeout_s: int | None = None,
    cancel: Event | None = None,
) -> list[str]:
    """Stop and force-remove every container, running or not, named with the project's prefix."""
    timeout_s = settings.stop_timeout_s if timeout_s is None else timeout_s
    stopped: list[str] = []
    for ref in list_containers(client):
        if not belongs_to(ref.name, project):
            continue
        _stop_and_remove(client, ref.id, timeout_s, cancel)
        stopped.append(ref.name)
        log_event("INFO", f"Stopped container {ref.name}", project=project)
    return stopped


def is_running(client: docker.DockerClient, project: str) -> bool:
    """Advisory check: any *running* container named with the project's prefix."""
    return any(belongs_to(ref.name, project) for ref in list_containers(client, include_stopped=False))


def pull_image(client: docker.DockerClient, ref: str) -> None:
    client.images.pull(ref)


def _short_ref(ref: str) -> str:
    # The daemon reports Docker Hub tags without registry or "library/" prefix.
    for prefix in ("docker.io/library/", "docker.io/"):
        if ref.startswith(prefix):
            return ref[len(prefix):]
    return ref


def image_exists(client: docker.DockerClient, ref: str) -> bool:
    wanted = {ref, _short_ref(ref)}
    for img in client.images.list():
        if wanted.intersection(img.tags or []):
            return True
    return False
