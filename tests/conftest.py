from __future__ import annotations

import dataclasses
import itertools
from threading import Event
from types import SimpleNamespace
from typing import Any, Callable

import pytest
from docker.errors import APIError, NotFound
from docker.models.containers import ExecResult

from silohound import db
from silohound.roles import ROLE_TABLE


@pytest.fixture(autouse=True)
def isolated_db(tmp_path, monkeypatch):
    """Point the registry/event log at a throwaway sqlite file."""
    monkeypatch.setattr(db, "settings", dataclasses.replace(db.settings, db_path=str(tmp_path / "silohound.db")))
    db.init_db()
    return tmp_path / "silohound.db"


class FakeLogStream:
    """Follow-mode log stream: yields scripted chunks, then ends, errors, or blocks until closed."""

    def __init__(self, chunks: list[bytes | Callable[[], bytes]], block: bool = False, error: Exception | None = None):
        self.chunks = list(chunks)
        self.block = block
        self.error = error
        self.closed = Event()

    def __iter__(self):
        for c in self.chunks:
            if self.closed.is_set():
                return
            yield c() if callable(c) else c
        if self.error is not None:
            raise self.error
        if self.block:
            self.closed.wait(10)
            raise OSError("stream closed")

    def close(self) -> None:
        self.closed.set()


class FakeContainer:
    def __init__(self, client: "FakeDockerClient", cid: str, name: str, image: str, status: str, kwargs: dict):
        self.client = client
        self.id = cid
        self.name = name
        self.image = image
        self.status = status
        self.kwargs = kwargs
        # Number of lookups a container in "removing" state survives before it is gone.
        self.linger = 0

    @property
    def auto_remove(self) -> bool:
        return bool(self.kwargs.get("auto_remove"))

    def start(self) -> None:
        if self.name in self.client.fail_start:
            raise APIError(f"cannot start {self.name}")
        self.status = "running"
        self.client.calls.append(("start", self.name))

    def stop(self, timeout: int | None = None) -> None:
        self.client._require(self.id)
        self.client.calls.append(("stop", self.name, timeout))
        if self.linger:
            self.status = "removing"
            return
        self.status = "exited"
        if self.auto_remove:
            self.client._forget(self.id)

    def remove(self, force: bool = False) -> None:
        self.client._require(self.id)
        self.client.calls.append(("remove", self.name))
        if self.status == "removing":
            raise APIError(
                f"removal of container {self.name} is already in progress",
                response=SimpleNamespace(status_code=409, reason="Conflict", url="/containers"),
            )
        self.client._forget(self.id)

    def logs(self, **kwargs) -> FakeLogStream:
        self.client.calls.append(("logs", self.name))
        return self.client._stream_for(self.name)

    def exec_run(self, cmd, **kwargs) -> ExecResult:
        self.client.calls.append(("exec", self.name, list(cmd)))
        code, output = self.client.exec_results.get(self.name, (0, b""))
        return ExecResult(code, output)


class FakeContainers:
    def __init__(self, client: "FakeDockerClient"):
        self.client = client

    def create(self, image: str, name: str | None = None, **kwargs) -> FakeContainer:
        if any(c.name == name for c in self.client.containers_by_id.values()):
            self.client.collisions.append(name)
            raise APIError(f'Conflict. The container name "/{name}" is already in use')
        if name in self.client.fail_create:
            raise APIError(f"cannot create {name}")
        c = self.client.add_container(name, image=image, status="created", **kwargs)
        self.client.calls.append(("create", name))
        return c

    def get(self, id_or_name: str) -> FakeContainer:
        for c in self.client.containers_by_id.values():
            if c.id == id_or_name or c.name == id_or_name:
                if c.status == "removing":
                    c.linger -= 1
                    if c.linger <= 0:
                        self.client._forget(c.id)
                        break
                return c
        raise NotFound(f"No such container: {id_or_name}")

    def list(self, all: bool = False, filters: dict | None = None) -> list[FakeContainer]:
        return [c for c in self.client.containers_by_id.values() if all or c.status == "running"]


class FakeNetwork:
    def __init__(self, name: str, driver: str):
        self.name = name
        self.driver = driver


class FakeNetworks:
    def __init__(self, client: "FakeDockerClient"):
        self.client = client
        self.items: list[FakeNetwork] = []

    def list(self, names: list[str] | None = None) -> list[FakeNetwork]:
        # The daemon's name filter is a substring match.
        if not names:
            return list(self.items)
        return [n for n in self.items if any(want in n.name for want in names)]

    def create(self, name: str, driver: str | None = None, **kwargs) -> FakeNetwork:
        net = FakeNetwork(name, driver or "bridge")
        self.items.append(net)
        self.client.calls.append(("network_create", name))
        return net


class FakeImage:
    def __init__(self, tags: list[str]):
        self.tags = tags


class FakeImages:
    def __init__(self, client: "FakeDockerClient"):
        self.client = client
        self.local: list[FakeImage] = []
        self.fail_pull: set[str] = set()

    def pull(self, repository: str, tag: str | None = None, **kwargs) -> FakeImage:
        if repository in self.fail_pull:
            raise APIError(f"pull access denied for {repository}")
        self.client.calls.append(("pull", repository))
        img = FakeImage([repository])
        self.local.append(img)
        return img

    def list(self, **kwargs) -> list[FakeImage]:
        return list(self.local)


class FakeAPI:
    def create_endpoint_config(self, aliases: list[str] | None = None, **kwargs) -> dict[str, Any]:
        return {"Aliases": aliases}


class FakeDockerClient:
    """In-memory stand-in for ``docker.DockerClient`` covering what silohound uses."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.containers_by_id: dict[str, FakeContainer] = {}
        self.containers = FakeContainers(self)
        self.networks = FakeNetworks(self)
        self.images = FakeImages(self)
        self.api = FakeAPI()
        self.calls: list[tuple] = []
        self.collisions: list[str] = []
        self.fail_create: set[str] = set()
        self.fail_start: set[str] = set()
        self.exec_results: dict[str, tuple[int, bytes]] = {}
        self.log_scripts: dict[str, Callable[[], FakeLogStream]] = {}

    def ping(self) -> bool:
        return True

    def add_container(self, name: str, image: str = "busybox", status: str = "running", **kwargs) -> FakeContainer:
        cid = f"{next(self._ids):064x}"
        c = FakeContainer(self, cid, name, image, status, kwargs)
        self.containers_by_id[cid] = c
        return c

    def script_logs(self, name: str, chunks: list, block: bool = False, error: Exception | None = None) -> None:
        self.log_scripts[name] = lambda: FakeLogStream(chunks, block=block, error=error)

    def by_name(self, name: str) -> FakeContainer | None:
        for c in self.containers_by_id.values():
            if c.name == name:
                return c
        return None

    def names(self) -> list[str]:
        return [c.name for c in self.containers_by_id.values()]

    def created(self) -> list[str]:
        return [call[1] for call in self.calls if call[0] == "create"]

    def _require(self, cid: str) -> None:
        if cid not in self.containers_by_id:
            raise NotFound(f"No such container: {cid}")

    def _forget(self, cid: str) -> None:
        self.containers_by_id.pop(cid, None)

    def _stream_for(self, name: str) -> FakeLogStream:
        if name in self.log_scripts:
            return self.log_scripts[name]()
        for tpl in ROLE_TABLE.values():
            if name.endswith(f"_{tpl.tag}"):
                return FakeLogStream([b"booting...\n", f"2024-01-01 INFO {tpl.marker}\n".encode()], block=True)
        return FakeLogStream([], block=False)


@pytest.fixture
def docker_client() -> FakeDockerClient:
    return FakeDockerClient()
