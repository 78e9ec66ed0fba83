from __future__ import annotations

import docker

from .db import log_event
from .naming import network_name


def ensure_network(client: docker.DockerClient, project: str) -> str:
    """Return the project's network name, creating the bridge network if missing.

    The runtime's name filter matches substrings, so candidates are compared
    exactly before deciding the network is absent.
    """
    name = network_name(project)
    for net in client.networks.list(names=[name]):
        if net.name == name:
            return name

    client.networks.create(name, driver="bridge")
    log_event("INFO", f"Created docker network '{name}'.", project=project)
    return name
