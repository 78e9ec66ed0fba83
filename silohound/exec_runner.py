from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import docker


class ExecError(Exception):
    def __init__(self, container_id: str, cmd: Sequence[str], exit_code: int | None, output: str):
        self.container_id = container_id
        self.cmd = list(cmd)
        self.exit_code = exit_code
        self.output = output
        super().__init__(
            f"Command {self.cmd[0] if self.cmd else '?'} in {container_id[:12]} exited with {exit_code}: {output.strip()[:500]}"
        )


@dataclass(frozen=True)
class ExecOutcome:
    exit_code: int
    output: str


def exec_in_container(
    client: docker.DockerClient,
    container_id: str,
    cmd: Sequence[str],
    user: str | None = None,
) -> ExecOutcome:
    """Run a one-shot command inside a running container and wait for it to exit.

    A non-zero exit code raises ExecError.
    """
    container = client.containers.get(container_id)
    kwargs = {"stdout": True, "stderr": True}
    if user:
        kwargs["user"] = user
    result = container.exec_run(list(cmd), **kwargs)

    raw = result.output or b""
    output = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else str(raw)
    if result.exit_code != 0:
        raise ExecError(container_id, cmd, result.exit_code, output)
    return ExecOutcome(exit_code=result.exit_code, output=output)
