from __future__ import annotations

import os
from datetime import datetime

import docker

from .exec_runner import ExecOutcome, exec_in_container
from .roles import POSTGRES_DB, POSTGRES_USER, data_dirs


def create_folders(workdir: str) -> list[str]:
    dirs = data_dirs(os.path.abspath(workdir))
    for d in dirs:
        os.makedirs(d, mode=0o755, exist_ok=True)
    return dirs


def psql_command(sql: str, quiet: bool = True) -> list[str]:
    cmd = ["psql"]
    if quiet:
        cmd.append("-q")
    return cmd + ["-U", POSTGRES_USER, "-d", POSTGRES_DB, "-c", sql]


def password_expiry_sql(now: datetime | None = None, years: int = 1) -> str:
    now = now or datetime.now()
    try:
        expires = now.replace(year=now.year + years)
    except ValueError:
        # Feb 29 -> Feb 28
        expires = now.replace(year=now.year + years, day=28)
    return f"UPDATE auth_secrets SET expires_at='{expires.strftime('%Y-%m-%d %H:%M:%S')}' WHERE id='1';"


def extend_admin_password_expiry(
    client: docker.DockerClient,
    postgres_id: str,
    years: int = 1,
    now: datetime | None = None,
) -> ExecOutcome:
    """Push the default admin's password expiry out so the first login is not forced to rotate it."""
    return exec_in_container(client, postgres_id, psql_command(password_expiry_sql(now, years)))
