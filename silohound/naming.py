from __future__ import annotations

import re

PREFIX = "SiloHound"
NETWORK_SUFFIX = "Network"

# No underscores: "_" separates the parts of a resource name, so keeping it
# out of project names makes "<PREFIX>_<project>_" an exact, unambiguous prefix.
PROJECT_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9.\-]{0,62}$")


def validate_project_name(name: str) -> None:
    if not PROJECT_NAME_RE.match(name):
        raise ValueError(
            "Invalid project name. Use letters, digits, '.' and '-', starting with a letter or digit "
            "(max 63 chars, no underscores)."
        )


def project_prefix(project: str) -> str:
    """Leading part shared by every resource of a project, separator included."""
    return f"{PREFIX}_{project}_"


def resource_name(project: str, role_tag: str) -> str:
    return f"{project_prefix(project)}{role_tag}"


def network_name(project: str) -> str:
    return resource_name(project, NETWORK_SUFFIX)


def belongs_to(container_name: str, project: str) -> bool:
    return container_name.lstrip("/").startswith(project_prefix(project))
