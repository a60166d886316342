"""Agent role vocabulary and role-definition records."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from townbeads.beads.fields import RoleConfig, parse_fields
from townbeads.core.errors import NotFoundError

LOGGER = logging.getLogger(__name__)

DEFAULT_PREFIX = "gt"


class RoleType(str, Enum):
    MAYOR = "mayor"
    DEACON = "deacon"
    WITNESS = "witness"
    REFINERY = "refinery"
    CREW = "crew"
    POLECAT = "polecat"
    DOG = "dog"
    BOOT = "boot"


SESSION_ROLES = frozenset(role.value for role in RoleType)


def role_bead_id(role_type: str, prefix: str = DEFAULT_PREFIX) -> str:
    """Id of the record that holds a role's definition (``gt-witness-role``)."""
    return f"{prefix}-{role_type}-role"


def expand_role_pattern(pattern: str, town_root: str, rig: str = "", name: str = "", role: str = "") -> str:
    """Fill ``{town}``, ``{rig}``, ``{name}`` and ``{role}`` placeholders."""
    result = pattern.replace("{town}", str(town_root))
    result = result.replace("{rig}", rig)
    result = result.replace("{name}", name)
    return result.replace("{role}", role)


def load_role_config(client, role_type: str, *, prefix: str = DEFAULT_PREFIX) -> Optional[RoleConfig]:
    """Read the session configuration from a role-definition record.

    Returns None when the role record does not exist or carries no config block.
    """

    bead_id = role_bead_id(role_type, prefix)
    try:
        record = client.show(bead_id)
    except NotFoundError:
        LOGGER.debug("No role definition record %s", bead_id)
        return None
    return parse_fields(record.description, RoleConfig)


__all__ = [
    "DEFAULT_PREFIX",
    "RoleType",
    "SESSION_ROLES",
    "expand_role_pattern",
    "load_role_config",
    "role_bead_id",
]
