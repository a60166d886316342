"""Record-store access: field blocks, store location, routing, and agent lifecycle."""

from .agents import (
    AgentBeads,
    AgentState,
    CloseOutcome,
    agent_bead_id,
    is_agent_session_bead,
    parse_agent_bead_id,
)
from .client import BeadsClient
from .fields import AgentFields, AttachmentFields, MRFields, RoleConfig, format_fields, parse_fields, set_fields
from .issues import CreateOptions, ListOptions, Record, UpdateOptions
from .redirect import CorruptPointer, RedirectResolution, resolve_beads_dir, resolve_redirect, setup_redirect
from .roles import RoleType, expand_role_pattern, role_bead_id
from .routes import Route, load_routes, write_routes

__all__ = [
    "AgentBeads",
    "AgentFields",
    "AgentState",
    "AttachmentFields",
    "BeadsClient",
    "CloseOutcome",
    "CorruptPointer",
    "CreateOptions",
    "ListOptions",
    "MRFields",
    "Record",
    "RedirectResolution",
    "RoleConfig",
    "RoleType",
    "Route",
    "UpdateOptions",
    "agent_bead_id",
    "expand_role_pattern",
    "format_fields",
    "is_agent_session_bead",
    "load_routes",
    "parse_agent_bead_id",
    "parse_fields",
    "resolve_beads_dir",
    "resolve_redirect",
    "role_bead_id",
    "set_fields",
    "setup_redirect",
    "write_routes",
]
