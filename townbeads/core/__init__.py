"""
Foundational configuration, error, and event-log utilities.

Everything above this layer (store client, resolver, doctor checks, CLI)
depends on these modules; they depend on nothing else in the package.
"""

from .config import (
    AgentConfig,
    RedirectConfig,
    RigEntry,
    RigsConfig,
    StoreConfig,
    TownSettings,
    load_rigs_config,
    load_town_settings,
    save_rigs_config,
)
from .errors import (
    BeadsCommandError,
    BeadsTimeoutError,
    ConfigMissingError,
    ConflictError,
    InvalidLocationError,
    InvalidStateTransitionError,
    NotFoundError,
    TownBeadsError,
    UnrecoverableIdentityError,
)
from .provenance import ProvenanceEvent, ProvenanceLogger, ProvenanceStage

__all__ = [
    "AgentConfig",
    "BeadsCommandError",
    "BeadsTimeoutError",
    "ConfigMissingError",
    "ConflictError",
    "InvalidLocationError",
    "InvalidStateTransitionError",
    "NotFoundError",
    "ProvenanceEvent",
    "ProvenanceLogger",
    "ProvenanceStage",
    "RedirectConfig",
    "RigEntry",
    "RigsConfig",
    "StoreConfig",
    "TownBeadsError",
    "TownSettings",
    "UnrecoverableIdentityError",
    "load_rigs_config",
    "load_town_settings",
    "save_rigs_config",
]
