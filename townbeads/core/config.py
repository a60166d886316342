"""
Typed configuration for a town: local tool settings and the fleet registry.

``townbeads.yaml`` carries the knobs for talking to ``bd``; ``mayor/rigs.json``
is the read-mostly registry of rigs and their identifier prefixes, owned by the
rest of the fleet tooling and only rewritten here by the doctor fixes.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from townbeads.core.errors import ConfigMissingError
from townbeads.utils.atomic_write import atomic_write_text

LOGGER = logging.getLogger(__name__)

SETTINGS_FILENAME = "townbeads.yaml"
RIGS_FILENAME = "rigs.json"
MAYOR_DIRNAME = "mayor"

ENV_BD_PATH = "TOWNBEADS_BD_PATH"
ENV_BD_TIMEOUT = "TOWNBEADS_BD_TIMEOUT"


class StoreConfig(BaseModel):
    """How the ``bd`` record-store tool is invoked."""

    model_config = ConfigDict(extra="ignore")

    bd_path: str = Field(default="bd", description="Executable name or path of the record-store CLI.")
    no_daemon: bool = Field(default=True, description="Pass --no-daemon so every call talks to the store directly.")
    timeout_seconds: float = Field(default=30.0, gt=0.0, description="Per-subcommand timeout.")
    extra_env: Dict[str, str] = Field(default_factory=dict)


class AgentConfig(BaseModel):
    """Defaults for agent session records."""

    prefix: str = Field(default="gt", min_length=2, max_length=3)
    reopen_reason: str = "re-spawning"

    @field_validator("prefix", mode="before")
    @classmethod
    def strip_separator(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().rstrip("-")
        return value


class RedirectConfig(BaseModel):
    max_hops: int = Field(default=3, ge=1, le=16)


class EventsConfig(BaseModel):
    """Where lifecycle and repair events are appended (disabled when unset)."""

    path: Optional[Path] = None


class TownSettings(BaseModel):
    """Top-level settings for one town."""

    store: StoreConfig = Field(default_factory=StoreConfig)
    agents: AgentConfig = Field(default_factory=AgentConfig)
    redirect: RedirectConfig = Field(default_factory=RedirectConfig)
    events: EventsConfig = Field(default_factory=EventsConfig)


class RigBeadsConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    prefix: str = ""


class RigEntry(BaseModel):
    """One rig as declared in ``mayor/rigs.json``."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    git_url: Optional[str] = None
    beads: Optional[RigBeadsConfig] = None

    @property
    def route_prefix(self) -> str:
        """Identifier prefix with its separator (``gt-``), or '' when undeclared."""
        if self.beads is None or not self.beads.prefix:
            return ""
        return f"{self.beads.prefix}-"


class RigsConfig(BaseModel):
    """The fleet registry."""

    model_config = ConfigDict(extra="allow")

    version: int = 1
    rigs: Dict[str, RigEntry] = Field(default_factory=dict)


def read_yaml_file(path: Path) -> Dict[str, Any]:
    """Load a YAML file and return a dictionary."""
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected mapping at root of {path}, received {type(data)}")
    return data


def settings_path_for(town_root: Path) -> Path:
    return town_root / MAYOR_DIRNAME / SETTINGS_FILENAME


def rigs_path_for(town_root: Path) -> Path:
    return town_root / MAYOR_DIRNAME / RIGS_FILENAME


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    store = dict(data.get("store") or {})
    bd_path = os.getenv(ENV_BD_PATH)
    if bd_path:
        store["bd_path"] = bd_path
    timeout = os.getenv(ENV_BD_TIMEOUT)
    if timeout:
        store["timeout_seconds"] = timeout
    if store:
        data["store"] = store
    return data


def _absolutize_settings_paths(data: Dict[str, Any], base_dir: Path) -> None:
    events = data.get("events")
    if isinstance(events, dict) and events.get("path"):
        path = Path(events["path"]).expanduser()
        if not path.is_absolute():
            path = base_dir / path
        events["path"] = str(path.resolve())


def load_town_settings(path: Path | None = None, *, town_root: Path | None = None) -> TownSettings:
    """Load ``townbeads.yaml``; a missing file yields the defaults.

    ``town_root`` anchors relative paths in the file and is also used to find
    the file when ``path`` is not given.
    """

    if path is None and town_root is not None:
        path = settings_path_for(town_root)
    data: Dict[str, Any] = {}
    if path is not None:
        path = path.expanduser().resolve()
        if path.exists():
            data = read_yaml_file(path)
        else:
            LOGGER.debug("No settings file at %s; using defaults", path)
    base_dir = (town_root or (path.parent if path is not None else Path.cwd())).resolve()
    data = _apply_env_overrides(data)
    _absolutize_settings_paths(data, base_dir)
    try:
        return TownSettings.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Invalid town settings in {path}") from exc


def load_rigs_config(path: Path) -> RigsConfig:
    """Parse the fleet registry.

    Raises ConfigMissingError when the file is absent and ValueError when it is
    not a valid registry document.
    """

    if not path.exists():
        raise ConfigMissingError(f"Rig registry not found at {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in rig registry {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"Expected mapping at root of {path}, received {type(data)}")
    try:
        return RigsConfig.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Invalid rig registry in {path}") from exc


def load_rigs_or_empty(path: Path) -> RigsConfig | None:
    """Return the registry, or None when it is missing or unreadable.

    Both are soft conditions for callers that only compare against the
    registry: the town is treated as having no rigs.
    """
    try:
        return load_rigs_config(path)
    except ConfigMissingError:
        LOGGER.warning("Rig registry missing at %s; treating town as having no rigs", path)
    except ValueError as exc:
        LOGGER.warning("Ignoring unreadable rig registry %s: %s", path, exc)
    return None


def save_rigs_config(path: Path, config: RigsConfig) -> None:
    """Rewrite the registry atomically, keeping keys we do not model."""
    payload = config.model_dump(mode="json", exclude_none=True)
    atomic_write_text(path, json.dumps(payload, indent=2) + "\n")
