"""Per-session context: one resolved store, one client, passed explicitly."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from townbeads.beads.agents import AgentBeads
from townbeads.beads.client import BeadsClient
from townbeads.beads.redirect import CorruptPointer
from townbeads.core.config import TownSettings
from townbeads.core.provenance import ProvenanceLogger


class TownContext(BaseModel):
    """Everything a command needs to talk to the right store."""

    town_root: Path
    work_dir: Path
    beads_dir: Path
    settings: TownSettings
    client: BeadsClient
    agents: AgentBeads
    provenance: Optional[ProvenanceLogger] = None
    env: Dict[str, str] = Field(default_factory=dict)
    repaired: Optional[CorruptPointer] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @field_validator("town_root", "work_dir", mode="before")
    @classmethod
    def _expand(cls, value: Path | str) -> Path:
        return Path(value).expanduser().absolute()

    @property
    def rigs_path(self) -> Path:
        return self.town_root / "mayor" / "rigs.json"

    @property
    def town_beads_dir(self) -> Path:
        return self.town_root / ".beads"
