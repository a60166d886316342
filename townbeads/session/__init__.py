"""Session bootstrap utilities."""

from __future__ import annotations

from .bootstrap import bootstrap_session, find_town_root
from .context import TownContext

__all__ = ["TownContext", "bootstrap_session", "find_town_root"]
