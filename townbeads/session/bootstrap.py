"""Build a ``TownContext`` for a working directory."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, Iterable

from dotenv import load_dotenv

from townbeads.beads.agents import AgentBeads
from townbeads.beads.client import BeadsClient, Runner
from townbeads.beads.redirect import resolve_redirect
from townbeads.core.config import ENV_BD_PATH, ENV_BD_TIMEOUT, load_town_settings
from townbeads.core.provenance import ProvenanceEvent, ProvenanceLogger

from .context import TownContext

LOGGER = logging.getLogger(__name__)

TOWN_MARKERS = (Path("mayor") / "town.json", Path("mayor") / "rigs.json")
DEFAULT_ENV_KEYS = (ENV_BD_PATH, ENV_BD_TIMEOUT, "BEADS_DIR", "BD_ACTOR")


def find_town_root(start: Path | str | None = None) -> Path | None:
    """Walk up from ``start`` to the first directory that looks like a town root."""
    current = Path(start or Path.cwd()).expanduser().absolute()
    for candidate in (current, *current.parents):
        if any((candidate / marker).exists() for marker in TOWN_MARKERS):
            return candidate
    return None


def _capture_env(keys: Iterable[str]) -> Dict[str, str]:
    """Return a filtered snapshot of environment variables for provenance."""
    snapshot: Dict[str, str] = {}
    for key in keys:
        value = os.getenv(key)
        if value is not None:
            snapshot[key] = value
    return snapshot


def bootstrap_session(
    work_dir: Path | str | None = None,
    *,
    town_root: Path | str | None = None,
    config_path: Path | str | None = None,
    runner: Runner | None = None,
    env_keys: tuple[str, ...] = DEFAULT_ENV_KEYS,
) -> TownContext:
    """
    Resolve the store for ``work_dir`` and construct the session context.

    Parameters
    ----------
    work_dir:
        Working copy the session acts for. Defaults to ``Path.cwd()``.
    town_root:
        Town root. Defaults to the nearest ancestor of ``work_dir`` holding
        ``mayor/town.json`` or ``mayor/rigs.json``, else ``work_dir`` itself.
    config_path:
        Explicit ``townbeads.yaml``; defaults to ``<town>/mayor/townbeads.yaml``.
    runner:
        Replacement for ``subprocess.run`` used by the store client (tests).
    """

    work_dir = Path(work_dir or Path.cwd()).expanduser().absolute()
    if town_root is None:
        town = find_town_root(work_dir) or work_dir
    else:
        town = Path(town_root).expanduser().absolute()
    load_dotenv(town / ".env")

    settings = load_town_settings(Path(config_path) if config_path else None, town_root=town)
    resolution = resolve_redirect(work_dir, max_hops=settings.redirect.max_hops)
    provenance = ProvenanceLogger(settings.events.path) if settings.events.path else None

    client = BeadsClient(work_dir, beads_dir=resolution.path, settings=settings, runner=runner)
    agents = AgentBeads(client, settings=settings.agents, provenance=provenance)
    ctx = TownContext(
        town_root=town,
        work_dir=work_dir,
        beads_dir=resolution.path,
        settings=settings,
        client=client,
        agents=agents,
        provenance=provenance,
        env=_capture_env(env_keys),
        repaired=resolution.corruption,
    )

    if resolution.corruption is not None and provenance is not None:
        provenance.log(
            ProvenanceEvent(
                stage="redirect_repair",
                message=f"Removed corrupt redirect ({resolution.corruption.reason})",
                agent="townbeads.session",
                payload={
                    "pointer": str(resolution.corruption.pointer_file),
                    "chain": [str(item) for item in resolution.corruption.chain],
                    "fallback": str(resolution.path),
                },
            )
        )
    LOGGER.debug("Session for %s uses store %s (%d hops)", work_dir, resolution.path, resolution.hops)
    return ctx
