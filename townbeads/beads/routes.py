"""
Prefix routing table: which store owns a given record id namespace.

``<town>/.beads/routes.jsonl`` holds one ``{"prefix":..., "path":...}`` object
per line. Paths are relative to the town root; ``.`` is the town store itself.
"""

from __future__ import annotations

import json
import logging
from collections import OrderedDict
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from townbeads.beads.redirect import BEADS_DIR_NAME, resolve_beads_dir
from townbeads.utils.atomic_write import atomic_write_text

LOGGER = logging.getLogger(__name__)

ROUTES_FILENAME = "routes.jsonl"
TOWN_ROUTE_PATH = "."
TOWN_PREFIX = "hq-"
CONVOY_PREFIX = "hq-cv-"
DEFAULT_RIG_PREFIX = "gt"


class Route(BaseModel):
    model_config = ConfigDict(frozen=True)

    prefix: str
    path: str

    def to_line(self) -> str:
        return json.dumps({"prefix": self.prefix, "path": self.path}, separators=(",", ":"))


RESERVED_ROUTES = (
    Route(prefix=TOWN_PREFIX, path=TOWN_ROUTE_PATH),
    Route(prefix=CONVOY_PREFIX, path=TOWN_ROUTE_PATH),
)


def routes_path(beads_dir: Path) -> Path:
    return beads_dir / ROUTES_FILENAME


def rig_route_path(rig_name: str) -> str:
    """Route path convention for a rig's canonical clone."""
    return f"{rig_name}/mayor/rig"


def load_routes(beads_dir: Path) -> List[Route]:
    """Read the table in file order; undecodable lines are skipped."""

    path = routes_path(beads_dir)
    if not path.exists():
        return []
    routes: List[Route] = []
    with path.open("rb") as handle:
        for lineno, raw in enumerate(handle, start=1):
            try:
                line = raw.decode("utf-8").strip()
            except UnicodeDecodeError as exc:
                LOGGER.warning("Skipping undecodable route at %s:%d: %s", path, lineno, exc.reason)
                continue
            if not line:
                continue
            try:
                routes.append(Route.model_validate_json(line))
            except ValidationError as exc:
                LOGGER.warning("Skipping malformed route at %s:%d: %s", path, lineno, exc.errors()[0]["msg"])
    return routes


def write_routes(beads_dir: Path, routes: Iterable[Route]) -> Path:
    """Replace the table with ``routes`` in the given order."""
    body = "".join(route.to_line() + "\n" for route in routes)
    target = atomic_write_text(routes_path(beads_dir), body)
    LOGGER.info("Wrote %s", target)
    return target


def append_route(beads_dir: Path, route: Route) -> List[Route]:
    """Add ``route``, replacing an existing route with the same prefix in place."""
    routes = load_routes(beads_dir)
    for index, existing in enumerate(routes):
        if existing.prefix == route.prefix:
            routes[index] = route
            break
    else:
        routes.append(route)
    write_routes(beads_dir, routes)
    return routes


def remove_route(beads_dir: Path, prefix: str) -> bool:
    """Drop every route for ``prefix``; returns False when none existed."""
    routes = load_routes(beads_dir)
    kept = [route for route in routes if route.prefix != prefix]
    if len(kept) == len(routes):
        return False
    write_routes(beads_dir, kept)
    return True


def find_conflicting_prefixes(routes: Iterable[Route]) -> Dict[str, List[str]]:
    """Prefixes declared more than once, mapped to every path they claim."""
    seen: "OrderedDict[str, List[str]]" = OrderedDict()
    for route in routes:
        seen.setdefault(route.prefix, []).append(route.path)
    return {prefix: paths for prefix, paths in seen.items() if len(paths) > 1}


def route_for_id(routes: Iterable[Route], bead_id: str) -> Optional[Route]:
    """Longest-prefix match so ``hq-cv-1`` prefers ``hq-cv-`` over ``hq-``."""
    best: Optional[Route] = None
    for route in routes:
        if bead_id.startswith(route.prefix) and (best is None or len(route.prefix) > len(best.prefix)):
            best = route
    return best


def resolve_store_for_id(town_root: Path, bead_id: str, *, max_hops: int | None = None) -> Optional[Path]:
    """The store directory that owns ``bead_id``, following redirects; None when unrouted."""
    route = route_for_id(load_routes(town_root / BEADS_DIR_NAME), bead_id)
    if route is None:
        return None
    work_dir = town_root / route.path
    if max_hops is None:
        return resolve_beads_dir(work_dir)
    return resolve_beads_dir(work_dir, max_hops=max_hops)


def prefix_for_rig(town_root: Path, rig_name: str, *, default: str = DEFAULT_RIG_PREFIX) -> str:
    """Identifier prefix (without separator) routed to ``rig_name``."""
    expected = rig_route_path(rig_name)
    for route in load_routes(town_root / BEADS_DIR_NAME):
        if route.path == expected:
            return route.prefix.rstrip("-")
    return default


__all__ = [
    "CONVOY_PREFIX",
    "RESERVED_ROUTES",
    "ROUTES_FILENAME",
    "Route",
    "TOWN_PREFIX",
    "TOWN_ROUTE_PATH",
    "append_route",
    "find_conflicting_prefixes",
    "load_routes",
    "prefix_for_rig",
    "remove_route",
    "resolve_store_for_id",
    "rig_route_path",
    "route_for_id",
    "routes_path",
    "write_routes",
]
