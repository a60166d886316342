"""Routing table checks: every rig is routed, and rig prefixes agree with routes."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from townbeads.beads.redirect import BEADS_DIR_NAME
from townbeads.beads.routes import (
    RESERVED_ROUTES,
    Route,
    TOWN_ROUTE_PATH,
    find_conflicting_prefixes,
    load_routes,
    rig_route_path,
    routes_path,
    write_routes,
)
from townbeads.core.config import RigBeadsConfig, RigsConfig, load_rigs_or_empty, save_rigs_config
from townbeads.core.errors import InvalidLocationError

from .checks import Check, CheckContext, CheckResult, CheckStatus

LOGGER = logging.getLogger(__name__)

FIX_HINT = "Run 'town-inspect doctor --fix' to add missing routes"


class RoutesCheck(Check):
    """``routes.jsonl`` exists, routes every rig, and points at real stores."""

    name = "routes-config"
    description = "Check beads routing configuration"
    can_fix = True

    def run(self, ctx: CheckContext) -> CheckResult:
        beads_dir = ctx.beads_dir
        if not beads_dir.is_dir():
            return self.result(
                CheckStatus.WARNING,
                "No .beads directory at town root",
                fix_hint="Run 'bd init' to initialize beads",
            )
        if not routes_path(beads_dir).exists():
            return self.result(
                CheckStatus.WARNING,
                "No routes.jsonl file (prefix routing not configured)",
                fix_hint="Run 'town-inspect doctor --fix' to create routes.jsonl",
            )
        try:
            routes = load_routes(beads_dir)
        except OSError as exc:
            return self.result(CheckStatus.ERROR, f"Failed to load routes.jsonl: {exc}")

        by_prefix = {route.prefix: route.path for route in routes}
        by_path = {route.path: route.prefix for route in routes}
        details: List[str] = []
        missing_town = "hq-" not in by_prefix
        missing_convoy = "hq-cv-" not in by_prefix
        if missing_town:
            details.append("Town root route (hq- -> .) is missing")
        if missing_convoy:
            details.append("Convoy route (hq-cv- -> .) is missing")

        registry = load_rigs_or_empty(ctx.rigs_path)
        if registry is None:
            if missing_town or missing_convoy:
                return self.result(
                    CheckStatus.WARNING,
                    "Required town routes are missing",
                    details=details,
                    fix_hint=FIX_HINT,
                )
            return self._check_routes_valid(ctx, routes)

        missing_rigs: List[str] = []
        for rig_name in sorted(registry.rigs):
            if rig_route_path(rig_name) in by_path:
                continue
            prefix = registry.rigs[rig_name].route_prefix
            if prefix and prefix not in by_prefix:
                missing_rigs.append(rig_name)
                details.append(f"Rig '{rig_name}' (prefix: {prefix}) has no routing entry")

        invalid = self._invalid_routes(ctx, routes, details, require_store=True)
        duplicates = find_conflicting_prefixes(routes)
        for prefix, paths in duplicates.items():
            details.append(f"Prefix {prefix} is routed {len(paths)} times: {', '.join(paths)}")

        parts: List[str] = []
        if missing_town:
            parts.append("town root route missing")
        if missing_convoy:
            parts.append("convoy route missing")
        if missing_rigs:
            parts.append(f"{len(missing_rigs)} rig(s) missing routes")
        if invalid:
            parts.append(f"{len(invalid)} invalid route(s)")
        if duplicates:
            parts.append(f"{len(duplicates)} duplicate prefix(es)")
        if parts:
            return self.result(CheckStatus.WARNING, ", ".join(parts), details=details, fix_hint=FIX_HINT)
        return self.result(CheckStatus.OK, f"Routes configured correctly ({len(routes)} routes)")

    def _invalid_routes(
        self, ctx: CheckContext, routes: List[Route], details: List[str], *, require_store: bool
    ) -> List[str]:
        invalid: List[str] = []
        for route in routes:
            if route.path == TOWN_ROUTE_PATH:
                continue
            rig_path = ctx.town_root / route.path
            if not rig_path.exists():
                invalid.append(route.prefix)
                details.append(f"Route {route.prefix} -> {route.path}: path does not exist")
                continue
            store = rig_path / BEADS_DIR_NAME
            if require_store and not store.exists():
                invalid.append(route.prefix)
                details.append(f"Route {route.prefix} -> {route.path}: no .beads directory")
        return invalid

    def _check_routes_valid(self, ctx: CheckContext, routes: List[Route]) -> CheckResult:
        details: List[str] = []
        invalid = self._invalid_routes(ctx, routes, details, require_store=False)
        if invalid:
            return self.result(
                CheckStatus.WARNING,
                f"{len(invalid)} invalid route(s) in routes.jsonl",
                details=details,
                fix_hint="Remove invalid routes or recreate the missing rigs",
            )
        return self.result(CheckStatus.OK, f"Routes configured correctly ({len(routes)} routes)")

    def fix(self, ctx: CheckContext) -> None:
        """Add reserved routes and routes for rigs whose canonical clone exists.

        Existing routes are never rewritten or removed, and the file is left
        untouched when nothing is missing.
        """

        beads_dir = ctx.beads_dir
        if not beads_dir.is_dir():
            raise InvalidLocationError(".beads directory does not exist; run 'bd init' first")
        routes = load_routes(beads_dir)
        known = {route.prefix for route in routes}
        routed_paths = {route.path for route in routes}
        modified = False
        for reserved in RESERVED_ROUTES:
            if reserved.prefix not in known:
                routes.append(reserved)
                known.add(reserved.prefix)
                modified = True

        registry = load_rigs_or_empty(ctx.rigs_path)
        if registry is not None:
            for rig_name in sorted(registry.rigs):
                route_path = rig_route_path(rig_name)
                prefix = registry.rigs[rig_name].route_prefix
                if not prefix or prefix in known or route_path in routed_paths:
                    continue
                if not (ctx.town_root / route_path).exists():
                    LOGGER.info("Not routing %s: %s does not exist", rig_name, route_path)
                    continue
                routes.append(Route(prefix=prefix, path=route_path))
                known.add(prefix)
                routed_paths.add(route_path)
                modified = True

        if modified:
            write_routes(beads_dir, routes)


class PrefixMismatchCheck(Check):
    """A rig's registry prefix must match the prefix its route declares.

    The route wins: record ids already issued in the rig carry the routed
    prefix, so the fix rewrites ``mayor/rigs.json``.
    """

    name = "prefix-mismatch"
    description = "Check rigs.json prefixes against routes.jsonl"
    can_fix = True

    def _mismatches(self, ctx: CheckContext) -> tuple[Optional[RigsConfig], Dict[str, str]]:
        routes = load_routes(ctx.beads_dir)
        if not routes:
            return None, {}
        registry = load_rigs_or_empty(ctx.rigs_path)
        if registry is None:
            return None, {}
        by_path = {route.path: route.prefix for route in routes}
        mismatches: Dict[str, str] = {}
        for rig_name in sorted(registry.rigs):
            routed = by_path.get(rig_route_path(rig_name))
            if routed is None:
                continue
            routed_prefix = routed.rstrip("-")
            entry = registry.rigs[rig_name]
            declared = entry.beads.prefix if entry.beads else ""
            if declared and declared != routed_prefix:
                mismatches[rig_name] = routed_prefix
        return registry, mismatches

    def run(self, ctx: CheckContext) -> CheckResult:
        registry, mismatches = self._mismatches(ctx)
        if not mismatches:
            return self.result(CheckStatus.OK, "Rig prefixes match routes")
        details = [
            f"Rig '{name}': rigs.json prefix '{registry.rigs[name].beads.prefix}' "
            f"but routes.jsonl uses '{routed}-'"
            for name, routed in mismatches.items()
        ]
        return self.result(
            CheckStatus.WARNING,
            f"{len(mismatches)} rig prefix mismatch(es)",
            details=details,
            fix_hint="Run 'town-inspect doctor --fix' to update rigs.json from routes.jsonl",
        )

    def fix(self, ctx: CheckContext) -> None:
        registry, mismatches = self._mismatches(ctx)
        if registry is None or not mismatches:
            return
        for name, routed in mismatches.items():
            entry = registry.rigs[name]
            if entry.beads is None:
                entry.beads = RigBeadsConfig(prefix=routed)
            else:
                entry.beads.prefix = routed
            LOGGER.info("Set rig %s prefix to %s", name, routed)
        save_rigs_config(ctx.rigs_path, registry)


def default_checks() -> List[Check]:
    return [RoutesCheck(), PrefixMismatchCheck()]


__all__ = ["PrefixMismatchCheck", "RoutesCheck", "default_checks"]
