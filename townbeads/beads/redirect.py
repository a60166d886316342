"""
Locate the canonical ``.beads`` store for a working directory.

A worktree's ``.beads/redirect`` file holds one relative path, resolved against
the worktree (the parent of ``.beads``), naming the store to use instead. The
target may itself carry a redirect; chains are followed up to a hop bound.
A chain that loops back on itself or runs past the bound is repaired by
deleting the offending pointer, and resolution falls back to the worktree's
own ``.beads``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from townbeads.core.errors import InvalidLocationError
from townbeads.utils.atomic_write import atomic_write_text

LOGGER = logging.getLogger(__name__)

BEADS_DIR_NAME = ".beads"
REDIRECT_FILENAME = "redirect"
DEFAULT_MAX_HOPS = 3

# Runtime artifacts that belong to a local store and must not shadow a redirect.
# Anything else in ``.beads`` (config.yaml, README.md, ...) is tracked content.
EPHEMERAL_FILES: Tuple[str, ...] = (
    "beads.db",
    "beads.db-wal",
    "beads.db-shm",
    "issues.jsonl",
    "daemon.lock",
    "daemon.log",
    "daemon.pid",
    "bd.sock",
)

CANONICAL_OWNER_PARTS = ("mayor", "rig")
_MIN_WORKTREE_DEPTH = 3


@dataclass(frozen=True)
class CorruptPointer:
    """A redirect pointer that was removed because its chain was unusable."""

    pointer_file: Path
    reason: str
    chain: Tuple[Path, ...] = field(default_factory=tuple)

    def describe(self) -> str:
        trail = " -> ".join(str(item) for item in self.chain)
        return f"{self.reason} at {self.pointer_file} ({trail})"


@dataclass(frozen=True)
class RedirectResolution:
    path: Path
    hops: int = 0
    corruption: Optional[CorruptPointer] = None

    @property
    def redirected(self) -> bool:
        return self.hops > 0


def _lexical(path: Path | str) -> Path:
    return Path(os.path.normpath(os.path.abspath(path)))


def beads_dir_for(work_dir: Path | str) -> Path:
    return _lexical(work_dir) / BEADS_DIR_NAME


def read_redirect(beads_dir: Path) -> Optional[str]:
    """Return the pointer text, or None when there is no usable pointer."""
    pointer = beads_dir / REDIRECT_FILENAME
    try:
        content = pointer.read_text(encoding="utf-8")
    except (FileNotFoundError, NotADirectoryError, IsADirectoryError):
        return None
    content = content.strip()
    return content or None


def _remove_pointer(pointer: Path) -> None:
    try:
        pointer.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        LOGGER.warning("Could not remove corrupt redirect %s: %s", pointer, exc)


def resolve_redirect(work_dir: Path | str, *, max_hops: int = DEFAULT_MAX_HOPS) -> RedirectResolution:
    """Follow redirect pointers from ``work_dir`` to the store they designate.

    Paths are normalized lexically (no symlink resolution) so the returned
    location is stable across calls while the pointer files are unchanged.
    """

    origin = beads_dir_for(work_dir)
    current = origin
    visited = {current}
    chain: List[Path] = [current]
    hops = 0
    while True:
        content = read_redirect(current)
        if content is None:
            return RedirectResolution(path=current, hops=hops)
        target = _lexical(current.parent / content)
        pointer = current / REDIRECT_FILENAME
        reason = None
        if target in visited:
            reason = "circular redirect"
        elif hops >= max_hops:
            reason = f"redirect chain longer than {max_hops} hops"
        if reason is not None:
            corruption = CorruptPointer(pointer_file=pointer, reason=reason, chain=tuple(chain + [target]))
            LOGGER.warning("Removing corrupt beads redirect: %s", corruption.describe())
            _remove_pointer(pointer)
            return RedirectResolution(path=origin, hops=0, corruption=corruption)
        LOGGER.debug("Following beads redirect %s -> %s", pointer, target)
        visited.add(target)
        chain.append(target)
        current = target
        hops += 1


def resolve_beads_dir(work_dir: Path | str, *, max_hops: int = DEFAULT_MAX_HOPS) -> Path:
    """Return the store directory ``work_dir`` should use."""
    return resolve_redirect(work_dir, max_hops=max_hops).path


def _worktree_parts(town_root: Path, worktree: Path) -> List[str]:
    try:
        rel = worktree.relative_to(town_root)
    except ValueError as exc:
        raise InvalidLocationError(f"{worktree} is not inside town root {town_root}") from exc
    return list(rel.parts)


def find_rig_store(rig_root: Path) -> Path:
    """The store a rig's worktrees share: ``<rig>/.beads``, else ``<rig>/mayor/rig/.beads``."""
    for candidate in (rig_root / BEADS_DIR_NAME, rig_root.joinpath(*CANONICAL_OWNER_PARTS, BEADS_DIR_NAME)):
        if candidate.is_dir():
            return candidate
    raise InvalidLocationError(
        f"no rig .beads found at {rig_root / BEADS_DIR_NAME} "
        f"or {rig_root.joinpath(*CANONICAL_OWNER_PARTS, BEADS_DIR_NAME)}"
    )


def clean_ephemeral_files(beads_dir: Path) -> List[Path]:
    """Remove runtime store artifacts from ``beads_dir``; return what was removed."""
    removed: List[Path] = []
    for name in EPHEMERAL_FILES:
        candidate = beads_dir / name
        if candidate.is_file():
            candidate.unlink()
            removed.append(candidate)
    return removed


def setup_redirect(town_root: Path | str, worktree: Path | str) -> Path:
    """Point ``worktree/.beads`` straight at its rig's canonical store.

    ``worktree`` must sit at least two levels below a rig (``<rig>/crew/max``,
    ``<rig>/polecats/p1``, ``<rig>/refinery/rig``). The rig's own
    ``mayor/rig`` clone holds the canonical store and is refused. Existing
    chains are collapsed so the written pointer is always a single hop.
    Returns the path of the written redirect file.
    """

    town = _lexical(town_root)
    tree = _lexical(worktree)
    parts = _worktree_parts(town, tree)
    if len(parts) < _MIN_WORKTREE_DEPTH:
        raise InvalidLocationError(f"invalid worktree path {tree}: must be at least <rig>/<role>/<name> below {town}")
    if tuple(parts[1:3]) == CANONICAL_OWNER_PARTS:
        raise InvalidLocationError("cannot create redirect in canonical beads location (mayor/rig)")

    rig_root = town / parts[0]
    store = find_rig_store(rig_root)
    canonical = resolve_beads_dir(store.parent)
    if not canonical.is_dir():
        raise InvalidLocationError(f"rig store {store} redirects to {canonical}, which does not exist")

    local = tree / BEADS_DIR_NAME
    local.mkdir(parents=True, exist_ok=True)
    for removed in clean_ephemeral_files(local):
        LOGGER.debug("Removed runtime file %s", removed)

    relative = Path(os.path.relpath(canonical, tree)).as_posix()
    pointer = local / REDIRECT_FILENAME
    atomic_write_text(pointer, relative + "\n")
    LOGGER.info("Redirected %s -> %s", local, relative)
    return pointer


__all__ = [
    "BEADS_DIR_NAME",
    "CorruptPointer",
    "DEFAULT_MAX_HOPS",
    "EPHEMERAL_FILES",
    "REDIRECT_FILENAME",
    "RedirectResolution",
    "beads_dir_for",
    "clean_ephemeral_files",
    "find_rig_store",
    "read_redirect",
    "resolve_beads_dir",
    "resolve_redirect",
    "setup_redirect",
]
