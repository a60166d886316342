"""Subprocess client for the ``bd`` record-store CLI."""

from __future__ import annotations

import json
import logging
import os
import subprocess
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from townbeads.beads.issues import CreateOptions, ListOptions, Record, UpdateOptions
from townbeads.beads.redirect import resolve_beads_dir
from townbeads.core.config import TownSettings
from townbeads.core.errors import (
    BeadsCommandError,
    BeadsTimeoutError,
    ConflictError,
    NotFoundError,
    TownBeadsError,
)

LOGGER = logging.getLogger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]

_NOT_FOUND_MARKERS = ("not found", "no issue found")
_CONFLICT_MARKERS = ("unique constraint", "already exists")
_ID_SUBCOMMANDS = {"show", "update", "close", "reopen", "delete"}


def run_subprocess(argv: Sequence[str], *, cwd: str, env: Dict[str, str], timeout: float) -> subprocess.CompletedProcess:
    return subprocess.run(
        list(argv),
        cwd=cwd,
        env=env,
        capture_output=True,
        text=True,
        timeout=timeout,
        check=False,
    )


def _target_id(args: Sequence[str]) -> Optional[str]:
    if not args:
        return None
    for arg in args:
        if arg.startswith("--id="):
            return arg.split("=", 1)[1]
    if args[0] in _ID_SUBCOMMANDS and len(args) > 1 and not args[1].startswith("-"):
        return args[1]
    return None


def classify_error(stderr: str, args: Sequence[str], returncode: Optional[int] = None) -> TownBeadsError:
    """Map ``bd`` error text onto the package error taxonomy."""

    text = stderr.strip()
    lowered = text.lower()
    bead_id = _target_id(args)
    if any(marker in lowered for marker in _NOT_FOUND_MARKERS):
        return NotFoundError(text or "record not found", bead_id=bead_id)
    if any(marker in lowered for marker in _CONFLICT_MARKERS):
        return ConflictError(text, bead_id=bead_id)
    command = " ".join(args)
    return BeadsCommandError(
        f"bd {command} failed: {text or f'exit status {returncode}'}",
        args=args,
        returncode=returncode,
        stderr=text,
    )


class BeadsClient:
    """One ``bd`` session bound to a working directory and its resolved store.

    The store location is resolved once, at construction, and sent to every
    subcommand as ``BEADS_DIR``.
    """

    def __init__(
        self,
        work_dir: Path | str,
        *,
        beads_dir: Path | str | None = None,
        settings: TownSettings | None = None,
        runner: Runner | None = None,
    ) -> None:
        self.settings = settings or TownSettings()
        self.work_dir = Path(work_dir)
        if beads_dir is None:
            self.beads_dir = resolve_beads_dir(self.work_dir, max_hops=self.settings.redirect.max_hops)
        else:
            self.beads_dir = Path(beads_dir)
        self._runner = runner or run_subprocess

    def _environment(self) -> Dict[str, str]:
        env = dict(os.environ)
        env.update(self.settings.store.extra_env)
        env["BEADS_DIR"] = str(self.beads_dir)
        return env

    def run(self, *args: str) -> str:
        """Run ``bd <args>`` and return stdout; raise a classified error on failure."""

        store = self.settings.store
        argv = [store.bd_path]
        if store.no_daemon:
            argv.append("--no-daemon")
        argv.extend(args)
        LOGGER.debug("Running %s (cwd=%s, BEADS_DIR=%s)", argv, self.work_dir, self.beads_dir)
        try:
            completed = self._runner(
                argv,
                cwd=str(self.work_dir),
                env=self._environment(),
                timeout=store.timeout_seconds,
            )
        except subprocess.TimeoutExpired as exc:
            raise BeadsTimeoutError(
                f"bd {' '.join(args)} timed out after {store.timeout_seconds}s",
                args=args,
            ) from exc
        except OSError as exc:
            raise BeadsCommandError(f"could not execute {store.bd_path}: {exc}", args=args) from exc
        if completed.returncode != 0:
            raise classify_error(completed.stderr or completed.stdout or "", args, completed.returncode)
        return completed.stdout or ""

    def _run_json(self, *args: str) -> Any:
        output = self.run(*args)
        if not output.strip():
            return None
        try:
            return json.loads(output)
        except json.JSONDecodeError as exc:
            raise BeadsCommandError(f"bd {args[0]} returned non-JSON output", args=args, stderr=output) from exc

    def list(self, options: ListOptions | None = None) -> List[Record]:
        options = options or ListOptions()
        data = self._run_json("list", "--json", *options.to_args())
        if data is None:
            return []
        if not isinstance(data, list):
            raise BeadsCommandError("bd list returned a non-list payload", args=("list",))
        return [Record.model_validate(item) for item in data]

    def show(self, bead_id: str) -> Record:
        data = self._run_json("show", bead_id, "--json")
        if isinstance(data, list):
            if not data:
                raise NotFoundError(f"no issue found: {bead_id}", bead_id=bead_id)
            data = data[0]
        if not isinstance(data, dict):
            raise NotFoundError(f"no issue found: {bead_id}", bead_id=bead_id)
        return Record.model_validate(data)

    def create(self, options: CreateOptions) -> Record:
        data = self._run_json("create", "--json", *options.to_args())
        if isinstance(data, list) and data:
            data = data[0]
        if not isinstance(data, dict):
            raise BeadsCommandError("bd create returned no record", args=("create",))
        return Record.model_validate(data)

    def update(self, bead_id: str, options: UpdateOptions) -> None:
        if options.is_empty():
            return
        self.run("update", bead_id, *options.to_args())

    def close(self, bead_id: str, reason: str = "") -> None:
        args = ["close", bead_id]
        if reason:
            args.append(f"--reason={reason}")
        self.run(*args)

    def reopen(self, bead_id: str, reason: str = "") -> None:
        args = ["reopen", bead_id]
        if reason:
            args.append(f"--reason={reason}")
        self.run(*args)

    def delete(self, bead_id: str, *, hard: bool = True) -> None:
        """Delete a record.

        ``bd delete --hard`` leaves a tombstone that keeps the id reserved;
        see ``AgentBeads.close_and_clear`` for the recyclable alternative.
        """
        args = ["delete", bead_id]
        if hard:
            args.append("--hard")
        args.append("--force")
        self.run(*args)

    def is_beads_repo(self) -> bool:
        """True when the resolved store exists and answers a ``list`` call."""
        if not self.beads_dir.is_dir():
            return False
        try:
            self.run("list", "--limit=1")
        except TownBeadsError as exc:
            LOGGER.debug("bd health check failed in %s: %s", self.work_dir, exc)
            return False
        return True


__all__ = ["BeadsClient", "Runner", "classify_error", "run_subprocess"]
