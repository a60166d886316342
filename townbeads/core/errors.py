"""Error taxonomy shared by the store client, resolver, router, and lifecycle manager."""

from __future__ import annotations

from typing import Sequence


class TownBeadsError(RuntimeError):
    """Base class for every failure raised by this package."""


class NotFoundError(TownBeadsError):
    """The store reported that no record matches the requested id."""

    def __init__(self, message: str, *, bead_id: str | None = None) -> None:
        super().__init__(message)
        self.bead_id = bead_id


class ConflictError(TownBeadsError):
    """A create hit a uniqueness violation for an id that is still live."""

    def __init__(self, message: str, *, bead_id: str | None = None) -> None:
        super().__init__(message)
        self.bead_id = bead_id


class UnrecoverableIdentityError(ConflictError):
    """The id is held by a marker record left behind by ``bd delete --hard``.

    Markers are invisible to ``show``/``reopen`` yet still block ``create``, so
    the id cannot be recycled. Callers should stop deleting agent records and
    use close/reopen instead.
    """


class InvalidLocationError(TownBeadsError, ValueError):
    """A route or redirect points at a missing or structurally invalid location."""


class ConfigMissingError(TownBeadsError):
    """A fleet configuration artifact is absent.

    Soft condition: a town with no registered rigs is still a valid town.
    """


class InvalidStateTransitionError(TownBeadsError, ValueError):
    """An ``agent_state`` change that the session state machine forbids."""


class BeadsCommandError(TownBeadsError):
    """A ``bd`` subcommand failed for a reason we do not classify further."""

    def __init__(
        self,
        message: str,
        *,
        args: Sequence[str] = (),
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.command = list(args)
        self.returncode = returncode
        self.stderr = stderr


class BeadsTimeoutError(BeadsCommandError):
    """A ``bd`` subcommand exceeded the configured timeout."""


__all__ = [
    "BeadsCommandError",
    "BeadsTimeoutError",
    "ConfigMissingError",
    "ConflictError",
    "InvalidLocationError",
    "InvalidStateTransitionError",
    "NotFoundError",
    "TownBeadsError",
    "UnrecoverableIdentityError",
]
