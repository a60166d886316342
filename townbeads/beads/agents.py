"""
Agent session records: ids, the ``agent_state`` machine, and lifecycle calls.

An agent record lives for as long as its worker identity does. Each time a
worker is spawned the same id is reused:

    create_or_reopen -> spawning -> running <-> idle | processing
    close_and_clear  -> closed (reopened by the next create_or_reopen)

Records are retired with ``close_and_clear`` and never deleted:
``bd delete --hard`` leaves a tombstone that is invisible to ``show`` and
``reopen`` yet still blocks ``create`` for the same id.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from townbeads.beads.client import BeadsClient
from townbeads.beads.fields import AgentFields, parse_fields, set_fields
from townbeads.beads.issues import CreateOptions, Record, UpdateOptions
from townbeads.beads.roles import SESSION_ROLES
from townbeads.core.config import AgentConfig
from townbeads.core.errors import (
    ConflictError,
    InvalidStateTransitionError,
    NotFoundError,
    TownBeadsError,
    UnrecoverableIdentityError,
)
from townbeads.core.provenance import ProvenanceEvent, ProvenanceLogger, ProvenanceStage

LOGGER = logging.getLogger(__name__)

AGENT_TYPE = "agent"
AGENT_LABEL = "gt:agent"


class AgentState(str, Enum):
    SPAWNING = "spawning"
    RUNNING = "running"
    IDLE = "idle"
    PROCESSING = "processing"
    CLOSED = "closed"


ALLOWED_TRANSITIONS: Dict[AgentState, FrozenSet[AgentState]] = {
    AgentState.SPAWNING: frozenset({AgentState.RUNNING}),
    AgentState.RUNNING: frozenset({AgentState.IDLE, AgentState.PROCESSING}),
    AgentState.IDLE: frozenset({AgentState.PROCESSING, AgentState.RUNNING}),
    AgentState.PROCESSING: frozenset({AgentState.IDLE, AgentState.RUNNING}),
    AgentState.CLOSED: frozenset(),
}


class CloseOutcome(str, Enum):
    """What ``close_and_clear`` observed.

    ``ALREADY_CLOSED`` and ``ALREADY_CLOSED_REJECTED`` both mean the record
    was closed before the call; they differ in whether ``bd close`` accepted
    the repeat. The field block is cleared either way.
    """

    CLOSED = "closed"
    ALREADY_CLOSED = "already_closed"
    ALREADY_CLOSED_REJECTED = "already_closed_rejected"


def parse_agent_bead_id(bead_id: str) -> Tuple[str, str, str, bool]:
    """Split an agent id into ``(rig, role, name, ok)``.

    Accepted shapes, where the prefix is 2-3 characters:

    * ``gt-mayor``                 -> ("", "mayor", "")
    * ``gt-gastown-witness``       -> ("gastown", "witness", "")
    * ``gt-gastown-crew-joe``      -> ("gastown", "crew", "joe")
    * ``gt-gastown-polecat-my-cat`` -> ("gastown", "polecat", "my-cat")

    Only the shape is checked; ``gt-abc123`` parses with role ``abc123``.
    """

    if not bead_id:
        return "", "", "", False
    sep = bead_id.find("-")
    if sep not in (2, 3):
        return "", "", "", False
    parts = bead_id[sep + 1 :].split("-")
    if any(not part for part in parts):
        return "", "", "", False
    if len(parts) == 1:
        return "", parts[0], "", True
    if len(parts) == 2:
        return parts[0], parts[1], "", True
    return parts[0], parts[1], "-".join(parts[2:]), True


def is_agent_session_bead(bead_id: str) -> bool:
    """True for ids naming an agent session, false for ordinary work items."""
    _, role, _, ok = parse_agent_bead_id(bead_id)
    return ok and role in SESSION_ROLES


def agent_bead_id(prefix: str, role: str, rig: Optional[str] = None, name: Optional[str] = None) -> str:
    """Build the id for an agent; the inverse of ``parse_agent_bead_id``."""

    prefix = prefix.rstrip("-")
    if not 2 <= len(prefix) <= 3:
        raise ValueError(f"agent id prefix must be 2-3 characters, got {prefix!r}")
    if not rig:
        if name:
            raise ValueError("a named agent id needs a rig")
        return f"{prefix}-{role}"
    if name:
        return f"{prefix}-{rig}-{role}-{name}"
    return f"{prefix}-{rig}-{role}"


def check_transition(current: str, target: AgentState) -> None:
    """Raise InvalidStateTransitionError unless ``current -> target`` is allowed."""

    if target is AgentState.CLOSED:
        raise InvalidStateTransitionError("agents are closed with close_and_clear, not a state update")
    if not current:
        current = AgentState.SPAWNING.value
    try:
        state = AgentState(current)
    except ValueError as exc:
        raise InvalidStateTransitionError(f"unknown agent_state {current!r}") from exc
    if state is AgentState.CLOSED:
        raise InvalidStateTransitionError("closed agents are revived with create_or_reopen")
    if state is target:
        return
    if target not in ALLOWED_TRANSITIONS[state]:
        raise InvalidStateTransitionError(f"agent_state cannot go from {state.value} to {target.value}")


class AgentBeads:
    """Lifecycle operations for agent records over one explicit store client."""

    def __init__(
        self,
        client: BeadsClient,
        *,
        settings: AgentConfig | None = None,
        provenance: ProvenanceLogger | None = None,
    ) -> None:
        self.client = client
        self.settings = settings or AgentConfig()
        self.provenance = provenance

    def _record_event(self, stage: ProvenanceStage, bead_id: str, message: str, **payload) -> None:
        if self.provenance is None:
            return
        self.provenance.log(ProvenanceEvent(stage=stage, agent=bead_id, message=message, payload=payload))

    def get_agent_bead(self, bead_id: str) -> Tuple[Record, Optional[AgentFields]]:
        record = self.client.show(bead_id)
        return record, parse_fields(record.description, AgentFields)

    def create(self, bead_id: str, title: str, fields: AgentFields) -> Record:
        """Create a fresh agent record.

        A uniqueness violation is a ConflictError while the existing record is
        visible, and an UnrecoverableIdentityError when only a tombstone holds
        the id.
        """

        options = CreateOptions(
            id=bead_id,
            title=title,
            type=AGENT_TYPE,
            labels=[AGENT_LABEL],
            description=set_fields("", AgentFields, fields),
        )
        try:
            record = self.client.create(options)
        except ConflictError as exc:
            try:
                existing = self.client.show(bead_id)
            except NotFoundError:
                raise UnrecoverableIdentityError(
                    f"agent id {bead_id} is held by a tombstone from a hard delete; it cannot be recreated",
                    bead_id=bead_id,
                ) from exc
            if existing.is_tombstone:
                raise UnrecoverableIdentityError(
                    f"agent id {bead_id} is held by a tombstone from a hard delete; it cannot be recreated",
                    bead_id=bead_id,
                ) from exc
            raise ConflictError(f"agent bead {bead_id} already exists ({existing.status})", bead_id=bead_id) from exc
        LOGGER.info("Created agent bead %s", bead_id)
        self._record_event("agent_create", bead_id, f"Created {bead_id}", fields=fields.model_dump())
        return record

    def close_and_clear(self, bead_id: str, reason: str = "") -> CloseOutcome:
        """Retire an agent: keep identity fields, clear the rest, close the record."""

        record = self.client.show(bead_id)
        if record.is_tombstone:
            raise UnrecoverableIdentityError(f"agent id {bead_id} is a tombstone", bead_id=bead_id)
        was_closed = record.is_closed
        current = parse_fields(record.description, AgentFields) or AgentFields()
        cleared = current.identity()
        cleared.agent_state = AgentState.CLOSED.value
        self.client.update(bead_id, UpdateOptions(description=set_fields(record.description, AgentFields, cleared)))

        outcome = CloseOutcome.ALREADY_CLOSED if was_closed else CloseOutcome.CLOSED
        try:
            self.client.close(bead_id, reason)
        except TownBeadsError as exc:
            if not was_closed:
                raise
            LOGGER.info("bd rejected repeat close of %s: %s", bead_id, exc)
            outcome = CloseOutcome.ALREADY_CLOSED_REJECTED
        LOGGER.info("Closed agent bead %s (%s)", bead_id, outcome.value)
        self._record_event("agent_close", bead_id, f"Closed {bead_id}", reason=reason, outcome=outcome.value)
        return outcome

    def create_or_reopen(self, bead_id: str, title: str, fields: AgentFields) -> Record:
        """Spawn-time entry point: create, reopen, or refresh the agent record.

        A reopened record gets ``fields`` as its entire field block, so nothing
        from the previous lifecycle survives.
        """

        try:
            record = self.client.show(bead_id)
        except NotFoundError:
            return self.create(bead_id, title, fields)
        if record.is_tombstone:
            raise UnrecoverableIdentityError(f"agent id {bead_id} is a tombstone", bead_id=bead_id)

        description = set_fields(record.description, AgentFields, fields)
        if record.is_closed:
            try:
                self.client.reopen(bead_id, self.settings.reopen_reason)
            except NotFoundError as exc:
                raise UnrecoverableIdentityError(
                    f"agent id {bead_id} vanished on reopen; a tombstone holds it",
                    bead_id=bead_id,
                ) from exc
            self.client.update(bead_id, UpdateOptions(title=title, description=description))
            LOGGER.info("Reopened agent bead %s", bead_id)
            self._record_event("agent_reopen", bead_id, f"Reopened {bead_id}", fields=fields.model_dump())
        else:
            self.client.update(bead_id, UpdateOptions(description=description))
            LOGGER.info("Refreshed open agent bead %s", bead_id)
            self._record_event("agent_update", bead_id, f"Refreshed {bead_id}", fields=fields.model_dump())
        return self.client.show(bead_id)

    def delete(self, bead_id: str) -> None:
        """Hard-delete the record. The id can never be created again afterwards."""
        self.client.delete(bead_id, hard=True)
        LOGGER.info("Hard-deleted agent bead %s", bead_id)
        self._record_event("agent_delete", bead_id, f"Deleted {bead_id}")

    def _write_fields(self, record: Record, fields: AgentFields) -> None:
        self.client.update(record.id, UpdateOptions(description=set_fields(record.description, AgentFields, fields)))

    def update_agent_state(self, bead_id: str, state: AgentState | str) -> AgentFields:
        try:
            target = AgentState(state)
        except ValueError as exc:
            raise InvalidStateTransitionError(f"unknown agent_state {state!r}") from exc
        record, fields = self.get_agent_bead(bead_id)
        fields = fields or AgentFields()
        check_transition(fields.agent_state, target)
        if fields.agent_state == target.value:
            return fields
        updated = fields.model_copy(update={"agent_state": target.value})
        self._write_fields(record, updated)
        self._record_event(
            "agent_update", bead_id, f"{bead_id} -> {target.value}", previous=fields.agent_state, state=target.value
        )
        return updated

    def set_hook_bead(self, bead_id: str, hook_bead: str | None) -> AgentFields:
        record, fields = self.get_agent_bead(bead_id)
        updated = (fields or AgentFields()).model_copy(update={"hook_bead": hook_bead or ""})
        self._write_fields(record, updated)
        self._record_event("agent_update", bead_id, f"{bead_id} hooked {hook_bead or 'nothing'}", hook_bead=hook_bead)
        return updated


__all__ = [
    "AGENT_LABEL",
    "AGENT_TYPE",
    "ALLOWED_TRANSITIONS",
    "AgentBeads",
    "AgentState",
    "CloseOutcome",
    "agent_bead_id",
    "check_transition",
    "is_agent_session_bead",
    "parse_agent_bead_id",
]
