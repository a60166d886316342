"""Append-only JSONL event log for lifecycle transitions and repairs."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Literal

from pydantic import BaseModel, Field

ProvenanceStage = Literal[
    "agent_create",
    "agent_update",
    "agent_close",
    "agent_reopen",
    "agent_delete",
    "redirect_repair",
]


class ProvenanceEvent(BaseModel):
    """Something the tooling did to the town: an agent record change or a pointer repair."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    stage: ProvenanceStage
    message: str = Field(..., description="Human-readable description of the event.")
    agent: str = Field(default="system", description="Agent record id the event concerns, if any.")
    payload: Dict[str, Any] = Field(default_factory=dict)


def _coerce(event: ProvenanceEvent | Dict[str, Any]) -> ProvenanceEvent:
    if isinstance(event, ProvenanceEvent):
        return event
    return ProvenanceEvent.model_validate(event)


class ProvenanceLogger:
    """Writes events to ``output_path``, one JSON object per line, never rewriting earlier lines."""

    def __init__(self, output_path: Path):
        self.output_path = Path(output_path)
        self.output_path.parent.mkdir(parents=True, exist_ok=True)

    def _append(self, events: List[ProvenanceEvent]) -> None:
        if not events:
            return
        with self.output_path.open("a", encoding="utf-8") as handle:
            handle.writelines(event.model_dump_json() + "\n" for event in events)

    def log(self, event: ProvenanceEvent | Dict[str, Any]) -> ProvenanceEvent:
        """Append one event and return it as a validated model."""
        event = _coerce(event)
        self._append([event])
        return event

    def extend(self, events: Iterable[ProvenanceEvent | Dict[str, Any]]) -> List[ProvenanceEvent]:
        # Validate the whole batch first so a bad entry writes nothing.
        batch = [_coerce(event) for event in events]
        self._append(batch)
        return batch

    def read(self) -> List[ProvenanceEvent]:
        """Return every event logged so far (empty when nothing was written)."""
        if not self.output_path.exists():
            return []
        with self.output_path.open("r", encoding="utf-8") as handle:
            return [ProvenanceEvent.model_validate_json(line) for line in handle if line.strip()]


__all__ = ["ProvenanceEvent", "ProvenanceLogger", "ProvenanceStage"]
