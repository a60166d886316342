"""
Structured ``key: value`` blocks embedded in record descriptions.

Each field-set is a pydantic model paired with a typed key registry
(``FieldSet.KEYS``): the wire name of every recognized key, the attribute it
fills, and how its value is decoded. Parsing, formatting, and in-place
rewriting are implemented once over that registry so the vocabularies cannot
drift apart.

Grammar, shared by every field-set:

* a field line is ``key:value`` or ``key: value`` after trimming the line;
* keys are case-insensitive and ``-``/``_`` are interchangeable;
* empty values and the literal ``null`` mean "absent";
* any other line (prose, URLs, keys from another vocabulary) is left alone.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import ClassVar, Dict, Iterable, List, NamedTuple, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field

_FIELD_LINE = re.compile(r"^([A-Za-z][A-Za-z0-9_-]*):(.*)$")
_TRUE_VALUES = {"true", "yes", "1"}

F = TypeVar("F", bound="FieldSet")


class KeyKind(str, Enum):
    TEXT = "text"
    FLAG = "flag"
    MULTI = "multi"


class FieldKey(NamedTuple):
    """One recognized key: wire name, model attribute, and value kind."""

    wire: str
    attr: str
    kind: KeyKind = KeyKind.TEXT


def normalize_key(key: str) -> str:
    """Canonical spelling used for key comparison (``Hook-Bead`` -> ``hook_bead``)."""
    return key.strip().lower().replace("-", "_")


def split_field_line(line: str) -> Optional[Tuple[str, str]]:
    """Return ``(normalized_key, trimmed_value)`` if ``line`` has field shape."""
    match = _FIELD_LINE.match(line.strip())
    if not match:
        return None
    return normalize_key(match.group(1)), match.group(2).strip()


def _is_absent(value: str) -> bool:
    return not value or value.lower() == "null"


class FieldSet(BaseModel):
    """Base class for a recognized key vocabulary."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    KEYS: ClassVar[Tuple[FieldKey, ...]] = ()

    @classmethod
    def vocabulary(cls) -> Dict[str, FieldKey]:
        return {key.wire: key for key in cls.KEYS}

    @classmethod
    def parse(cls: Type[F], text: Optional[str]) -> Optional[F]:
        return parse_fields(text, cls)

    def format(self) -> str:
        return format_fields(self)

    def is_empty(self) -> bool:
        return not self.format()


class MRFields(FieldSet):
    """Merge-request metadata carried on a merge-request record."""

    KEYS: ClassVar[Tuple[FieldKey, ...]] = (
        FieldKey("branch", "branch"),
        FieldKey("target", "target"),
        FieldKey("source_issue", "source_issue"),
        FieldKey("worker", "worker"),
        FieldKey("rig", "rig"),
        FieldKey("merge_commit", "merge_commit"),
        FieldKey("close_reason", "close_reason"),
    )

    branch: str = ""
    target: str = ""
    source_issue: str = ""
    worker: str = ""
    rig: str = ""
    merge_commit: str = ""
    close_reason: str = ""


class AttachmentFields(FieldSet):
    """Molecule attachment recorded on a handoff/pinned record."""

    KEYS: ClassVar[Tuple[FieldKey, ...]] = (
        FieldKey("attached_molecule", "attached_molecule"),
        FieldKey("attached_at", "attached_at"),
    )

    attached_molecule: str = ""
    attached_at: str = ""


class RoleConfig(FieldSet):
    """Session configuration stored on a role-definition record.

    ``env_var`` may repeat; each ``KEY=VALUE`` line lands in ``env_vars`` in
    the order it appeared.
    """

    KEYS: ClassVar[Tuple[FieldKey, ...]] = (
        FieldKey("session_pattern", "session_pattern"),
        FieldKey("work_dir_pattern", "work_dir_pattern"),
        FieldKey("needs_pre_sync", "needs_pre_sync", KeyKind.FLAG),
        FieldKey("start_command", "start_command"),
        FieldKey("env_var", "env_vars", KeyKind.MULTI),
    )

    session_pattern: str = ""
    work_dir_pattern: str = ""
    needs_pre_sync: bool = False
    start_command: str = ""
    env_vars: Dict[str, str] = Field(default_factory=dict)


class AgentFields(FieldSet):
    """Lifecycle state of an agent session record.

    ``role_type``, ``rig`` and ``role_bead`` identify the agent and survive a
    close; everything else is per-lifecycle state.
    """

    KEYS: ClassVar[Tuple[FieldKey, ...]] = (
        FieldKey("role_type", "role_type"),
        FieldKey("rig", "rig"),
        FieldKey("agent_state", "agent_state"),
        FieldKey("hook_bead", "hook_bead"),
        FieldKey("role_bead", "role_bead"),
        FieldKey("cleanup_status", "cleanup_status"),
        FieldKey("active_mr", "active_mr"),
        FieldKey("notification_level", "notification_level"),
    )

    IDENTITY_ATTRS: ClassVar[Tuple[str, ...]] = ("role_type", "rig", "role_bead")

    role_type: str = ""
    rig: str = ""
    agent_state: str = ""
    hook_bead: str = ""
    role_bead: str = ""
    cleanup_status: str = ""
    active_mr: str = ""
    notification_level: str = ""

    def identity(self) -> "AgentFields":
        """Copy holding only the fields that outlive a lifecycle iteration."""
        return AgentFields(**{attr: getattr(self, attr) for attr in self.IDENTITY_ATTRS})


def parse_fields(text: Optional[str], field_set: Type[F]) -> Optional[F]:
    """Extract ``field_set`` from ``text``.

    Returns None when ``text`` is None or no recognized key carries a value.
    For non-repeating keys the last occurrence wins.
    """

    if text is None:
        return None
    vocabulary = field_set.vocabulary()
    values: Dict[str, object] = {}
    for line in text.split("\n"):
        split = split_field_line(line)
        if split is None:
            continue
        key_name, raw = split
        key = vocabulary.get(key_name)
        if key is None or _is_absent(raw):
            continue
        if key.kind is KeyKind.MULTI:
            name, sep, value = raw.partition("=")
            name = name.strip()
            if not sep or not name:
                continue
            bucket = values.setdefault(key.attr, {})
            bucket[name] = value.strip()  # type: ignore[index]
        elif key.kind is KeyKind.FLAG:
            values[key.attr] = raw.lower() in _TRUE_VALUES
        else:
            values[key.attr] = raw
    if not values:
        return None
    return field_set(**values)


def format_fields(values: Optional[FieldSet]) -> str:
    """Render the non-empty fields of ``values`` in canonical order."""

    if values is None:
        return ""
    lines: List[str] = []
    for key in values.KEYS:
        value = getattr(values, key.attr)
        if key.kind is KeyKind.MULTI:
            lines.extend(f"{key.wire}: {name}={item}" for name, item in value.items())
        elif key.kind is KeyKind.FLAG:
            if value:
                lines.append(f"{key.wire}: true")
        elif value:
            lines.append(f"{key.wire}: {value}")
    return "\n".join(lines)


def _trim_blank_edges(lines: List[str]) -> List[str]:
    start, end = 0, len(lines)
    while start < end and not lines[start].strip():
        start += 1
    while end > start and not lines[end - 1].strip():
        end -= 1
    return lines[start:end]


def strip_fields(text: str, vocabulary: Iterable[str]) -> str:
    """Drop every line whose key belongs to ``vocabulary``; keep the rest verbatim."""
    names = {normalize_key(name) for name in vocabulary}
    kept = []
    for line in text.split("\n"):
        split = split_field_line(line)
        if split is not None and split[0] in names:
            continue
        kept.append(line)
    return "\n".join(_trim_blank_edges(kept))


def set_fields(description: Optional[str], field_set: Type[FieldSet], values: Optional[FieldSet]) -> str:
    """Replace the ``field_set`` block of ``description`` with ``values``.

    The new block goes first, then a blank line, then whatever else the
    description held. With no values the block is omitted entirely.
    """

    remainder = strip_fields(description or "", field_set.vocabulary())
    block = format_fields(values)
    if block and remainder:
        return f"{block}\n\n{remainder}"
    return block or remainder


__all__ = [
    "AgentFields",
    "AttachmentFields",
    "FieldKey",
    "FieldSet",
    "KeyKind",
    "MRFields",
    "RoleConfig",
    "format_fields",
    "normalize_key",
    "parse_fields",
    "set_fields",
    "split_field_line",
    "strip_fields",
]
