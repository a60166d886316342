"""Record model returned by ``bd`` and the option models for its subcommands."""

from __future__ import annotations

from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

STATUS_OPEN = "open"
STATUS_CLOSED = "closed"
STATUS_TOMBSTONE = "tombstone"


class Record(BaseModel):
    """One record (bead) as reported by ``bd show --json`` / ``bd list --json``."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    title: str = ""
    description: str = ""
    status: str = STATUS_OPEN
    type: str = Field(default="", validation_alias=AliasChoices("issue_type", "type"))
    priority: int = 2
    labels: List[str] = Field(default_factory=list)
    parent: Optional[str] = None
    assignee: Optional[str] = None

    @field_validator("labels", mode="before")
    @classmethod
    def none_is_empty(cls, value):
        return [] if value is None else value

    @property
    def is_closed(self) -> bool:
        return self.status == STATUS_CLOSED

    @property
    def is_tombstone(self) -> bool:
        return self.status == STATUS_TOMBSTONE


class ListOptions(BaseModel):
    status: Optional[str] = None
    type: Optional[str] = None
    priority: Optional[int] = None
    label: Optional[str] = None
    parent: Optional[str] = None
    assignee: Optional[str] = None

    def to_args(self) -> List[str]:
        args: List[str] = []
        for name in ("status", "type", "priority", "label", "parent", "assignee"):
            value = getattr(self, name)
            if value is not None and value != "":
                args.append(f"--{name}={value}")
        return args


class CreateOptions(BaseModel):
    """Arguments for ``bd create``; ``id`` pins the identifier instead of generating one."""

    title: str
    id: Optional[str] = None
    type: str = "task"
    priority: Optional[int] = None
    description: str = ""
    parent: Optional[str] = None
    labels: List[str] = Field(default_factory=list)

    def to_args(self) -> List[str]:
        args: List[str] = []
        if self.id:
            args.append(f"--id={self.id}")
        args.append(f"--title={self.title}")
        if self.type:
            args.append(f"--type={self.type}")
        if self.priority is not None:
            args.append(f"--priority={self.priority}")
        if self.description:
            args.append(f"--description={self.description}")
        if self.parent:
            args.append(f"--parent={self.parent}")
        if self.labels:
            args.append(f"--labels={','.join(self.labels)}")
        return args


class UpdateOptions(BaseModel):
    """Fields left as None are not sent, so ``bd`` keeps their current values."""

    title: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[int] = None
    description: Optional[str] = None
    assignee: Optional[str] = None
    add_labels: List[str] = Field(default_factory=list)
    remove_labels: List[str] = Field(default_factory=list)

    def to_args(self) -> List[str]:
        args: List[str] = []
        for name in ("title", "status", "priority", "description", "assignee"):
            value = getattr(self, name)
            if value is not None:
                args.append(f"--{name}={value}")
        args.extend(f"--add-label={label}" for label in self.add_labels)
        args.extend(f"--remove-label={label}" for label in self.remove_labels)
        return args

    def is_empty(self) -> bool:
        return not self.to_args()


__all__ = [
    "CreateOptions",
    "ListOptions",
    "Record",
    "STATUS_CLOSED",
    "STATUS_OPEN",
    "STATUS_TOMBSTONE",
    "UpdateOptions",
]
