"""
Backlog board schema.

Column lifecycle (fixed, in display order):
  Backlog → In Progress → Review → Done

Projects are created once and only ever deleted. Items move freely between
columns; their position orders them within one project+status pair.
"""
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Dict, Any, Iterable
import uuid


def utc_now() -> str:
    """ISO-8601 UTC timestamp with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_id() -> str:
    return str(uuid.uuid4())


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Exceptions
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class BacklogError(Exception):
    """Base error; status_code is the HTTP status the API answers with."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BacklogError):
    """Missing/empty required field, invalid status, duplicate secret."""
    status_code = 400


class NotFoundError(BacklogError):
    """Unknown project or item."""
    status_code = 404


class ForbiddenError(BacklogError):
    """Secret does not match the resolved project."""
    status_code = 403


class StorageError(BacklogError):
    """Persistence backend failed."""
    status_code = 500


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Status
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class ItemStatus(Enum):
    """Board columns, declared in display order."""
    BACKLOG = "backlog"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    DONE = "done"

    @classmethod
    def ordered(cls) -> List["ItemStatus"]:
        return list(cls)

    @classmethod
    def default(cls) -> "ItemStatus":
        return cls.BACKLOG

    @property
    def label(self) -> str:
        return STATUS_LABELS[self]


STATUS_ORDER = [s.value for s in ItemStatus]

STATUS_LABELS = {
    ItemStatus.BACKLOG: "Backlog",
    ItemStatus.IN_PROGRESS: "In Progress",
    ItemStatus.REVIEW: "Review",
    ItemStatus.DONE: "Done",
}


def parse_status(value: Any) -> ItemStatus:
    """Coerce a wire value to ItemStatus. Raises ValidationError."""
    if isinstance(value, ItemStatus):
        return value
    try:
        return ItemStatus(value)
    except ValueError:
        raise ValidationError(f"Invalid status: {value}")


def normalize_text(value: Any, field_name: str = "value") -> str:
    """None → "", strings are stripped, anything else is rejected."""
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string.")
    return value.strip()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Records
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass
class Project:
    """A secret-gated container for one board."""
    name: str
    secret_key: str
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now)

    def to_dict(self, include_secret: bool = False) -> Dict[str, Any]:
        """Serialize. The secret is only emitted for persistence."""
        data = {
            "id": self.id,
            "name": self.name,
            "createdAt": self.created_at,
        }
        if include_secret:
            data["secretKey"] = self.secret_key
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Project":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            secret_key=data.get("secretKey", ""),
            created_at=data.get("createdAt") or utc_now(),
        )


@dataclass
class BacklogItem:
    """One card on a project board."""
    project_id: str
    title: str
    description: str = ""
    status: ItemStatus = ItemStatus.BACKLOG
    position: int = 1
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "projectId": self.project_id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "position": self.position,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BacklogItem":
        """Deserialize from the stored/wire form."""
        # Older documents may lack a position; treat as 0 like the sort does
        position = data.get("position")
        return cls(
            id=data["id"],
            project_id=data.get("projectId", ""),
            title=data.get("title", ""),
            description=data.get("description") or "",
            status=parse_status(data.get("status", ItemStatus.BACKLOG.value)),
            position=int(position) if position is not None else 0,
            created_at=data.get("createdAt") or utc_now(),
            updated_at=data.get("updatedAt") or utc_now(),
        )


def sort_key(item: BacklogItem):
    return (STATUS_ORDER.index(item.status.value), item.position, item.created_at)


def group_by_status(items: Iterable[BacklogItem]) -> Dict[str, List[Dict[str, Any]]]:
    """Group items into all four columns, each in position order."""
    columns: Dict[str, List[Dict[str, Any]]] = {status: [] for status in STATUS_ORDER}
    for item in sorted(items, key=sort_key):
        columns[item.status.value].append(item.to_dict())
    return columns
