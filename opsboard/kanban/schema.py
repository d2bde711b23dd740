"""
Board task schema.

Columns (left to right):
  To Do → In Progress → Blocked → Done

Tasks are partitioned into columns by status and ordered inside a column by
their position key. Serialized form matches the dashboard task API:
camelCase keys, timestamps as epoch milliseconds.
"""
import dataclasses
import itertools
import time
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Iterable, Union

from .ordering import PositionKey

TEMP_ID_PREFIX = "temp-"

_temp_counter = itertools.count(1)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def make_temp_id() -> str:
    """Local id for a task the server has not confirmed yet."""
    return f"{TEMP_ID_PREFIX}{int(time.time() * 1000)}-{next(_temp_counter)}"


class TaskStatus(Enum):
    """Board columns, in display order."""
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    DONE = "done"

    @classmethod
    def from_str(cls, value: str) -> "TaskStatus":
        try:
            return cls(value)
        except ValueError:
            return cls.TODO

    @property
    def label(self) -> str:
        return COLUMN_LABELS[self]


class TaskPriority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @classmethod
    def from_str(cls, value: str) -> "TaskPriority":
        try:
            return cls(value)
        except ValueError:
            return cls.MEDIUM


class TaskSource(Enum):
    """Where the task originated. Immutable after creation."""
    MANUAL = "manual"
    CRON = "cron"
    TELEGRAM = "telegram"

    @classmethod
    def from_str(cls, value: str) -> "TaskSource":
        try:
            return cls(value)
        except ValueError:
            return cls.MANUAL


BOARD_COLUMNS = (
    TaskStatus.TODO,
    TaskStatus.IN_PROGRESS,
    TaskStatus.BLOCKED,
    TaskStatus.DONE,
)

COLUMN_LABELS = {
    TaskStatus.TODO: "To Do",
    TaskStatus.IN_PROGRESS: "In Progress",
    TaskStatus.BLOCKED: "Blocked",
    TaskStatus.DONE: "Done",
}

# Python attribute -> request body key understood by the task API
WIRE_NAMES = {
    "title": "title",
    "description": "description",
    "status": "status",
    "assignee": "assignee",
    "priority": "priority",
    "tags": "tags",
    "source": "source",
    "cron_job_id": "cron_job_id",
    "position": "position",
    "metadata": "metadata",
    "archived": "archived",
}

# Fields a PATCH may change; source and cron_job_id are fixed at creation
EDITABLE_FIELDS = frozenset({
    "title", "description", "status", "assignee", "priority",
    "tags", "position", "metadata", "archived",
})

CREATE_FIELDS = frozenset(WIRE_NAMES) - {"archived"}


def normalize_tags(value: Union[str, Iterable[str], None]) -> List[str]:
    """Comma-separated string or iterable -> stripped, de-duplicated tag list."""
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    tags: List[str] = []
    for tag in value:
        tag = str(tag).strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


@dataclass
class Task:
    """A single card on the board."""

    id: str
    title: str
    position: PositionKey
    status: TaskStatus = TaskStatus.TODO
    description: Optional[str] = None
    assignee: Optional[str] = None          # Assignee.name
    priority: TaskPriority = TaskPriority.MEDIUM
    tags: List[str] = field(default_factory=list)
    source: TaskSource = TaskSource.MANUAL
    cron_job_id: Optional[str] = None       # only for source=cron
    metadata: Dict[str, Any] = field(default_factory=dict)
    archived: bool = False
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None

    @property
    def is_temporary(self) -> bool:
        return self.id.startswith(TEMP_ID_PREFIX)

    @property
    def short_id(self) -> str:
        return self.id if self.is_temporary else self.id[:8]

    def sort_key(self):
        return (self.position, self.id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "assignee": self.assignee,
            "priority": self.priority.value,
            "tags": list(self.tags),
            "source": self.source.value,
            "cronJobId": self.cron_job_id,
            "position": self.position.value,
            "metadata": dict(self.metadata),
            "archived": self.archived,
            "createdAt": to_millis(self.created_at),
            "updatedAt": to_millis(self.updated_at),
            "completedAt": to_millis(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """
        Deserialize from an API row.

        Raises ValueError if the row has no id or a malformed position key.
        """
        task_id = data.get("id")
        if not task_id:
            raise ValueError("Task row has no id")
        cron_job_id = data.get("cronJobId", data.get("cron_job_id"))
        return cls(
            id=str(task_id),
            title=data.get("title") or "",
            description=data.get("description"),
            status=TaskStatus.from_str(data.get("status", "todo")),
            assignee=data.get("assignee") or None,
            priority=TaskPriority.from_str(data.get("priority", "medium")),
            tags=normalize_tags(data.get("tags") or []),
            source=TaskSource.from_str(data.get("source", "manual")),
            cron_job_id=str(cron_job_id) if cron_job_id else None,
            position=PositionKey.parse(data.get("position")),
            metadata=data.get("metadata") or {},
            archived=bool(data.get("archived", False)),
            created_at=parse_timestamp(data.get("createdAt", data.get("created_at"))) or utc_now(),
            updated_at=parse_timestamp(data.get("updatedAt", data.get("updated_at"))) or utc_now(),
            completed_at=parse_timestamp(data.get("completedAt", data.get("completed_at"))),
        )


@dataclass
class Assignee:
    """Read-only reference data for the assignee picker."""

    name: str
    display_name: str
    avatar_url: Optional[str] = None

    @property
    def initials(self) -> str:
        words = self.display_name.split()
        return "".join(w[0] for w in words).upper()[:2]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "displayName": self.display_name,
            "avatarUrl": self.avatar_url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Assignee":
        name = data.get("name", "")
        return cls(
            name=name,
            display_name=data.get("displayName", data.get("display_name")) or name,
            avatar_url=data.get("avatarUrl", data.get("avatar_url")),
        )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Patches
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def apply_patch(task: Task, patch: Dict[str, Any], now: Optional[datetime] = None) -> Task:
    """
    Return a copy of task with patch applied.

    Moving into done stamps completed_at; moving out of done clears it;
    re-setting done on a done task keeps the original stamp.
    """
    changes = dict(patch)
    if "status" in changes:
        new_status = changes["status"]
        if new_status == TaskStatus.DONE and task.status != TaskStatus.DONE:
            changes["completed_at"] = now or utc_now()
        elif new_status != TaskStatus.DONE:
            changes["completed_at"] = None
    if now is not None:
        changes["updated_at"] = now
    return dataclasses.replace(task, **changes)


def encode_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Python field dict (attribute names, enums, keys) -> JSON request body."""
    body = {}
    for name, value in fields.items():
        if name not in WIRE_NAMES:
            raise ValueError(f"Unknown task field: {name}")
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, PositionKey):
            value = value.value
        elif name == "tags":
            value = list(value)
        body[WIRE_NAMES[name]] = value
    return body


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Timestamps
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def to_millis(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    return int(value.timestamp() * 1000)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Epoch milliseconds or ISO-8601 string -> aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
