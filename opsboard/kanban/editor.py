"""Task detail editor: a draft over one task, saved as a single EditTask."""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .cache import BoardCache, DeleteTask, EditTask
from .errors import ValidationError
from .schema import Task, TaskPriority, TaskStatus, normalize_tags

logger = logging.getLogger(__name__)

DRAFT_FIELDS = ("title", "description", "assignee", "priority", "tags", "status")


@dataclass
class TaskDraft:
    title: str
    description: Optional[str] = None
    assignee: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    tags: List[str] = field(default_factory=list)
    status: TaskStatus = TaskStatus.TODO

    @classmethod
    def of(cls, task: Task) -> "TaskDraft":
        return cls(
            title=task.title,
            description=task.description,
            assignee=task.assignee,
            priority=task.priority,
            tags=list(task.tags),
            status=task.status,
        )


def coerce_priority(value: Any) -> TaskPriority:
    if isinstance(value, TaskPriority):
        return value
    try:
        return TaskPriority(str(value).strip().lower())
    except ValueError:
        raise ValidationError(
            f"Invalid priority: '{value}'. Allowed: {', '.join(p.value for p in TaskPriority)}"
        )


def coerce_status(value: Any) -> TaskStatus:
    if isinstance(value, TaskStatus):
        return value
    try:
        return TaskStatus(str(value).strip().lower())
    except ValueError:
        raise ValidationError(
            f"Invalid status: '{value}'. Allowed: {', '.join(s.value for s in TaskStatus)}"
        )


def _blank_to_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


class TaskDetailEditor:
    """
    Edits one task. Field changes stay local until save(); deletion needs
    two request_delete() calls in a row.
    """

    def __init__(self, cache: BoardCache, task_id: str):
        task = cache.get(task_id)
        if task is None:
            raise ValidationError(f"Task not found: {task_id}")
        self.cache = cache
        self.task_id = task_id
        self.draft = TaskDraft.of(task)
        self._opened = task
        self._delete_armed = False

    @property
    def task(self) -> Task:
        """Current cached version of the task (or the one we opened)."""
        return self.cache.get(self.task_id) or self._opened

    @property
    def delete_armed(self) -> bool:
        return self._delete_armed

    def update(self, **changes: Any) -> None:
        """Change draft fields. Raw strings are accepted for priority, status and tags."""
        for name, value in changes.items():
            if name not in DRAFT_FIELDS:
                raise ValidationError(
                    f"Unknown field: '{name}'. Editable: {', '.join(DRAFT_FIELDS)}"
                )
            if name == "priority":
                value = coerce_priority(value)
            elif name == "status":
                value = coerce_status(value)
            elif name == "tags":
                value = normalize_tags(value)
            elif name in ("description", "assignee"):
                value = _blank_to_none(value)
            elif name == "title":
                value = "" if value is None else str(value)
            setattr(self.draft, name, value)
        self.disarm()

    def patch(self) -> Dict[str, Any]:
        """Changed fields only, validated."""
        title = self.draft.title.strip()
        if not title:
            raise ValidationError("Title must not be empty")

        current = self.task
        patch: Dict[str, Any] = {}
        if title != current.title:
            patch["title"] = title
        for name in ("description", "assignee", "priority", "tags"):
            value = getattr(self.draft, name)
            if value != getattr(current, name):
                patch[name] = value
        if self.draft.status != current.status:
            patch["status"] = self.draft.status
            patch["position"] = self.cache.end_of_column(self.draft.status, exclude=self.task_id)
        return patch

    def save(self) -> Optional[asyncio.Task]:
        """Send the changed fields. Returns the in-flight mutation, or None if nothing changed."""
        patch = self.patch()
        if not patch:
            logger.debug(f"Editor {self.task_id}: nothing to save")
            return None
        self.disarm()
        return self.cache.apply(EditTask(self.task_id, patch))

    def archive(self) -> asyncio.Task:
        self.disarm()
        return self.cache.apply(EditTask(self.task_id, {"archived": True}))

    def request_delete(self) -> Optional[asyncio.Task]:
        if not self._delete_armed:
            self._delete_armed = True
            return None
        self._delete_armed = False
        return self.cache.apply(DeleteTask(self.task_id))

    def disarm(self) -> None:
        self._delete_armed = False
