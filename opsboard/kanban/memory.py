"""
In-memory repository honouring the task API contract.

Used by the test-suite and by `backend: memory` (offline demo). Mirrors the
server rules the board relies on: default status/source/priority, end of
column positions, completed_at maintenance, and auto-archiving of tasks that
have been done for more than a week.
"""
import copy
import threading
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from .errors import RequestFailed
from .ordering import PositionKey, generate_key_between, generate_n_keys_between
from .repository import AssigneeDirectory, TaskRepository
from .schema import (
    CREATE_FIELDS,
    EDITABLE_FIELDS,
    Assignee,
    Task,
    TaskPriority,
    TaskSource,
    TaskStatus,
    apply_patch,
    utc_now,
)

ARCHIVE_AFTER = timedelta(days=7)


class InMemoryTaskRepository(TaskRepository):
    """Thread-safe dict-backed TaskRepository."""

    def __init__(
        self,
        tasks: Optional[List[Task]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._tasks: Dict[str, Task] = {t.id: copy.deepcopy(t) for t in tasks or []}
        self._lock = threading.Lock()
        self._clock = clock

    def list(self, archived: bool = False) -> List[Task]:
        with self._lock:
            self._archive_stale()
            rows = [copy.deepcopy(t) for t in self._tasks.values() if t.archived == archived]
        rows.sort(key=Task.sort_key)
        return rows

    def create(self, fields: Dict[str, Any]) -> Task:
        unknown = set(fields) - CREATE_FIELDS
        if unknown:
            raise RequestFailed(f"Unknown fields: {', '.join(sorted(unknown))}", 400)
        title = (fields.get("title") or "").strip()
        if not title:
            raise RequestFailed("Missing required field: title", 400)

        status = fields.get("status") or TaskStatus.TODO
        now = self._clock()
        with self._lock:
            position = fields.get("position") or self._end_of_column(status)
            task = Task(
                id=str(uuid.uuid4()),
                title=title,
                description=fields.get("description"),
                status=status,
                assignee=fields.get("assignee"),
                priority=fields.get("priority") or TaskPriority.MEDIUM,
                tags=list(fields.get("tags") or []),
                source=fields.get("source") or TaskSource.MANUAL,
                cron_job_id=fields.get("cron_job_id"),
                position=position,
                metadata=dict(fields.get("metadata") or {}),
                created_at=now,
                updated_at=now,
                completed_at=now if status == TaskStatus.DONE else None,
            )
            self._tasks[task.id] = task
            return copy.deepcopy(task)

    def update(self, task_id: str, patch: Dict[str, Any]) -> Task:
        if not patch:
            raise RequestFailed("No valid fields to update", 400)
        unknown = set(patch) - EDITABLE_FIELDS
        if unknown:
            raise RequestFailed(f"Fields not editable: {', '.join(sorted(unknown))}", 400)
        if "title" in patch and not (patch["title"] or "").strip():
            raise RequestFailed("Title must not be empty", 400)

        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise RequestFailed("Task not found", 404)
            updated = apply_patch(task, patch, now=self._clock())
            self._tasks[task_id] = updated
            return copy.deepcopy(updated)

    def delete(self, task_id: str) -> bool:
        with self._lock:
            if self._tasks.pop(task_id, None) is None:
                raise RequestFailed("Task not found", 404)
        return True

    def _end_of_column(self, status: TaskStatus) -> PositionKey:
        positions = [
            t.position for t in self._tasks.values()
            if t.status == status and not t.archived
        ]
        return generate_key_between(max(positions) if positions else None, None)

    def _archive_stale(self) -> None:
        cutoff = self._clock() - ARCHIVE_AFTER
        for task_id, task in self._tasks.items():
            if (
                task.status == TaskStatus.DONE
                and not task.archived
                and task.completed_at is not None
                and task.completed_at < cutoff
            ):
                self._tasks[task_id] = apply_patch(task, {"archived": True}, now=self._clock())

    @classmethod
    def with_demo_tasks(cls) -> "InMemoryTaskRepository":
        """A small seeded board for offline mode."""
        seed = {
            TaskStatus.TODO: ["Rotate API keys", "Review cron failures", "Prune old logs"],
            TaskStatus.IN_PROGRESS: ["Migrate backups to new bucket"],
            TaskStatus.BLOCKED: ["Upgrade database (waiting on maintenance window)"],
            TaskStatus.DONE: ["Set up health checks"],
        }
        now = utc_now()
        tasks = []
        for status, titles in seed.items():
            keys = generate_n_keys_between(None, None, len(titles))
            for title, key in zip(titles, keys):
                tasks.append(Task(
                    id=str(uuid.uuid4()),
                    title=title,
                    status=status,
                    position=key,
                    completed_at=now if status == TaskStatus.DONE else None,
                ))
        return cls(tasks)


class InMemoryAssigneeDirectory(AssigneeDirectory):

    def __init__(self, assignees: Optional[List[Assignee]] = None):
        if assignees is None:
            assignees = [Assignee("aj", "AJ"), Assignee("bot", "Bot")]
        self._assignees = list(assignees)

    def list(self) -> List[Assignee]:
        return sorted(self._assignees, key=lambda a: a.name)
