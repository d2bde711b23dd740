"""
Board cache: the in-memory, column-partitioned view of the task list.

Every mutation follows the same path:

    apply(mutation)
      1. patch the local list immediately (optimistic)
      2. notify listeners, so the next render shows the change
      3. in the background: send the request, then re-fetch the whole list

Step 3 re-fetches on success AND on failure and replaces the local list
wholesale. The server's answer always wins; there is no rollback code and no
retry. A wrong optimistic guess simply snaps back on the next sync.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from .errors import RequestFailed, ValidationError
from .ordering import PositionKey, generate_key_between
from .repository import AssigneeDirectory, TaskRepository
from .schema import (
    BOARD_COLUMNS,
    Assignee,
    Task,
    TaskPriority,
    TaskSource,
    TaskStatus,
    apply_patch,
    make_temp_id,
    normalize_tags,
    utc_now,
)

logger = logging.getLogger(__name__)

UNASSIGNED = "__unassigned__"

Listener = Callable[["BoardCache"], None]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Mutations
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class Mutation:
    """An optimistic patch plus the request that makes it real."""

    def apply_to(self, tasks: List[Task]) -> List[Task]:
        raise NotImplementedError

    def dispatch(self, repository: TaskRepository) -> Any:
        raise NotImplementedError

    def describe(self) -> str:
        return type(self).__name__


@dataclass
class CreateTask(Mutation):
    fields: Dict[str, Any]
    placeholder: Task                # rendered under a temp id until the resync

    def apply_to(self, tasks):
        return tasks + [self.placeholder]

    def dispatch(self, repository):
        return repository.create(self.fields)

    def describe(self):
        return f"create {self.fields.get('title')!r}"


@dataclass
class MoveTask(Mutation):
    task_id: str
    status: TaskStatus
    position: PositionKey

    def apply_to(self, tasks):
        patch = {"status": self.status, "position": self.position}
        return [apply_patch(t, patch) if t.id == self.task_id else t for t in tasks]

    def dispatch(self, repository):
        return repository.update(
            self.task_id, {"status": self.status, "position": self.position}
        )

    def describe(self):
        return f"move {self.task_id} → {self.status.value}@{self.position}"


@dataclass
class EditTask(Mutation):
    task_id: str
    patch: Dict[str, Any]

    def apply_to(self, tasks):
        return [apply_patch(t, self.patch) if t.id == self.task_id else t for t in tasks]

    def dispatch(self, repository):
        return repository.update(self.task_id, self.patch)

    def describe(self):
        return f"edit {self.task_id} ({', '.join(sorted(self.patch))})"


@dataclass
class DeleteTask(Mutation):
    task_id: str

    def apply_to(self, tasks):
        return [t for t in tasks if t.id != self.task_id]

    def dispatch(self, repository):
        return repository.delete(self.task_id)

    def describe(self):
        return f"delete {self.task_id}"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Filters
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass(frozen=True)
class BoardFilter:
    """Display-only narrowing of the board. Never used for drag resolution."""

    assignee: Optional[str] = None       # a name, or UNASSIGNED
    priority: Optional[TaskPriority] = None

    @classmethod
    def from_args(cls, assignee: Optional[str] = None, priority: Optional[str] = None) -> "BoardFilter":
        parsed_priority = None
        if priority:
            try:
                parsed_priority = TaskPriority(priority)
            except ValueError:
                raise ValidationError(
                    f"Invalid priority: '{priority}'. "
                    f"Allowed: {', '.join(p.value for p in TaskPriority)}"
                )
        return cls(assignee=assignee or None, priority=parsed_priority)

    def matches(self, task: Task) -> bool:
        if self.assignee == UNASSIGNED:
            if task.assignee is not None:
                return False
        elif self.assignee is not None and task.assignee != self.assignee:
            return False
        if self.priority is not None and task.priority != self.priority:
            return False
        return True


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# BoardCache
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class BoardCache:
    """
    Authoritative-as-of-last-sync task list.

    Must be driven from a single asyncio event loop. Repository calls are
    blocking and run in worker threads via asyncio.to_thread, so several
    mutations can be in flight at once.
    """

    def __init__(
        self,
        repository: TaskRepository,
        assignee_directory: Optional[AssigneeDirectory] = None,
    ):
        self.repository = repository
        self.assignee_directory = assignee_directory
        self._tasks: List[Task] = []
        self._assignees: List[Assignee] = []
        self._listeners: List[Listener] = []
        self._in_flight: Set[asyncio.Task] = set()
        # Fetches are numbered; an older fetch never replaces a newer one
        self._fetch_seq = 0
        self._installed_seq = 0
        self.last_synced_at: Optional[datetime] = None
        self.last_error: Optional[str] = None

    # ──────────────────────────────────────────
    # Reads
    # ──────────────────────────────────────────

    @property
    def tasks(self) -> List[Task]:
        return list(self._tasks)

    @property
    def assignees(self) -> List[Assignee]:
        return list(self._assignees)

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def get(self, task_id: str) -> Optional[Task]:
        for task in self._tasks:
            if task.id == task_id:
                return task
        return None

    def find(self, ref: str) -> Optional[Task]:
        """Look up by full id, else by unique id prefix. Ambiguous → None."""
        ref = (ref or "").strip()
        if not ref:
            return None
        task = self.get(ref)
        if task is not None:
            return task
        matches = [t for t in self._tasks if t.id.startswith(ref)]
        return matches[0] if len(matches) == 1 else None

    def column(self, status: TaskStatus, board_filter: Optional[BoardFilter] = None) -> List[Task]:
        """Live tasks of one column, in position order."""
        rows = [
            t for t in self._tasks
            if t.status == status and not t.archived
            and (board_filter is None or board_filter.matches(t))
        ]
        rows.sort(key=Task.sort_key)
        return rows

    def columns(self, board_filter: Optional[BoardFilter] = None) -> Dict[TaskStatus, List[Task]]:
        return {status: self.column(status, board_filter) for status in BOARD_COLUMNS}

    def end_of_column(self, status: TaskStatus, exclude: Optional[str] = None) -> PositionKey:
        """A key after every live task of status (ignoring task id `exclude`)."""
        rows = [t for t in self.column(status) if t.id != exclude]
        return generate_key_between(rows[-1].position if rows else None, None)

    # ──────────────────────────────────────────
    # Listeners
    # ──────────────────────────────────────────

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call listener after every local change. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.error(f"Board listener {listener!r} failed: {e}")

    # ──────────────────────────────────────────
    # Sync
    # ──────────────────────────────────────────

    async def refresh(self) -> bool:
        """Re-fetch the live task list and replace the local copy wholesale."""
        self._fetch_seq += 1
        seq = self._fetch_seq
        try:
            tasks = await asyncio.to_thread(self.repository.list, archived=False)
        except RequestFailed as e:
            self.last_error = str(e)
            logger.warning(f"Board sync #{seq} failed: {e}")
            return False

        if seq < self._installed_seq:
            logger.debug(f"Discarding board sync #{seq}; #{self._installed_seq} is newer")
            return False
        self._installed_seq = seq
        self._tasks = list(tasks)
        self.last_synced_at = utc_now()
        self.last_error = None
        self._notify()
        return True

    async def load_assignees(self) -> List[Assignee]:
        if self.assignee_directory is None:
            return []
        try:
            self._assignees = await asyncio.to_thread(self.assignee_directory.list)
        except RequestFailed as e:
            logger.warning(f"Loading assignees failed: {e}")
        return self.assignees

    async def poll(self, interval: float) -> None:
        """Refresh every `interval` seconds until cancelled."""
        logger.info(f"Polling board every {interval:g}s")
        while True:
            await asyncio.sleep(interval)
            await self.refresh()

    # ──────────────────────────────────────────
    # Mutations
    # ──────────────────────────────────────────

    def apply(self, mutation: Mutation) -> asyncio.Task:
        """
        Apply mutation locally now; send it and resync in the background.

        Must be called from the running event loop. Returns the in-flight
        asyncio.Task (resolves to True if the request itself succeeded).
        """
        loop = asyncio.get_running_loop()
        self._tasks = mutation.apply_to(self._tasks)
        self._notify()
        pending = loop.create_task(self._dispatch(mutation))
        self._in_flight.add(pending)
        pending.add_done_callback(self._in_flight.discard)
        return pending

    async def _dispatch(self, mutation: Mutation) -> bool:
        try:
            await asyncio.to_thread(mutation.dispatch, self.repository)
            logger.info(f"Board: {mutation.describe()}")
        except RequestFailed as e:
            logger.warning(f"Board: {mutation.describe()} failed: {e}")
            return False
        finally:
            await self.refresh()
        return True

    async def drain(self) -> None:
        """Wait until no mutation is in flight."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    def create(
        self,
        title: str,
        status: TaskStatus = TaskStatus.TODO,
        source: TaskSource = TaskSource.MANUAL,
        description: Optional[str] = None,
        assignee: Optional[str] = None,
        priority: TaskPriority = TaskPriority.MEDIUM,
        tags: Optional[List[str]] = None,
        cron_job_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        position: Optional[PositionKey] = None,
    ) -> asyncio.Task:
        """
        Create a task. Without a position the server appends it to the
        column; the placeholder is shown at the end of the column meanwhile.
        """
        title = (title or "").strip()
        if not title:
            raise ValidationError("Title must not be empty")

        fields: Dict[str, Any] = {"title": title, "status": status, "source": source}
        if description:
            fields["description"] = description
        if assignee:
            fields["assignee"] = assignee
        if priority != TaskPriority.MEDIUM:
            fields["priority"] = priority
        if tags:
            fields["tags"] = normalize_tags(tags)
        if cron_job_id:
            fields["cron_job_id"] = cron_job_id
        if metadata:
            fields["metadata"] = metadata
        if position is not None:
            fields["position"] = position

        now = utc_now()
        placeholder = Task(
            id=make_temp_id(),
            title=title,
            status=status,
            source=source,
            description=description or None,
            assignee=assignee or None,
            priority=priority,
            tags=normalize_tags(tags),
            cron_job_id=cron_job_id,
            metadata=dict(metadata or {}),
            position=position or self.end_of_column(status),
            created_at=now,
            updated_at=now,
            completed_at=now if status == TaskStatus.DONE else None,
        )
        return self.apply(CreateTask(fields=fields, placeholder=placeholder))

    def quick_add(self, title: str) -> asyncio.Task:
        """Append a manual task to To Do."""
        return self.create(title)
