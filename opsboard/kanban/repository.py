"""
Task repository: the board's view of the remote source of truth.

TaskRepository and AssigneeDirectory are the contracts the board core talks
to. HttpTaskRepository / HttpAssigneeDirectory speak the dashboard REST
routes:

    GET    /api/tasks?archived=false   → { tasks: [...], total }
    POST   /api/tasks                  → { task }
    PATCH  /api/tasks/<id>             → { task }
    DELETE /api/tasks/<id>             → { success }
    GET    /api/assignees              → { assignees: [...] }

Every failure surfaces as RequestFailed; callers do not distinguish causes.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

import requests

from .errors import RequestFailed
from .schema import Assignee, Task, TaskPriority, TaskStatus, encode_fields

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 500


class TaskRepository:
    """Contract for listing and mutating tasks on the remote store."""

    def list(self, archived: bool = False) -> List[Task]:
        raise NotImplementedError

    def create(self, fields: Dict[str, Any]) -> Task:
        """Server assigns id; status→todo, source→manual, position→end of column by default."""
        raise NotImplementedError

    def update(self, task_id: str, patch: Dict[str, Any]) -> Task:
        """Server refreshes updated_at and maintains completed_at."""
        raise NotImplementedError

    def delete(self, task_id: str) -> bool:
        raise NotImplementedError


class AssigneeDirectory:
    """Read-only list of people tasks can be assigned to."""

    def list(self) -> List[Assignee]:
        raise NotImplementedError


class ApiClient:
    """Thin JSON-over-HTTP wrapper around a requests session."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.headers = {"Content-Type": "application/json"}
        if api_key:
            self.headers["Authorization"] = f"Bearer {api_key}"

    def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            r = self.session.request(
                method,
                url,
                params=params,
                json=body,
                headers=self.headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise RequestFailed(f"{method} {path} failed: {e}") from e

        if not r.ok:
            raise RequestFailed(
                f"{method} {path} returned {r.status_code}: {_error_message(r)}",
                status_code=r.status_code,
            )
        try:
            data = r.json()
        except ValueError as e:
            raise RequestFailed(
                f"{method} {path} returned invalid JSON", status_code=r.status_code
            ) from e
        if not isinstance(data, dict):
            raise RequestFailed(
                f"{method} {path} returned unexpected payload", status_code=r.status_code
            )
        return data


def _error_message(r: requests.Response) -> str:
    try:
        return str(r.json().get("error") or r.reason)
    except (ValueError, AttributeError):
        return r.reason or ""


def _decode_task(row: Any, context: str) -> Task:
    if not isinstance(row, dict):
        raise RequestFailed(f"{context}: task payload missing")
    try:
        return Task.from_dict(row)
    except ValueError as e:
        raise RequestFailed(f"{context}: bad task row {row.get('id')!r}: {e}") from e


class HttpTaskRepository(TaskRepository):
    """TaskRepository backed by the dashboard task API."""

    def __init__(self, client: ApiClient):
        self.client = client

    def list(
        self,
        archived: bool = False,
        status: Optional[TaskStatus] = None,
        assignee: Optional[str] = None,
        priority: Optional[TaskPriority] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Task]:
        """
        List tasks. assignee="" selects unassigned tasks.

        With a limit, one page is fetched (the API caps it at 500). Without
        one, pages of MAX_PAGE_SIZE are fetched until the list is exhausted,
        so a resync always sees the whole board.
        """
        params: Dict[str, Any] = {"archived": "true" if archived else "false"}
        if status is not None:
            params["status"] = status.value
        if assignee is not None:
            params["assignee"] = assignee
        if priority is not None:
            params["priority"] = priority.value

        if limit is not None:
            return self._page(params, min(limit, MAX_PAGE_SIZE), offset)[0]

        tasks: List[Task] = []
        while True:
            rows, total = self._page(params, MAX_PAGE_SIZE, offset)
            tasks.extend(rows)
            offset += len(rows)
            if len(rows) < MAX_PAGE_SIZE or (total is not None and offset >= total):
                return tasks

    def _page(
        self, params: Dict[str, Any], limit: int, offset: int
    ) -> Tuple[List[Task], Optional[int]]:
        params = dict(params, limit=limit)
        if offset:
            params["offset"] = offset
        data = self.client.request("GET", "/api/tasks", params=params)
        rows = data.get("tasks")
        if not isinstance(rows, list):
            raise RequestFailed("GET /api/tasks: tasks list missing")
        total = data.get("total")
        return (
            [_decode_task(row, "GET /api/tasks") for row in rows],
            total if isinstance(total, int) else None,
        )

    def create(self, fields: Dict[str, Any]) -> Task:
        data = self.client.request("POST", "/api/tasks", body=encode_fields(fields))
        task = _decode_task(data.get("task"), "POST /api/tasks")
        logger.info(f"Created task {task.id}: {task.title}")
        return task

    def update(self, task_id: str, patch: Dict[str, Any]) -> Task:
        path = f"/api/tasks/{task_id}"
        data = self.client.request("PATCH", path, body=encode_fields(patch))
        return _decode_task(data.get("task"), f"PATCH {path}")

    def delete(self, task_id: str) -> bool:
        data = self.client.request("DELETE", f"/api/tasks/{task_id}")
        return bool(data.get("success", False))


class HttpAssigneeDirectory(AssigneeDirectory):
    """AssigneeDirectory backed by GET /api/assignees."""

    def __init__(self, client: ApiClient):
        self.client = client

    def list(self) -> List[Assignee]:
        data = self.client.request("GET", "/api/assignees")
        rows = data.get("assignees") or []
        return [Assignee.from_dict(row) for row in rows if isinstance(row, dict)]
