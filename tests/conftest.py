"""Shared test fixtures for the board core, bot and dashboard tests."""

import sys
from pathlib import Path

import pytest

# Ensure the project root and the bots directory are importable
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent.parent / "bots"))

from opsboard.kanban.cache import BoardCache
from opsboard.kanban.memory import InMemoryAssigneeDirectory, InMemoryTaskRepository
from opsboard.kanban.ordering import PositionKey
from opsboard.kanban.schema import Task, TaskStatus


def key(value: str) -> PositionKey:
    return PositionKey.parse(value)


def make_task(task_id: str, position: str, status: TaskStatus = TaskStatus.TODO, **kw) -> Task:
    return Task(id=task_id, title=kw.pop("title", f"Task {task_id}"),
                position=key(position), status=status, **kw)


@pytest.fixture
def repo():
    """todo [T1@a0, T2@a2], in_progress [T3@a0], blocked [T4@a0]."""
    return InMemoryTaskRepository([
        make_task("T1", "a0"),
        make_task("T2", "a2"),
        make_task("T3", "a0", TaskStatus.IN_PROGRESS),
        make_task("T4", "a0", TaskStatus.BLOCKED),
    ])


@pytest.fixture
def cache(repo):
    return BoardCache(repo, InMemoryAssigneeDirectory())
