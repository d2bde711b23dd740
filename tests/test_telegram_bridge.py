"""
Tests for TelegramTaskBridge: telegram-sourced tasks and chat formatting.
"""

import pytest

from conftest import make_task
from opsboard.kanban.cache import BoardCache, BoardFilter
from opsboard.kanban.errors import ValidationError
from opsboard.kanban.memory import InMemoryTaskRepository
from opsboard.kanban.schema import TaskPriority, TaskSource, TaskStatus
from opsboard.kanban.telegram_bridge import TelegramTaskBridge


@pytest.fixture
async def bridge(cache):
    await cache.refresh()
    return TelegramTaskBridge(cache)


async def test_message_becomes_telegram_task(bridge, repo):
    pending = bridge.create_task_from_telegram(
        title="  Renew TLS cert ",
        telegram_message_id="42",
        telegram_user_id="1001",
        telegram_chat_id="77",
    )
    placeholder = bridge.cache.column(TaskStatus.TODO)[-1]
    assert placeholder.is_temporary
    assert placeholder.source == TaskSource.TELEGRAM

    assert await pending
    created = [t for t in repo.list() if t.title == "Renew TLS cert"]
    assert len(created) == 1
    task = created[0]
    assert task.status == TaskStatus.TODO
    assert task.source == TaskSource.TELEGRAM
    assert task.metadata == {
        "telegram_message_id": "42",
        "telegram_user_id": "1001",
        "telegram_chat_id": "77",
    }


async def test_blank_message_rejected(bridge):
    with pytest.raises(ValidationError):
        bridge.create_task_from_telegram("   ", "1", "2")
    assert bridge.cache.in_flight == 0


async def test_format_task(bridge):
    task = make_task("abcdef123456", "a0", title="Fix backups",
                     priority=TaskPriority.URGENT, assignee="aj", tags=["ops"])
    text = bridge.format_task(task)
    assert "abcdef12: Fix backups" in text
    assert "Status: To Do" in text
    assert "Priority: urgent" in text
    assert "Assignee: aj" in text
    assert "Tags: ops" in text


async def test_format_task_medium_priority_omitted(bridge):
    text = bridge.format_task(make_task("T1", "a0"))
    assert "Priority" not in text


async def test_format_board_lists_columns_in_order(bridge):
    text = bridge.format_board()
    assert text.startswith("📋 Board (4 tasks):")
    assert text.index("To Do (2)") < text.index("In Progress (1)") < text.index("Blocked (1)")
    assert "Done (0)" in text
    assert text.index("T1: Task T1") < text.index("T2: Task T2")


async def test_format_board_limit_and_filter():
    cache = BoardCache(InMemoryTaskRepository([
        make_task(f"T{i}", f"a{i}", assignee="aj" if i % 2 else None) for i in range(5)
    ]))
    await cache.refresh()
    bridge = TelegramTaskBridge(cache)
    text = bridge.format_board(limit=2)
    assert "… 3 more" in text
    filtered = bridge.format_board(BoardFilter(assignee="aj"))
    assert "To Do (2)" in filtered


async def test_format_empty_board():
    cache = BoardCache(InMemoryTaskRepository())
    await cache.refresh()
    assert TelegramTaskBridge(cache).format_board() == "No tasks on the board."
