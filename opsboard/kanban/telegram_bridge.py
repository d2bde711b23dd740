"""
Telegram to board integration: turn Telegram messages into tasks and render
the board as chat text.
"""
import asyncio
import logging
from typing import Optional

from .cache import BoardCache, BoardFilter
from .schema import Task, TaskPriority, TaskSource, TaskStatus

logger = logging.getLogger(__name__)

STATUS_EMOJI = {
    TaskStatus.TODO: "📬",
    TaskStatus.IN_PROGRESS: "🚀",
    TaskStatus.BLOCKED: "🛑",
    TaskStatus.DONE: "✅",
}

PRIORITY_EMOJI = {
    TaskPriority.LOW: "🔹",
    TaskPriority.MEDIUM: "",
    TaskPriority.HIGH: "🔸",
    TaskPriority.URGENT: "🔥",
}


class TelegramTaskBridge:
    """Create board tasks from Telegram interactions and format them for replies."""

    def __init__(self, cache: BoardCache):
        self.cache = cache

    def create_task_from_telegram(
        self,
        title: str,
        telegram_message_id: str,
        telegram_user_id: str,
        telegram_chat_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> asyncio.Task:
        """
        Queue a telegram-sourced task at the end of To Do.

        Raises ValidationError on an empty title.
        """
        metadata = {
            "telegram_message_id": str(telegram_message_id),
            "telegram_user_id": str(telegram_user_id),
        }
        if telegram_chat_id is not None:
            metadata["telegram_chat_id"] = str(telegram_chat_id)

        pending = self.cache.create(
            title,
            status=TaskStatus.TODO,
            source=TaskSource.TELEGRAM,
            description=description,
            metadata=metadata,
        )
        logger.info(f"[TELEGRAM] Queued task from message {telegram_message_id}: {title.strip()}")
        return pending

    def format_task(self, task: Task) -> str:
        """Format a task as a concise summary."""
        lines = [
            f"🎯 {task.short_id}: {task.title}",
            f"📊 Status: {task.status.label}",
        ]
        if task.priority != TaskPriority.MEDIUM:
            lines.append(f"⚡ Priority: {task.priority.value}")
        if task.assignee:
            lines.append(f"👤 Assignee: {task.assignee}")
        if task.tags:
            lines.append(f"🏷 Tags: {', '.join(task.tags)}")
        if task.source != TaskSource.MANUAL:
            lines.append(f"📡 Source: {task.source.value}")
        if task.description:
            lines.append(f"📝 {task.description}")
        if task.is_temporary:
            lines.append("⏳ Saving…")
        return "\n".join(lines)

    def format_board(self, board_filter: Optional[BoardFilter] = None, limit: int = 10) -> str:
        """Format every column, at most `limit` cards per column."""
        columns = self.cache.columns(board_filter)
        total = sum(len(tasks) for tasks in columns.values())
        if total == 0:
            return "No tasks on the board."

        lines = [f"📋 Board ({total} tasks):"]
        for status, tasks in columns.items():
            lines.append("")
            lines.append(f"{STATUS_EMOJI[status]} {status.label} ({len(tasks)})")
            for task in tasks[:limit]:
                flag = PRIORITY_EMOJI.get(task.priority, "")
                owner = f" @{task.assignee}" if task.assignee else ""
                lines.append(f"  {task.short_id}: {task.title}{owner} {flag}".rstrip())
            if len(tasks) > limit:
                lines.append(f"  … {len(tasks) - limit} more")
        return "\n".join(lines)
