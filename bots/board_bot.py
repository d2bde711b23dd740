#!/usr/bin/env python3
"""
Opsboard Board Bot
──────────────────
Telegram front-end for the task board. Reads and reorders the same board
the dashboard shows, through the same cache, drag and editor logic.

Setup:
    export OPSBOARD_BOT_TOKEN=your_token_here
    python board_bot.py

Commands:
    /board [assignee=<name>|none] [priority=<p>]
    /add <title>
    /move <task> <column>
    /move <task> before <task>
    /up <task>   /down <task>
    /edit <task> field=value ...      (title, description, assignee, priority, tags, status)
    /archive <task>
    /delete <task>                    then /confirm or /cancel
    /refresh
    /help

Any other text from an allowed user becomes a task in To Do.
"""

import asyncio
import logging
import shlex
import sys
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from telegram import BotCommand, Update
from telegram.error import TelegramError
from telegram.ext import (
    Application,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

sys.path.insert(0, str(Path(__file__).parent.parent))
from opsboard.config import Config, setup_logging
from opsboard.kanban.cache import UNASSIGNED, BoardCache, BoardFilter
from opsboard.kanban.drag import DragController, DropResult
from opsboard.kanban.editor import TaskDetailEditor
from opsboard.kanban.errors import ConfigError, ValidationError
from opsboard.kanban.schema import Task, TaskStatus
from opsboard.kanban.telegram_bridge import TelegramTaskBridge

logger = logging.getLogger(__name__)

BOT_NAME = "board_bot"

COLUMN_ALIASES = {
    "todo": TaskStatus.TODO,
    "to_do": TaskStatus.TODO,
    "in_progress": TaskStatus.IN_PROGRESS,
    "progress": TaskStatus.IN_PROGRESS,
    "doing": TaskStatus.IN_PROGRESS,
    "wip": TaskStatus.IN_PROGRESS,
    "blocked": TaskStatus.BLOCKED,
    "done": TaskStatus.DONE,
    "complete": TaskStatus.DONE,
}

COMMANDS = {
    "board": "Show the board",
    "add": "Add a task to To Do",
    "move": "Move a task to a column or before another task",
    "up": "Move a task one slot up",
    "down": "Move a task one slot down",
    "edit": "Edit task fields",
    "archive": "Archive a task",
    "delete": "Delete a task (asks for /confirm)",
    "refresh": "Re-sync the board",
}


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Utilities
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def truncate(text: str, max_chars: int = 3500) -> str:
    """Truncate text to fit in a single Telegram message (4096 char limit)."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + f"\n…[truncated, {len(text) - max_chars} chars omitted]"


def parse_fields(text: str) -> Tuple[List[str], Dict[str, str]]:
    """
    Split command text into positional args and key=value pairs.

        /edit 3f2a title="Fix backups" priority=high
            → (["3f2a"], {"title": "Fix backups", "priority": "high"})

    Quoted values may contain spaces. The /command itself is dropped.
    """
    try:
        parts = shlex.split(text)
    except ValueError as e:
        raise ValidationError(f"Cannot parse arguments: {e}")
    if parts and parts[0].startswith("/"):
        parts = parts[1:]

    positional, named = [], {}
    for part in parts:
        key, sep, value = part.partition("=")
        if sep and key:
            named[key.lower()] = value
        else:
            positional.append(part)
    return positional, named


def resolve_column(name: str) -> TaskStatus:
    key = name.strip().lower().replace("-", "_").replace(" ", "_")
    if key in COLUMN_ALIASES:
        return COLUMN_ALIASES[key]
    raise ValidationError(
        f"Unknown column: '{name}'. "
        f"Use one of: {', '.join(s.value for s in TaskStatus)}"
    )


def parse_move(args: List[str]) -> Tuple[str, Optional[TaskStatus], Optional[str]]:
    """
    /move <task> <column>        → (task, column, None)
    /move <task> before <task>   → (task, None, anchor)
    """
    if len(args) == 2:
        return args[0], resolve_column(args[1]), None
    if len(args) == 3 and args[1].lower() == "before":
        return args[0], None, args[2]
    raise ValidationError(
        "Usage: /move <task> <column>  or  /move <task> before <task>"
    )


def command_text(update: Update) -> str:
    return update.message.text or ""


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# BoardBot
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class BoardBot:
    """
    Board commands over Telegram.

    All handlers run on the Application's event loop, which also owns the
    BoardCache; no locking needed.
    """

    def __init__(self, cfg: Config):
        self.cfg = cfg
        repository, assignees = cfg.build_backend()
        self.cache = BoardCache(repository, assignees)
        self.drag = DragController(self.cache, cfg.drag_activation_distance)
        self.bridge = TelegramTaskBridge(self.cache)
        # user_id → editor with an armed delete
        self._pending_deletes: Dict[int, TaskDetailEditor] = {}
        self._poll_task: Optional[asyncio.Task] = None
        # Background tasks that report a rejected change after the reply
        self._watchers: Set[asyncio.Task] = set()

    # ──────────────────────────────────────────
    # Auth + lookup helpers
    # ──────────────────────────────────────────

    def _is_authorized(self, update: Update) -> bool:
        return self.cfg.is_authorized(update.effective_user.id)

    async def _reject_unauthorized(self, update: Update):
        user = update.effective_user
        logger.warning(
            f"Unauthorized access attempt: user_id={user.id}, "
            f"username={user.username}, name={user.full_name}"
        )
        await update.message.reply_text("⛔ Unauthorized.")

    def _task_or_fail(self, ref: str) -> Task:
        task = self.cache.find(ref)
        if task is None:
            raise ValidationError(f"No task matches '{ref}'. Use /board to see ids.")
        return task

    def _single_task_arg(self, update: Update, command: str) -> Task:
        args, _ = parse_fields(command_text(update))
        if len(args) != 1:
            raise ValidationError(f"Usage: /{command} <task>")
        return self._task_or_fail(args[0])

    async def _report(self, update: Update, pending: Optional[asyncio.Task], done: str):
        """
        Reply with the optimistic outcome and return at once. The request is
        watched in the background; a rejection gets its own follow-up reply.
        """
        await update.message.reply_text(done)
        if pending is not None:
            watcher = asyncio.get_running_loop().create_task(
                self._warn_if_rejected(update, pending)
            )
            self._watchers.add(watcher)
            watcher.add_done_callback(self._watchers.discard)

    async def _warn_if_rejected(self, update: Update, pending: asyncio.Task):
        if await pending:
            return
        try:
            await update.message.reply_text(
                "⚠️ The server rejected that change; the board has been re-synced."
            )
        except TelegramError as e:
            logger.error(f"Failed to send rejection notice: {e}")

    async def settle(self):
        """Wait for every in-flight change and its follow-up reply."""
        await self.cache.drain()
        while self._watchers:
            await asyncio.gather(*list(self._watchers), return_exceptions=True)

    # ──────────────────────────────────────────
    # /board, /refresh
    # ──────────────────────────────────────────

    async def cmd_board(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not self._is_authorized(update):
            await self._reject_unauthorized(update)
            return
        try:
            _, named = parse_fields(command_text(update))
            assignee = named.get("assignee")
            if assignee and assignee.lower() in ("none", "unassigned"):
                assignee = UNASSIGNED
            board_filter = BoardFilter.from_args(assignee, named.get("priority"))
        except ValidationError as e:
            await update.message.reply_text(f"⚠️ {e}")
            return
        await update.message.reply_text(truncate(self.bridge.format_board(board_filter)))

    async def cmd_refresh(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not self._is_authorized(update):
            await self._reject_unauthorized(update)
            return
        if await self.cache.refresh():
            await update.message.reply_text(f"🔄 Synced {len(self.cache.tasks)} tasks.")
        else:
            await update.message.reply_text(f"⚠️ Sync failed: {self.cache.last_error}")

    # ──────────────────────────────────────────
    # /add, plain text
    # ──────────────────────────────────────────

    async def cmd_add(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not self._is_authorized(update):
            await self._reject_unauthorized(update)
            return
        title = command_text(update).partition(" ")[2].strip()
        try:
            pending = self.cache.quick_add(title)
        except ValidationError:
            await update.message.reply_text("Usage: `/add <title>`", parse_mode="Markdown")
            return
        await self._report(update, pending, f"📬 Added to To Do: {title}")

    async def handle_text(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not self._is_authorized(update):
            await self._reject_unauthorized(update)
            return
        message = update.message
        try:
            pending = self.bridge.create_task_from_telegram(
                title=message.text,
                telegram_message_id=str(message.message_id),
                telegram_user_id=str(update.effective_user.id),
                telegram_chat_id=str(message.chat_id),
            )
        except ValidationError as e:
            await message.reply_text(f"⚠️ {e}")
            return
        await self._report(update, pending, f"📬 Task created: {message.text.strip()}")

    # ──────────────────────────────────────────
    # /move, /up, /down
    # ──────────────────────────────────────────

    async def cmd_move(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not self._is_authorized(update):
            await self._reject_unauthorized(update)
            return
        try:
            args, _ = parse_fields(command_text(update))
            task_ref, column, anchor_ref = parse_move(args)
            task = self._task_or_fail(task_ref)
            target_id = column.value if column else self._task_or_fail(anchor_ref).id
        except ValidationError as e:
            await update.message.reply_text(f"⚠️ {e}")
            return

        self.drag.pick_up(task.id)
        self.drag.hover(target_id)
        await self._reply_drop(update, self.drag.drop(), task.title)

    async def cmd_up(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        await self._nudge(update, "up")

    async def cmd_down(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        await self._nudge(update, "down")

    async def _nudge(self, update: Update, key: str):
        if not self._is_authorized(update):
            await self._reject_unauthorized(update)
            return
        try:
            task = self._single_task_arg(update, key)
        except ValidationError as e:
            await update.message.reply_text(f"⚠️ {e}")
            return

        self.drag.pick_up(task.id)
        self.drag.key_press(key)
        await self._reply_drop(update, self.drag.key_press("enter"), task.title)

    async def _reply_drop(self, update: Update, result: Optional[DropResult], title: str):
        if result is None or not result.moved:
            if result is None:
                reason = "not moved"
            elif result.noop:
                reason = "already there"
            else:
                reason = result.reason
            await update.message.reply_text(f"ℹ️ {title}: {reason}.")
            return
        where = result.status.label
        if result.anchor_id:
            anchor = self.cache.get(result.anchor_id)
            if anchor is not None:
                where += f", before {anchor.title}"
        await self._report(update, result.pending, f"↕️ {title} → {where}")

    # ──────────────────────────────────────────
    # /edit, /archive
    # ──────────────────────────────────────────

    async def cmd_edit(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not self._is_authorized(update):
            await self._reject_unauthorized(update)
            return
        try:
            args, named = parse_fields(command_text(update))
            if len(args) != 1 or not named:
                raise ValidationError(
                    "Usage: /edit <task> field=value ...\n"
                    "Fields: title, description, assignee, priority, tags, status"
                )
            task = self._task_or_fail(args[0])
            if "status" in named:
                named["status"] = resolve_column(named["status"])
            editor = TaskDetailEditor(self.cache, task.id)
            editor.update(**named)
            pending = editor.save()
        except ValidationError as e:
            await update.message.reply_text(f"⚠️ {e}")
            return

        if pending is None:
            await update.message.reply_text(f"ℹ️ {task.title}: nothing changed.")
            return
        await self._report(update, pending, f"✏️ Updated {task.short_id}")

    async def cmd_archive(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not self._is_authorized(update):
            await self._reject_unauthorized(update)
            return
        try:
            task = self._single_task_arg(update, "archive")
        except ValidationError as e:
            await update.message.reply_text(f"⚠️ {e}")
            return
        pending = TaskDetailEditor(self.cache, task.id).archive()
        await self._report(update, pending, f"🗄 Archived: {task.title}")

    # ──────────────────────────────────────────
    # /delete → /confirm | /cancel
    # ──────────────────────────────────────────

    async def cmd_delete(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not self._is_authorized(update):
            await self._reject_unauthorized(update)
            return
        try:
            task = self._single_task_arg(update, "delete")
        except ValidationError as e:
            await update.message.reply_text(f"⚠️ {e}")
            return

        editor = TaskDetailEditor(self.cache, task.id)
        editor.request_delete()
        self._pending_deletes[update.effective_user.id] = editor
        await update.message.reply_text(
            f"⚠️ Delete {task.short_id}?\n\n{task.title}\n\n"
            "Reply /confirm to delete or /cancel to keep it."
        )

    async def handle_confirm(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not self._is_authorized(update):
            await self._reject_unauthorized(update)
            return
        editor = self._pending_deletes.pop(update.effective_user.id, None)
        if editor is None or not editor.delete_armed:
            await update.message.reply_text("ℹ️ Nothing pending confirmation.")
            return
        title = editor.task.title
        pending = editor.request_delete()
        await self._report(update, pending, f"🗑 Deleted: {title}")

    async def handle_cancel(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not self._is_authorized(update):
            await self._reject_unauthorized(update)
            return
        editor = self._pending_deletes.pop(update.effective_user.id, None)
        if editor is None:
            await update.message.reply_text("ℹ️ Nothing pending to cancel.")
            return
        editor.disarm()
        await update.message.reply_text(f"❌ Kept: {editor.task.title}")

    # ──────────────────────────────────────────
    # /help
    # ──────────────────────────────────────────

    async def handle_help(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not self._is_authorized(update):
            await self._reject_unauthorized(update)
            return
        lines = [f"/{name}: {desc}" for name, desc in COMMANDS.items()]
        lines.append("/confirm, /cancel: answer a pending delete")
        lines.append("/help: show this message")
        lines.append("\nAny other text becomes a task in To Do.")
        await update.message.reply_text("\n".join(lines))

    # ──────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────

    def register_handlers(self, app: Application):
        app.add_handler(CommandHandler("help", self.handle_help))
        app.add_handler(CommandHandler("start", self.handle_help))
        app.add_handler(CommandHandler("board", self.cmd_board))
        app.add_handler(CommandHandler("refresh", self.cmd_refresh))
        app.add_handler(CommandHandler("add", self.cmd_add))
        app.add_handler(CommandHandler("move", self.cmd_move))
        app.add_handler(CommandHandler("up", self.cmd_up))
        app.add_handler(CommandHandler("down", self.cmd_down))
        app.add_handler(CommandHandler("edit", self.cmd_edit))
        app.add_handler(CommandHandler("archive", self.cmd_archive))
        app.add_handler(CommandHandler("delete", self.cmd_delete))
        app.add_handler(CommandHandler("confirm", self.handle_confirm))
        app.add_handler(CommandHandler("cancel", self.handle_cancel))
        app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, self.handle_text))

    async def set_bot_commands(self, app: Application):
        """Set command suggestions in Telegram UI (autocomplete menu)."""
        commands = [BotCommand(name, desc) for name, desc in COMMANDS.items()]
        commands.append(BotCommand("help", "Show available commands"))
        await app.bot.set_my_commands(commands)

    async def post_init(self, app: Application):
        await self.cache.refresh()
        await self.cache.load_assignees()
        self._poll_task = asyncio.get_running_loop().create_task(
            self.cache.poll(self.cfg.poll_interval)
        )
        await self.set_bot_commands(app)

    async def post_shutdown(self, app: Application):
        if self._poll_task is not None:
            self._poll_task.cancel()
        await self.settle()

    def build_application(self) -> Application:
        """
        Build the Telegram Application with handlers registered.

        Updates are processed concurrently, so a command never waits for an
        earlier command's request to resolve.
        """
        app = (
            Application.builder()
            .token(self.cfg.bot_token())
            .concurrent_updates(True)
            .post_init(self.post_init)
            .post_shutdown(self.post_shutdown)
            .build()
        )
        self.register_handlers(app)
        return app

    def run(self):
        """Build Telegram Application and start polling."""
        app = self.build_application()
        logger.info(f"Starting {BOT_NAME}…")
        app.run_polling(drop_pending_updates=True)


def main():
    try:
        cfg = Config.load()
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        sys.exit(1)
    setup_logging(BOT_NAME, cfg.log_level)
    try:
        BoardBot(cfg).run()
    except ConfigError as e:
        logger.error(str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
