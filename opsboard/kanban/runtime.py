"""
BoardRuntime: a BoardCache living on its own event loop thread.

The cache is single-loop by contract. Threaded callers (the Flask server)
never touch it directly; they go through run() / call(), which marshal
work onto the loop thread and block for the result.
"""
import asyncio
import logging
import threading
from typing import Any, Callable, Coroutine, Dict, Optional

from .cache import BoardCache
from .drag import DEFAULT_ACTIVATION_DISTANCE, DragController
from .editor import TaskDetailEditor

logger = logging.getLogger(__name__)


class BoardRuntime:

    def __init__(
        self,
        cache: BoardCache,
        poll_interval: Optional[float] = None,
        activation_distance: float = DEFAULT_ACTIVATION_DISTANCE,
    ):
        self.cache = cache
        self.drag = DragController(cache, activation_distance)
        self.poll_interval = poll_interval
        self._editors: Dict[str, TaskDetailEditor] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._poll_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._loop is not None and self._loop.is_running()

    def start(self) -> None:
        if self._loop is not None:
            return
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._loop.run_forever, name="board-loop", daemon=True
        )
        self._thread.start()

        self.run(self.cache.refresh())
        self.run(self.cache.load_assignees())
        if self.poll_interval:
            self._poll_task = self.call(
                lambda: asyncio.get_running_loop().create_task(
                    self.cache.poll(self.poll_interval)
                )
            )
        logger.info(f"Board runtime started ({len(self.cache.tasks)} tasks)")

    def stop(self, timeout: float = 10.0) -> None:
        if self._loop is None:
            return
        if self._poll_task is not None:
            self._loop.call_soon_threadsafe(self._poll_task.cancel)
            self._poll_task = None
        try:
            self.run(self.cache.drain(), timeout=timeout)
        finally:
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout)
            self._loop.close()
            self._loop = None
            self._thread = None
            logger.info("Board runtime stopped")

    def run(self, coro: Coroutine, timeout: Optional[float] = None) -> Any:
        """Run a coroutine on the board loop and wait for its result."""
        if self._loop is None:
            coro.close()
            raise RuntimeError("Board runtime is not started")
        return asyncio.run_coroutine_threadsafe(coro, self._loop).result(timeout)

    def call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a plain function on the board loop and wait for its result."""
        async def invoke():
            return fn(*args, **kwargs)
        return self.run(invoke())

    def settle(self, timeout: Optional[float] = None) -> None:
        """Block until every in-flight mutation has been sent and resynced."""
        self.run(self.cache.drain(), timeout=timeout)

    # ──────────────────────────────────────────
    # Editors (loop thread only)
    # ──────────────────────────────────────────

    def editor(self, task_id: str) -> TaskDetailEditor:
        """The open editor for task_id, opening one if needed."""
        editor = self._editors.get(task_id)
        if editor is None:
            editor = TaskDetailEditor(self.cache, task_id)
            self._editors[task_id] = editor
        return editor

    def close_editor(self, task_id: str) -> None:
        self._editors.pop(task_id, None)
