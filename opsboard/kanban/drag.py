"""
Drag controller: turns a pointer or keyboard drag into at most one MoveTask.

    IDLE ──pick up──▶ DRAGGING ──drop──▶ DROPPED ──▶ IDLE
                          │
                          └──escape / no target──▶ CANCELLED ──▶ IDLE

Droppables are identified by id: a column's id is its status value
("todo", "in_progress", ...), a card's id is its task id.
"""
import asyncio
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from .cache import BoardCache, MoveTask
from .ordering import PositionKey, generate_key_between
from .schema import BOARD_COLUMNS, Task, TaskStatus

logger = logging.getLogger(__name__)

DEFAULT_ACTIVATION_DISTANCE = 5.0

COLUMN_IDS: Dict[str, TaskStatus] = {status.value: status for status in BOARD_COLUMNS}


class DragState(Enum):
    IDLE = "idle"
    DRAGGING = "dragging"
    DROPPED = "dropped"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Rect:
    left: float
    top: float
    width: float
    height: float

    def corners(self) -> List[Tuple[float, float]]:
        right = self.left + self.width
        bottom = self.top + self.height
        return [
            (self.left, self.top),
            (right, self.top),
            (self.left, bottom),
            (right, bottom),
        ]

    def translated(self, dx: float, dy: float) -> "Rect":
        return Rect(self.left + dx, self.top + dy, self.width, self.height)


@dataclass(frozen=True)
class Droppable:
    id: str
    rect: Rect


def corner_distance(a: Rect, b: Rect) -> float:
    """Mean distance between corresponding corners of two rects."""
    total = sum(
        math.hypot(ax - bx, ay - by)
        for (ax, ay), (bx, by) in zip(a.corners(), b.corners())
    )
    return round(total / 4, 4)


def closest_corners(
    active: Rect,
    droppables: Iterable[Droppable],
    exclude: Optional[str] = None,
) -> Optional[str]:
    """Id of the droppable whose corners are nearest to active's. Ties keep the first."""
    best_id, best_score = None, None
    for droppable in droppables:
        if droppable.id == exclude:
            continue
        score = corner_distance(active, droppable.rect)
        if best_score is None or score < best_score:
            best_id, best_score = droppable.id, score
    return best_id


@dataclass
class DropResult:
    """What a drop did. `pending` is the in-flight mutation, if one was issued."""

    task_id: Optional[str]
    outcome: DragState
    status: Optional[TaskStatus] = None
    position: Optional[PositionKey] = None
    anchor_id: Optional[str] = None
    noop: bool = False
    reason: str = ""
    pending: Optional[asyncio.Task] = None

    @property
    def moved(self) -> bool:
        return self.outcome == DragState.DROPPED and not self.noop

    def to_dict(self) -> dict:
        return {
            "taskId": self.task_id,
            "outcome": self.outcome.value,
            "status": self.status.value if self.status else None,
            "position": self.position.value if self.position else None,
            "anchorId": self.anchor_id,
            "noop": self.noop,
            "reason": self.reason,
        }


@dataclass
class _PointerOrigin:
    task_id: str
    x: float
    y: float
    rect: Rect


class DragController:
    """One drag at a time over a BoardCache."""

    def __init__(self, cache: BoardCache, activation_distance: float = DEFAULT_ACTIVATION_DISTANCE):
        self.cache = cache
        self.activation_distance = activation_distance
        self.state = DragState.IDLE
        self.active_id: Optional[str] = None
        self.over_id: Optional[str] = None
        self.last_outcome: Optional[DropResult] = None
        self._origin: Optional[_PointerOrigin] = None

    # ──────────────────────────────────────────
    # Pointer path
    # ──────────────────────────────────────────

    def pointer_down(self, task_id: str, x: float, y: float, rect: Rect) -> None:
        if self.state != DragState.IDLE:
            logger.debug(f"pointer_down ignored while {self.state.value}")
            return
        self._origin = _PointerOrigin(task_id, x, y, rect)

    def pointer_move(self, x: float, y: float, droppables: Iterable[Droppable]) -> Optional[str]:
        """Track the pointer. Returns the id currently hovered, if any."""
        origin = self._origin
        if origin is None:
            return None
        dx, dy = x - origin.x, y - origin.y

        if self.state == DragState.IDLE:
            if math.hypot(dx, dy) < self.activation_distance:
                return None
            self._activate(origin.task_id)

        self.over_id = closest_corners(
            origin.rect.translated(dx, dy), droppables, exclude=self.active_id
        )
        return self.over_id

    def pointer_up(self) -> Optional[DropResult]:
        """Drop over the hovered target. None if the pointer never activated a drag (a click)."""
        if self.state == DragState.DRAGGING:
            return self.drop()
        self._origin = None
        return None

    # ──────────────────────────────────────────
    # Keyboard path
    # ──────────────────────────────────────────

    def pick_up(self, task_id: str) -> bool:
        if self.state != DragState.IDLE:
            return False
        if self.cache.get(task_id) is None:
            logger.debug(f"pick_up: unknown task {task_id}")
            return False
        self._activate(task_id)
        # Starts hovering its own slot
        self.over_id = task_id
        return True

    def hover(self, target_id: Optional[str]) -> None:
        if self.state == DragState.DRAGGING:
            self.over_id = target_id

    def key_press(self, key: str) -> Optional[DropResult]:
        """
        up/down: previous/next slot in the hovered column.
        left/right: same slot in the adjacent column.
        space/enter: drop. escape: cancel.
        """
        if self.state != DragState.DRAGGING:
            return None
        key = key.lower()
        if key in ("space", "enter"):
            return self.drop()
        if key == "escape":
            return self.cancel()
        if key in ("up", "down", "left", "right"):
            self._step(key)
        return None

    def _step(self, key: str) -> None:
        active = self.cache.get(self.active_id)
        if active is None:
            return
        status, slot = self._hovered_slot(active)

        if key in ("up", "down"):
            siblings = self._siblings(status)
            slot = slot - 1 if key == "up" else slot + 1
            slot = max(0, min(slot, len(siblings)))
        else:
            index = BOARD_COLUMNS.index(status) + (-1 if key == "left" else 1)
            if not 0 <= index < len(BOARD_COLUMNS):
                return
            status = BOARD_COLUMNS[index]
            slot = min(slot, len(self._siblings(status)))

        self.over_id = self._slot_target(active, status, slot)

    def _siblings(self, status: TaskStatus) -> List[Task]:
        return [t for t in self.cache.column(status) if t.id != self.active_id]

    def _home_slot(self, active: Task) -> int:
        ids = [t.id for t in self.cache.column(active.status)]
        return ids.index(active.id) if active.id in ids else len(ids)

    def _hovered_slot(self, active: Task) -> Tuple[TaskStatus, int]:
        """(column, slot) of the hover target; slot j means before sibling j."""
        over = self.over_id
        if over in COLUMN_IDS:
            status = COLUMN_IDS[over]
            return status, len(self._siblings(status))
        target = self.cache.get(over) if over else None
        if target is None or target.id == active.id:
            return active.status, self._home_slot(active)
        siblings = self._siblings(target.status)
        ids = [t.id for t in siblings]
        return target.status, ids.index(target.id) if target.id in ids else len(ids)

    def _slot_target(self, active: Task, status: TaskStatus, slot: int) -> str:
        if status == active.status and slot == self._home_slot(active):
            return active.id
        siblings = self._siblings(status)
        if slot < len(siblings):
            return siblings[slot].id
        return status.value

    # ──────────────────────────────────────────
    # Drop / cancel
    # ──────────────────────────────────────────

    def drop(self) -> DropResult:
        if self.state != DragState.DRAGGING:
            return self._finish(DropResult(None, DragState.CANCELLED, reason="not dragging"))
        return self._finish(self.resolve_drop(self.active_id, self.over_id))

    def cancel(self) -> DropResult:
        return self._finish(DropResult(self.active_id, DragState.CANCELLED, reason="cancelled"))

    def resolve_drop(self, task_id: str, target_id: Optional[str]) -> DropResult:
        """
        Compute the task's new (status, position) from the drop target and
        apply it as one MoveTask. Same status and position means no mutation.
        """
        task = self.cache.get(task_id)
        if task is None:
            return DropResult(task_id, DragState.CANCELLED, reason="unknown task")
        if target_id is None:
            return DropResult(task_id, DragState.CANCELLED, reason="no target")
        if target_id == task_id:
            return DropResult(
                task_id, DragState.DROPPED, task.status, task.position, noop=True
            )

        anchor: Optional[Task] = None
        if target_id in COLUMN_IDS:
            status = COLUMN_IDS[target_id]
        else:
            anchor = self.cache.get(target_id)
            if anchor is None:
                return DropResult(task_id, DragState.CANCELLED, reason="unknown target")
            status = anchor.status

        siblings = [t for t in self.cache.column(status) if t.id != task_id]
        ids = [t.id for t in siblings]
        if anchor is not None and anchor.id in ids:
            index = ids.index(anchor.id)
            prev = siblings[index - 1].position if index > 0 else None
            next_ = anchor.position
        else:
            anchor = None
            prev = siblings[-1].position if siblings else None
            next_ = None

        if prev is not None and next_ is not None and not prev < next_:
            logger.warning(
                f"Cannot place {task_id} between equal keys {prev} and {next_}; "
                f"waiting for resync"
            )
            return DropResult(task_id, DragState.CANCELLED, reason="duplicate keys")

        position = generate_key_between(prev, next_)
        anchor_id = anchor.id if anchor else None
        if status == task.status and position == task.position:
            return DropResult(
                task_id, DragState.DROPPED, status, position, anchor_id, noop=True
            )

        pending = self.cache.apply(MoveTask(task_id, status, position))
        return DropResult(
            task_id, DragState.DROPPED, status, position, anchor_id, pending=pending
        )

    # ──────────────────────────────────────────

    def _activate(self, task_id: str) -> None:
        self.state = DragState.DRAGGING
        self.active_id = task_id
        self.over_id = None
        logger.debug(f"Drag started: {task_id}")

    def _finish(self, result: DropResult) -> DropResult:
        self.state = result.outcome
        logger.debug(
            f"Drag {result.outcome.value}: {result.task_id} "
            f"{'(no-op)' if result.noop else result.reason}"
        )
        self.last_outcome = result
        self.state = DragState.IDLE
        self.active_id = None
        self.over_id = None
        self._origin = None
        return result
