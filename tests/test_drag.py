"""
Tests for DragController.

Covers:
    - drop resolution       — onto a card, onto a column, onto itself, unknown targets
    - pointer path          — activation distance, click vs drag, closest corners
    - keyboard path         — up/down/left/right slots, enter, escape
    - failure path          — rejected move snaps back on resync
"""

import pytest

from conftest import key, make_task
from opsboard.kanban.cache import BoardCache
from opsboard.kanban.drag import (
    DragController,
    DragState,
    Droppable,
    Rect,
    closest_corners,
    corner_distance,
)
from opsboard.kanban.memory import InMemoryTaskRepository
from opsboard.kanban.schema import TaskStatus
from test_cache import FailingRepository


def ids(tasks):
    return [t.id for t in tasks]


@pytest.fixture
async def board(cache):
    await cache.refresh()
    return cache


@pytest.fixture
def drag(board):
    return DragController(board)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Drop resolution
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestResolveDrop:

    async def test_drop_onto_card_inserts_before_it(self, board, drag, repo):
        """todo [T1@a0, T2@a2]; T3 dropped on T2 lands between them at a1."""
        result = drag.resolve_drop("T3", "T2")
        assert result.outcome == DragState.DROPPED
        assert result.moved
        assert result.status == TaskStatus.TODO
        assert result.position == key("a1")
        assert result.anchor_id == "T2"
        assert ids(board.column(TaskStatus.TODO)) == ["T1", "T3", "T2"]

        assert await result.pending
        assert ids(board.column(TaskStatus.TODO)) == ["T1", "T3", "T2"]
        server = {t.id: t for t in repo.list()}
        assert server["T3"].status == TaskStatus.TODO
        assert server["T3"].position == key("a1")
        # Neighbours untouched
        assert server["T1"].position == key("a0")
        assert server["T2"].position == key("a2")

    async def test_drop_onto_empty_column(self, board, drag, repo):
        """Only blocked task dropped on the empty done column gets the default key."""
        result = drag.resolve_drop("T4", "done")
        assert result.status == TaskStatus.DONE
        assert result.position == key("a0")
        assert result.anchor_id is None
        await result.pending
        assert board.column(TaskStatus.BLOCKED) == []
        done = board.get("T4")
        assert done.status == TaskStatus.DONE
        assert done.completed_at is not None

    async def test_drop_onto_column_appends_after_last(self, board, drag):
        result = drag.resolve_drop("T3", "todo")
        assert result.position > key("a2")
        assert ids(board.column(TaskStatus.TODO)) == ["T1", "T2", "T3"]
        await board.drain()

    async def test_drop_onto_first_card(self, board, drag):
        result = drag.resolve_drop("T2", "T1")
        assert result.position < key("a0")
        assert ids(board.column(TaskStatus.TODO)) == ["T2", "T1"]
        await board.drain()

    async def test_drop_onto_itself_is_noop(self, board, drag, repo, monkeypatch):
        calls = []
        monkeypatch.setattr(repo, "update", lambda *a: calls.append(a))
        result = drag.resolve_drop("T1", "T1")
        assert result.outcome == DragState.DROPPED
        assert result.noop
        assert not result.moved
        assert result.pending is None
        assert board.in_flight == 0
        assert calls == []

    async def test_same_status_same_position_is_noop(self, board, drag):
        """Only task of blocked dropped on its own column resolves to its current key."""
        result = drag.resolve_drop("T4", "blocked")
        # Empty sibling list → default key, which is where T4 already is
        assert result.position == key("a0")
        assert result.noop
        assert board.in_flight == 0

    async def test_unknown_target_cancels(self, board, drag):
        result = drag.resolve_drop("T1", "no-such-task")
        assert result.outcome == DragState.CANCELLED
        assert board.in_flight == 0

    async def test_no_target_cancels(self, board, drag):
        assert drag.resolve_drop("T1", None).outcome == DragState.CANCELLED

    async def test_unknown_task_cancels(self, board, drag):
        result = drag.resolve_drop("ghost", "todo")
        assert result.outcome == DragState.CANCELLED
        assert result.reason == "unknown task"

    async def test_duplicate_neighbour_keys_cancel(self):
        cache = BoardCache(InMemoryTaskRepository([
            make_task("A", "a0"), make_task("B", "a0"),
            make_task("X", "a0", TaskStatus.DONE),
        ]))
        await cache.refresh()
        result = DragController(cache).resolve_drop("X", "B")
        assert result.outcome == DragState.CANCELLED
        assert cache.in_flight == 0

    async def test_rejected_move_snaps_back(self):
        repo = FailingRepository([
            make_task("T1", "a0"),
            make_task("T3", "a0", TaskStatus.IN_PROGRESS),
        ])
        cache = BoardCache(repo)
        await cache.refresh()
        result = DragController(cache).resolve_drop("T3", "T1")
        assert cache.get("T3").status == TaskStatus.TODO
        assert await result.pending is False
        assert cache.get("T3").status == TaskStatus.IN_PROGRESS
        assert cache.get("T3").position == key("a0")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Collision detection
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestClosestCorners:

    def test_identical_rects_score_zero(self):
        assert corner_distance(Rect(0, 0, 10, 10), Rect(0, 0, 10, 10)) == 0

    def test_translation_distance(self):
        assert corner_distance(Rect(0, 0, 10, 10), Rect(3, 4, 10, 10)) == 5.0

    def test_nearest_wins(self):
        droppables = [
            Droppable("far", Rect(500, 500, 100, 40)),
            Droppable("near", Rect(10, 10, 100, 40)),
        ]
        assert closest_corners(Rect(0, 0, 100, 40), droppables) == "near"

    def test_excluded_id_ignored(self):
        droppables = [
            Droppable("self", Rect(0, 0, 100, 40)),
            Droppable("other", Rect(0, 60, 100, 40)),
        ]
        assert closest_corners(Rect(0, 0, 100, 40), droppables, exclude="self") == "other"

    def test_tie_keeps_first(self):
        droppables = [
            Droppable("left", Rect(-10, 0, 100, 40)),
            Droppable("right", Rect(10, 0, 100, 40)),
        ]
        assert closest_corners(Rect(0, 0, 100, 40), droppables) == "left"

    def test_nothing_to_hit(self):
        assert closest_corners(Rect(0, 0, 1, 1), []) is None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Pointer path
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

CARD = Rect(0, 0, 100, 40)

DROPPABLES = [
    Droppable("todo", Rect(0, 0, 120, 400)),
    Droppable("in_progress", Rect(130, 0, 120, 400)),
    Droppable("T1", Rect(0, 0, 100, 40)),
    Droppable("T2", Rect(0, 50, 100, 40)),
    Droppable("T3", Rect(130, 0, 100, 40)),
]


class TestPointerPath:

    async def test_short_press_is_a_click(self, board, drag):
        drag.pointer_down("T1", 10, 10, CARD)
        assert drag.pointer_move(12, 11, DROPPABLES) is None
        assert drag.state == DragState.IDLE
        assert drag.pointer_up() is None
        assert board.in_flight == 0

    async def test_drag_activates_at_threshold(self, board, drag):
        drag.pointer_down("T1", 10, 10, CARD)
        drag.pointer_move(14, 10, DROPPABLES)
        assert drag.state == DragState.IDLE
        drag.pointer_move(15, 10, DROPPABLES)
        assert drag.state == DragState.DRAGGING
        assert drag.active_id == "T1"
        drag.cancel()

    async def test_drag_across_columns(self, board, drag):
        drag.pointer_down("T1", 10, 10, CARD)
        assert drag.pointer_move(140, 12, DROPPABLES) == "T3"
        result = drag.pointer_up()
        assert result.moved
        assert result.status == TaskStatus.IN_PROGRESS
        assert result.anchor_id == "T3"
        assert ids(board.column(TaskStatus.IN_PROGRESS)) == ["T1", "T3"]
        assert drag.state == DragState.IDLE
        assert drag.last_outcome is result
        await board.drain()

    async def test_dragged_card_never_targets_itself(self, board, drag):
        drag.pointer_down("T1", 10, 10, CARD)
        assert drag.pointer_move(15, 10, DROPPABLES) != "T1"
        drag.cancel()

    async def test_release_with_no_droppables_cancels(self, board, drag):
        drag.pointer_down("T1", 0, 0, CARD)
        drag.pointer_move(50, 50, [])
        result = drag.pointer_up()
        assert result.outcome == DragState.CANCELLED
        assert board.in_flight == 0


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Keyboard path
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestKeyboardPath:

    async def test_pick_up_starts_on_own_slot(self, board, drag):
        assert drag.pick_up("T1")
        assert drag.state == DragState.DRAGGING
        assert drag.over_id == "T1"
        result = drag.key_press("enter")
        assert result.noop
        assert board.in_flight == 0

    async def test_pick_up_unknown_task(self, board, drag):
        assert not drag.pick_up("ghost")
        assert drag.state == DragState.IDLE

    async def test_down_moves_below_next_card(self, board, drag):
        drag.pick_up("T1")
        drag.key_press("down")
        assert drag.over_id == "todo"
        result = drag.key_press("space")
        assert result.moved
        assert ids(board.column(TaskStatus.TODO)) == ["T2", "T1"]
        await board.drain()

    async def test_up_at_top_is_noop(self, board, drag):
        drag.pick_up("T1")
        drag.key_press("up")
        assert drag.over_id == "T1"
        assert drag.key_press("enter").noop

    async def test_up_moves_above_previous_card(self, board, drag):
        drag.pick_up("T2")
        drag.key_press("up")
        assert drag.over_id == "T1"
        drag.key_press("enter")
        assert ids(board.column(TaskStatus.TODO)) == ["T2", "T1"]
        await board.drain()

    async def test_down_then_up_returns_home(self, board, drag):
        drag.pick_up("T1")
        drag.key_press("down")
        drag.key_press("up")
        assert drag.over_id == "T1"
        drag.cancel()

    async def test_right_moves_to_adjacent_column(self, board, drag):
        drag.pick_up("T1")
        drag.key_press("right")
        assert drag.over_id == "T3"
        result = drag.key_press("enter")
        assert result.status == TaskStatus.IN_PROGRESS
        assert ids(board.column(TaskStatus.IN_PROGRESS)) == ["T1", "T3"]
        await board.drain()

    async def test_right_into_empty_column_targets_column(self, board, drag):
        drag.pick_up("T4")
        drag.key_press("right")
        assert drag.over_id == "done"
        drag.cancel()

    async def test_left_at_first_column_stays(self, board, drag):
        drag.pick_up("T1")
        drag.key_press("left")
        assert drag.over_id == "T1"
        drag.cancel()

    async def test_escape_cancels(self, board, drag):
        drag.pick_up("T1")
        drag.key_press("right")
        result = drag.key_press("escape")
        assert result.outcome == DragState.CANCELLED
        assert drag.state == DragState.IDLE
        assert board.get("T1").status == TaskStatus.TODO
        assert board.in_flight == 0

    async def test_hover_sets_target(self, board, drag):
        drag.pick_up("T3")
        drag.hover("T2")
        result = drag.drop()
        assert result.position == key("a1")
        await board.drain()

    async def test_keys_ignored_when_idle(self, board, drag):
        assert drag.key_press("enter") is None
        assert drag.state == DragState.IDLE
