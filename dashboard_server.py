#!/usr/bin/env python3
"""
Opsboard Dashboard Server
-------------------------
JSON API over the board cache, for a browser front-end that performs the
pointer drags itself and posts the drop outcome here.

Usage:
    python dashboard_server.py                    # task API from config
    python dashboard_server.py --backend memory   # offline demo board

Access:
    Local:  http://localhost:3001

API:
    GET   /api/board                     → { columns, counts, assignees, lastSyncedAt, lastError }
                                           query: assignee (name | __unassigned__), priority
    POST  /api/board/refresh             → { synced, total }
    POST  /api/board/tasks               { title } → quick-add into To Do
    POST  /api/board/drop                { taskId, targetId } → drop outcome
    PATCH /api/board/tasks/<id>          { title?, description?, assignee?, priority?, tags?, status? }
    POST  /api/board/tasks/<id>/archive
    POST  /api/board/tasks/<id>/delete   → first call arms, second call deletes
    GET   /health

Mutations are optimistic: the response reflects the local board, and the
server's answer replaces it on the resync that follows every request.
"""

import argparse
import logging
from typing import Optional

from flask import Flask, abort, jsonify, request

from opsboard.config import Config, setup_logging
from opsboard.kanban.cache import BoardCache, BoardFilter
from opsboard.kanban.drag import DragState
from opsboard.kanban.errors import ConfigError, ValidationError
from opsboard.kanban.runtime import BoardRuntime
from opsboard.kanban.schema import BOARD_COLUMNS, to_millis

logger = logging.getLogger(__name__)

app = Flask(__name__)

RUNTIME: Optional[BoardRuntime] = None


def init_runtime(cfg: Optional[Config] = None, runtime: Optional[BoardRuntime] = None) -> BoardRuntime:
    """Start the board runtime the routes talk to."""
    global RUNTIME
    if runtime is None:
        cfg = cfg or Config.load()
        repository, assignees = cfg.build_backend()
        runtime = BoardRuntime(
            BoardCache(repository, assignees),
            poll_interval=cfg.poll_interval,
            activation_distance=cfg.drag_activation_distance,
        )
    runtime.start()
    RUNTIME = runtime
    return runtime


def get_runtime() -> BoardRuntime:
    if RUNTIME is None or not RUNTIME.running:
        abort(503, "Board runtime not started")
    return RUNTIME


def request_json() -> dict:
    data = request.get_json(force=True, silent=True)
    return data if isinstance(data, dict) else {}


# ── Board views (run on the board loop) ──────────────────────────────────────

def board_payload(cache: BoardCache, board_filter: BoardFilter) -> dict:
    columns = cache.columns(board_filter)
    return {
        "columns": {
            status.value: [t.to_dict() for t in tasks] for status, tasks in columns.items()
        },
        "counts": {status.value: len(tasks) for status, tasks in columns.items()},
        "assignees": [a.to_dict() for a in cache.assignees],
        "lastSyncedAt": to_millis(cache.last_synced_at),
        "lastError": cache.last_error,
    }


def health_payload(cache: BoardCache) -> dict:
    return {
        "tasks": len(cache.tasks),
        "inFlight": cache.in_flight,
        "lastSyncedAt": to_millis(cache.last_synced_at),
        "lastError": cache.last_error,
    }


def save_task(rt: BoardRuntime, task_id: str, fields: dict) -> dict:
    # Fresh draft from the current board; editing also drops an armed delete
    rt.close_editor(task_id)
    editor = rt.editor(task_id)
    editor.update(**fields)
    pending = editor.save()
    return {"changed": pending is not None, "task": editor.task.to_dict()}


def delete_task(rt: BoardRuntime, task_id: str) -> dict:
    editor = rt.editor(task_id)
    pending = editor.request_delete()
    if pending is None:
        return {"armed": True, "deleted": False}
    rt.close_editor(task_id)
    return {"armed": False, "deleted": True}


def task_exists(rt: BoardRuntime, task_id: str) -> bool:
    return rt.call(rt.cache.get, task_id) is not None


# ── Routes ───────────────────────────────────────────────────────────────────

@app.route("/api/board")
def api_board():
    rt = get_runtime()
    try:
        board_filter = BoardFilter.from_args(
            request.args.get("assignee"), request.args.get("priority")
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(rt.call(board_payload, rt.cache, board_filter))


@app.route("/api/board/refresh", methods=["POST"])
def api_refresh():
    rt = get_runtime()
    synced = rt.run(rt.cache.refresh())
    total = len(rt.call(lambda: rt.cache.tasks))
    return jsonify({"synced": synced, "total": total})


@app.route("/api/board/tasks", methods=["POST"])
def api_quick_add():
    rt = get_runtime()
    title = str(request_json().get("title") or "")
    try:
        rt.call(rt.cache.quick_add, title)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"queued": True, "title": title.strip()}), 202


@app.route("/api/board/drop", methods=["POST"])
def api_drop():
    rt = get_runtime()
    data = request_json()
    task_id = data.get("taskId")
    if not task_id:
        return jsonify({"error": "taskId is required"}), 400
    result = rt.call(rt.drag.resolve_drop, task_id, data.get("targetId"))
    if result.outcome == DragState.CANCELLED and result.reason == "unknown task":
        return jsonify({"error": "Task not found"}), 404
    return jsonify(result.to_dict())


@app.route("/api/board/tasks/<task_id>", methods=["PATCH"])
def api_save_task(task_id):
    rt = get_runtime()
    if not task_exists(rt, task_id):
        return jsonify({"error": "Task not found"}), 404
    try:
        result = rt.call(save_task, rt, task_id, request_json())
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(result)


@app.route("/api/board/tasks/<task_id>/archive", methods=["POST"])
def api_archive_task(task_id):
    rt = get_runtime()
    if not task_exists(rt, task_id):
        return jsonify({"error": "Task not found"}), 404
    rt.call(lambda: rt.editor(task_id).archive())
    rt.call(rt.close_editor, task_id)
    return jsonify({"archived": True}), 202


@app.route("/api/board/tasks/<task_id>/delete", methods=["POST"])
def api_delete_task(task_id):
    rt = get_runtime()
    if not task_exists(rt, task_id):
        return jsonify({"error": "Task not found"}), 404
    return jsonify(rt.call(delete_task, rt, task_id))


@app.route("/health")
def health():
    if RUNTIME is None or not RUNTIME.running:
        return jsonify({"status": "starting"}), 503
    return jsonify(dict(
        RUNTIME.call(health_payload, RUNTIME.cache),
        status="ok",
        columns=[status.value for status in BOARD_COLUMNS],
    ))


# ── Main ─────────────────────────────────────────────────────────────────────

def main():
    parser = argparse.ArgumentParser(description="Opsboard Dashboard Server")
    parser.add_argument("--config", help="Path to opsboard.yaml (overrides OPSBOARD_CONFIG)")
    parser.add_argument("--host", help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int)
    parser.add_argument("--backend", choices=["http", "memory"])
    args = parser.parse_args()

    try:
        cfg = Config.load(args.config)
    except ConfigError as e:
        parser.error(str(e))
    if args.backend:
        cfg.backend = args.backend
    host = args.host or cfg.server.host
    port = args.port or cfg.server.port

    setup_logging("dashboard", cfg.log_level)
    runtime = init_runtime(cfg)
    source = cfg.api_url if cfg.backend == "http" else "in-memory demo"

    print(f"""
╔═══════════════════════════════════════╗
║  Opsboard Dashboard Server            ║
╠═══════════════════════════════════════╣
║  URL:   http://{host}:{port:<19}║
║  Tasks: {source:<30}║
╚═══════════════════════════════════════╝
""")

    try:
        app.run(host=host, port=port, debug=False, threaded=True)
    finally:
        runtime.stop()


if __name__ == "__main__":
    main()
