# Kanban board: reordering and sync engine
#
# Components:
#   ordering.py        - Fractional position keys (PositionKey, generate_key_between)
#   schema.py          - Data model (Task, Assignee, TaskStatus, TaskPriority, TaskSource)
#   errors.py          - ValidationError, RequestFailed, ConfigError
#   repository.py      - TaskRepository contract + HTTP client for the task API
#   memory.py          - In-memory repository (tests, offline demo)
#   cache.py           - BoardCache: optimistic apply + full resync
#   drag.py            - DragController: pointer/keyboard drag, closest-corners collision
#   editor.py          - TaskDetailEditor: field edits, arm-then-confirm delete
#   telegram_bridge.py - Telegram messages -> tasks, board formatting
#   runtime.py         - BoardRuntime: cache on a background loop for threaded callers
