"""Work task persistence operations."""

import json
import sqlite3
import uuid
from datetime import datetime

from work_engine.db.models import (
    ACTIVE_STATUSES,
    ALL_STATUSES,
    PENDING,
    TERMINAL_STATUSES,
    WorkTask,
    WorkTaskEvent,
)

# Fields update_work_task_status may patch alongside the status.
_PATCHABLE = {
    "session_id",
    "branch_name",
    "worktree_dir",
    "iteration_count",
    "pr_url",
    "summary",
    "error",
}

# A pending row already owns the project slot: it is about to branch.
_BLOCKING_STATUSES = (PENDING,) + ACTIVE_STATUSES


def create_work_task_atomic(
    db: sqlite3.Connection,
    agent_id: str,
    project_id: str,
    description: str,
    source: str = "web",
    source_id: str | None = None,
    requester_info: dict | None = None,
) -> WorkTask | None:
    """Insert a pending task unless the project already has an active one.

    The existence check and the insert are one statement, so two concurrent
    callers can never both succeed. Returns None on conflict.
    """
    task_id = uuid.uuid4().hex
    placeholders = ", ".join("?" for _ in _BLOCKING_STATUSES)
    cur = db.execute(
        f"""INSERT INTO work_tasks
            (id, agent_id, project_id, source, source_id, requester_info, description, status)
            SELECT ?, ?, ?, ?, ?, ?, ?, ?
            WHERE NOT EXISTS (
                SELECT 1 FROM work_tasks
                WHERE project_id = ? AND status IN ({placeholders})
            )""",
        (
            task_id, agent_id, project_id, source, source_id,
            json.dumps(requester_info or {}), description, PENDING,
            project_id, *_BLOCKING_STATUSES,
        ),
    )
    if cur.rowcount == 0:
        db.commit()
        return None
    _log_event(db, task_id, "created", None, PENDING)
    db.commit()
    return get_work_task(db, task_id)


def get_work_task(db: sqlite3.Connection, task_id: str) -> WorkTask | None:
    """Get a work task by ID."""
    row = db.execute("SELECT * FROM work_tasks WHERE id = ?", (task_id,)).fetchone()
    if not row:
        return None
    return _row_to_work_task(row)


def get_active_work_task(db: sqlite3.Connection, project_id: str) -> WorkTask | None:
    """Return the task currently holding the project's slot, if any."""
    placeholders = ", ".join("?" for _ in _BLOCKING_STATUSES)
    row = db.execute(
        f"""SELECT * FROM work_tasks
            WHERE project_id = ? AND status IN ({placeholders})
            ORDER BY created_at LIMIT 1""",
        (project_id, *_BLOCKING_STATUSES),
    ).fetchone()
    if not row:
        return None
    return _row_to_work_task(row)


def list_work_tasks(
    db: sqlite3.Connection,
    agent_id: str | None = None,
    project_id: str | None = None,
    status: str | None = None,
) -> list[WorkTask]:
    """List work tasks, newest first, with optional filters."""
    query = "SELECT * FROM work_tasks WHERE 1=1"
    params: list = []

    if agent_id:
        query += " AND agent_id = ?"
        params.append(agent_id)

    if project_id:
        query += " AND project_id = ?"
        params.append(project_id)

    if status:
        query += " AND status = ?"
        params.append(status)

    query += " ORDER BY created_at DESC, rowid DESC"
    rows = db.execute(query, params).fetchall()
    return [_row_to_work_task(r) for r in rows]


def list_non_terminal_work_tasks(db: sqlite3.Connection) -> list[WorkTask]:
    """List every task that has not reached completed or failed."""
    placeholders = ", ".join("?" for _ in TERMINAL_STATUSES)
    rows = db.execute(
        f"SELECT * FROM work_tasks WHERE status NOT IN ({placeholders}) ORDER BY created_at",
        TERMINAL_STATUSES,
    ).fetchall()
    return [_row_to_work_task(r) for r in rows]


def update_work_task_status(
    db: sqlite3.Connection,
    task_id: str,
    status: str,
    **fields,
) -> WorkTask | None:
    """Move a task to ``status`` and patch the given fields.

    Terminal tasks are never modified: returns None when the task does not
    exist or has already completed or failed. Entering a terminal status
    stamps ``completed_at`` and clears ``worktree_dir``. ``branch_name`` is
    only written while unset.
    """
    if status not in ALL_STATUSES:
        raise ValueError(f"Invalid work task status: {status}")
    unknown = set(fields) - _PATCHABLE
    if unknown:
        raise ValueError(f"Cannot update work task fields: {', '.join(sorted(unknown))}")

    current = get_work_task(db, task_id)
    if not current or current.is_terminal:
        return None

    set_parts = ["status = ?"]
    values: list = [status]
    for key, value in fields.items():
        if key == "branch_name":
            set_parts.append("branch_name = COALESCE(branch_name, ?)")
        else:
            set_parts.append(f"{key} = ?")
        values.append(value)

    if status in TERMINAL_STATUSES:
        set_parts.append("completed_at = datetime('now')")
        if "worktree_dir" not in fields:
            set_parts.append("worktree_dir = NULL")

    placeholders = ", ".join("?" for _ in TERMINAL_STATUSES)
    cur = db.execute(
        f"""UPDATE work_tasks SET {', '.join(set_parts)}
            WHERE id = ? AND status NOT IN ({placeholders})""",
        values + [task_id, *TERMINAL_STATUSES],
    )
    if cur.rowcount == 0:
        db.commit()
        return None

    if current.status != status:
        _log_event(db, task_id, "status_changed", current.status, status)
    if "session_id" in fields and fields["session_id"] != current.session_id:
        _log_event(db, task_id, "session_started", current.session_id, fields["session_id"])
    if "worktree_dir" in fields and fields["worktree_dir"] != current.worktree_dir:
        _log_event(db, task_id, "worktree_assigned", current.worktree_dir, fields["worktree_dir"])
    db.commit()
    return get_work_task(db, task_id)


def record_worktree_removed(db: sqlite3.Connection, task_id: str, worktree_dir: str):
    _log_event(db, task_id, "worktree_removed", worktree_dir, None)
    db.commit()


def get_work_task_events(db: sqlite3.Connection, task_id: str) -> list[WorkTaskEvent]:
    """Get the event history for a task."""
    rows = db.execute(
        "SELECT * FROM work_task_events WHERE task_id = ? ORDER BY id",
        (task_id,),
    ).fetchall()
    return [
        WorkTaskEvent(
            id=r["id"],
            task_id=r["task_id"],
            event_type=r["event_type"],
            old_value=r["old_value"],
            new_value=r["new_value"],
            created_at=_parse_dt(r["created_at"]),
        )
        for r in rows
    ]


def _log_event(
    db: sqlite3.Connection,
    task_id: str,
    event_type: str,
    old_value: str | None,
    new_value: str | None,
):
    db.execute(
        "INSERT INTO work_task_events (task_id, event_type, old_value, new_value) VALUES (?, ?, ?, ?)",
        (task_id, event_type, old_value, new_value),
    )


def _row_to_work_task(row: sqlite3.Row) -> WorkTask:
    try:
        requester_info = json.loads(row["requester_info"] or "{}")
    except json.JSONDecodeError:
        requester_info = {}
    return WorkTask(
        id=row["id"],
        agent_id=row["agent_id"],
        project_id=row["project_id"],
        description=row["description"],
        session_id=row["session_id"],
        source=row["source"],
        source_id=row["source_id"],
        requester_info=requester_info,
        branch_name=row["branch_name"],
        worktree_dir=row["worktree_dir"],
        iteration_count=row["iteration_count"] or 0,
        status=row["status"],
        pr_url=row["pr_url"],
        summary=row["summary"],
        error=row["error"],
        created_at=_parse_dt(row["created_at"]),
        completed_at=_parse_dt(row["completed_at"]),
    )


def _parse_dt(val: str | None) -> datetime | None:
    if val is None:
        return None
    return datetime.fromisoformat(val)
