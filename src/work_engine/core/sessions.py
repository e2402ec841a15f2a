"""Session records: one row per inference attempt."""

import sqlite3
import uuid
from datetime import datetime

from work_engine.db.models import Session


def create_session(
    db: sqlite3.Connection,
    agent_id: str,
    project_id: str,
    name: str,
    initial_prompt: str,
    work_dir: str | None = None,
    work_task_id: str | None = None,
    source: str = "web",
) -> Session:
    session_id = uuid.uuid4().hex
    db.execute(
        """INSERT INTO sessions
           (id, agent_id, project_id, work_task_id, name, initial_prompt, work_dir, source)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
        (session_id, agent_id, project_id, work_task_id, name, initial_prompt, work_dir, source),
    )
    db.commit()
    return get_session(db, session_id)


def get_session(db: sqlite3.Connection, session_id: str) -> Session | None:
    """Get a session by ID, with the agent's model settings filled in."""
    row = db.execute(
        """SELECT s.*, a.model AS agent_model, a.permission_mode AS agent_permission_mode
           FROM sessions s LEFT JOIN agents a ON a.id = s.agent_id
           WHERE s.id = ?""",
        (session_id,),
    ).fetchone()
    if not row:
        return None
    return Session(
        id=row["id"],
        agent_id=row["agent_id"],
        project_id=row["project_id"],
        name=row["name"],
        initial_prompt=row["initial_prompt"],
        work_dir=row["work_dir"],
        work_task_id=row["work_task_id"],
        source=row["source"],
        model=row["agent_model"],
        permission_mode=row["agent_permission_mode"],
        created_at=_parse_dt(row["created_at"]),
    )


def list_sessions_for_task(db: sqlite3.Connection, work_task_id: str) -> list[Session]:
    rows = db.execute(
        "SELECT id FROM sessions WHERE work_task_id = ? ORDER BY created_at, rowid",
        (work_task_id,),
    ).fetchall()
    return [get_session(db, r["id"]) for r in rows]


def _parse_dt(val: str | None) -> datetime | None:
    if val is None:
        return None
    return datetime.fromisoformat(val)
