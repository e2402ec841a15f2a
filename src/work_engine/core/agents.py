"""Agent registry operations."""

import re
import sqlite3
from datetime import datetime

from work_engine.db.models import Agent


def slugify(text: str) -> str:
    """Lower-case ``text`` and collapse runs of non ``[a-z0-9]`` into single hyphens."""
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower())
    return slug.strip("-")


def create_agent(
    db: sqlite3.Connection,
    name: str,
    agent_id: str | None = None,
    default_project_id: str | None = None,
    model: str | None = None,
    permission_mode: str = "acceptEdits",
) -> Agent:
    """Register an agent. The ID defaults to the slugified name."""
    agent_id = agent_id or slugify(name) or "agent"
    db.execute(
        """INSERT INTO agents (id, name, default_project_id, model, permission_mode)
           VALUES (?, ?, ?, ?, ?)""",
        (agent_id, name, default_project_id, model, permission_mode),
    )
    db.commit()
    return get_agent(db, agent_id)


def get_agent(db: sqlite3.Connection, agent_id: str) -> Agent | None:
    """Get an agent by ID."""
    row = db.execute("SELECT * FROM agents WHERE id = ?", (agent_id,)).fetchone()
    if not row:
        return None
    return _row_to_agent(row)


def list_agents(db: sqlite3.Connection) -> list[Agent]:
    """List all agents."""
    rows = db.execute("SELECT * FROM agents ORDER BY name").fetchall()
    return [_row_to_agent(r) for r in rows]


def _row_to_agent(row: sqlite3.Row) -> Agent:
    return Agent(
        id=row["id"],
        name=row["name"],
        default_project_id=row["default_project_id"],
        model=row["model"],
        permission_mode=row["permission_mode"] or "acceptEdits",
        created_at=_parse_dt(row["created_at"]),
    )


def _parse_dt(val: str | None) -> datetime | None:
    if val is None:
        return None
    return datetime.fromisoformat(val)
