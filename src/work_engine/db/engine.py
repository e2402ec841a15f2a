"""SQLite database connection management and schema initialization."""

import sqlite3
from contextlib import contextmanager
from pathlib import Path

SCHEMA = """
CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    working_dir TEXT,
    default_branch TEXT DEFAULT 'main',
    install_command TEXT,
    check_command TEXT,
    test_command TEXT,
    slack_channel TEXT,
    created_at TEXT DEFAULT (datetime('now')),
    updated_at TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS agents (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    default_project_id TEXT REFERENCES projects(id) ON DELETE SET NULL,
    model TEXT,
    permission_mode TEXT DEFAULT 'acceptEdits',
    created_at TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL REFERENCES agents(id) ON DELETE CASCADE,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    work_task_id TEXT,
    name TEXT DEFAULT '',
    initial_prompt TEXT DEFAULT '',
    work_dir TEXT,
    source TEXT DEFAULT 'web',
    created_at TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS work_tasks (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL REFERENCES agents(id) ON DELETE CASCADE,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    session_id TEXT,
    source TEXT DEFAULT 'web',
    source_id TEXT,
    requester_info TEXT DEFAULT '{}',
    description TEXT NOT NULL,
    branch_name TEXT,
    status TEXT DEFAULT 'pending' CHECK (
        status IN ('pending', 'branching', 'running', 'validating', 'completed', 'failed')
    ),
    pr_url TEXT,
    summary TEXT,
    error TEXT,
    created_at TEXT DEFAULT (datetime('now')),
    completed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_work_tasks_agent ON work_tasks(agent_id);
CREATE INDEX IF NOT EXISTS idx_work_tasks_project_status ON work_tasks(project_id, status);
CREATE INDEX IF NOT EXISTS idx_work_tasks_session ON work_tasks(session_id);

CREATE TABLE IF NOT EXISTS work_task_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id TEXT NOT NULL REFERENCES work_tasks(id) ON DELETE CASCADE,
    event_type TEXT NOT NULL,
    old_value TEXT,
    new_value TEXT,
    created_at TEXT DEFAULT (datetime('now'))
);
"""


def _run_migrations(conn: sqlite3.Connection):
    """Run schema migrations idempotently."""
    migrations = [
        "ALTER TABLE work_tasks ADD COLUMN iteration_count INTEGER DEFAULT 0",
        "ALTER TABLE work_tasks ADD COLUMN worktree_dir TEXT",
    ]
    for sql in migrations:
        try:
            conn.execute(sql)
        except sqlite3.OperationalError:
            pass  # Column already exists
    conn.commit()


def init_db(db_path: Path) -> sqlite3.Connection:
    """Initialize the database, creating tables if needed.

    The connection is shared with session reader threads, so it is opened
    with ``check_same_thread=False``.
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.executescript(SCHEMA)
    _run_migrations(conn)
    conn.commit()
    return conn


@contextmanager
def get_db(db_path: Path):
    """Context manager for database connections."""
    conn = init_db(db_path)
    try:
        yield conn
    finally:
        conn.close()
