"""Data models for the work engine."""

from dataclasses import dataclass, field
from datetime import datetime

PENDING = "pending"
BRANCHING = "branching"
RUNNING = "running"
VALIDATING = "validating"
COMPLETED = "completed"
FAILED = "failed"

ACTIVE_STATUSES = (BRANCHING, RUNNING, VALIDATING)
TERMINAL_STATUSES = (COMPLETED, FAILED)
ALL_STATUSES = (PENDING,) + ACTIVE_STATUSES + TERMINAL_STATUSES


@dataclass
class Project:
    id: str
    name: str
    working_dir: str | None = None
    default_branch: str = "main"
    install_command: str | None = None
    check_command: str | None = None
    test_command: str | None = None
    slack_channel: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Agent:
    id: str
    name: str
    default_project_id: str | None = None
    model: str | None = None
    permission_mode: str = "acceptEdits"
    created_at: datetime | None = None


@dataclass
class Session:
    id: str
    agent_id: str
    project_id: str
    name: str = ""
    initial_prompt: str = ""
    work_dir: str | None = None
    work_task_id: str | None = None
    source: str = "web"
    model: str | None = None
    permission_mode: str | None = None
    created_at: datetime | None = None


@dataclass
class WorkTask:
    id: str
    agent_id: str
    project_id: str
    description: str
    session_id: str | None = None
    source: str = "web"
    source_id: str | None = None
    requester_info: dict = field(default_factory=dict)
    branch_name: str | None = None
    worktree_dir: str | None = None
    iteration_count: int = 0
    status: str = PENDING
    pr_url: str | None = None
    summary: str | None = None
    error: str | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass
class WorkTaskEvent:
    id: int | None = None
    task_id: str = ""
    event_type: str = ""
    old_value: str | None = None
    new_value: str | None = None
    created_at: datetime | None = None
