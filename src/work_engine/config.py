"""Configuration loading from environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class Config:
    db_path: Path = field(default_factory=lambda: Path.home() / ".work_engine" / "we.db")
    worktree_base_dir: Path | None = None
    max_iterations: int = 3
    hosting: str = "github"
    install_command: str = "uv sync --locked"
    install_fallback_command: str = "uv sync"
    check_command: str = "python -m compileall -q ."
    test_command: str = "python -m pytest -q"
    claude_command: str = "claude"
    agent_default_model: str = "sonnet"
    max_turns: int | None = None
    diagnostic_limit: int = 4000
    log_level: str = "INFO"
    slack_bot_token: str | None = None

    @classmethod
    def from_env(cls) -> "Config":
        config = cls()

        if db := os.environ.get("WE_DB_PATH"):
            config.db_path = Path(db)

        if wt_dir := os.environ.get("WE_WORKTREE_BASE_DIR"):
            config.worktree_base_dir = Path(wt_dir)

        if max_iter := os.environ.get("WE_MAX_ITERATIONS"):
            config.max_iterations = max(1, int(max_iter))

        if hosting := os.environ.get("WE_HOSTING"):
            config.hosting = hosting.lower()

        if install := os.environ.get("WE_INSTALL_COMMAND"):
            config.install_command = install

        if fallback := os.environ.get("WE_INSTALL_FALLBACK_COMMAND"):
            config.install_fallback_command = fallback

        if check := os.environ.get("WE_CHECK_COMMAND"):
            config.check_command = check

        if test := os.environ.get("WE_TEST_COMMAND"):
            config.test_command = test

        if claude := os.environ.get("WE_CLAUDE_COMMAND"):
            config.claude_command = claude

        if model := os.environ.get("WE_AGENT_DEFAULT_MODEL"):
            config.agent_default_model = model

        if turns := os.environ.get("WE_MAX_TURNS"):
            config.max_turns = int(turns)

        if limit := os.environ.get("WE_DIAGNOSTIC_LIMIT"):
            config.diagnostic_limit = int(limit)

        if level := os.environ.get("WE_LOG_LEVEL"):
            config.log_level = level.upper()

        config.slack_bot_token = os.environ.get("SLACK_BOT_TOKEN")

        return config


def get_config() -> Config:
    return Config.from_env()
