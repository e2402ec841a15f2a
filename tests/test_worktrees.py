"""Tests for per-task worktree provisioning and teardown."""

import os
import subprocess
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from work_engine.config import Config
from work_engine.core import worktrees as worktrees_mod
from work_engine.core.errors import ProvisioningError
from work_engine.core.validation import ValidationCommands
from work_engine.integrations.git import GitError, branch_exists, get_current_branch
from work_engine.integrations.shell import CommandResult


@pytest.fixture
def git_repo():
    """Create a temporary git repo with an initial commit."""
    with tempfile.TemporaryDirectory() as tmp:
        repo = Path(tmp) / "repo"
        repo.mkdir()
        subprocess.run(["git", "init"], cwd=repo, capture_output=True, check=True)
        subprocess.run(["git", "checkout", "-b", "main"], cwd=repo, capture_output=True, check=True)
        (repo / "README.md").write_text("# Test")
        subprocess.run(["git", "add", "."], cwd=repo, capture_output=True, check=True)
        subprocess.run(
            ["git", "commit", "-m", "init"],
            cwd=repo,
            capture_output=True,
            check=True,
            env={**os.environ, "GIT_AUTHOR_NAME": "Test", "GIT_AUTHOR_EMAIL": "test@test.com",
                 "GIT_COMMITTER_NAME": "Test", "GIT_COMMITTER_EMAIL": "test@test.com"},
        )
        yield repo


NO_INSTALL = ValidationCommands(install="", install_fallback="", check="", test="")


class TestWorktreePaths:
    def test_default_base_is_sibling_of_project(self, git_repo):
        base = worktrees_mod.worktree_base_dir(git_repo, Config())
        assert base == git_repo.resolve().parent / ".work-engine-worktrees"

    def test_configured_base(self, git_repo):
        config = Config(worktree_base_dir=git_repo.parent / "wts")
        path = worktrees_mod.worktree_path_for("task-1", git_repo, config)
        assert path == (git_repo.parent / "wts").resolve() / "task-1"


class TestProvision:
    def test_creates_worktree_on_new_branch(self, git_repo):
        wt = git_repo.parent / "wts" / "t1"
        result = worktrees_mod.provision_worktree(git_repo, wt, "agent/bot/thing-1-abc123", NO_INSTALL)

        assert result == wt
        assert (wt / "README.md").exists()
        assert get_current_branch(wt) == "agent/bot/thing-1-abc123"
        assert branch_exists(git_repo, "agent/bot/thing-1-abc123")

    def test_main_checkout_untouched(self, git_repo):
        wt = git_repo.parent / "wts" / "t1"
        worktrees_mod.provision_worktree(git_repo, wt, "agent/bot/x-1-abc123", NO_INSTALL)
        (wt / "new_file.py").write_text("x = 1\n")

        assert get_current_branch(git_repo) == "main"
        assert not (git_repo / "new_file.py").exists()

    def test_existing_branch_fails(self, git_repo):
        subprocess.run(["git", "branch", "taken"], cwd=git_repo, capture_output=True, check=True)
        with pytest.raises(ProvisioningError, match="Failed to create worktree"):
            worktrees_mod.provision_worktree(git_repo, git_repo.parent / "wts" / "t1", "taken")

    def test_not_a_repository_fails(self, git_repo):
        plain = git_repo.parent / "plain"
        plain.mkdir()
        with pytest.raises(ProvisioningError):
            worktrees_mod.provision_worktree(plain, git_repo.parent / "wts" / "t1", "b1")

    def test_install_runs_in_worktree(self, git_repo):
        wt = git_repo.parent / "wts" / "t1"
        commands = ValidationCommands(install="make deps", install_fallback="make deps-any",
                                      check="", test="")
        with patch("work_engine.core.validation.run_command", return_value=CommandResult(0)) as mock_run:
            worktrees_mod.provision_worktree(git_repo, wt, "b1", commands)

        mock_run.assert_called_once_with(["make", "deps"], cwd=wt)

    def test_install_failure_does_not_fail_provisioning(self, git_repo):
        wt = git_repo.parent / "wts" / "t1"
        commands = ValidationCommands(install="make deps", install_fallback="make deps-any",
                                      check="", test="")
        with patch("work_engine.core.validation.run_command", return_value=CommandResult(1, "", "nope")):
            result = worktrees_mod.provision_worktree(git_repo, wt, "b1", commands)
        assert result.exists()


class TestTeardown:
    def test_removes_worktree_keeps_branch(self, git_repo):
        wt = git_repo.parent / "wts" / "t1"
        worktrees_mod.provision_worktree(git_repo, wt, "keep-me", NO_INSTALL)
        (wt / "dirty.txt").write_text("uncommitted")

        assert worktrees_mod.teardown_worktree(git_repo, wt) is True
        assert not wt.exists()
        assert branch_exists(git_repo, "keep-me")

    def test_missing_worktree_does_not_raise(self, git_repo):
        assert worktrees_mod.teardown_worktree(git_repo, git_repo.parent / "nowhere") is False

    def test_git_error_does_not_raise(self, git_repo):
        with patch("work_engine.core.worktrees.worktree_remove", side_effect=GitError("locked")), \
             patch("work_engine.core.worktrees.worktree_prune") as mock_prune:
            assert worktrees_mod.teardown_worktree(git_repo, git_repo.parent / "wt") is False
        mock_prune.assert_called_once_with(git_repo)

    def test_nothing_to_remove(self, git_repo):
        assert worktrees_mod.teardown_worktree(git_repo, None) is False
        assert worktrees_mod.teardown_worktree(None, "/tmp/wt") is False
