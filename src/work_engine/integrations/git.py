"""Git subprocess wrappers for worktree, branch and publish operations."""

from pathlib import Path

from work_engine.integrations.shell import run_command


class GitError(Exception):
    """Raised when a git command fails."""


def run_git(args: list[str], cwd: str | Path | None = None) -> str:
    """Run a git command and return stdout. Raises GitError on failure."""
    result = run_command(["git"] + args, cwd=cwd)
    if not result.ok:
        raise GitError(f"git {' '.join(args)} failed: {result.stderr.strip()}")
    return result.stdout.strip()


def worktree_add(
    repo_path: str | Path,
    worktree_path: str | Path,
    branch: str,
    base: str | None = None,
) -> str:
    """Create a worktree with a new branch, from ``base`` or the current HEAD."""
    args = ["worktree", "add", "-b", branch, str(worktree_path)]
    if base:
        args.append(base)
    return run_git(args, cwd=repo_path)


def worktree_remove(repo_path: str | Path, worktree_path: str | Path, force: bool = False) -> str:
    """Remove a git worktree."""
    args = ["worktree", "remove", str(worktree_path)]
    if force:
        args.append("--force")
    return run_git(args, cwd=repo_path)


def worktree_prune(repo_path: str | Path) -> str:
    return run_git(["worktree", "prune"], cwd=repo_path)


def branch_exists(repo_path: str | Path, branch: str) -> bool:
    """Check if a branch exists."""
    try:
        run_git(["rev-parse", "--verify", f"refs/heads/{branch}"], cwd=repo_path)
        return True
    except GitError:
        return False


def get_status(cwd: str | Path) -> str:
    """Get git status of a working directory."""
    return run_git(["status", "--porcelain"], cwd=cwd)


def has_uncommitted_changes(cwd: str | Path) -> bool:
    """True if the working tree has staged, unstaged or untracked changes."""
    return bool(get_status(cwd))


def commit_all(cwd: str | Path, message: str) -> str:
    """Stage everything and commit it."""
    run_git(["add", "-A"], cwd=cwd)
    return run_git(["commit", "-m", message], cwd=cwd)


def push_branch(cwd: str | Path, branch: str, remote: str = "origin") -> str:
    """Push ``branch`` to ``remote`` and set it as upstream."""
    return run_git(["push", "-u", remote, branch], cwd=cwd)


def get_current_branch(cwd: str | Path) -> str:
    """Get the current branch name."""
    return run_git(["branch", "--show-current"], cwd=cwd)
