"""Per-task git worktree provisioning and teardown.

Every task attempt runs in its own worktree on a fresh branch, so the
project's main checkout is never touched and concurrent tasks never share a
directory.
"""

import logging
from pathlib import Path

from work_engine.config import Config
from work_engine.core.errors import ProvisioningError
from work_engine.core.validation import ValidationCommands, install_dependencies
from work_engine.integrations.git import GitError, worktree_add, worktree_prune, worktree_remove

logger = logging.getLogger(__name__)

DEFAULT_BASE_DIR_NAME = ".work-engine-worktrees"


def worktree_base_dir(project_dir: str | Path, config: Config) -> Path:
    """Base directory for worktrees; defaults to a sibling of the project."""
    if config.worktree_base_dir:
        return Path(config.worktree_base_dir).resolve()
    return Path(project_dir).resolve().parent / DEFAULT_BASE_DIR_NAME


def worktree_path_for(task_id: str, project_dir: str | Path, config: Config) -> Path:
    return worktree_base_dir(project_dir, config) / task_id


def provision_worktree(
    project_dir: str | Path,
    worktree_dir: str | Path,
    branch_name: str,
    commands: ValidationCommands | None = None,
) -> Path:
    """Create ``worktree_dir`` on a new branch from the project's HEAD.

    Raises ProvisioningError carrying git's error output. Dependency
    installation afterwards is best-effort and never fails provisioning.
    """
    wt_path = Path(worktree_dir)
    try:
        wt_path.parent.mkdir(parents=True, exist_ok=True)
        worktree_add(project_dir, wt_path, branch_name)
    except GitError as e:
        raise ProvisioningError(f"Failed to create worktree: {e}") from e
    except OSError as e:
        raise ProvisioningError(f"Failed to create worktree: {e}") from e

    logger.info("Created worktree %s on branch %s", wt_path, branch_name)

    if commands:
        try:
            install_dependencies(wt_path, commands)
        except Exception:
            logger.exception("Dependency install failed in worktree %s", wt_path)

    return wt_path


def teardown_worktree(project_dir: str | Path | None, worktree_dir: str | Path | None) -> bool:
    """Remove a task's worktree, keeping its branch.

    Never raises: a leftover directory must not block task completion.
    Returns True if git removed the worktree.
    """
    if not worktree_dir:
        return False
    if not project_dir:
        logger.warning("Cannot remove worktree %s: project has no working dir", worktree_dir)
        return False

    try:
        worktree_remove(project_dir, worktree_dir, force=True)
    except GitError as e:
        logger.warning("Failed to remove worktree %s: %s", worktree_dir, e)
        try:
            worktree_prune(project_dir)
        except GitError:
            pass  # prune is best-effort
        return False
    except Exception:
        logger.exception("Error removing worktree %s", worktree_dir)
        return False

    logger.info("Removed worktree %s", worktree_dir)
    return True
