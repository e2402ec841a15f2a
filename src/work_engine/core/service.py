"""Work-task orchestration: provisioning, sessions, validation, retry, publish.

A task moves ``pending -> branching -> running -> validating`` and then either
back to ``running`` for another iteration or to ``completed``/``failed``.
Every terminal transition clears the task's worktree, removes the directory
and fires completion callbacks, in that order. Only the first terminal
transition of a task takes effect.
"""

import logging
import sqlite3
import threading
import time
import uuid

from work_engine.config import Config, get_config
from work_engine.core.agents import get_agent, slugify
from work_engine.core.bridge import SessionBridge
from work_engine.core.completion import CompletionCallback, CompletionRegistry
from work_engine.core.errors import (
    ConflictError,
    InvalidConfigError,
    NotFoundError,
    ProvisioningError,
    PublishError,
    ValidationFailedError,
)
from work_engine.core.projects import get_project
from work_engine.core.prompts import (
    build_fallback_pr_body,
    build_iteration_prompt,
    build_work_prompt,
)
from work_engine.core.repo_map import Indexer
from work_engine.core.sessions import create_session
from work_engine.core.validation import ValidationCommands, run_validation
from work_engine.core.work_tasks import (
    create_work_task_atomic,
    get_active_work_task,
    get_work_task,
    list_non_terminal_work_tasks,
    list_work_tasks,
    record_worktree_removed,
    update_work_task_status,
)
from work_engine.core.worktrees import provision_worktree, teardown_worktree, worktree_path_for
from work_engine.db.models import (
    BRANCHING,
    COMPLETED,
    FAILED,
    RUNNING,
    VALIDATING,
    WorkTask,
)
from work_engine.integrations.git import GitError, commit_all, has_uncommitted_changes, push_branch
from work_engine.integrations.hosting import create_change_request, get_platform
from work_engine.process.supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)

CANCELLED_ERROR = "Cancelled by user"
INTERRUPTED_ERROR = "Interrupted by server restart"
NO_PR_URL_ERROR = (
    "Session completed but no PR URL was found in output "
    "and service-level PR creation failed"
)
MISSING_WORKTREE_ERROR = "Session ended but the task has no worktree to validate"

SUMMARY_CHARS = 500
WAIT_POLL_SECONDS = 1.0
DESCRIPTION_SLUG_CHARS = 40
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(n: int) -> str:
    digits = []
    while True:
        n, rem = divmod(n, 36)
        digits.append(_BASE36[rem])
        if n == 0:
            return "".join(reversed(digits))


def generate_branch_name(agent_name: str, description: str, now_ms: int | None = None) -> str:
    """``agent/<agent-slug>/<description-slug>-<base36 ms>-<6 hex>``."""
    agent_slug = slugify(agent_name) or "agent"
    task_slug = slugify(description[:DESCRIPTION_SLUG_CHARS]) or "task"
    timestamp = _base36(now_ms if now_ms is not None else int(time.time() * 1000))
    suffix = uuid.uuid4().hex[:6]
    return f"agent/{agent_slug}/{task_slug}-{timestamp}-{suffix}"


def summarize(output: str) -> str:
    return output[-SUMMARY_CHARS:].strip()


class WorkTaskService:
    """Owns the lifecycle of work tasks.

    Session-end handling runs on whatever thread the supervisor delivers
    events on; each task only ever has one attempt in flight.
    """

    def __init__(
        self,
        db: sqlite3.Connection,
        supervisor: ProcessSupervisor,
        config: Config | None = None,
        indexer: Indexer | None = None,
        registry: CompletionRegistry | None = None,
    ):
        self.db = db
        self.supervisor = supervisor
        self.config = config or get_config()
        self.indexer = indexer
        self.registry = registry or CompletionRegistry()
        self.bridge = SessionBridge(supervisor)
        self.platform = get_platform(self.config.hosting)

    # ── Queries ──────────────────────────────────────────────────────────────

    def get_task(self, task_id: str) -> WorkTask | None:
        return get_work_task(self.db, task_id)

    def list_tasks(self, agent_id: str | None = None) -> list[WorkTask]:
        return list_work_tasks(self.db, agent_id=agent_id)

    # ── Creation ─────────────────────────────────────────────────────────────

    def create(
        self,
        agent_id: str,
        description: str,
        project_id: str | None = None,
        source: str = "web",
        source_id: str | None = None,
        requester_info: dict | None = None,
    ) -> WorkTask:
        """Create a task, provision its worktree and start the first session.

        Raises NotFoundError, InvalidConfigError or ConflictError without
        creating anything. Later failures are recorded on the returned task.
        """
        agent = get_agent(self.db, agent_id)
        if not agent:
            raise NotFoundError(f"Agent {agent_id} not found")

        project_id = project_id or agent.default_project_id
        if not project_id:
            raise InvalidConfigError(
                f"No project_id provided and agent {agent_id} has no default project"
            )

        project = get_project(self.db, project_id)
        if not project:
            raise NotFoundError(f"Project {project_id} not found")
        if not project.working_dir:
            raise InvalidConfigError(f"Project {project_id} has no working_dir")

        task = create_work_task_atomic(
            self.db,
            agent_id=agent_id,
            project_id=project_id,
            description=description,
            source=source,
            source_id=source_id,
            requester_info=requester_info,
        )
        if not task:
            blocking = get_active_work_task(self.db, project_id)
            raise ConflictError(project_id, blocking.id if blocking else None)

        logger.info("Work task %s created (agent=%s, project=%s)", task.id, agent_id, project_id)

        branch_name = generate_branch_name(agent.name, description)
        worktree_dir = worktree_path_for(task.id, project.working_dir, self.config)
        branching = update_work_task_status(
            self.db, task.id, BRANCHING,
            branch_name=branch_name, worktree_dir=str(worktree_dir),
        )
        if branching is None:
            return get_work_task(self.db, task.id)

        commands = ValidationCommands.for_project(project, self.config)
        try:
            provision_worktree(project.working_dir, worktree_dir, branch_name, commands)
        except ProvisioningError as e:
            logger.warning("Provisioning failed for work task %s: %s", task.id, e)
            failed = self._terminate(task.id, FAILED, teardown=False, error=str(e))
            return failed or get_work_task(self.db, task.id)

        running = update_work_task_status(self.db, task.id, RUNNING, iteration_count=1)
        if running is None:
            # Cancelled while provisioning; the cancel path saw a half-made worktree.
            teardown_worktree(project.working_dir, worktree_dir)
            return get_work_task(self.db, task.id)

        context = self._generate_context(str(worktree_dir), description)
        prompt = build_work_prompt(branch_name, description, commands, self.platform, context)
        self._start_attempt(running, prompt, name=f"Work: {description[:60]}")

        logger.info("Work task %s running on branch %s in %s", task.id, branch_name, worktree_dir)
        return get_work_task(self.db, task.id)

    # ── Session lifecycle ────────────────────────────────────────────────────

    def _start_attempt(self, task: WorkTask, prompt: str, name: str) -> None:
        session = create_session(
            self.db,
            agent_id=task.agent_id,
            project_id=task.project_id,
            name=name,
            initial_prompt=prompt,
            work_dir=task.worktree_dir,
            work_task_id=task.id,
            source=task.source,
        )
        if update_work_task_status(self.db, task.id, RUNNING, session_id=session.id) is None:
            return

        self.bridge.run(session, prompt, lambda output: self.handle_session_end(task.id, output))
        logger.info(
            "Started session %s for work task %s (iteration %s)",
            session.id, task.id, task.iteration_count,
        )

        current = get_work_task(self.db, task.id)
        if current is None or current.is_terminal:
            self.supervisor.stop_session(session.id)
            if current is not None:
                self.registry.notify(current)

    def handle_session_end(self, task_id: str, output: str) -> None:
        """Validate the attempt that just ended, then finalize, retry or fail."""
        task = get_work_task(self.db, task_id)
        if task is None or task.is_terminal:
            logger.debug("Ignoring session end for work task %s (gone or finished)", task_id)
            if task is not None:
                # Finished elsewhere, e.g. `we task cancel` from another process.
                self.registry.notify(task)
            return

        if not task.worktree_dir:
            self._terminate(task_id, FAILED, error=MISSING_WORKTREE_ERROR, summary=summarize(output))
            return

        if update_work_task_status(self.db, task_id, VALIDATING) is None:
            return
        logger.info("Running post-session validation for work task %s", task_id)

        project = get_project(self.db, task.project_id)
        commands = ValidationCommands.for_project(project, self.config)
        result = run_validation(task.worktree_dir, commands, self.config.diagnostic_limit)
        iteration = task.iteration_count or 1

        if result.passed:
            logger.info("Validation passed for work task %s (iteration %s)", task_id, iteration)
            self.finalize(task_id, output)
            return

        logger.warning(
            "Validation failed for work task %s (iteration %s of %s)",
            task_id, iteration, self.config.max_iterations,
        )

        if iteration >= self.config.max_iterations:
            error = ValidationFailedError(iteration, result.diagnostic)
            self._terminate(task_id, FAILED, error=str(error), summary=summarize(output))
            return

        next_iteration = iteration + 1
        running = update_work_task_status(self.db, task_id, RUNNING, iteration_count=next_iteration)
        if running is None:
            return

        prompt = build_iteration_prompt(
            running.branch_name or "unknown",
            result.diagnostic,
            commands,
            self.platform,
            next_iteration,
            self.config.max_iterations,
        )
        self._start_attempt(
            running, prompt,
            name=f"Work iteration {next_iteration}: {task.description[:40]}",
        )

    # ── Resolution ───────────────────────────────────────────────────────────

    def finalize(self, task_id: str, output: str) -> WorkTask | None:
        """Complete the task with a change-request URL or fail it."""
        task = get_work_task(self.db, task_id)
        if task is None or task.is_terminal:
            return None

        pr_url = self.platform.extract_url(output)
        if not pr_url:
            pr_url = self._publish_fallback(task, output)

        if pr_url:
            done = self._terminate(task_id, COMPLETED, pr_url=pr_url, summary=summarize(output))
            if done:
                logger.info("Work task %s completed with PR %s", task_id, pr_url)
            return done

        logger.warning("Work task %s finished without a PR URL", task_id)
        return self._terminate(task_id, FAILED, error=NO_PR_URL_ERROR, summary=summarize(output))

    def _publish_fallback(self, task: WorkTask, output: str) -> str | None:
        """Commit leftovers, push the branch and open the change request ourselves."""
        if not task.branch_name or not task.worktree_dir:
            return None
        cwd = task.worktree_dir
        try:
            if has_uncommitted_changes(cwd):
                commit_all(cwd, f"Work task: {task.description[:60]}")
            logger.info("Fallback: pushing branch %s for work task %s", task.branch_name, task.id)
            push_branch(cwd, task.branch_name)
            url = create_change_request(
                self.platform,
                cwd,
                title=f"[Agent] {task.description[:60]}",
                body=build_fallback_pr_body(task.description, output),
                branch=task.branch_name,
            )
        except (GitError, PublishError) as e:
            logger.warning("Fallback PR creation failed for work task %s: %s", task.id, e)
            return None
        logger.info("Fallback: created %s for work task %s", url, task.id)
        return url

    def cancel_task(self, task_id: str) -> WorkTask | None:
        """Stop the running session (if any) and fail the task.

        Returns None for unknown tasks; finished tasks are returned unchanged.
        """
        task = get_work_task(self.db, task_id)
        if task is None:
            return None
        if task.is_terminal:
            return task

        if task.session_id and self.supervisor.is_running(task.session_id):
            try:
                self.supervisor.stop_session(task.session_id)
            except Exception:
                logger.exception("Failed to stop session %s for work task %s", task.session_id, task_id)

        self._terminate(task_id, FAILED, error=CANCELLED_ERROR)
        logger.info("Work task %s cancelled", task_id)
        return get_work_task(self.db, task_id)

    def recover_stale_tasks(self) -> list[WorkTask]:
        """Fail every task left active by an unclean shutdown and drop its worktree."""
        stale = list_non_terminal_work_tasks(self.db)
        if not stale:
            return []

        logger.info("Recovering %d stale work task(s)", len(stale))
        recovered = []
        for task in stale:
            failed = self._terminate(task.id, FAILED, error=INTERRUPTED_ERROR)
            if failed:
                recovered.append(failed)
        return recovered

    def _terminate(self, task_id: str, status: str, teardown: bool = True, **fields) -> WorkTask | None:
        """Apply a terminal transition, remove the worktree, notify listeners.

        Returns None if the task was already terminal (someone else won).
        """
        current = get_work_task(self.db, task_id)
        if current is None or current.is_terminal:
            return None
        worktree_dir = current.worktree_dir

        updated = update_work_task_status(self.db, task_id, status, **fields)
        if updated is None:
            return None

        if teardown and worktree_dir:
            self._remove_worktree(updated, worktree_dir)

        self.registry.notify(updated)
        return updated

    def _remove_worktree(self, task: WorkTask, worktree_dir: str) -> None:
        try:
            project = get_project(self.db, task.project_id)
            if teardown_worktree(project.working_dir if project else None, worktree_dir):
                record_worktree_removed(self.db, task.id, worktree_dir)
        except Exception:
            logger.exception("Error removing worktree %s for work task %s", worktree_dir, task.id)

    # ── Completion listeners ─────────────────────────────────────────────────

    def on_complete(self, task_id: str, callback: CompletionCallback) -> None:
        """Call ``callback`` once with the final task when it finishes."""
        self.registry.register(task_id, callback)
        task = get_work_task(self.db, task_id)
        if task is not None and task.is_terminal:
            self.registry.notify(task)

    def wait_for(
        self,
        task_id: str,
        timeout: float | None = None,
        poll_interval: float = WAIT_POLL_SECONDS,
    ) -> WorkTask | None:
        """Block until the task finishes. Returns None on timeout.

        The task row is re-read every ``poll_interval`` seconds, so a task
        finished by another process (``we task cancel``) is noticed: its
        session here is stopped and the waiter released.
        """
        finished = threading.Event()
        result: list[WorkTask] = []

        def _done(task: WorkTask) -> None:
            result.append(task)
            finished.set()

        self.registry.register(task_id, _done)
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            self._sync_external_finish(task_id)
            if finished.is_set():
                break
            wait = poll_interval
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self.registry.unregister(task_id, _done)
                    break
                wait = min(wait, remaining)
            finished.wait(wait)

        return result[0] if result else None

    def _sync_external_finish(self, task_id: str) -> None:
        task = get_work_task(self.db, task_id)
        if task is None or not task.is_terminal:
            return
        if task.session_id and self.supervisor.is_running(task.session_id):
            logger.info("Work task %s finished elsewhere; stopping session %s", task_id, task.session_id)
            try:
                self.supervisor.stop_session(task.session_id)
            except Exception:
                logger.exception("Failed to stop session %s for work task %s", task.session_id, task_id)
        self.registry.notify(task)

    def _generate_context(self, worktree_dir: str, description: str) -> str | None:
        if self.indexer is None:
            return None
        try:
            return self.indexer.generate_context(worktree_dir, description)
        except Exception as e:
            logger.warning("Failed to generate repository context for %s: %s", worktree_dir, e)
            return None
