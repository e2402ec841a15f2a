"""Exceptions raised by the work-task engine."""


class WorkTaskError(Exception):
    """Base class for work-task errors."""


class NotFoundError(WorkTaskError):
    """Raised when an agent, project or task does not exist."""


class InvalidConfigError(WorkTaskError):
    """Raised when a project cannot host work tasks (e.g. no working directory)."""


class ConflictError(WorkTaskError):
    """Raised when another task is already active on the project."""

    def __init__(self, project_id: str, blocking_task_id: str | None = None):
        self.project_id = project_id
        self.blocking_task_id = blocking_task_id
        msg = f"Another task is already active on project {project_id}"
        if blocking_task_id:
            msg += f" (task {blocking_task_id})"
        super().__init__(msg)


class ProvisioningError(WorkTaskError):
    """Raised when the worktree or its branch could not be created."""


class ValidationFailedError(WorkTaskError):
    """Validation did not pass within the iteration ceiling."""

    def __init__(self, iterations: int, diagnostic: str, limit: int = 2000):
        self.iterations = iterations
        self.diagnostic = diagnostic
        super().__init__(
            f"Validation failed after {iterations} iteration(s):\n{diagnostic[:limit]}"
        )


class PublishError(WorkTaskError):
    """Raised when no pull request URL could be obtained."""
