"""In-memory registry of per-task completion callbacks.

Callbacks live only as long as the process. A task that reaches a terminal
status after a restart never fires callbacks registered before it.
"""

import logging
import threading
from collections.abc import Callable

from work_engine.db.models import WorkTask

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[WorkTask], None]


class CompletionRegistry:
    def __init__(self):
        self._lock = threading.Lock()
        self._callbacks: dict[str, list[CompletionCallback]] = {}

    def register(self, task_id: str, callback: CompletionCallback) -> None:
        with self._lock:
            callbacks = self._callbacks.setdefault(task_id, [])
            if callback not in callbacks:
                callbacks.append(callback)

    def notify(self, task: WorkTask) -> int:
        """Invoke and drop every callback registered for ``task``.

        Each callback runs at most once; one raising does not stop the rest.
        Returns the number of callbacks invoked.
        """
        with self._lock:
            callbacks = self._callbacks.pop(task.id, [])
        for callback in callbacks:
            try:
                callback(task)
            except Exception:
                logger.exception("Completion callback failed for work task %s", task.id)
        return len(callbacks)

    def unregister(self, task_id: str, callback: CompletionCallback) -> None:
        with self._lock:
            callbacks = self._callbacks.get(task_id)
            if not callbacks:
                return
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                del self._callbacks[task_id]
