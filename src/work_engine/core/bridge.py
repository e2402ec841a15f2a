"""Turns one streamed inference session into a single buffered text response."""

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future

from work_engine.db.models import Session
from work_engine.process.supervisor import (
    ASSISTANT_TEXT,
    ERROR,
    TERMINAL_EVENTS,
    ProcessSupervisor,
    StreamEvent,
)

logger = logging.getLogger(__name__)


class SessionBridge:
    """Runs sessions through a supervisor and reports each one's text exactly once.

    The bridge keeps no task state; every ``run`` call owns its buffer and
    its future.
    """

    def __init__(self, supervisor: ProcessSupervisor):
        self.supervisor = supervisor

    def run(
        self,
        session: Session,
        prompt: str,
        on_done: Callable[[str], None] | None = None,
    ) -> Future:
        """Start ``session`` and resolve the returned future with its text.

        ``on_done`` is called once with the same text when the stream signals
        a result or the process exits, whichever comes first.
        """
        future: Future = Future()
        parts: list[str] = []
        lock = threading.Lock()

        def finish() -> None:
            with lock:
                if future.done():
                    return
                text = "".join(parts).strip()
                future.set_result(text)
            self.supervisor.unsubscribe(session.id, handler)
            if on_done is not None:
                try:
                    on_done(text)
                except Exception:
                    logger.exception("Session completion handler failed for %s", session.id)

        def handler(event: StreamEvent) -> None:
            if event.type == ASSISTANT_TEXT:
                with lock:
                    if not future.done():
                        parts.append(event.text)
            elif event.type == ERROR:
                logger.warning("Session %s reported an error: %s", session.id, event.text)
            elif event.type in TERMINAL_EVENTS:
                finish()

        self.supervisor.subscribe(session.id, handler)
        try:
            self.supervisor.start_session(session, prompt)
        except Exception:
            logger.exception("Failed to start session %s", session.id)
            finish()
        return future
