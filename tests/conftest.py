"""Shared fixtures."""

import pytest

from work_engine.process.supervisor import (
    ASSISTANT_TEXT,
    RESULT,
    SESSION_EXITED,
    StreamEvent,
)


class FakeSupervisor:
    """In-memory supervisor: records sessions, tests drive their events."""

    def __init__(self):
        self.started = []
        self.stopped = []
        self.running = set()
        self.handlers = {}
        self.fail_start = False

    def start_session(self, session, prompt):
        if self.fail_start:
            raise OSError("claude: command not found")
        self.started.append((session, prompt))
        self.running.add(session.id)

    def stop_session(self, session_id):
        self.stopped.append(session_id)
        self.running.discard(session_id)

    def is_running(self, session_id):
        return session_id in self.running

    def subscribe(self, session_id, handler):
        self.handlers.setdefault(session_id, []).append(handler)

    def unsubscribe(self, session_id, handler):
        handlers = self.handlers.get(session_id, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, session_id, event_type, text=""):
        for handler in list(self.handlers.get(session_id, [])):
            handler(StreamEvent(event_type, session_id, text))

    def finish(self, session_id, text=""):
        """Stream ``text``, then a result, then process exit."""
        if text:
            self.emit(session_id, ASSISTANT_TEXT, text)
        self.running.discard(session_id)
        self.emit(session_id, RESULT)
        self.emit(session_id, SESSION_EXITED)

    @property
    def last_session(self):
        return self.started[-1][0]

    @property
    def last_prompt(self):
        return self.started[-1][1]


@pytest.fixture
def supervisor():
    return FakeSupervisor()
