"""Inference session processes and their event streams.

``ClaudeProcessSupervisor`` runs one ``claude -p`` process per session with
``--output-format stream-json`` and fans the parsed events out to
subscribers on a per-session reader thread.
"""

import json
import logging
import subprocess
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

from work_engine.db.models import Session

logger = logging.getLogger(__name__)

ASSISTANT_TEXT = "assistant-text"
RESULT = "result"
ERROR = "error"
SESSION_EXITED = "session-exited"

TERMINAL_EVENTS = (RESULT, SESSION_EXITED)


@dataclass
class StreamEvent:
    type: str
    session_id: str = ""
    text: str = ""
    data: dict = field(default_factory=dict)


EventHandler = Callable[[StreamEvent], None]


class ProcessSupervisor(Protocol):
    def start_session(self, session: Session, prompt: str) -> None: ...

    def stop_session(self, session_id: str) -> None: ...

    def is_running(self, session_id: str) -> bool: ...

    def subscribe(self, session_id: str, handler: EventHandler) -> None: ...

    def unsubscribe(self, session_id: str, handler: EventHandler) -> None: ...


def parse_stream_line(line: str, session_id: str = "") -> StreamEvent | None:
    """Parse one line of Claude CLI stream-json output.

    Returns None for blank, non-JSON and uninteresting lines.
    """
    line = line.strip()
    if not line:
        return None
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        logger.debug("Ignoring non-JSON output line: %s", line[:200])
        return None
    if not isinstance(data, dict):
        return None

    event_type = data.get("type", "")
    if event_type == "assistant":
        content = (data.get("message") or {}).get("content") or []
        if isinstance(content, str):
            text = content
        else:
            text = "".join(
                block.get("text", "")
                for block in content
                if isinstance(block, dict) and block.get("type") == "text"
            )
        if not text:
            return None
        return StreamEvent(ASSISTANT_TEXT, session_id, text, data)

    if event_type == "result":
        if data.get("is_error"):
            logger.warning("Session %s ended with error result: %s", session_id, data.get("subtype"))
        return StreamEvent(RESULT, session_id, str(data.get("result") or ""), data)

    if event_type == "error":
        return StreamEvent(ERROR, session_id, str(data.get("error") or data.get("message") or ""), data)

    return None


class ClaudeProcessSupervisor:
    """Runs Claude CLI sessions as background processes."""

    def __init__(
        self,
        claude_command: str = "claude",
        default_model: str | None = None,
        max_turns: int | None = None,
    ):
        self.claude_command = claude_command
        self.default_model = default_model
        self.max_turns = max_turns
        self._lock = threading.Lock()
        self._handlers: dict[str, list[EventHandler]] = {}
        self._processes: dict[str, subprocess.Popen] = {}
        self._running: set[str] = set()
        self._stop_requested: set[str] = set()

    @classmethod
    def from_config(cls, config) -> "ClaudeProcessSupervisor":
        return cls(
            claude_command=config.claude_command,
            default_model=config.agent_default_model,
            max_turns=config.max_turns,
        )

    def build_command(self, session: Session, prompt: str) -> list[str]:
        cmd = [self.claude_command, "-p", prompt, "--output-format", "stream-json", "--verbose"]
        model = session.model or self.default_model
        if model:
            cmd += ["--model", model]
        if session.permission_mode:
            cmd += ["--permission-mode", session.permission_mode]
        if self.max_turns:
            cmd += ["--max-turns", str(self.max_turns)]
        return cmd

    def start_session(self, session: Session, prompt: str) -> None:
        """Launch the session in the background; events arrive on its reader thread."""
        cmd = self.build_command(session, prompt)
        with self._lock:
            self._running.add(session.id)
        thread = threading.Thread(
            target=self._run,
            args=(session.id, cmd, session.work_dir),
            name=f"session-{session.id[:8]}",
            daemon=True,
        )
        thread.start()
        logger.info("Started session %s in %s", session.id, session.work_dir)

    def stop_session(self, session_id: str) -> None:
        with self._lock:
            proc = self._processes.get(session_id)
            if proc is None:
                if session_id in self._running:
                    self._stop_requested.add(session_id)
                return
        try:
            proc.terminate()
        except ProcessLookupError:
            pass  # Already exited
        logger.info("Stopped session %s (PID %s)", session_id, proc.pid)

    def is_running(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._running

    def subscribe(self, session_id: str, handler: EventHandler) -> None:
        with self._lock:
            self._handlers.setdefault(session_id, []).append(handler)

    def unsubscribe(self, session_id: str, handler: EventHandler) -> None:
        with self._lock:
            handlers = self._handlers.get(session_id)
            if not handlers:
                return
            try:
                handlers.remove(handler)
            except ValueError:
                pass
            if not handlers:
                del self._handlers[session_id]

    def _emit(self, event: StreamEvent) -> None:
        with self._lock:
            handlers = list(self._handlers.get(event.session_id, ()))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for session %s", event.session_id)

    def _run(self, session_id: str, cmd: list[str], cwd: str | None) -> None:
        exit_code = None
        try:
            proc = subprocess.Popen(
                cmd,
                cwd=cwd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
            )
        except OSError as e:
            logger.error("Could not start session %s: %s", session_id, e)
            self._emit(StreamEvent(ERROR, session_id, str(e)))
            self._finish(session_id, exit_code)
            return

        with self._lock:
            self._processes[session_id] = proc
            stop_now = session_id in self._stop_requested
        if stop_now:
            proc.terminate()

        try:
            for line in proc.stdout:
                event = parse_stream_line(line, session_id)
                if event:
                    self._emit(event)
        finally:
            proc.stdout.close()
            exit_code = proc.wait()
            self._finish(session_id, exit_code)

    def _finish(self, session_id: str, exit_code: int | None) -> None:
        with self._lock:
            self._processes.pop(session_id, None)
            self._running.discard(session_id)
            self._stop_requested.discard(session_id)
        logger.info("Session %s exited (exit_code=%s)", session_id, exit_code)
        self._emit(StreamEvent(SESSION_EXITED, session_id, data={"exit_code": exit_code}))
        with self._lock:
            self._handlers.pop(session_id, None)
