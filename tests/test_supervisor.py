"""Tests for the Claude CLI process supervisor."""

import json
import os
import stat
import sys
import tempfile
import threading
from pathlib import Path

import pytest

from work_engine.config import Config
from work_engine.core.bridge import SessionBridge
from work_engine.db.models import Session
from work_engine.process.supervisor import (
    ASSISTANT_TEXT,
    ERROR,
    RESULT,
    SESSION_EXITED,
    ClaudeProcessSupervisor,
    parse_stream_line,
)

FAKE_CLAUDE = """#!{python}
import json, sys
print(json.dumps({{"type": "system", "subtype": "init"}}), flush=True)
print(json.dumps({{"type": "assistant", "message": {{"content": [
    {{"type": "text", "text": "Opened "}},
    {{"type": "tool_use", "name": "Bash"}},
]}}}}), flush=True)
print(json.dumps({{"type": "assistant", "message": {{"content": [
    {{"type": "text", "text": "https://github.com/a/b/pull/5"}},
]}}}}), flush=True)
print("not json", flush=True)
print(json.dumps({{"type": "result", "subtype": "success", "result": "done"}}), flush=True)
sys.exit(0)
"""


@pytest.fixture
def fake_claude():
    with tempfile.TemporaryDirectory() as tmp:
        script = Path(tmp) / "claude"
        script.write_text(FAKE_CLAUDE.format(python=sys.executable))
        script.chmod(script.stat().st_mode | stat.S_IEXEC)
        yield str(script), tmp


def _session(work_dir=None, model=None, permission_mode="acceptEdits"):
    return Session(id="sess-1", agent_id="bot", project_id="proj", work_dir=work_dir,
                   model=model, permission_mode=permission_mode)


class TestParseStreamLine:
    def test_assistant_text_blocks(self):
        line = json.dumps({"type": "assistant", "message": {"content": [
            {"type": "text", "text": "Hello "},
            {"type": "tool_use", "name": "Edit"},
            {"type": "text", "text": "world"},
        ]}})
        event = parse_stream_line(line, "s1")
        assert event.type == ASSISTANT_TEXT
        assert event.text == "Hello world"
        assert event.session_id == "s1"

    def test_tool_only_message_ignored(self):
        line = json.dumps({"type": "assistant", "message": {"content": [{"type": "tool_use"}]}})
        assert parse_stream_line(line) is None

    def test_result(self):
        event = parse_stream_line(json.dumps({"type": "result", "result": "final"}))
        assert event.type == RESULT
        assert event.text == "final"

    def test_error(self):
        event = parse_stream_line(json.dumps({"type": "error", "error": "overloaded"}))
        assert event.type == ERROR
        assert event.text == "overloaded"

    @pytest.mark.parametrize("line", ["", "   ", "plain text", "[1, 2]", '{"type": "system"}'])
    def test_ignored_lines(self, line):
        assert parse_stream_line(line) is None


class TestBuildCommand:
    def test_defaults(self):
        sup = ClaudeProcessSupervisor(default_model="sonnet")
        cmd = sup.build_command(_session(), "do the work")
        assert cmd[:3] == ["claude", "-p", "do the work"]
        assert "stream-json" in cmd
        assert cmd[cmd.index("--model") + 1] == "sonnet"
        assert cmd[cmd.index("--permission-mode") + 1] == "acceptEdits"
        assert "--max-turns" not in cmd

    def test_agent_model_wins(self):
        sup = ClaudeProcessSupervisor(default_model="sonnet", max_turns=30)
        cmd = sup.build_command(_session(model="opus", permission_mode=None), "x")
        assert cmd[cmd.index("--model") + 1] == "opus"
        assert "--permission-mode" not in cmd
        assert cmd[cmd.index("--max-turns") + 1] == "30"

    def test_from_config(self):
        sup = ClaudeProcessSupervisor.from_config(Config(claude_command="/opt/claude", max_turns=5))
        assert sup.claude_command == "/opt/claude"
        assert sup.default_model == "sonnet"
        assert sup.max_turns == 5


class TestRunSession:
    def test_streams_events_and_exits(self, fake_claude):
        command, workdir = fake_claude
        sup = ClaudeProcessSupervisor(claude_command=command)
        events = []
        exited = threading.Event()

        def handler(event):
            events.append(event)
            if event.type == SESSION_EXITED:
                exited.set()

        sup.subscribe("sess-1", handler)
        sup.start_session(_session(work_dir=workdir), "go")
        assert exited.wait(10)

        types = [e.type for e in events]
        assert types == [ASSISTANT_TEXT, ASSISTANT_TEXT, RESULT, SESSION_EXITED]
        assert events[-1].data["exit_code"] == 0
        assert not sup.is_running("sess-1")

    def test_bridge_collects_output(self, fake_claude):
        command, workdir = fake_claude
        bridge = SessionBridge(ClaudeProcessSupervisor(claude_command=command))
        future = bridge.run(_session(work_dir=workdir), "go")
        assert future.result(timeout=10) == "Opened https://github.com/a/b/pull/5"

    def test_missing_binary_reports_exit(self):
        sup = ClaudeProcessSupervisor(claude_command=os.path.join(tempfile.gettempdir(), "no-claude-here"))
        events = []
        exited = threading.Event()

        def handler(event):
            events.append(event)
            if event.type == SESSION_EXITED:
                exited.set()

        sup.subscribe("sess-1", handler)
        sup.start_session(_session(), "go")
        assert exited.wait(10)
        assert [e.type for e in events] == [ERROR, SESSION_EXITED]
        assert events[-1].data["exit_code"] is None
