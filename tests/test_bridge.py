"""Tests for the session bridge and completion callbacks."""

from unittest.mock import MagicMock

from work_engine.core.bridge import SessionBridge
from work_engine.core.completion import CompletionRegistry
from work_engine.db.models import Session, WorkTask
from work_engine.process.supervisor import ASSISTANT_TEXT, ERROR, RESULT, SESSION_EXITED


def _session(session_id="s1"):
    return Session(id=session_id, agent_id="bot", project_id="proj", work_dir="/tmp/wt")


class TestSessionBridge:
    def test_accumulates_text_until_result(self, supervisor):
        done = MagicMock()
        future = SessionBridge(supervisor).run(_session(), "do it", done)

        supervisor.emit("s1", ASSISTANT_TEXT, "Working... ")
        supervisor.emit("s1", ASSISTANT_TEXT, "https://github.com/a/b/pull/1\n")
        assert not future.done()

        supervisor.emit("s1", RESULT)
        assert future.result(timeout=1) == "Working... https://github.com/a/b/pull/1"
        done.assert_called_once_with("Working... https://github.com/a/b/pull/1")

    def test_fires_once_for_result_then_exit(self, supervisor):
        done = MagicMock()
        SessionBridge(supervisor).run(_session(), "do it", done)
        supervisor.finish("s1", "text")
        supervisor.emit("s1", SESSION_EXITED)
        done.assert_called_once_with("text")

    def test_exit_without_result(self, supervisor):
        done = MagicMock()
        future = SessionBridge(supervisor).run(_session(), "do it", done)
        supervisor.emit("s1", ASSISTANT_TEXT, "partial")
        supervisor.emit("s1", SESSION_EXITED)
        assert future.result(timeout=1) == "partial"
        done.assert_called_once_with("partial")

    def test_error_event_is_not_terminal(self, supervisor):
        future = SessionBridge(supervisor).run(_session(), "do it")
        supervisor.emit("s1", ERROR, "rate limited")
        assert not future.done()
        supervisor.emit("s1", RESULT)
        assert future.result(timeout=1) == ""

    def test_unsubscribes_after_finish(self, supervisor):
        SessionBridge(supervisor).run(_session(), "do it")
        supervisor.emit("s1", RESULT)
        assert supervisor.handlers["s1"] == []

    def test_sessions_are_independent(self, supervisor):
        bridge = SessionBridge(supervisor)
        f1 = bridge.run(_session("s1"), "one")
        f2 = bridge.run(_session("s2"), "two")
        supervisor.finish("s2", "second")
        supervisor.finish("s1", "first")
        assert f1.result(timeout=1) == "first"
        assert f2.result(timeout=1) == "second"

    def test_start_failure_resolves_empty(self, supervisor):
        supervisor.fail_start = True
        done = MagicMock()
        future = SessionBridge(supervisor).run(_session(), "do it", done)
        assert future.result(timeout=1) == ""
        done.assert_called_once_with("")

    def test_failing_callback_still_resolves(self, supervisor):
        future = SessionBridge(supervisor).run(_session(), "do it", MagicMock(side_effect=RuntimeError))
        supervisor.finish("s1", "ok")
        assert future.result(timeout=1) == "ok"


class TestCompletionRegistry:
    def test_each_callback_once_despite_failure(self):
        registry = CompletionRegistry()
        task = WorkTask(id="t1", agent_id="bot", project_id="proj", description="x", status="completed")
        first = MagicMock()
        broken = MagicMock(side_effect=RuntimeError("boom"))
        last = MagicMock()
        for cb in (first, broken, last):
            registry.register("t1", cb)

        assert registry.notify(task) == 3
        assert registry.notify(task) == 0

        first.assert_called_once_with(task)
        broken.assert_called_once_with(task)
        last.assert_called_once_with(task)

    def test_duplicate_registration_ignored(self):
        registry = CompletionRegistry()
        cb = MagicMock()
        registry.register("t1", cb)
        registry.register("t1", cb)
        assert registry.notify(WorkTask(id="t1", agent_id="a", project_id="p", description="x")) == 1
        cb.assert_called_once()

    def test_only_matching_task_notified(self):
        registry = CompletionRegistry()
        cb = MagicMock()
        registry.register("t2", cb)
        registry.notify(WorkTask(id="t1", agent_id="a", project_id="p", description="x"))
        cb.assert_not_called()
        assert registry.notify(WorkTask(id="t2", agent_id="a", project_id="p", description="x")) == 1

    def test_unregister(self):
        registry = CompletionRegistry()
        cb = MagicMock()
        registry.register("t1", cb)
        registry.unregister("t1", cb)
        assert registry.notify(WorkTask(id="t1", agent_id="a", project_id="p", description="x")) == 0
        cb.assert_not_called()
