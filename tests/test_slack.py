"""Tests for Slack completion notifications."""

from unittest.mock import MagicMock, patch

import pytest

from work_engine.db.models import WorkTask
from work_engine.integrations import slack as slack_mod


def _task(**overrides):
    fields = dict(
        id="t1", agent_id="bot", project_id="proj", description="Fix the login bug",
        branch_name="agent/bot/fix-the-login-bug-1-abcdef", iteration_count=2,
    )
    fields.update(overrides)
    return WorkTask(**fields)


class TestFormat:
    def test_completed(self):
        task = _task(status="completed", pr_url="https://github.com/a/b/pull/1")
        text = slack_mod.format_work_task_notification(task)[0]["text"]["text"]
        assert "Work task completed" in text
        assert "<https://github.com/a/b/pull/1|View Pull Request>" in text
        assert "Iterations: 2" in text

    def test_failed(self):
        task = _task(status="failed", error="Validation failed after 3 iteration(s):\nboom")
        text = slack_mod.format_work_task_notification(task)[0]["text"]["text"]
        assert "Work task failed" in text
        assert "Validation failed after 3" in text

    def test_long_description_shortened(self):
        task = _task(status="failed", description="x" * 200)
        text = slack_mod.format_work_task_notification(task)[0]["text"]["text"]
        assert "x" * 77 + "..." in text
        assert "x" * 78 not in text


class TestSend:
    def test_not_configured(self):
        with pytest.raises(slack_mod.SlackError):
            slack_mod.send_message(None, "#dev", "hi")

    def test_send_message(self):
        client = MagicMock()
        client.chat_postMessage.return_value = {"channel": "C1", "ts": "123.45"}
        with patch.object(slack_mod, "get_client", return_value=client):
            msg = slack_mod.send_message("xoxb", "#dev", "hi")
        assert msg.ts == "123.45"
        client.chat_postMessage.assert_called_once_with(channel="#dev", text="hi", blocks=None)


class TestCompletionNotifier:
    def test_posts_outcome(self):
        with patch.object(slack_mod, "send_message") as mock_send:
            slack_mod.completion_notifier("xoxb", "#dev")(_task(status="completed"))
        args = mock_send.call_args.args
        assert args[:2] == ("xoxb", "#dev")
        assert args[2] == "Work task completed: Fix the login bug"

    def test_errors_are_logged_not_raised(self):
        with patch.object(slack_mod, "send_message", side_effect=RuntimeError("slack down")):
            slack_mod.completion_notifier("xoxb", "#dev")(_task(status="failed"))
