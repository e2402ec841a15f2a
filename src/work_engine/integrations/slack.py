"""Slack Web API integration."""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from work_engine.db.models import COMPLETED, WorkTask

logger = logging.getLogger(__name__)


class SlackError(Exception):
    """Raised when a Slack operation fails."""


@dataclass
class SlackMessage:
    channel: str
    ts: str
    text: str


def get_client(token: str | None):
    """Get a Slack WebClient. Returns None if no token provided."""
    if not token:
        return None
    from slack_sdk import WebClient
    return WebClient(token=token)


def send_message(
    token: str | None,
    channel: str,
    text: str,
    blocks: list[dict] | None = None,
) -> SlackMessage:
    """Send a message to a Slack channel."""
    client = get_client(token)
    if not client:
        raise SlackError("Slack not configured: SLACK_BOT_TOKEN not set")

    response = client.chat_postMessage(
        channel=channel,
        text=text,
        blocks=blocks,
    )

    return SlackMessage(
        channel=response["channel"],
        ts=response["ts"],
        text=text,
    )


def format_work_task_notification(task: WorkTask) -> list[dict]:
    """Format a finished work task as Slack blocks."""
    description = task.description if len(task.description) <= 80 else task.description[:77] + "..."
    if task.status == COMPLETED:
        header = f":white_check_mark: *Work task completed*\n*{description}* (`{task.id}`)"
        detail = f"Branch: `{task.branch_name}`"
        if task.pr_url:
            detail += f"\n<{task.pr_url}|View Pull Request>"
    else:
        header = f":x: *Work task failed*\n*{description}* (`{task.id}`)"
        detail = f"Error: {(task.error or 'unknown')[:300]}"

    return [
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": f"{header}\nIterations: {task.iteration_count} | Project: {task.project_id}\n{detail}",
            },
        }
    ]


def completion_notifier(token: str, channel: str) -> Callable[[WorkTask], None]:
    """Build a completion callback that posts the task outcome to ``channel``."""

    def notify(task: WorkTask) -> None:
        try:
            send_message(
                token,
                channel,
                f"Work task {task.status}: {task.description[:80]}",
                format_work_task_notification(task),
            )
        except Exception:
            logger.exception("Failed to send Slack notification for work task %s", task.id)

    return notify
