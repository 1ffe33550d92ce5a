"""Slack notifications for feature progress.

Notifications are best-effort: a failed post is logged and never stops a run.
"""

import logging
from dataclasses import dataclass

from codettea.models import Task

logger = logging.getLogger(__name__)

STATUS_EMOJI = {
    "pending": ":white_circle:",
    "solving": ":large_blue_circle:",
    "reviewing": ":eyes:",
    "approved": ":thumbsup:",
    "rejected": ":red_circle:",
    "completed": ":white_check_mark:",
}


class SlackError(Exception):
    """Raised when Slack is not configured or rejects a message."""


@dataclass
class SlackMessage:
    channel: str
    ts: str
    text: str


class SlackNotifier:
    """Posts to a single channel. Disabled unless both token and channel are set."""

    def __init__(self, token: str | None, channel: str | None):
        self.token = token
        self.channel = channel
        self._client = None

    @property
    def enabled(self) -> bool:
        return bool(self.token and self.channel)

    @property
    def client(self):
        if self._client is None:
            if not self.token:
                raise SlackError("Slack not configured: SLACK_BOT_TOKEN not set")
            from slack_sdk import WebClient
            self._client = WebClient(token=self.token)
        return self._client

    def post(self, text: str, blocks: list[dict] | None = None) -> SlackMessage:
        if not self.channel:
            raise SlackError("Slack not configured: CODETTEA_SLACK_CHANNEL not set")
        from slack_sdk.errors import SlackApiError

        try:
            response = self.client.chat_postMessage(channel=self.channel, text=text, blocks=blocks)
        except SlackApiError as e:
            raise SlackError(f"Slack rejected message: {e.response.get('error', e)}") from e
        return SlackMessage(channel=response["channel"], ts=response["ts"], text=text)

    def notify(self, text: str, blocks: list[dict] | None = None) -> SlackMessage | None:
        if not self.enabled:
            return None
        try:
            return self.post(text, blocks)
        except Exception:
            logger.exception("Failed to send Slack notification")
            return None


# ── Message blocks ───────────────────────────────────────────────────────────


def _section(text: str) -> list[dict]:
    return [{"type": "section", "text": {"type": "mrkdwn", "text": text}}]


def format_task_notification(issue_number: int, title: str, status: str, feature: str) -> list[dict]:
    emoji = STATUS_EMOJI.get(status, ":grey_question:")
    return _section(f"{emoji} *Issue #{issue_number}*\n*{title}*\nStatus: *{status}* | Feature: `{feature}`")


def format_feature_summary(feature: str, tasks: list[Task]) -> list[dict]:
    """Progress line plus one line per task with its attempt count."""
    completed = sum(1 for t in tasks if t.status == "completed")
    total = len(tasks)
    progress = completed / total * 100 if total > 0 else 0
    lines = [
        f"{STATUS_EMOJI.get(t.status, ':grey_question:')} #{t.issue_number} {t.title} "
        f"({t.attempts} attempt{'s' if t.attempts != 1 else ''})"
        for t in tasks
    ]
    header = f":bar_chart: *Feature: {feature}*\nProgress: {progress:.0f}% ({completed}/{total})"
    return _section("\n".join([header] + lines))


def format_feature_failure(feature: str, error: str) -> list[dict]:
    return _section(f":x: *Feature {feature} failed*\n```{error}```")
