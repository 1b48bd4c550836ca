import asyncio
from typing import Any, Dict, Optional

from loguru import logger
from slack_sdk.errors import SlackApiError
from slack_sdk.web import WebClient

from integrations.dispatch import WebhookDispatcher, dispatcher as default_dispatcher
from pipeline import settings
from pipeline.money import format_usd


def _fmt_count(value: Any) -> str:
    return f"{int(value):,}" if isinstance(value, (int, float)) else "Unknown"


def _fmt_usd(value: Any) -> str:
    return format_usd(value) if isinstance(value, (int, float)) else "Unknown"


class SlackNotifier:
    """Slack notifications for qualified leads."""

    def __init__(self, webhook_url: Optional[str] = None, dispatcher: Optional[WebhookDispatcher] = None):
        self.webhook_url = webhook_url or settings.SLACK_WEBHOOK_URL
        self.dispatcher = dispatcher or default_dispatcher

    def build_message(self, state: Dict[str, Any]) -> Dict[str, Any]:
        """Build the text fallback and blocks for a qualified lead."""
        derived = state.get("enriched", {}).get("derived", {})
        company = state.get("enriched", {}).get("company_enrichment") or {}
        qualification = state.get("qualification", {})

        name = company.get("name") or derived.get("company_name") or derived.get("domain") or "A lead"
        text = f"{name} was just qualified 🎉"

        blocks = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": "🎉 New Qualified Lead"}
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Company:*\n{name}"},
                    {"type": "mrkdwn", "text": f"*Email:*\n{derived.get('email') or 'Unknown'}"},
                    {"type": "mrkdwn", "text": f"*Domain:*\n{derived.get('domain') or 'Unknown'}"},
                    {"type": "mrkdwn", "text": f"*Workspace:*\n{state.get('workspace_name') or 'Unknown'}"},
                ]
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Employees:*\n{_fmt_count(company.get('employee_count'))}"},
                    {"type": "mrkdwn", "text": f"*Funding:*\n{_fmt_usd(company.get('total_funding_raised'))}"},
                    {"type": "mrkdwn", "text": f"*Sector:*\n{company.get('sector') or 'Unknown'}"},
                    {"type": "mrkdwn", "text": f"*Size:*\n{company.get('size') or 'Unknown'}"},
                ]
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*Why:* {qualification.get('reason', '')}"}
            },
        ]
        return {"text": text, "blocks": blocks}

    async def send_qualified_notification(self, state: Dict[str, Any]) -> Dict[str, Any]:
        """
        Announce a qualified lead.

        Uses the workspace's own bot token and channel when it has connected
        Slack, otherwise the shared incoming webhook.

        Returns:
            {"ok": bool, ...} describing the delivery
        """
        workspace = state.get("workspace") or {}
        message = self.build_message(state)
        token = workspace.get("slack_access_token")
        channel = workspace.get("slack_channel_id")

        if token and channel:
            return await asyncio.to_thread(self._post_with_token, token, channel, message)
        if self.webhook_url:
            return await self.dispatcher.post(self.webhook_url, message)

        logger.info("No Slack credentials configured, skipping notification")
        return {"ok": True, "skipped": True}

    def _post_with_token(self, token: str, channel: str, message: Dict[str, Any]) -> Dict[str, Any]:
        try:
            client = WebClient(token=token)
            response = client.chat_postMessage(channel=channel, text=message["text"], blocks=message["blocks"])
            logger.info(f"Slack notification sent to {channel}: {response['ts']}")
            return {"ok": True, "ts": response["ts"]}
        except SlackApiError as e:
            logger.error(f"Slack notification failed: {e.response.get('error')}")
            return {"ok": False, "error": str(e.response.get("error"))}


# Global Slack notifier instance
slack_notifier = SlackNotifier()
