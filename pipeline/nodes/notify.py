"""
Side effects of a decision. Nodes here only enqueue jobs on the task queue;
nothing is awaited on the request path and job failures are logged by the
queue.
"""

from typing import Any, Dict

from loguru import logger

from integrations import analytics, dispatch, slack
from pipeline import settings
from pipeline.state import QualifyState


def webhook_payload(state: QualifyState) -> Dict[str, Any]:
    enriched = state.get("enriched", {})
    return {
        "sid": state.get("sid"),
        "workspace": state.get("workspace_name"),
        "answers": state.get("answers", {}),
        "derived": enriched.get("derived", {}),
        "company_enrichment": enriched.get("company_enrichment"),
        "ai_decision": enriched.get("ai_decision"),
        "decision": state.get("qualification", {}),
    }


def _queued(state: QualifyState, name: str, submitted: bool) -> None:
    if submitted:
        state.setdefault("notifications", []).append(name)
    else:
        state.setdefault("errors", []).append(f"{name}_dropped")


async def notify(state: QualifyState) -> QualifyState:
    """Announce a qualified lead in Slack."""
    submitted = dispatch.task_queue.submit(
        "slack_notification", slack.slack_notifier.send_qualified_notification, dict(state)
    )
    _queued(state, "slack_notification", submitted)
    logger.info(f"Slack notification queued for {state.get('sid')}")
    return state


async def record(state: QualifyState) -> QualifyState:
    """Log the outcome to analytics and forward it to the CRM webhook."""
    if state.get("workspace_name"):
        row = analytics.build_event(state)
        _queued(state, "analytics", dispatch.task_queue.submit("analytics", analytics.analytics_store.insert, row))

    if settings.CLAY_WEBHOOK_URL:
        submitted = dispatch.task_queue.submit(
            "crm_webhook", dispatch.dispatcher.post, settings.CLAY_WEBHOOK_URL, webhook_payload(state)
        )
        _queued(state, "crm_webhook", submitted)

    return state
