"""
Fire-and-forget alert dispatch.

Alerts are always appended to the audit side-channel and, when a webhook is
configured, posted to Slack using the WebhookClient from slack-sdk. Delivery
runs on a small thread pool so the request path never waits on Slack, and a
failed delivery is logged, never raised.

Routing:
- warning(): alerts.log + Slack alert webhook
- critical(): alerts.log + critical_events.log + Slack alert webhook
- notify_manager(): alerts.log + manager webhook (falls back to the alert webhook)

Environment Variables:
- SLACK_WEBHOOK_URL: Slack incoming webhook for warning/critical alerts
- MANAGER_WEBHOOK_URL: Slack incoming webhook for manager review requests
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from slack_sdk.webhook import WebhookClient

from radioquote.core.audit import ALERTS_LOG, CRITICAL_EVENTS_LOG, AuditLog
from radioquote.models.enums import AlertLevel

logger = logging.getLogger(__name__)

LEVEL_EMOJI = {
    AlertLevel.WARNING: ':warning:',
    AlertLevel.CRITICAL: ':rotating_light:',
    AlertLevel.MANAGER: ':clipboard:',
}

LEVEL_TITLE = {
    AlertLevel.WARNING: 'Quote Engine Warning',
    AlertLevel.CRITICAL: 'Critical Quote Engine Alert',
    AlertLevel.MANAGER: 'Quote Requires Manager Review',
}


def format_alert_blocks(
    level: AlertLevel,
    message: str,
    context: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    """
    Build Slack Block Kit blocks for an alert.

    Args:
        level: Alert level, used for the header.
        message: Alert body (plain text, may contain newlines).
        context: Optional key/value details rendered as fields.

    Returns:
        List of block dicts ready for WebhookClient.send(blocks=...).
    """
    blocks: List[Dict[str, Any]] = [
        {
            "type": "header",
            "text": {
                "type": "plain_text",
                "text": f"{LEVEL_EMOJI[level]} {LEVEL_TITLE[level]}",
                "emoji": True,
            },
        },
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": message},
        },
    ]

    if context:
        # Slack caps a section at 10 fields
        fields = [
            {"type": "mrkdwn", "text": f"*{key}:*\n{value}"}
            for key, value in list(context.items())[:10]
        ]
        blocks.append({"type": "section", "fields": fields})

    blocks.append({
        "type": "context",
        "elements": [
            {
                "type": "mrkdwn",
                "text": datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC"),
            }
        ],
    })
    return blocks


class AlertDispatcher:
    """Records alerts and posts them to Slack in the background."""

    def __init__(
        self,
        audit: AuditLog,
        slack_webhook_url: Optional[str] = None,
        manager_webhook_url: Optional[str] = None,
        max_workers: int = 2,
    ):
        self.audit = audit
        self.slack_webhook_url = slack_webhook_url
        self.manager_webhook_url = manager_webhook_url
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix='alerts'
        )

    def warning(self, message: str, context: Optional[Dict[str, Any]] = None) -> Optional[Future]:
        logger.warning(f"ALERT: {message}")
        self.audit.append(ALERTS_LOG, {'level': AlertLevel.WARNING.value, 'message': message})
        return self._post(self.slack_webhook_url, AlertLevel.WARNING, message, context)

    def critical(self, message: str, context: Optional[Dict[str, Any]] = None) -> Optional[Future]:
        logger.error(f"CRITICAL_ALERT: {message}")
        record = {'level': AlertLevel.CRITICAL.value, 'message': message}
        self.audit.append(ALERTS_LOG, record)
        self.audit.append(CRITICAL_EVENTS_LOG, {**record, 'context': context or {}})
        return self._post(self.slack_webhook_url, AlertLevel.CRITICAL, message, context)

    def notify_manager(
        self, message: str, context: Optional[Dict[str, Any]] = None
    ) -> Optional[Future]:
        logger.info(f"MANAGER_NOTIFICATION: {message}")
        self.audit.append(ALERTS_LOG, {'level': AlertLevel.MANAGER.value, 'message': message})
        url = self.manager_webhook_url or self.slack_webhook_url
        return self._post(url, AlertLevel.MANAGER, message, context)

    def close(self) -> None:
        """Wait for queued deliveries and stop the worker threads."""
        self._executor.shutdown(wait=True)

    # =========================================================================
    # Delivery
    # =========================================================================

    def _post(
        self,
        url: Optional[str],
        level: AlertLevel,
        message: str,
        context: Optional[Dict[str, Any]],
    ) -> Optional[Future]:
        if not url:
            return None

        blocks = format_alert_blocks(level, message, context)
        try:
            return self._executor.submit(self._deliver, url, message, blocks)
        except RuntimeError as e:
            # Executor already shut down
            logger.warning(f"Alert not delivered, dispatcher closed: {e}")
            return None

    @staticmethod
    def _deliver(url: str, text: str, blocks: List[Dict[str, Any]]) -> bool:
        try:
            client = WebhookClient(url)
            response = client.send(text=text, blocks=blocks)
            if response.status_code != 200:
                logger.warning(
                    f"Slack webhook returned status {response.status_code}: {response.body}"
                )
                return False
            return True
        except Exception as e:
            logger.error(f"Failed to send Slack alert: {e}")
            return False
