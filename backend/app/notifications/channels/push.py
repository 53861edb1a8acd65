"""
push.py — Background push notification channel.

Delivery mechanism:
    • FCM / APNs token registered by the installed app
    • Payload: title, body, event reference, "Approve / Deny" actions
    • Acknowledgment arrives when the user opens the notification

This module simulates the push service: it builds the payload, logs it
and reports delivery. A push can sit unseen in the tray, which is why
the engine arms an escalation timer for it.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from backend.app.notifications.models import (
    DeliveryAttempt,
    DeliveryStatus,
    NotificationChannel,
    TelemetryRecord,
)

logger = logging.getLogger(__name__)


def _build_push_data(record: TelemetryRecord) -> Dict[str, Any]:
    return {
        "notification": {
            "title": "Security alert",
            "body": f"{record.event_type.replace('_', ' ').title()} on your account",
            "tag": record.event_id,
            "data": {
                "event_id": record.event_id,
                "event_type": record.event_type,
            },
            "actions": [
                {"action": "approve", "title": "It was me"},
                {"action": "deny", "title": "Not me"},
            ],
        },
    }


def send(
    record: TelemetryRecord,
    channel: NotificationChannel = NotificationChannel.PUSH,
) -> DeliveryAttempt:
    """
    Send a push notification for ``record``.

    Returns
    -------
    DeliveryAttempt
        DELIVERED in simulation; FAILED if payload construction breaks.
    """
    attempt = DeliveryAttempt(
        channel=channel,
        event_id=record.event_id,
        status=DeliveryStatus.SENDING,
    )

    try:
        push_data = _build_push_data(record)

        # In production: messaging.send(Message(token=..., data=push_data))
        logger.info(
            "[PUSH] %s → %s: %s",
            record.event_id, record.user_id,
            push_data["notification"]["body"],
            extra={"event_id": record.event_id, "channel": channel.value},
        )
        attempt.status = DeliveryStatus.DELIVERED
        attempt.provider_response = {
            "mode": "simulated",
            "push_payload_size": len(str(push_data)),
        }
    except Exception as exc:
        logger.error("[PUSH] Failed for %s: %s", record.event_id, exc)
        attempt.status = DeliveryStatus.FAILED
        attempt.error_message = str(exc)

    attempt.completed_at = datetime.now(timezone.utc)
    return attempt
