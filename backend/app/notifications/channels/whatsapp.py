"""
whatsapp.py — WhatsApp Business template message channel.

Only used for users who opted in. Template messages need no open
conversation window; read receipts serve as the acknowledgment signal.
Simulated here.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from backend.app.notifications.models import (
    DeliveryAttempt,
    DeliveryStatus,
    NotificationChannel,
    TelemetryRecord,
)

logger = logging.getLogger(__name__)

TEMPLATE_NAME = "security_event_v1"


def send(
    record: TelemetryRecord,
    channel: NotificationChannel = NotificationChannel.WHATSAPP,
) -> DeliveryAttempt:
    attempt = DeliveryAttempt(
        channel=channel,
        event_id=record.event_id,
        status=DeliveryStatus.SENDING,
    )

    try:
        params = [record.event_type, record.event_id[-8:]]
        logger.info(
            "[WHATSAPP] %s → %s: template=%s params=%s",
            record.event_id, record.user_id, TEMPLATE_NAME, params,
            extra={"event_id": record.event_id, "channel": channel.value},
        )
        attempt.status = DeliveryStatus.DELIVERED
        attempt.provider_response = {
            "mode": "simulated",
            "template": TEMPLATE_NAME,
        }
    except Exception as exc:
        logger.error("[WHATSAPP] Failed for %s: %s", record.event_id, exc)
        attempt.status = DeliveryStatus.FAILED
        attempt.error_message = str(exc)

    attempt.completed_at = datetime.now(timezone.utc)
    return attempt
