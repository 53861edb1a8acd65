"""
in_app.py — In-app flash for users currently in the foreground app.

The app holds a live session, so the message is rendered as a banner
immediately and acknowledged by the user tapping it. Nothing to escalate:
the user is demonstrably present.
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


def send(
    record: TelemetryRecord,
    channel: NotificationChannel = NotificationChannel.IN_APP,
) -> DeliveryAttempt:
    attempt = DeliveryAttempt(
        channel=channel,
        event_id=record.event_id,
        status=DeliveryStatus.SENDING,
    )
    logger.info(
        "[IN_APP] %s → %s: %s",
        record.event_id, record.user_id, record.event_type,
        extra={"event_id": record.event_id, "channel": channel.value},
    )
    attempt.status = DeliveryStatus.DELIVERED
    attempt.completed_at = datetime.now(timezone.utc)
    attempt.provider_response = {"mode": "simulated", "session": "foreground"}
    return attempt
