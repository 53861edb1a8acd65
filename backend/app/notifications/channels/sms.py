"""
sms.py — SMS delivery channel (downstream alerts and upstream binding).

Two uses:
    • SMS          — last-resort downstream alert, ≤160 chars GSM 7-bit
    • SMS_BINDING  — the app is told to send an upstream SMS to the bank's
                     virtual number; the backend "delivers" the instruction

═══════════════════════════════════════════════════════════════════════════
MESSAGE TEMPLATE
═══════════════════════════════════════════════════════════════════════════

    "[<EVENT_TYPE>] Security alert on your account. Not you? Call the bank. Ref:<id8>"

Provider abstraction mirrors the usual gateways (Twilio, MSG91); only the
"simulation" provider is wired.
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

SMS_MAX_GSM7 = 160


def _format_sms(record: TelemetryRecord) -> str:
    """Format the SMS body within the 160-char GSM limit."""
    prefix = f"[{record.event_type}] "
    body = "Security alert on your account. Not you? Call the bank."
    suffix = f" Ref:{record.event_id[-8:]}"

    available = SMS_MAX_GSM7 - len(prefix) - len(suffix)
    if len(body) > available:
        body = body[: max(available - 3, 0)] + "..."
    return f"{prefix}{body}{suffix}"


def send(
    record: TelemetryRecord,
    channel: NotificationChannel = NotificationChannel.SMS,
    *,
    provider: str = "simulation",
) -> DeliveryAttempt:
    """
    Send an SMS (or binding instruction) for ``record``.

    Parameters
    ----------
    record : TelemetryRecord
    channel : NotificationChannel
        SMS or SMS_BINDING.
    provider : str
        Gateway name; anything other than "simulation" fails.
    """
    attempt = DeliveryAttempt(
        channel=channel,
        event_id=record.event_id,
        status=DeliveryStatus.SENDING,
    )

    try:
        if provider != "simulation":
            attempt.status = DeliveryStatus.FAILED
            attempt.error_message = f"Unknown SMS provider: {provider}"
        elif channel == NotificationChannel.SMS_BINDING:
            logger.info(
                "[SMS_BINDING] %s → %s: awaiting upstream binding SMS",
                record.event_id, record.user_id,
                extra={"event_id": record.event_id, "channel": channel.value},
            )
            attempt.status = DeliveryStatus.DELIVERED
            attempt.provider_response = {"mode": "simulated", "direction": "upstream"}
        else:
            sms_body = _format_sms(record)
            logger.info(
                "[SMS] %s → %s: %d chars → '%s'",
                record.event_id, record.user_id, len(sms_body), sms_body,
                extra={"event_id": record.event_id, "channel": channel.value},
            )
            attempt.status = DeliveryStatus.DELIVERED
            attempt.provider_response = {
                "mode": "simulated",
                "provider": provider,
                "message_length": len(sms_body),
                "segments": 1 + (len(sms_body) - 1) // SMS_MAX_GSM7,
            }
    except Exception as exc:
        logger.error("[SMS] Failed for %s: %s", record.event_id, exc)
        attempt.status = DeliveryStatus.FAILED
        attempt.error_message = str(exc)

    attempt.completed_at = datetime.now(timezone.utc)
    return attempt
