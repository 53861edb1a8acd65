"""
test_channel_backends.py — Tests for the simulated channel backends.

Run with:
    pytest tests/test_channel_backends.py -v
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from backend.app.notifications.channels import in_app, push, sms, whatsapp
from backend.app.notifications.channels.push import _build_push_data
from backend.app.notifications.channels.sms import SMS_MAX_GSM7, _format_sms
from backend.app.notifications.models import (
    DeliveryStatus,
    NotificationChannel,
    TelemetryRecord,
)


def _make_record(event_type: str = "LOGIN_OTP") -> TelemetryRecord:
    return TelemetryRecord(
        event_id="0f8fad5b-d9cb-469f-a165-70867728950e",
        user_id="demo_user",
        event_type=event_type,
        sent_ts=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )


class TestSimulatedDelivery:

    @pytest.mark.parametrize("module, channel", [
        (in_app, NotificationChannel.IN_APP),
        (push, NotificationChannel.PUSH),
        (whatsapp, NotificationChannel.WHATSAPP),
        (sms, NotificationChannel.SMS),
        (sms, NotificationChannel.SMS_BINDING),
    ])
    def test_delivers(self, module, channel):
        attempt = module.send(_make_record(), channel)
        assert attempt.status == DeliveryStatus.DELIVERED
        assert attempt.channel == channel
        assert attempt.event_id == _make_record().event_id
        assert attempt.completed_at is not None


class TestPush:

    def test_payload_references_event(self):
        data = _build_push_data(_make_record())
        assert data["notification"]["data"]["event_id"] == _make_record().event_id
        assert data["notification"]["body"] == "Login Otp on your account"


class TestSms:

    def test_body_within_gsm_limit(self):
        body = _format_sms(_make_record("X" * 300))
        assert len(body) <= SMS_MAX_GSM7

    def test_body_carries_reference(self):
        body = _format_sms(_make_record())
        assert body.startswith("[LOGIN_OTP] ")
        assert body.endswith("Ref:7728950e")

    def test_binding_is_upstream(self):
        attempt = sms.send(_make_record(), NotificationChannel.SMS_BINDING)
        assert attempt.provider_response["direction"] == "upstream"

    def test_unknown_provider_fails(self):
        attempt = sms.send(_make_record(), provider="carrier-pigeon")
        assert attempt.status == DeliveryStatus.FAILED
        assert "carrier-pigeon" in attempt.error_message
