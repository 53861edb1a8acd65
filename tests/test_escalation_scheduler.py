"""
test_escalation_scheduler.py — Tests for deadline-driven fallback.

Covers:
    • arm() never blocks and uses the configured or explicit deadline
    • fire() commits the fallback only when the event is unacked
    • One timer per event, refusal after shutdown
    • Hook invocation and error containment in the timer thread
    • One real (short) threading.Timer deadline end to end

Run with:
    pytest tests/test_escalation_scheduler.py -v
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from functools import partial
from unittest.mock import MagicMock

import pytest

from backend.app.notifications.channel_selector import fallback_channel_for
from backend.app.notifications.escalation import EscalationScheduler
from backend.app.notifications.event_store import EventStore
from backend.app.notifications.models import (
    DeviceContext,
    LogEntry,
    NotificationChannel,
    TelemetryRecord,
)


T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
NO_WHATSAPP = DeviceContext(has_app=True, device_online=True, whatsapp_opt_in=False)
WITH_WHATSAPP = DeviceContext(has_app=True, device_online=True, whatsapp_opt_in=True)
PUSH_FALLBACK = partial(fallback_channel_for, NotificationChannel.PUSH)


def _publish(store: EventStore, event_id: str = "evt-1") -> None:
    store.create(TelemetryRecord(
        event_id=event_id,
        user_id="demo_user",
        event_type="LOGIN_OTP",
        chosen_channel=NotificationChannel.PUSH,
        sent_ts=T0,
        logs=[LogEntry(ts=T0, msg="Route: PUSH")],
    ))


@pytest.fixture
def store() -> EventStore:
    return EventStore()


@pytest.fixture
def scheduler(store, timers) -> EscalationScheduler:
    return EscalationScheduler(store, timeout_seconds=20.0, timer_factory=timers)


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Arming
# ═══════════════════════════════════════════════════════════════════════════

class TestArm:

    def test_rejects_non_positive_timeout(self, store):
        with pytest.raises(ValueError):
            EscalationScheduler(store, timeout_seconds=0)

    def test_default_deadline(self, scheduler, store, timers):
        _publish(store)
        assert scheduler.arm("evt-1", None, PUSH_FALLBACK, NO_WHATSAPP) is True
        assert timers.timers[0].delay == 20.0
        assert timers.timers[0].started is True
        assert scheduler.pending() == 1

    def test_explicit_deadline(self, scheduler, store, timers):
        _publish(store)
        scheduler.arm("evt-1", 0.5, PUSH_FALLBACK, NO_WHATSAPP)
        assert timers.timers[0].delay == 0.5

    def test_arm_does_not_touch_record(self, scheduler, store):
        _publish(store)
        scheduler.arm("evt-1", None, PUSH_FALLBACK, NO_WHATSAPP)
        record = store.get("evt-1")
        assert record.fallback_triggered is False
        assert len(record.logs) == 1

    def test_one_timer_per_event(self, scheduler, store, timers):
        _publish(store)
        assert scheduler.arm("evt-1", None, PUSH_FALLBACK, NO_WHATSAPP) is True
        assert scheduler.arm("evt-1", None, PUSH_FALLBACK, NO_WHATSAPP) is False
        assert len(timers.timers) == 1

    def test_failed_start_is_rolled_back(self, store, timers):
        attempts = []

        def flaky_timers(delay, callback):
            timer = timers(delay, callback)
            if not attempts:
                timer.start = MagicMock(side_effect=RuntimeError("can't start new thread"))
            attempts.append(timer)
            return timer

        scheduler = EscalationScheduler(store, timeout_seconds=5, timer_factory=flaky_timers)
        _publish(store)
        assert scheduler.arm("evt-1", None, PUSH_FALLBACK, NO_WHATSAPP) is False
        assert scheduler.pending() == 0
        # the event can be armed again once threads are available
        assert scheduler.arm("evt-1", None, PUSH_FALLBACK, NO_WHATSAPP) is True
        assert scheduler.pending() == 1
        assert attempts[1].started is True

    def test_one_timer_per_event_even_after_fire(self, scheduler, store, timers):
        _publish(store)
        scheduler.arm("evt-1", None, PUSH_FALLBACK, NO_WHATSAPP)
        timers.fire_all()
        assert scheduler.arm("evt-1", None, PUSH_FALLBACK, NO_WHATSAPP) is False


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Firing
# ═══════════════════════════════════════════════════════════════════════════

class TestFire:

    def test_unacked_push_falls_back_to_sms(self, scheduler, store, timers):
        _publish(store)
        scheduler.arm("evt-1", None, PUSH_FALLBACK, NO_WHATSAPP)
        timers.fire_all()
        record = store.get("evt-1")
        assert record.fallback_triggered is True
        assert record.fallback_channel == NotificationChannel.SMS
        assert record.logs[-1].msg == "No ACK -> Fallback to SMS"
        assert scheduler.pending() == 0

    def test_unacked_push_falls_back_to_whatsapp(self, scheduler, store, timers):
        _publish(store)
        scheduler.arm("evt-1", None, PUSH_FALLBACK, WITH_WHATSAPP)
        timers.fire_all()
        assert store.get("evt-1").fallback_channel == NotificationChannel.WHATSAPP

    def test_ack_before_deadline_prevents_fallback(self, scheduler, store, timers):
        _publish(store)
        scheduler.arm("evt-1", None, PUSH_FALLBACK, NO_WHATSAPP)
        store.set_ack("evt-1", T0)
        timers.fire_all()
        record = store.get("evt-1")
        assert record.fallback_triggered is False
        assert record.fallback_channel is None
        assert not any("Fallback" in e.msg for e in record.logs)

    def test_fire_returns_channel_or_none(self, scheduler, store):
        _publish(store)
        assert scheduler.fire("evt-1", PUSH_FALLBACK, NO_WHATSAPP) == NotificationChannel.SMS
        assert scheduler.fire("evt-1", PUSH_FALLBACK, NO_WHATSAPP) is None

    def test_fire_unknown_event(self, scheduler):
        assert scheduler.fire("missing", PUSH_FALLBACK, NO_WHATSAPP) is None

    def test_selector_without_fallback(self, scheduler, store):
        _publish(store)
        assert scheduler.fire("evt-1", lambda ctx: None, NO_WHATSAPP) is None
        assert store.get("evt-1").fallback_triggered is False

    def test_selector_error_is_contained(self, scheduler, store):
        _publish(store)

        def broken(ctx):
            raise RuntimeError("boom")

        assert scheduler.fire("evt-1", broken, NO_WHATSAPP) is None
        assert store.get("evt-1").fallback_triggered is False


class TestEscalationHook:

    def test_hook_called_on_commit(self, store, timers):
        hook = MagicMock()
        scheduler = EscalationScheduler(
            store, timeout_seconds=5, timer_factory=timers, on_escalate=hook,
        )
        _publish(store)
        scheduler.arm("evt-1", None, PUSH_FALLBACK, NO_WHATSAPP)
        timers.fire_all()
        hook.assert_called_once_with("evt-1", NotificationChannel.SMS)

    def test_hook_not_called_when_acked(self, store, timers):
        hook = MagicMock()
        scheduler = EscalationScheduler(
            store, timeout_seconds=5, timer_factory=timers, on_escalate=hook,
        )
        _publish(store)
        scheduler.arm("evt-1", None, PUSH_FALLBACK, NO_WHATSAPP)
        store.set_ack("evt-1", T0)
        timers.fire_all()
        hook.assert_not_called()

    def test_hook_failure_does_not_undo_fallback(self, store, timers):
        hook = MagicMock(side_effect=RuntimeError("backend down"))
        scheduler = EscalationScheduler(
            store, timeout_seconds=5, timer_factory=timers, on_escalate=hook,
        )
        _publish(store)
        assert scheduler.fire("evt-1", PUSH_FALLBACK, NO_WHATSAPP) == NotificationChannel.SMS
        assert store.get("evt-1").fallback_triggered is True


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Shutdown
# ═══════════════════════════════════════════════════════════════════════════

class TestShutdown:

    def test_shutdown_cancels_pending(self, scheduler, store, timers):
        _publish(store, "a")
        _publish(store, "b")
        scheduler.arm("a", None, PUSH_FALLBACK, NO_WHATSAPP)
        scheduler.arm("b", None, PUSH_FALLBACK, NO_WHATSAPP)
        assert scheduler.shutdown() == 2
        assert all(t.cancelled for t in timers.timers)
        assert scheduler.pending() == 0

    def test_arm_refused_after_shutdown(self, scheduler, store):
        scheduler.shutdown()
        _publish(store)
        assert scheduler.arm("evt-1", None, PUSH_FALLBACK, NO_WHATSAPP) is False


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Real timer
# ═══════════════════════════════════════════════════════════════════════════

class TestRealTimer:

    def _wait_for(self, predicate, timeout: float = 5.0) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(0.01)
        return False

    def test_short_deadline_fires_on_thread(self):
        store = EventStore()
        scheduler = EscalationScheduler(store, timeout_seconds=0.05)
        _publish(store)
        assert scheduler.arm("evt-1", None, PUSH_FALLBACK, NO_WHATSAPP) is True
        assert self._wait_for(lambda: store.get("evt-1").fallback_triggered)
        assert store.get("evt-1").fallback_channel == NotificationChannel.SMS
        scheduler.shutdown()

    def test_ack_wins_against_real_timer(self):
        store = EventStore()
        scheduler = EscalationScheduler(store, timeout_seconds=0.2)
        _publish(store)
        scheduler.arm("evt-1", None, PUSH_FALLBACK, NO_WHATSAPP)
        store.set_ack("evt-1", T0)
        assert self._wait_for(lambda: scheduler.pending() == 0)
        assert store.get("evt-1").fallback_triggered is False
