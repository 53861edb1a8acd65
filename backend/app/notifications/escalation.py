"""
escalation.py — Deadline timers that downgrade unacknowledged events.

═══════════════════════════════════════════════════════════════════════════
ACK vs. TIMER RACE
═══════════════════════════════════════════════════════════════════════════

    dispatch ──► arm(event, deadline)
                    │
       ┌────────────┴─────────────┐
       ▼                          ▼
    acknowledge()             timer fires
    store.set_ack()           store.set_fallback()
       │                          │
       └──── per-record lock ─────┘
             exactly one wins

Acknowledgment never cancels the timer. The timer always runs and the
store's check-and-set on ``ack_ts`` decides whether it does anything, so
an ack that wins makes the fallback permanently impossible regardless of
how late the timer thread is scheduled.

Timers are daemon ``threading.Timer`` objects by default; the factory is
injectable so tests can fire them by hand.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Set

from backend.app.notifications.event_store import EventStore
from backend.app.notifications.models import (
    DeviceContext,
    NotificationChannel,
    _now,
)

logger = logging.getLogger(__name__)

FallbackSelector = Callable[[DeviceContext], Optional[NotificationChannel]]
EscalationHook = Callable[[str, NotificationChannel], None]
TimerFactory = Callable[[float, Callable[[], None]], Any]


def thread_timer(delay: float, callback: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    return timer


class EscalationScheduler:
    """
    One deadline timer per event.

    Usage:
        scheduler = EscalationScheduler(store, timeout_seconds=20.0)
        scheduler.arm(event_id, None, fallback_channel_for_push, ctx)
    """

    def __init__(
        self,
        store: EventStore,
        *,
        timeout_seconds: float,
        clock: Callable[[], datetime] = _now,
        timer_factory: TimerFactory = thread_timer,
        on_escalate: Optional[EscalationHook] = None,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self._store = store
        self._timeout = timeout_seconds
        self._clock = clock
        self._timer_factory = timer_factory
        self._on_escalate = on_escalate
        self._lock = threading.Lock()
        self._armed: Dict[str, Any] = {}
        self._seen: Set[str] = set()
        self._closed = False

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    def set_escalation_hook(self, hook: Optional[EscalationHook]) -> None:
        self._on_escalate = hook

    def arm(
        self,
        event_id: str,
        deadline_seconds: Optional[float],
        fallback_selector: FallbackSelector,
        context: DeviceContext,
    ) -> bool:
        """
        Start the deadline for ``event_id``.

        Returns False if a timer was already armed for this event, the
        scheduler has been shut down, or the timer could not be started
        (in which case the event may be armed again). Never blocks on the
        deadline.
        """
        delay = self._timeout if deadline_seconds is None else deadline_seconds

        with self._lock:
            if self._closed:
                logger.warning("Scheduler closed; not arming %s", event_id)
                return False
            if event_id in self._seen:
                logger.warning("Escalation already armed for %s", event_id)
                return False
            timer = self._timer_factory(
                delay, lambda: self.fire(event_id, fallback_selector, context),
            )
            self._seen.add(event_id)
            self._armed[event_id] = timer

        try:
            timer.start()
        except Exception:
            with self._lock:
                self._armed.pop(event_id, None)
                self._seen.discard(event_id)
            logger.exception(
                "Could not start escalation timer for %s", event_id,
                extra={"event_id": event_id},
            )
            return False

        logger.debug(
            "Armed escalation for %s (%.1fs)", event_id, delay,
            extra={"event_id": event_id},
        )
        return True

    def fire(
        self,
        event_id: str,
        fallback_selector: FallbackSelector,
        context: DeviceContext,
    ) -> Optional[NotificationChannel]:
        """
        Timer callback: commit the fallback if the event is still unacked.

        Returns the committed channel, or None when the ack won the race,
        the event is unknown, or there is nothing to fall back to.
        Exceptions are logged, never raised into the timer thread.
        """
        with self._lock:
            self._armed.pop(event_id, None)

        try:
            channel = fallback_selector(context)
            if channel is None:
                return None
            if not self._store.set_fallback(event_id, channel, self._clock()):
                logger.debug(
                    "Escalation for %s skipped (acknowledged or unknown)",
                    event_id, extra={"event_id": event_id},
                )
                return None
        except Exception:
            logger.exception("Escalation for %s failed", event_id)
            return None

        logger.info(
            "Escalated %s to %s", event_id, channel.value,
            extra={"event_id": event_id, "channel": channel.value},
        )
        if self._on_escalate is not None:
            try:
                self._on_escalate(event_id, channel)
            except Exception:
                logger.exception("Escalation hook failed for %s", event_id)
        return channel

    def pending(self) -> int:
        """Timers armed and not yet fired."""
        with self._lock:
            return len(self._armed)

    def shutdown(self) -> int:
        """Best-effort cancel of outstanding timers. Returns how many."""
        with self._lock:
            self._closed = True
            timers = list(self._armed.values())
            self._armed.clear()
        for timer in timers:
            cancel = getattr(timer, "cancel", None)
            if cancel is not None:
                cancel()
        if timers:
            logger.info("Cancelled %d pending escalation timers", len(timers))
        return len(timers)
