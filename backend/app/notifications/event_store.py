"""
event_store.py — In-memory owner of all telemetry records.

The store is the only writer of published records. Callers (the service,
the escalation timers, the HTTP layer) go through its API and receive
snapshot copies, so the record invariants hold under concurrent access:

    • ack_ts      — first ``set_ack`` wins, later calls are no-ops
    • fallback    — ``set_fallback`` commits only while ack_ts is None
    • logs        — append-only, insertion order is the audit trail

Locking:
    _lock          guards the keyed map and both ordered indices
    per-record     one Lock per event serialises ack / fallback / log writes

Operations on an unknown event id are silent no-ops (return False / None):
timers may fire after a host-side cleanup and must not raise.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime
from itertools import islice
from typing import Callable, Deque, Dict, List, Optional, Set, Tuple

from backend.app.notifications.models import (
    LogEntry,
    NotificationChannel,
    TelemetryRecord,
    _now,
)

logger = logging.getLogger(__name__)


class EventStore:
    """
    Keyed record map plus a most-recent-first event index and a per-user
    index (insertion order, duplicates suppressed).
    """

    def __init__(self, clock: Callable[[], datetime] = _now) -> None:
        self._clock = clock
        self._lock = threading.RLock()
        self._records: Dict[str, TelemetryRecord] = {}
        self._guards: Dict[str, threading.Lock] = {}
        self._order: Deque[str] = deque()
        self._user_events: Dict[str, List[str]] = {}
        self._user_seen: Dict[str, Set[str]] = {}

    # ── Internals ──

    def _entry(
        self, event_id: str,
    ) -> Tuple[Optional[TelemetryRecord], Optional[threading.Lock]]:
        with self._lock:
            return self._records.get(event_id), self._guards.get(event_id)

    def _append(self, record: TelemetryRecord, msg: str, ts: datetime) -> None:
        # Caller holds the record guard.
        record.logs.append(LogEntry(ts=ts, msg=msg))
        logger.info(
            "[event %s] %s", record.event_id, msg,
            extra={"event_id": record.event_id, "user_id": record.user_id},
        )

    # ── Writes ──

    def create(self, record: TelemetryRecord) -> bool:
        """
        Publish a fully-routed record.

        Returns False (and stores nothing) if the event id is taken.
        """
        if not record.logs:
            raise ValueError("record must carry its initiating log entry")
        if record.chosen_channel is None:
            raise ValueError("record must be routed before it is published")

        with self._lock:
            if record.event_id in self._records:
                return False
            self._records[record.event_id] = record
            self._guards[record.event_id] = threading.Lock()
            self._order.appendleft(record.event_id)

            seen = self._user_seen.setdefault(record.user_id, set())
            if record.event_id not in seen:
                seen.add(record.event_id)
                self._user_events.setdefault(record.user_id, []).append(
                    record.event_id
                )

        for entry in record.logs:
            logger.info(
                "[event %s] %s", record.event_id, entry.msg,
                extra={"event_id": record.event_id, "user_id": record.user_id},
            )
        return True

    def append_log(self, event_id: str, message: str) -> bool:
        record, guard = self._entry(event_id)
        if record is None or guard is None:
            return False
        with guard:
            self._append(record, message, self._clock())
        return True

    def set_ack(
        self,
        event_id: str,
        ts: datetime,
        channel: Optional[str] = None,
        message: Optional[str] = None,
    ) -> bool:
        """
        Stamp ``ack_ts`` once.

        ``message`` is appended to the log only by the call that wins.
        Returns True iff this call set the timestamp.
        """
        record, guard = self._entry(event_id)
        if record is None or guard is None:
            return False
        with guard:
            if record.ack_ts is not None:
                return False
            record.ack_ts = ts
            record.ack_channel = channel
            if message:
                self._append(record, message, ts)
        return True

    def set_fallback(
        self,
        event_id: str,
        channel: NotificationChannel,
        ts: datetime,
    ) -> bool:
        """
        Commit an escalation unless an acknowledgment already landed.

        Returns True iff the fallback was committed by this call.
        """
        record, guard = self._entry(event_id)
        if record is None or guard is None:
            return False
        with guard:
            if record.ack_ts is not None or record.fallback_triggered:
                return False
            record.fallback_triggered = True
            record.fallback_channel = channel
            self._append(record, f"No ACK -> Fallback to {channel.value}", ts)
        return True

    # ── Reads ──

    def get(self, event_id: str) -> Optional[TelemetryRecord]:
        record, guard = self._entry(event_id)
        if record is None or guard is None:
            return None
        with guard:
            return record.snapshot()

    def list_recent(self, limit: int = 50) -> List[TelemetryRecord]:
        """Newest first."""
        with self._lock:
            ids = list(islice(self._order, max(limit, 0)))
        return [r for r in (self.get(i) for i in ids) if r is not None]

    def list_for_user(self, user_id: str) -> List[TelemetryRecord]:
        """Newest first, one entry per distinct event."""
        with self._lock:
            ids = list(reversed(self._user_events.get(user_id, [])))
        return [r for r in (self.get(i) for i in ids) if r is not None]

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "events": len(self._records),
                "users": len(self._user_events),
            }

    def __contains__(self, event_id: object) -> bool:
        with self._lock:
            return event_id in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
