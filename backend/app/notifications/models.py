"""
models.py — Shared data structures for the notification decision engine.

Defines:
    • NotificationChannel — delivery media
    • EventType          — well-known security event kinds
    • LoginStatus        — outcome of the login trust decision
    • DeliveryStatus     — outcome of handing a message to a channel backend
    • DeviceContext      — per-dispatch context snapshot
    • LogEntry           — one (timestamp, message) audit line
    • TelemetryRecord    — lifecycle of one event (dispatch → ack | fallback)
    • DeliveryAttempt    — single hand-off to a channel backend
    • DispatchResult / LoginResult — boundary results

═══════════════════════════════════════════════════════════════════════════
TELEMETRY RECORD LIFECYCLE
═══════════════════════════════════════════════════════════════════════════

    dispatch ──► chosen_channel + sent_ts set (both write-once)
        │
        ├── acknowledge ──► ack_ts set (final, no fallback afterwards)
        │
        └── deadline, no ack ──► fallback_triggered = True
                                 fallback_channel set (chosen_channel untouched)

A record is only published to the store once ``chosen_channel`` is final,
so pollers never observe an "analyzing" placeholder.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class NotificationChannel(str, Enum):
    """Delivery media, in descending order of immediacy."""
    IN_APP      = "IN_APP"        # user is in the foreground app
    PUSH        = "PUSH"          # background push, escalates
    WHATSAPP    = "WHATSAPP"      # opt-in messaging, escalates
    SMS         = "SMS"           # last resort, terminal
    SMS_BINDING = "SMS_BINDING"   # upstream SMS for device binding


class EventType(str, Enum):
    """Event kinds the engine itself produces or defaults to."""
    LOGIN_ATTEMPT    = "LOGIN_ATTEMPT"
    TRUSTED_LOGIN    = "TRUSTED_LOGIN"
    NEW_DEVICE_LOGIN = "NEW_DEVICE_LOGIN"
    LOGIN_OTP        = "LOGIN_OTP"


class LoginStatus(str, Enum):
    TRUSTED          = "TRUSTED"
    BINDING_REQUIRED = "BINDING_REQUIRED"


class DeliveryStatus(str, Enum):
    """Hand-off state for one channel backend call."""
    PENDING   = "pending"
    SENDING   = "sending"
    DELIVERED = "delivered"
    FAILED    = "failed"


def _generate_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(ts: Optional[datetime]) -> Optional[str]:
    return ts.isoformat() if ts else None


# ═══════════════════════════════════════════════════════════════════════════
# Context Snapshot
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DeviceContext:
    """
    Device / session flags the channel cascade is evaluated against.

    Attributes
    ----------
    has_app : bool
        The banking app is installed on the user's device.
    is_active : bool
        The app is currently in the foreground.
    device_online : bool
        The device is reachable over data.
    whatsapp_opt_in : bool
        The user agreed to receive alerts on WhatsApp.
    """
    has_app: bool = False
    is_active: bool = False
    device_online: bool = False
    whatsapp_opt_in: bool = False

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "DeviceContext":
        """Build from a partial mapping; unknown keys are ignored."""
        return cls().merged(data)

    def merged(self, partial: Optional[Mapping[str, Any]]) -> "DeviceContext":
        """Return a copy with the flags present in ``partial`` overridden."""
        if not partial:
            return self
        names = {f.name for f in fields(self)}
        updates = {
            k: bool(v) for k, v in partial.items()
            if k in names and v is not None
        }
        return replace(self, **updates)

    def to_dict(self) -> Dict[str, bool]:
        return {
            "has_app": self.has_app,
            "is_active": self.is_active,
            "device_online": self.device_online,
            "whatsapp_opt_in": self.whatsapp_opt_in,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Telemetry
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class LogEntry:
    ts: datetime
    msg: str

    def to_dict(self) -> Dict[str, Any]:
        return {"ts": self.ts.isoformat(), "msg": self.msg}


@dataclass
class TelemetryRecord:
    """
    Delivery state of one event.

    Only the EventStore mutates a published record; everything handed out
    by the store is a snapshot copy.
    """
    event_id: str
    user_id: str
    event_type: str
    chosen_channel: Optional[NotificationChannel] = None
    sent_ts: Optional[datetime] = None
    ack_ts: Optional[datetime] = None
    ack_channel: Optional[str] = None
    fallback_triggered: bool = False
    fallback_channel: Optional[NotificationChannel] = None
    context: Optional[DeviceContext] = None
    logs: List[LogEntry] = field(default_factory=list)

    def snapshot(self) -> "TelemetryRecord":
        """Detached copy safe to hand to callers."""
        return replace(self, logs=list(self.logs))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "user_id": self.user_id,
            "event_type": self.event_type,
            "chosen_channel": (
                self.chosen_channel.value if self.chosen_channel else None
            ),
            "sent_ts": _iso(self.sent_ts),
            "ack_ts": _iso(self.ack_ts),
            "ack_channel": self.ack_channel,
            "fallback_triggered": self.fallback_triggered,
            "fallback_channel": (
                self.fallback_channel.value if self.fallback_channel else None
            ),
            "context": self.context.to_dict() if self.context else None,
            "logs": [entry.to_dict() for entry in self.logs],
        }


@dataclass
class DeliveryAttempt:
    """Record of a single hand-off to a channel backend."""
    attempt_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    channel: NotificationChannel = NotificationChannel.SMS
    event_id: str = ""
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempted_at: datetime = field(default_factory=_now)
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    provider_response: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "channel": self.channel.value,
            "event_id": self.event_id,
            "status": self.status.value,
            "attempted_at": self.attempted_at.isoformat(),
            "completed_at": _iso(self.completed_at),
            "error_message": self.error_message,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Boundary Results
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class DispatchResult:
    event_id: str
    chosen_channel: NotificationChannel
    record: TelemetryRecord

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "chosen_channel": self.chosen_channel.value,
            "record": self.record.to_dict(),
        }


@dataclass
class LoginResult:
    status: LoginStatus
    event_id: str
    channel: NotificationChannel
    message: str
    target_number: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "status": self.status.value,
            "event_id": self.event_id,
            "channel": self.channel.value,
            "message": self.message,
        }
        if self.target_number is not None:
            d["target_number"] = self.target_number
        return d
