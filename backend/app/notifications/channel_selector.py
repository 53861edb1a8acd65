"""
channel_selector.py — Pure routing decisions.

No I/O, no clock, no state: every function here maps its inputs to a
decision and can be called from any thread.

═══════════════════════════════════════════════════════════════════════════
ROUTING CASCADE (first match wins)
═══════════════════════════════════════════════════════════════════════════

    Rule  Condition                                Channel    Escalates
    ────  ───────────────────────────────────────  ─────────  ─────────
    1     has_app ∧ is_active ∧ device_online      IN_APP     no
    2     has_app ∧ device_online                  PUSH       yes
    3     whatsapp_opt_in ∧ device_online          WHATSAPP   yes
    4     otherwise                                SMS        no (last resort)

Fallback on escalation:

    PUSH      → WHATSAPP if whatsapp_opt_in else SMS
    WHATSAPP  → SMS

═══════════════════════════════════════════════════════════════════════════
LOGIN TRUST DECISION
═══════════════════════════════════════════════════════════════════════════

Login events bypass the cascade. A device already bound to the user gets
an in-app flash; an unknown device is forced through SIM binding (the
app sends an upstream SMS to the bank's virtual number).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from backend.app.notifications.models import (
    DeviceContext,
    EventType,
    LoginStatus,
    NotificationChannel,
)


@dataclass(frozen=True)
class RoutingDecision:
    channel: NotificationChannel
    rule: int
    reason: str
    escalates: bool

    @property
    def description(self) -> str:
        """Human-readable line for the event log."""
        return f"Route: {self.channel.value} ({self.reason}) [rule {self.rule}]"


@dataclass(frozen=True)
class TrustDecision:
    status: LoginStatus
    event_type: EventType
    channel: NotificationChannel
    target_number: Optional[str] = None


_IN_APP = RoutingDecision(NotificationChannel.IN_APP, 1, "User active in app", False)
_PUSH = RoutingDecision(NotificationChannel.PUSH, 2, "Background notification", True)
_WHATSAPP = RoutingDecision(NotificationChannel.WHATSAPP, 3, "Opt-in Primary", True)
_SMS = RoutingDecision(NotificationChannel.SMS, 4, "Last Resort", False)

CASCADE = (_IN_APP, _PUSH, _WHATSAPP, _SMS)

# Channels that arm an escalation timer when chosen
ESCALATING_CHANNELS = frozenset(d.channel for d in CASCADE if d.escalates)


def route(context: DeviceContext) -> RoutingDecision:
    """Run the cascade and return the matched rule."""
    if context.has_app and context.is_active and context.device_online:
        return _IN_APP
    if context.has_app and context.device_online:
        return _PUSH
    if context.whatsapp_opt_in and context.device_online:
        return _WHATSAPP
    return _SMS


def select_channel(context: DeviceContext) -> NotificationChannel:
    """Initial channel for a dispatch."""
    return route(context).channel


def fallback_channel_for(
    channel: NotificationChannel,
    context: DeviceContext,
) -> Optional[NotificationChannel]:
    """
    Channel to escalate to when ``channel`` goes unacknowledged.

    Returns None for terminal channels.
    """
    if channel == NotificationChannel.PUSH:
        if context.whatsapp_opt_in:
            return NotificationChannel.WHATSAPP
        return NotificationChannel.SMS
    if channel == NotificationChannel.WHATSAPP:
        return NotificationChannel.SMS
    return None


def decide_trust(trusted: bool, *, binding_target: str) -> TrustDecision:
    """Classify a login device as previously bound vs unknown."""
    if trusted:
        return TrustDecision(
            status=LoginStatus.TRUSTED,
            event_type=EventType.TRUSTED_LOGIN,
            channel=NotificationChannel.IN_APP,
        )
    return TrustDecision(
        status=LoginStatus.BINDING_REQUIRED,
        event_type=EventType.NEW_DEVICE_LOGIN,
        channel=NotificationChannel.SMS_BINDING,
        target_number=binding_target,
    )


def describe_cascade() -> Dict[str, object]:
    """Catalogue used by the /channels endpoint."""
    return {
        "cascade": [
            {
                "rule": d.rule,
                "channel": d.channel.value,
                "reason": d.reason,
                "escalates": d.escalates,
            }
            for d in CASCADE
        ],
        "fallbacks": {
            NotificationChannel.PUSH.value: {
                "whatsapp_opt_in": NotificationChannel.WHATSAPP.value,
                "otherwise": NotificationChannel.SMS.value,
            },
            NotificationChannel.WHATSAPP.value: {
                "otherwise": NotificationChannel.SMS.value,
            },
        },
    }
